"""
Authentication and authorization dependencies
"""

from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..access_policy import AccessPolicy, CallerIdentity
from ..accounts import AccountNumberGenerator, AccountStore
from ..config import LedgerConfig, create_storage, get_config
from ..customers import CustomerManager, Role
from ..ledger import LedgerEngine
from ..locking import AccountLockManager
from ..logging_config import get_logger
from ..queries import TransactionQueryService
from ..storage import StorageInterface
from ..transactions import TransactionLog


logger = get_logger("bank_ledger.api.auth")


class BankingSystem:
    """Ledger components wired over one storage backend"""

    def __init__(self, config: Optional[LedgerConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config)

        self.customer_manager = CustomerManager(self.storage)
        self.account_store = AccountStore(self.storage)
        self.transaction_log = TransactionLog(self.storage)
        self.lock_manager = AccountLockManager(timeout=self.config.lock_timeout_seconds)

        self.ledger = LedgerEngine(
            self.storage, self.account_store, self.transaction_log, self.customer_manager,
            lock_manager=self.lock_manager,
            number_generator=AccountNumberGenerator(
                self.config.account_number_prefix, self.config.account_number_length
            ),
            max_conflict_retries=self.config.max_conflict_retries,
            max_page_size=self.config.max_page_size
        )
        self.queries = TransactionQueryService(
            self.transaction_log, self.account_store, self.customer_manager,
            default_page_size=self.config.default_page_size,
            max_page_size=self.config.max_page_size
        )
        self.access_policy = AccessPolicy(self.account_store, self.transaction_log)

    def close(self) -> None:
        self.storage.close()


_banking_system: Optional[BankingSystem] = None


# Dependency to get banking system
def get_banking_system() -> BankingSystem:
    global _banking_system
    if _banking_system is None:
        _banking_system = BankingSystem()
    return _banking_system


# JWT Security
security = HTTPBearer(auto_error=False)


def get_current_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: BankingSystem = Depends(get_banking_system)
) -> CallerIdentity:
    """Dependency that validates the bearer JWT and returns the caller identity"""
    if not system.config.auth_enabled:
        # Auth disabled: every call runs as an administrator
        return CallerIdentity("system", frozenset({Role.USER.value, Role.ADMIN.value}))

    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        payload = jwt.decode(
            credentials.credentials, system.config.jwt_secret,
            algorithms=[system.config.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return CallerIdentity.from_claims(subject, payload.get("roles"), payload.get("email"))


def ensure(allowed: bool) -> None:
    """Raise 403 unless the policy allowed the call"""
    if not allowed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
