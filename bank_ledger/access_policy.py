"""
Access Policy Module

Answers ownership and role questions for an explicit caller identity. The
ledger engine does no authorization of its own; the HTTP layer asks the
policy before every call. Unknown resources are never owned.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

from .accounts import AccountStore
from .customers import Role
from .transactions import TransactionLog


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated caller as resolved from a bearer token"""
    customer_id: str
    roles: FrozenSet[str] = field(default_factory=lambda: frozenset({Role.USER.value}))
    email: Optional[str] = None

    @classmethod
    def from_claims(cls, subject: str, roles: Optional[Iterable[str]] = None,
                    email: Optional[str] = None) -> 'CallerIdentity':
        """Build from token claims; role names may carry a ROLE_ prefix"""
        names = {r.upper().replace("ROLE_", "", 1) for r in (roles or [Role.USER.value])}
        return cls(customer_id=str(subject), roles=frozenset(names), email=email)

    def has_role(self, role: Role) -> bool:
        return role.value in self.roles


class AccessPolicy:
    """Ownership checks backed by the account store and transaction log"""

    def __init__(self, accounts: AccountStore, transactions: TransactionLog):
        self.accounts = accounts
        self.transactions = transactions

    def is_admin(self, caller: Optional[CallerIdentity]) -> bool:
        return caller is not None and caller.has_role(Role.ADMIN)

    def is_current_customer(self, caller: Optional[CallerIdentity], customer_id: str) -> bool:
        return caller is not None and caller.customer_id == customer_id

    def is_current_customer_email(self, caller: Optional[CallerIdentity], email: str) -> bool:
        return caller is not None and caller.email is not None and caller.email == email

    def is_owner_of_account(self, caller: Optional[CallerIdentity], account_id: str) -> bool:
        if caller is None:
            return False
        account = self.accounts.get(account_id)
        return account is not None and account.customer_id == caller.customer_id

    def is_owner_of_account_by_number(self, caller: Optional[CallerIdentity],
                                      account_number: str) -> bool:
        if caller is None:
            return False
        account = self.accounts.get_by_number(account_number)
        return account is not None and account.customer_id == caller.customer_id

    def is_owner_of_transaction(self, caller: Optional[CallerIdentity], transaction_id: str) -> bool:
        """True when the caller owned the source or the target account"""
        if caller is None:
            return False
        transaction = self.transactions.get(transaction_id)
        return transaction is not None and transaction.involves_customer(caller.customer_id)

    # "admin or owner" guards

    def can_access_customer(self, caller: Optional[CallerIdentity], customer_id: str) -> bool:
        return self.is_admin(caller) or self.is_current_customer(caller, customer_id)

    def can_access_customer_email(self, caller: Optional[CallerIdentity], email: str) -> bool:
        return self.is_admin(caller) or self.is_current_customer_email(caller, email)

    def can_access_account(self, caller: Optional[CallerIdentity], account_id: str) -> bool:
        return self.is_admin(caller) or self.is_owner_of_account(caller, account_id)

    def can_access_account_by_number(self, caller: Optional[CallerIdentity],
                                     account_number: str) -> bool:
        return self.is_admin(caller) or self.is_owner_of_account_by_number(caller, account_number)

    def can_access_transaction(self, caller: Optional[CallerIdentity], transaction_id: str) -> bool:
        return self.is_admin(caller) or self.is_owner_of_transaction(caller, transaction_id)
