"""
Account Store Module

Durable keyed storage of account records. An account holds a single-currency
balance, belongs to one customer and carries a version counter that every
write increments. Balance changes go through the ledger engine only.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass, replace
from typing import Dict, List, Optional
from enum import Enum
import re
import uuid

from .money import ZERO, quantize
from .storage import StorageInterface, StorageRecord, VersionConflictError


ACCOUNT_NUMBER_PATTERN = re.compile(r'^[A-Z0-9]{10,16}$')


def is_valid_account_number(account_number: Optional[str]) -> bool:
    """Check the external account number format"""
    return bool(account_number) and ACCOUNT_NUMBER_PATTERN.match(account_number) is not None


class AccountType(Enum):
    """Banking product types"""
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    CREDIT = "CREDIT"


@dataclass
class Account(StorageRecord):
    """
    Bank account

    balance is a quantized Decimal and never negative once committed.
    version starts at 0 and increases by one with every stored write.
    """
    account_number: str
    account_type: AccountType
    customer_id: str
    balance: Decimal = ZERO
    version: int = 0

    def __post_init__(self):
        if isinstance(self.balance, Decimal):
            self.balance = quantize(self.balance)
        else:
            raise TypeError("Account balance must be a Decimal")

    def with_balance(self, balance: Decimal, updated_at: datetime) -> 'Account':
        """Copy of this account with a new balance"""
        return replace(self, balance=quantize(balance), updated_at=updated_at)


class AccountNumberGenerator:
    """
    Produces account number candidates: a fixed prefix followed by uppercase
    hex digits from a random UUID. Uniqueness is checked by the caller.
    """

    def __init__(self, prefix: str = "TR", length: int = 12):
        if not re.match(r'^[A-Z0-9]*$', prefix):
            raise ValueError(f"Account number prefix must be uppercase alphanumeric: {prefix!r}")
        if not 10 <= length <= 16:
            raise ValueError("Account number length must be between 10 and 16")
        if len(prefix) >= length:
            raise ValueError("Account number prefix must be shorter than the account number")
        self.prefix = prefix
        self.length = length

    def candidate(self) -> str:
        return self.prefix + uuid.uuid4().hex[:self.length - len(self.prefix)].upper()


class AccountStore:
    """
    Keyed access to account records

    account_number is backed by a unique index, so inserting a duplicate
    raises UniqueConstraintError from the storage layer.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "accounts"
        self.storage.add_unique_index(self.table_name, "account_number")

    def get(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        data = self.storage.load(self.table_name, account_id)
        if data:
            return self._account_from_dict(data)
        return None

    def get_by_number(self, account_number: str) -> Optional[Account]:
        """Get account by account number"""
        accounts = self.storage.find(self.table_name, {"account_number": account_number})
        if accounts:
            return self._account_from_dict(accounts[0])
        return None

    def exists(self, account_id: str) -> bool:
        return self.storage.exists(self.table_name, account_id)

    def exists_by_number(self, account_number: str) -> bool:
        return bool(self.storage.find(self.table_name, {"account_number": account_number}))

    def list_all(self) -> List[Account]:
        """All accounts ordered by creation time"""
        accounts = [self._account_from_dict(data) for data in self.storage.load_all(self.table_name)]
        accounts.sort(key=lambda a: (a.created_at, a.id))
        return accounts

    def list_for_customer(self, customer_id: str) -> List[Account]:
        """Get all accounts for a customer"""
        accounts = [self._account_from_dict(data)
                    for data in self.storage.find(self.table_name, {"customer_id": customer_id})]
        accounts.sort(key=lambda a: (a.created_at, a.id))
        return accounts

    def insert(self, account: Account) -> Account:
        """Store a new account"""
        self.storage.save(self.table_name, account.id, self._account_to_dict(account))
        return account

    def update(self, account: Account) -> Account:
        """
        Write account changes if nobody else has written since it was read

        Args:
            account: Account as modified by the caller, still carrying the
                version it was read at

        Returns:
            The stored account with its version incremented

        Raises:
            VersionConflictError: If the stored version differs or the
                account has been deleted
        """
        stored = replace(account, version=account.version + 1)
        if not self.storage.update_versioned(
            self.table_name, account.id, self._account_to_dict(stored), account.version
        ):
            raise VersionConflictError(self.table_name, account.id, account.version)
        return stored

    def delete(self, account_id: str) -> bool:
        return self.storage.delete(self.table_name, account_id)

    def _account_to_dict(self, account: Account) -> Dict:
        """Convert Account to dictionary for storage"""
        result = account.to_dict()
        result['account_type'] = account.account_type.value
        result['balance'] = str(account.balance)
        return result

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_number=data['account_number'],
            account_type=AccountType(data['account_type']),
            customer_id=data['customer_id'],
            balance=Decimal(data['balance']),
            version=int(data.get('version', 0)),
        )
