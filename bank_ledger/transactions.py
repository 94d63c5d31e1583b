"""
Transaction Log Module

Append-only storage of transaction records. A transaction is written once, at
commit time, and never updated or deleted by normal operation. Account numbers
and owning customer ids are copied onto the record so history stays readable
after an account is removed.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum

from .errors import BusinessRuleViolation, InvalidAmountError
from .money import ZERO
from .storage import StorageInterface, StorageRecord


class TransactionType(Enum):
    """Types of money movement"""
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"


DEFAULT_DESCRIPTIONS = {
    TransactionType.DEPOSIT: "Deposit",
    TransactionType.WITHDRAWAL: "Withdrawal",
    TransactionType.TRANSFER: "Transfer",
}


@dataclass
class Transaction(StorageRecord):
    """
    Immutable record of one money movement

    DEPOSIT has a target only, WITHDRAWAL a source only, TRANSFER both and
    they differ.
    """
    transaction_type: TransactionType
    amount: Decimal
    transaction_date: datetime
    description: str
    source_account_id: Optional[str] = None
    source_account_number: Optional[str] = None
    source_customer_id: Optional[str] = None
    target_account_id: Optional[str] = None
    target_account_number: Optional[str] = None
    target_customer_id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.amount, Decimal) or self.amount <= ZERO:
            raise InvalidAmountError("Transaction amount must be positive", self.amount)

        has_source = self.source_account_id is not None
        has_target = self.target_account_id is not None

        if self.transaction_type == TransactionType.DEPOSIT and (has_source or not has_target):
            raise ValueError("Deposit must have a target account and no source account")
        if self.transaction_type == TransactionType.WITHDRAWAL and (has_target or not has_source):
            raise ValueError("Withdrawal must have a source account and no target account")
        if self.transaction_type == TransactionType.TRANSFER:
            if not (has_source and has_target):
                raise ValueError("Transfer must have both source and target accounts")
            if self.source_account_id == self.target_account_id:
                raise BusinessRuleViolation("Source and target accounts must differ")

        if not self.description:
            self.description = DEFAULT_DESCRIPTIONS[self.transaction_type]

    def involves_account(self, account_id: str) -> bool:
        return account_id in (self.source_account_id, self.target_account_id)

    def involves_customer(self, customer_id: str) -> bool:
        return customer_id in (self.source_customer_id, self.target_customer_id)


def newest_first(transactions: List[Transaction]) -> List[Transaction]:
    """Sort by transaction date descending, id descending as tie-break"""
    return sorted(transactions, key=lambda t: (t.transaction_date, t.id), reverse=True)


class TransactionLog:
    """
    Append-only transaction storage
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "transactions"

    def append(self, transaction: Transaction) -> Transaction:
        """Write a new transaction record; ids are never reused"""
        if self.storage.exists(self.table_name, transaction.id):
            raise ValueError(f"Transaction {transaction.id} already recorded")
        self.storage.save(self.table_name, transaction.id, self._transaction_to_dict(transaction))
        return transaction

    def get(self, transaction_id: str) -> Optional[Transaction]:
        """Get transaction by ID"""
        data = self.storage.load(self.table_name, transaction_id)
        if data:
            return self._transaction_from_dict(data)
        return None

    def list_all(self) -> List[Transaction]:
        return newest_first([self._transaction_from_dict(d)
                             for d in self.storage.load_all(self.table_name)])

    def list_for_account(self, account_id: str) -> List[Transaction]:
        """Transactions where the account is source or target, newest first"""
        rows = self.storage.find_any(self.table_name, {
            "source_account_id": account_id,
            "target_account_id": account_id,
        })
        return newest_first([self._transaction_from_dict(d) for d in rows])

    def list_for_customer(self, customer_id: str) -> List[Transaction]:
        """Transactions touching any account the customer owned at the time"""
        rows = self.storage.find_any(self.table_name, {
            "source_customer_id": customer_id,
            "target_customer_id": customer_id,
        })
        return newest_first([self._transaction_from_dict(d) for d in rows])

    def count(self) -> int:
        return self.storage.count(self.table_name)

    def _transaction_to_dict(self, transaction: Transaction) -> Dict:
        """Convert Transaction to dictionary for storage"""
        result = transaction.to_dict()
        result['transaction_type'] = transaction.transaction_type.value
        result['amount'] = str(transaction.amount)
        result['transaction_date'] = transaction.transaction_date.isoformat()
        return result

    def _transaction_from_dict(self, data: Dict) -> Transaction:
        """Convert dictionary to Transaction"""
        return Transaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            transaction_type=TransactionType(data['transaction_type']),
            amount=Decimal(data['amount']),
            transaction_date=datetime.fromisoformat(data['transaction_date']),
            description=data['description'],
            source_account_id=data.get('source_account_id'),
            source_account_number=data.get('source_account_number'),
            source_customer_id=data.get('source_customer_id'),
            target_account_id=data.get('target_account_id'),
            target_account_number=data.get('target_account_number'),
            target_customer_id=data.get('target_customer_id'),
        )
