"""
Transaction Query Service Module

Read-side projections over the transaction log: history by account, by
customer, by date range and by type. Results are ordered newest first with
the transaction id as tie-break. Queries naming an account or customer fail
with NOT_FOUND when it does not exist.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional, TypeVar, Union

from .accounts import Account, AccountStore
from .customers import CustomerManager
from .errors import (
    BusinessRuleViolation, InternalError, LedgerException, NotFoundError, OperationResult
)
from .logging_config import get_logger, log_action
from .pagination import paginate
from .storage import StorageError
from .transactions import Transaction, TransactionLog, TransactionType

T = TypeVar("T")


@dataclass
class TransactionFilter:
    """
    Combined query criteria for list_transactions

    At most one of account_id, account_number and customer_id may be set.
    start and end are inclusive and must be given together.
    """
    account_id: Optional[str] = None
    account_number: Optional[str] = None
    customer_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    transaction_type: Optional[Union[TransactionType, str]] = None
    page: int = 0
    size: Optional[int] = None


@dataclass
class TransactionSummary:
    """Transaction projected for display"""
    id: str
    transaction_type: TransactionType
    amount: Decimal
    transaction_date: datetime
    description: str
    source_account_number: Optional[str]
    target_account_number: Optional[str]
    customer_name: Optional[str]


def _as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _coerce_type(transaction_type: Union[TransactionType, str]) -> TransactionType:
    if isinstance(transaction_type, TransactionType):
        return transaction_type
    try:
        return TransactionType(str(transaction_type).upper())
    except ValueError:
        raise BusinessRuleViolation(f"Unknown transaction type: {transaction_type}")


class TransactionQueryService:
    """Read-only access to transaction history"""

    def __init__(
        self,
        transactions: TransactionLog,
        accounts: AccountStore,
        customers: CustomerManager,
        default_page_size: int = 20,
        max_page_size: int = 100
    ):
        self.transactions = transactions
        self.accounts = accounts
        self.customers = customers
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.logger = get_logger("bank_ledger.queries")

    def get_transaction(self, transaction_id: str) -> OperationResult[Transaction]:
        def run():
            transaction = self.transactions.get(transaction_id)
            if transaction is None:
                raise NotFoundError("Transaction", "id", transaction_id)
            return transaction

        return self._run("get_transaction", run)

    def list_all(self, page: int = 0, size: Optional[int] = None) -> OperationResult[List[Transaction]]:
        return self._run("list_all", lambda: self._page(self.transactions.list_all(), page, size))

    def list_for_account(
        self,
        account_number: Optional[str] = None,
        account_id: Optional[str] = None,
        page: int = 0,
        size: Optional[int] = None
    ) -> OperationResult[List[Transaction]]:
        """Transactions where the account is source or target, one page"""
        def run():
            account = self._resolve_account(account_id, account_number)
            return self._page(self.transactions.list_for_account(account.id), page, size)

        return self._run("list_for_account", run)

    def list_for_customer(
        self, customer_id: str, page: int = 0, size: Optional[int] = None
    ) -> OperationResult[List[Transaction]]:
        """Transactions touching any account of the customer, one page"""
        def run():
            self._require_customer(customer_id)
            return self._page(self.transactions.list_for_customer(customer_id), page, size)

        return self._run("list_for_customer", run)

    def list_for_account_between(
        self,
        start: datetime,
        end: datetime,
        account_number: Optional[str] = None,
        account_id: Optional[str] = None
    ) -> OperationResult[List[Transaction]]:
        """Account transactions with start <= transaction_date <= end"""
        def run():
            start_utc, end_utc = self._check_range(start, end)
            account = self._resolve_account(account_id, account_number)
            return self._between(self.transactions.list_for_account(account.id), start_utc, end_utc)

        return self._run("list_for_account_between", run)

    def list_for_customer_between(
        self, customer_id: str, start: datetime, end: datetime
    ) -> OperationResult[List[Transaction]]:
        """Customer transactions with start <= transaction_date <= end"""
        def run():
            start_utc, end_utc = self._check_range(start, end)
            self._require_customer(customer_id)
            return self._between(self.transactions.list_for_customer(customer_id), start_utc, end_utc)

        return self._run("list_for_customer_between", run)

    def list_for_account_by_type(
        self,
        transaction_type: Union[TransactionType, str],
        account_number: Optional[str] = None,
        account_id: Optional[str] = None
    ) -> OperationResult[List[Transaction]]:
        def run():
            wanted = _coerce_type(transaction_type)
            account = self._resolve_account(account_id, account_number)
            return [t for t in self.transactions.list_for_account(account.id)
                    if t.transaction_type == wanted]

        return self._run("list_for_account_by_type", run)

    def list_transactions(self, criteria: TransactionFilter) -> OperationResult[List[Transaction]]:
        """
        Single entry point over all query shapes

        Picks the base set from the account or customer (or everything),
        then narrows by date range and type, then pages the result.
        """
        def run():
            refs = [criteria.account_id or criteria.account_number, criteria.customer_id]
            if all(refs):
                raise BusinessRuleViolation("Filter by account or by customer, not both")
            if (criteria.start is None) != (criteria.end is None):
                raise BusinessRuleViolation("Date range needs both start and end")

            bounds = None
            if criteria.start is not None:
                bounds = self._check_range(criteria.start, criteria.end)
            wanted = _coerce_type(criteria.transaction_type) if criteria.transaction_type else None

            if criteria.account_id or criteria.account_number:
                account = self._resolve_account(criteria.account_id, criteria.account_number)
                found = self.transactions.list_for_account(account.id)
            elif criteria.customer_id:
                self._require_customer(criteria.customer_id)
                found = self.transactions.list_for_customer(criteria.customer_id)
            else:
                found = self.transactions.list_all()

            if bounds:
                found = self._between(found, *bounds)
            if wanted:
                found = [t for t in found if t.transaction_type == wanted]
            return self._page(found, criteria.page, criteria.size)

        return self._run("list_transactions", run)

    def summarize(self, transaction: Transaction) -> TransactionSummary:
        """
        Display projection; the customer is the target account's owner for a
        deposit and the source account's owner otherwise
        """
        if transaction.transaction_type == TransactionType.DEPOSIT:
            owner_id = transaction.target_customer_id
        else:
            owner_id = transaction.source_customer_id

        customer = self.customers.get_customer(owner_id) if owner_id else None
        return TransactionSummary(
            id=transaction.id,
            transaction_type=transaction.transaction_type,
            amount=transaction.amount,
            transaction_date=transaction.transaction_date,
            description=transaction.description,
            source_account_number=transaction.source_account_number,
            target_account_number=transaction.target_account_number,
            customer_name=customer.full_name if customer else None,
        )

    def _resolve_account(self, account_id: Optional[str], account_number: Optional[str]) -> Account:
        if account_id:
            account = self.accounts.get(account_id)
            if account is None:
                raise NotFoundError("Account", "id", account_id)
            return account
        if account_number:
            account = self.accounts.get_by_number(account_number)
            if account is None:
                raise NotFoundError("Account", "account_number", account_number)
            return account
        raise BusinessRuleViolation("An account id or account number is required")

    def _require_customer(self, customer_id: str) -> None:
        if not self.customers.exists(customer_id):
            raise NotFoundError("Customer", "id", customer_id)

    def _check_range(self, start: datetime, end: datetime):
        start_utc, end_utc = _as_utc(start), _as_utc(end)
        if start_utc > end_utc:
            raise BusinessRuleViolation("Start date must not be after end date")
        return start_utc, end_utc

    def _between(self, transactions: List[Transaction], start: datetime,
                 end: datetime) -> List[Transaction]:
        return [t for t in transactions if start <= t.transaction_date <= end]

    def _page(self, transactions: List[Transaction], page: int,
              size: Optional[int]) -> List[Transaction]:
        size = self.default_page_size if size is None else size
        return paginate(transactions, page, size, self.max_page_size)

    def _run(self, action: str, operation: Callable[[], T]) -> OperationResult[T]:
        try:
            return OperationResult.success(operation())
        except LedgerException as e:
            log_action(self.logger, "warning", f"{action} rejected: {e.error.message}",
                       action=action, extra={"error_code": e.error.error_code})
            return OperationResult.failure(e.error)
        except StorageError as e:
            log_action(self.logger, "error", f"{action} failed with a storage error: {e}",
                       action=action, exc_info=True)
            return OperationResult.failure(InternalError(f"Storage failure during {action}").error)
        except Exception as e:
            log_action(self.logger, "error", f"{action} failed unexpectedly: {e}",
                       action=action, exc_info=True)
            return OperationResult.failure(InternalError(f"Unexpected failure during {action}").error)
