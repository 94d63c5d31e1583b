"""
Ledger Engine Module

Applies deposits, withdrawals, transfers and the account lifecycle against the
account store, appending to the transaction log in the same atomic scope.
Every public operation returns an OperationResult instead of raising for
expected business outcomes.

Write path for a balance change:
    1. resolve the account(s) by number and validate the request
    2. take the per-account locks in ascending id order
    3. open storage.atomic(), take row locks, re-read the accounts
    4. version-checked balance writes, then append the transaction record

A version mismatch raised in step 4 rolls back the scope and the whole
operation is retried from step 1.
"""

from dataclasses import replace
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union
import uuid

from .accounts import (
    Account, AccountNumberGenerator, AccountStore, AccountType, is_valid_account_number
)
from .clock import SystemClock
from .customers import Customer, CustomerManager
from .errors import (
    BusinessRuleViolation, ConflictError, DuplicateResourceError, InsufficientFundsError,
    InternalError, InvalidAmountError, LedgerException, NotFoundError, OperationResult
)
from .locking import AccountLockManager
from .logging_config import get_logger, log_action
from .money import ZERO, parse_amount, require_positive
from .pagination import paginate
from .storage import (
    StorageError, StorageInterface, StorageTimeoutError, UniqueConstraintError,
    VersionConflictError
)
from .transactions import Transaction, TransactionLog, TransactionType

T = TypeVar("T")

AmountInput = Union[Decimal, int, str]


def coerce_account_type(account_type: Union[AccountType, str]) -> AccountType:
    """Accept an AccountType or its name"""
    if isinstance(account_type, AccountType):
        return account_type
    try:
        return AccountType(str(account_type).upper())
    except ValueError:
        raise BusinessRuleViolation(f"Unknown account type: {account_type}")


class LedgerEngine:
    """
    Balance-mutating operations and account lifecycle

    The engine never performs authorization; callers consult the access
    policy first.
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountStore,
        transactions: TransactionLog,
        customers: CustomerManager,
        lock_manager: Optional[AccountLockManager] = None,
        clock: Optional[SystemClock] = None,
        number_generator: Optional[AccountNumberGenerator] = None,
        max_conflict_retries: int = 3,
        max_number_attempts: int = 10,
        max_page_size: int = 100
    ):
        self.storage = storage
        self.accounts = accounts
        self.transactions = transactions
        self.customers = customers
        self.lock_manager = lock_manager or AccountLockManager()
        self.clock = clock or SystemClock()
        self.number_generator = number_generator or AccountNumberGenerator()
        self.max_conflict_retries = max_conflict_retries
        self.max_number_attempts = max_number_attempts
        self.max_page_size = max_page_size
        self.logger = get_logger("bank_ledger.ledger")

    # Balance operations

    def deposit(
        self, account_number: str, amount: AmountInput, description: Optional[str] = None
    ) -> OperationResult[Transaction]:
        """
        Credit an account

        Args:
            account_number: External number of the account to credit
            amount: Positive amount with at most two decimal places
            description: Optional free text; defaults to "Deposit"

        Returns:
            OperationResult with the DEPOSIT transaction, or NOT_FOUND /
            INVALID_AMOUNT / CONFLICT / INTERNAL
        """
        return self._execute(
            "deposit", lambda: self._deposit(account_number, amount, description),
            resource=account_number, extra={"amount": str(amount)}
        )

    def withdraw(
        self, account_number: str, amount: AmountInput, description: Optional[str] = None
    ) -> OperationResult[Transaction]:
        """
        Debit an account

        Returns:
            OperationResult with the WITHDRAWAL transaction, or NOT_FOUND /
            INVALID_AMOUNT / INSUFFICIENT_FUNDS / CONFLICT / INTERNAL
        """
        return self._execute(
            "withdraw", lambda: self._withdraw(account_number, amount, description),
            resource=account_number, extra={"amount": str(amount)}
        )

    def transfer(
        self,
        source_number: str,
        target_number: str,
        amount: AmountInput,
        description: Optional[str] = None
    ) -> OperationResult[Transaction]:
        """
        Move money between two accounts as one atomic unit

        Returns:
            OperationResult with the TRANSFER transaction, or NOT_FOUND (naming
            the missing side) / BUSINESS_RULE_VIOLATION (same account) /
            INVALID_AMOUNT / INSUFFICIENT_FUNDS / CONFLICT / INTERNAL
        """
        return self._execute(
            "transfer",
            lambda: self._transfer(source_number, target_number, amount, description),
            resource=source_number,
            extra={"target_account_number": target_number, "amount": str(amount)}
        )

    def _deposit(self, account_number: str, amount: AmountInput,
                 description: Optional[str]) -> Transaction:
        account = self._require_account_by_number(account_number)
        value = require_positive(parse_amount(amount), "Deposit")

        with self.lock_manager.hold(account.id), self.storage.atomic():
            self.storage.lock_records(self.accounts.table_name, [account.id])
            account = self._reload(account)
            now = self.clock.now()
            credited = self.accounts.update(account.with_balance(account.balance + value, now))
            transaction = self._record(
                TransactionType.DEPOSIT, value, now, description, target=credited
            )
        return transaction

    def _withdraw(self, account_number: str, amount: AmountInput,
                  description: Optional[str]) -> Transaction:
        account = self._require_account_by_number(account_number)
        value = require_positive(parse_amount(amount), "Withdrawal")

        with self.lock_manager.hold(account.id), self.storage.atomic():
            self.storage.lock_records(self.accounts.table_name, [account.id])
            account = self._reload(account)
            if account.balance < value:
                raise InsufficientFundsError(account.account_number, value, account.balance)
            now = self.clock.now()
            debited = self.accounts.update(account.with_balance(account.balance - value, now))
            transaction = self._record(
                TransactionType.WITHDRAWAL, value, now, description, source=debited
            )
        return transaction

    def _transfer(self, source_number: str, target_number: str, amount: AmountInput,
                  description: Optional[str]) -> Transaction:
        source = self._require_account_by_number(source_number, "Source account")
        target = self._require_account_by_number(target_number, "Target account")
        if source.id == target.id:
            raise BusinessRuleViolation("Cannot transfer to the same account")
        value = require_positive(parse_amount(amount), "Transfer")

        with self.lock_manager.hold(source.id, target.id), self.storage.atomic():
            self.storage.lock_records(self.accounts.table_name, [source.id, target.id])
            source = self._reload(source, "Source account")
            target = self._reload(target, "Target account")
            if source.balance < value:
                raise InsufficientFundsError(source.account_number, value, source.balance)
            now = self.clock.now()
            debited = self.accounts.update(source.with_balance(source.balance - value, now))
            credited = self.accounts.update(target.with_balance(target.balance + value, now))
            transaction = self._record(
                TransactionType.TRANSFER, value, now, description,
                source=debited, target=credited
            )
        return transaction

    def _record(self, transaction_type: TransactionType, amount: Decimal, now,
                description: Optional[str], source: Optional[Account] = None,
                target: Optional[Account] = None) -> Transaction:
        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            transaction_type=transaction_type,
            amount=amount,
            transaction_date=now,
            description=description,
            source_account_id=source.id if source else None,
            source_account_number=source.account_number if source else None,
            source_customer_id=source.customer_id if source else None,
            target_account_id=target.id if target else None,
            target_account_number=target.account_number if target else None,
            target_customer_id=target.customer_id if target else None,
        )
        return self.transactions.append(transaction)

    # Account lifecycle

    def create_account(
        self,
        customer_id: str,
        account_type: Union[AccountType, str],
        initial_balance: AmountInput = ZERO
    ) -> OperationResult[Account]:
        """
        Open an account for an existing customer

        The account number is sampled until it does not collide with an
        existing one; a collision reported by the unique index at insert
        (a concurrent creator won) is retried with a new candidate.
        """
        return self._execute(
            "create_account",
            lambda: self._create_account(customer_id, account_type, initial_balance),
            resource=customer_id
        )

    def _create_account(self, customer_id: str, account_type: Union[AccountType, str],
                        initial_balance: AmountInput) -> Account:
        if not self.customers.exists(customer_id):
            raise NotFoundError("Customer", "id", customer_id)
        account_type = coerce_account_type(account_type)
        balance = parse_amount(ZERO if initial_balance is None else initial_balance)
        if balance < ZERO:
            raise InvalidAmountError("Initial balance must not be negative", balance)

        for _ in range(self.max_number_attempts):
            now = self.clock.now()
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                account_number=self._free_account_number(),
                account_type=account_type,
                customer_id=customer_id,
                balance=balance,
            )
            try:
                with self.storage.atomic():
                    # Owner may have been deleted since the first check
                    self.storage.lock_records(self.customers.table_name, [customer_id])
                    if not self.customers.exists(customer_id):
                        raise NotFoundError("Customer", "id", customer_id)
                    self.accounts.insert(account)
                return account
            except UniqueConstraintError:
                log_action(
                    self.logger, "warning", "Account number collided at insert, retrying",
                    action="create_account", resource=account.account_number
                )
        raise ConflictError("Could not allocate a unique account number")

    def _free_account_number(self) -> str:
        for _ in range(self.max_number_attempts):
            candidate = self.number_generator.candidate()
            if not self.accounts.exists_by_number(candidate):
                return candidate
        raise ConflictError("Could not allocate a unique account number")

    def update_account(
        self,
        account_id: str,
        account_number: Optional[str] = None,
        account_type: Optional[Union[AccountType, str]] = None
    ) -> OperationResult[Account]:
        """Change an account's number and/or type; None leaves a field unchanged"""
        return self._execute(
            "update_account",
            lambda: self._update_account(account_id, account_number, account_type),
            resource=account_id
        )

    def _update_account(self, account_id: str, account_number: Optional[str],
                        account_type: Optional[Union[AccountType, str]]) -> Account:
        new_type = coerce_account_type(account_type) if account_type is not None else None
        if account_number is not None and not is_valid_account_number(account_number):
            raise BusinessRuleViolation(f"Invalid account number format: {account_number}")

        with self.lock_manager.hold(account_id), self.storage.atomic():
            self.storage.lock_records(self.accounts.table_name, [account_id])
            account = self._require_account(account_id)

            changes: Dict[str, Any] = {"updated_at": self.clock.now()}
            if account_number is not None and account_number != account.account_number:
                if self.accounts.exists_by_number(account_number):
                    raise DuplicateResourceError("Account", "account_number", account_number)
                changes["account_number"] = account_number
            if new_type is not None:
                changes["account_type"] = new_type

            try:
                updated = self.accounts.update(replace(account, **changes))
            except UniqueConstraintError:
                raise DuplicateResourceError("Account", "account_number", account_number)
        return updated

    def delete_account(self, account_id: str) -> OperationResult[Account]:
        """
        Remove an account whose balance is exactly zero

        Its transactions stay in the log. Returns the removed account.
        """
        return self._execute(
            "delete_account", lambda: self._delete_account(account_id), resource=account_id
        )

    def _delete_account(self, account_id: str) -> Account:
        with self.lock_manager.hold(account_id), self.storage.atomic():
            self.storage.lock_records(self.accounts.table_name, [account_id])
            account = self._require_account(account_id)
            if account.balance != ZERO:
                raise BusinessRuleViolation(
                    f"Account {account.account_number} has a non-zero balance "
                    f"({account.balance}) and cannot be deleted"
                )
            self.accounts.delete(account_id)
        self.lock_manager.forget(account_id)
        return account

    def delete_customer(self, customer_id: str) -> OperationResult[Customer]:
        """
        Remove a customer who owns no accounts

        The ownership count and the delete share one atomic scope with the
        customer row locked, so a concurrent create_account either lands
        first and blocks the delete or finds the customer gone.
        """
        return self._execute(
            "delete_customer", lambda: self._delete_customer(customer_id), resource=customer_id
        )

    def _delete_customer(self, customer_id: str) -> Customer:
        with self.storage.atomic():
            self.storage.lock_records(self.customers.table_name, [customer_id])
            customer = self.customers.get_customer(customer_id)
            if customer is None:
                raise NotFoundError("Customer", "id", customer_id)
            owned = len(self.accounts.list_for_customer(customer_id))
            self.customers.delete_customer(customer_id, owned_accounts=owned)
        return customer

    # Read helpers

    def get_account(self, account_id: str) -> OperationResult[Account]:
        return self._execute(
            "get_account", lambda: self._require_account(account_id),
            resource=account_id, level="debug"
        )

    def get_account_by_number(self, account_number: str) -> OperationResult[Account]:
        return self._execute(
            "get_account_by_number", lambda: self._require_account_by_number(account_number),
            resource=account_number, level="debug"
        )

    def list_accounts(self, page: int = 0, size: int = 20) -> OperationResult[List[Account]]:
        """All accounts, oldest first, one page at a time"""
        return self._execute(
            "list_accounts",
            lambda: paginate(self.accounts.list_all(), page, size, self.max_page_size),
            level="debug"
        )

    def list_customer_accounts(self, customer_id: str) -> OperationResult[List[Account]]:
        def run():
            if not self.customers.exists(customer_id):
                raise NotFoundError("Customer", "id", customer_id)
            return self.accounts.list_for_customer(customer_id)

        return self._execute("list_customer_accounts", run, resource=customer_id, level="debug")

    # Internals

    def _require_account(self, account_id: str, label: str = "Account") -> Account:
        account = self.accounts.get(account_id)
        if account is None:
            raise NotFoundError(label, "id", account_id)
        return account

    def _require_account_by_number(self, account_number: str, label: str = "Account") -> Account:
        account = self.accounts.get_by_number(account_number)
        if account is None:
            raise NotFoundError(label, "account_number", account_number)
        return account

    def _reload(self, account: Account, label: str = "Account") -> Account:
        """Fresh copy of an account read under its lock"""
        fresh = self.accounts.get(account.id)
        if fresh is None:
            raise NotFoundError(label, "account_number", account.account_number)
        return fresh

    def _execute(
        self,
        action: str,
        operation: Callable[[], T],
        resource: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        level: str = "info"
    ) -> OperationResult[T]:
        """
        Run an operation, retrying on version conflicts, and classify the outcome

        LedgerExceptions become failures carrying their error. Storage lock
        timeouts and exhausted retries become CONFLICT. Anything else is
        logged with its traceback and becomes INTERNAL.
        """
        attempt = 0
        while True:
            try:
                value = operation()
            except VersionConflictError as e:
                attempt += 1
                if attempt <= self.max_conflict_retries:
                    log_action(self.logger, "debug", f"{action} hit a version conflict, retrying",
                               action=action, resource=resource,
                               extra={"attempt": attempt, "record_id": e.record_id})
                    continue
                return self._fail(action, resource, ConflictError(
                    f"{action} failed after {attempt} attempts due to concurrent modification",
                    {"attempts": attempt}
                ))
            except StorageTimeoutError as e:
                return self._fail(action, resource, ConflictError(str(e)))
            except LedgerException as e:
                return self._fail(action, resource, e)
            except StorageError as e:
                log_action(self.logger, "error", f"{action} failed with a storage error: {e}",
                           action=action, resource=resource, extra=extra, exc_info=True)
                return OperationResult.failure(
                    InternalError(f"Storage failure during {action}").error
                )
            except Exception as e:
                log_action(self.logger, "error", f"{action} failed unexpectedly: {e}",
                           action=action, resource=resource, extra=extra, exc_info=True)
                return OperationResult.failure(
                    InternalError(f"Unexpected failure during {action}").error
                )

            details = dict(extra or {})
            if hasattr(value, "id"):
                details["id"] = value.id
            log_action(self.logger, level, f"{action} completed",
                       action=action, resource=resource, extra=details or None)
            return OperationResult.success(value)

    def _fail(self, action: str, resource: Optional[str],
              exc: LedgerException) -> OperationResult:
        log_action(self.logger, "warning", f"{action} rejected: {exc.error.message}",
                   action=action, resource=resource,
                   extra={"error_code": exc.error.error_code})
        return OperationResult.failure(exc.error)
