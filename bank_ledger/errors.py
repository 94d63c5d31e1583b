"""
Error Taxonomy Module

Every ledger and query operation reports failures as one of a fixed set of
error kinds so the boundary layer can map them to stable external statuses
without inspecting message text.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar


class ErrorKind(Enum):
    """Kinds of ledger failures"""
    NOT_FOUND = "not_found"
    INVALID_AMOUNT = "invalid_amount"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    BUSINESS_RULE_VIOLATION = "business_rule_violation"
    DUPLICATE_RESOURCE = "duplicate_resource"
    CONFLICT = "conflict"
    INTERNAL = "internal"


ERROR_CODES = {
    ErrorKind.NOT_FOUND: "RESOURCE_NOT_FOUND",
    ErrorKind.INVALID_AMOUNT: "INVALID_AMOUNT",
    ErrorKind.INSUFFICIENT_FUNDS: "INSUFFICIENT_FUNDS",
    ErrorKind.BUSINESS_RULE_VIOLATION: "BUSINESS_RULE_VIOLATION",
    ErrorKind.DUPLICATE_RESOURCE: "DUPLICATE_RESOURCE",
    ErrorKind.CONFLICT: "CONFLICT",
    ErrorKind.INTERNAL: "INTERNAL_ERROR",
}


@dataclass(frozen=True)
class LedgerError:
    """Classified failure returned by a ledger or query operation"""
    kind: ErrorKind
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def error_code(self) -> str:
        return ERROR_CODES[self.kind]

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.CONFLICT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "error_code": self.error_code,
            "message": self.message,
            "details": {k: str(v) if isinstance(v, Decimal) else v
                        for k, v in self.details.items()},
        }

    def to_exception(self) -> "LedgerException":
        exc_type = _EXCEPTION_TYPES.get(self.kind, LedgerException)
        return exc_type.from_error(self)


class LedgerException(Exception):
    """
    Base exception carrying a LedgerError.

    Raised inside an atomic scope to unwind and roll back; the engine converts
    it back into an OperationResult before returning to the caller.
    """
    kind = ErrorKind.INTERNAL

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.error = LedgerError(self.kind, message, details or {})

    @property
    def error_code(self) -> str:
        return self.error.error_code

    @classmethod
    def from_error(cls, error: LedgerError) -> "LedgerException":
        exc = cls.__new__(cls)
        Exception.__init__(exc, error.message)
        exc.error = error
        return exc


class NotFoundError(LedgerException):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, field_name: str = "id", value: Any = None):
        super().__init__(
            f"{resource} not found with {field_name}: {value}",
            {"resource": resource, "field": field_name, "value": value}
        )


class InvalidAmountError(LedgerException):
    kind = ErrorKind.INVALID_AMOUNT

    def __init__(self, message: str, amount: Any = None):
        super().__init__(message, {"amount": str(amount) if amount is not None else None})


class InsufficientFundsError(LedgerException):
    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(self, account_number: str, requested: Decimal, balance: Decimal):
        super().__init__(
            f"Insufficient funds in account {account_number}. "
            f"Requested: {requested}, available: {balance}",
            {"account_number": account_number, "requested": requested, "balance": balance}
        )


class BusinessRuleViolation(LedgerException):
    kind = ErrorKind.BUSINESS_RULE_VIOLATION


class DuplicateResourceError(LedgerException):
    kind = ErrorKind.DUPLICATE_RESOURCE

    def __init__(self, resource: str, field_name: str, value: Any):
        super().__init__(
            f"{resource} already exists with {field_name}: {value}",
            {"resource": resource, "field": field_name, "value": value}
        )


class ConflictError(LedgerException):
    kind = ErrorKind.CONFLICT


class InternalError(LedgerException):
    kind = ErrorKind.INTERNAL


_EXCEPTION_TYPES = {
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.INVALID_AMOUNT: InvalidAmountError,
    ErrorKind.INSUFFICIENT_FUNDS: InsufficientFundsError,
    ErrorKind.BUSINESS_RULE_VIOLATION: BusinessRuleViolation,
    ErrorKind.DUPLICATE_RESOURCE: DuplicateResourceError,
    ErrorKind.CONFLICT: ConflictError,
    ErrorKind.INTERNAL: InternalError,
}


T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Value-or-error outcome of a ledger or query operation"""
    value: Optional[T] = None
    error: Optional[LedgerError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: LedgerError) -> "OperationResult[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value, or raise the matching LedgerException"""
        if self.error is not None:
            raise self.error.to_exception()
        return self.value
