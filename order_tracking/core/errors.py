"""
Error taxonomy for the order tracking core.

Every error carries an ErrorKind so callers can decide mechanically whether
a request was invalid, should be retried, or hit a broken store. Errors are
raised inside the core and converted into OperationResult values at the
facade boundary.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional


class ErrorKind(str, Enum):
    """Category of a core failure."""

    VALIDATION = "validation"
    INVALID_TRANSITION = "invalid_transition"
    OVERPAYMENT_REJECTED = "overpayment_rejected"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    NOT_FOUND = "not_found"
    STORE_UNAVAILABLE = "store_unavailable"

    @property
    def is_client_error(self) -> bool:
        """Check if the caller must change the request before retrying."""
        return self in {
            ErrorKind.VALIDATION,
            ErrorKind.INVALID_TRANSITION,
            ErrorKind.OVERPAYMENT_REJECTED,
            ErrorKind.NOT_FOUND,
        }


class TrackingError(Exception):
    """Base exception for order tracking errors."""

    kind: ErrorKind = ErrorKind.STORE_UNAVAILABLE
    retryable: bool = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    @property
    def is_fault(self) -> bool:
        """Check if the error indicates a system fault rather than a rejection."""
        return not self.kind.is_client_error

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for the outer layer."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "context": {
                key: str(value) if isinstance(value, Decimal) else value
                for key, value in self.context.items()
            },
        }


class RequestValidationError(TrackingError):
    """Raised when caller input is malformed or out of range."""

    kind = ErrorKind.VALIDATION


class InvoiceNotFinalizedError(RequestValidationError):
    """Raised when money is recorded against an order without a known total."""

    pass


class InsufficientWalletBalanceError(RequestValidationError):
    """Raised when a wallet debit exceeds the available balance."""

    def __init__(
        self,
        message: str,
        balance: Decimal,
        requested: Decimal,
        **context: Any,
    ):
        super().__init__(message, balance=balance, requested=requested, **context)
        self.balance = balance
        self.requested = requested


class InvalidTransitionError(TrackingError):
    """Raised when a status change is not an allowed edge."""

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(
        self,
        message: str,
        from_status: Optional[Enum],
        to_status: Optional[Enum],
        allowed: Iterable[Enum] = (),
        **context: Any,
    ):
        allowed_values = sorted(status.value for status in allowed)
        super().__init__(
            message,
            from_status=from_status.value if from_status is not None else None,
            to_status=to_status.value if to_status is not None else None,
            allowed=allowed_values,
            **context,
        )
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = allowed_values


class OverpaymentRejectedError(TrackingError):
    """Raised when a payment would exceed what the order still owes."""

    kind = ErrorKind.OVERPAYMENT_REJECTED

    def __init__(
        self,
        message: str,
        requested: Decimal,
        max_allowed: Decimal,
        **context: Any,
    ):
        super().__init__(
            message, requested=requested, max_allowed=max_allowed, **context
        )
        self.requested = requested
        self.max_allowed = max_allowed


class ConcurrencyConflictError(TrackingError):
    """Raised when the store aborted the transaction due to a conflicting writer."""

    kind = ErrorKind.CONCURRENCY_CONFLICT
    retryable = True


class NotFoundError(TrackingError):
    """Raised when an order or payment record does not exist."""

    kind = ErrorKind.NOT_FOUND


class StoreUnavailableError(TrackingError):
    """Raised when the store fails for reasons other than a serialization conflict."""

    kind = ErrorKind.STORE_UNAVAILABLE
    retryable = True


class AuditImmutabilityError(RuntimeError):
    """Raised when code attempts to change or delete an append-only record."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context
