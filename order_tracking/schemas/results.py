"""
Explicit result values returned by the order tracking facade.
"""

from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, model_validator

from order_tracking.core.errors import ErrorKind, TrackingError

T = TypeVar("T")


class OperationResult(BaseModel, Generic[T]):
    """
    Outcome of a facade operation: a value or a classified error, never both.

    Callers branch on ``ok`` and ``kind`` rather than catching exceptions or
    parsing messages.

    Example:
        >>> result = await facade.record_payment(order_id=7, amount="6.000", method="CASH")
        >>> if result.kind == ErrorKind.OVERPAYMENT_REJECTED:
        ...     show_outstanding(result.error.max_allowed)
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    value: Optional[T] = None
    error: Optional[TrackingError] = None

    @model_validator(mode="after")
    def check_exclusive(self) -> "OperationResult[T]":
        if self.error is not None and self.value is not None:
            raise ValueError("A result carries either a value or an error")
        return self

    @classmethod
    def success(cls, value: Any = None) -> "OperationResult":
        return cls(value=value)

    @classmethod
    def failure(cls, error: TrackingError) -> "OperationResult":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable

    def unwrap(self) -> T:
        """
        Return the value or raise the carried error.

        Raises:
            TrackingError: If the operation failed
        """
        if self.error is not None:
            raise self.error
        return self.value
