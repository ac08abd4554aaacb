"""
Tests for the error taxonomy and result values.
"""

from decimal import Decimal

import pytest

from order_tracking.core.errors import (
    ConcurrencyConflictError,
    ErrorKind,
    InsufficientWalletBalanceError,
    InvalidTransitionError,
    InvoiceNotFinalizedError,
    NotFoundError,
    OverpaymentRejectedError,
    RequestValidationError,
    StoreUnavailableError,
)
from order_tracking.schemas.results import OperationResult
from order_tracking.services.orders.enums import OrderStatus


class TestErrorKinds:
    """Test error classification."""

    @pytest.mark.parametrize(
        "error, kind, retryable",
        [
            (RequestValidationError("bad"), ErrorKind.VALIDATION, False),
            (InvoiceNotFinalizedError("no total"), ErrorKind.VALIDATION, False),
            (NotFoundError("missing"), ErrorKind.NOT_FOUND, False),
            (ConcurrencyConflictError("conflict"), ErrorKind.CONCURRENCY_CONFLICT, True),
            (StoreUnavailableError("down"), ErrorKind.STORE_UNAVAILABLE, True),
        ],
    )
    def test_kind_and_retryable(self, error, kind: ErrorKind, retryable: bool) -> None:
        assert error.kind == kind
        assert error.retryable is retryable

    def test_client_errors_are_not_faults(self) -> None:
        assert not RequestValidationError("bad").is_fault
        assert not OverpaymentRejectedError(
            "too much", requested=Decimal("5"), max_allowed=Decimal("4")
        ).is_fault
        assert StoreUnavailableError("down").is_fault
        assert ConcurrencyConflictError("conflict").is_fault

    def test_invalid_transition_carries_edge(self) -> None:
        error = InvalidTransitionError(
            "nope",
            from_status=OrderStatus.DELIVERED,
            to_status=OrderStatus.ORDER_PLACED,
            allowed={OrderStatus.REFUNDED},
        )

        assert error.kind == ErrorKind.INVALID_TRANSITION
        assert error.context["from_status"] == "DELIVERED"
        assert error.context["to_status"] == "ORDER_PLACED"
        assert error.allowed == ["REFUNDED"]

    def test_to_dict_stringifies_amounts(self) -> None:
        error = OverpaymentRejectedError(
            "too much",
            requested=Decimal("6.000"),
            max_allowed=Decimal("4.000"),
            order_id=7,
        )

        assert error.to_dict() == {
            "kind": "overpayment_rejected",
            "message": "too much",
            "retryable": False,
            "context": {"requested": "6.000", "max_allowed": "4.000", "order_id": 7},
        }

    def test_wallet_error_is_validation(self) -> None:
        error = InsufficientWalletBalanceError(
            "short", balance=Decimal("1.000"), requested=Decimal("2.000")
        )
        assert error.kind == ErrorKind.VALIDATION
        assert error.balance == Decimal("1.000")


class TestOperationResult:
    """Test the value-or-error result wrapper."""

    def test_success(self) -> None:
        result = OperationResult.success(42)

        assert result.ok
        assert result.kind is None
        assert result.unwrap() == 42

    def test_failure(self) -> None:
        error = NotFoundError("Order 9 not found")
        result = OperationResult.failure(error)

        assert not result.ok
        assert result.kind == ErrorKind.NOT_FOUND
        assert not result.retryable
        with pytest.raises(NotFoundError):
            result.unwrap()

    def test_rejects_value_and_error(self) -> None:
        with pytest.raises(ValueError):
            OperationResult(value=1, error=NotFoundError("x"))
