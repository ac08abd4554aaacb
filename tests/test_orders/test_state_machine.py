"""
Test suite for StatusTransitionValidator and the transition tables.

Tests cover table completeness, reachability, role permissions and the
payment status tables.
"""

from collections import deque

import pytest

from order_tracking.core.errors import ErrorKind, InvalidTransitionError
from order_tracking.services.orders.enums import (
    CLOSED_ORDER_STATUSES,
    NOTIFIABLE_ORDER_STATUSES,
    ORDER_PAYMENT_STATUS_TRANSITIONS,
    ORDER_STATUS_TRANSITIONS,
    PAYMENT_RECORD_TRANSITIONS,
    OrderPaymentStatus,
    OrderStatus,
    PaymentStatus,
    StaffRole,
)
from order_tracking.services.orders.state_machine import (
    StatusTransitionValidator,
    get_status_validator,
)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def validator() -> StatusTransitionValidator:
    """Create validator on the default tables.

    Returns:
        StatusTransitionValidator instance for testing
    """
    return StatusTransitionValidator()


# ============================================================================
# Transition Table Tests
# ============================================================================


class TestTransitionTables:
    """Test the shape of the transition tables."""

    def test_every_status_has_an_entry(self) -> None:
        assert set(ORDER_STATUS_TRANSITIONS) == set(OrderStatus)
        assert set(ORDER_PAYMENT_STATUS_TRANSITIONS) == set(OrderPaymentStatus)
        assert set(PAYMENT_RECORD_TRANSITIONS) == set(PaymentStatus)

    def test_no_edge_into_order_placed(self) -> None:
        for targets in ORDER_STATUS_TRANSITIONS.values():
            assert OrderStatus.ORDER_PLACED not in targets

    def test_every_status_reachable_from_order_placed(self) -> None:
        seen = {OrderStatus.ORDER_PLACED}
        queue = deque([OrderStatus.ORDER_PLACED])
        while queue:
            for target in ORDER_STATUS_TRANSITIONS[queue.popleft()]:
                if target not in seen:
                    seen.add(target)
                    queue.append(target)

        assert seen == set(OrderStatus)

    def test_refunded_is_terminal(self) -> None:
        assert ORDER_STATUS_TRANSITIONS[OrderStatus.REFUNDED] == set()
        assert OrderStatus.REFUNDED.is_terminal()
        assert not OrderStatus.DELIVERED.is_terminal()

    def test_happy_path_is_allowed(self, validator: StatusTransitionValidator) -> None:
        path = [
            OrderStatus.ORDER_PLACED,
            OrderStatus.CONFIRMED,
            OrderStatus.PICKUP_ASSIGNED,
            OrderStatus.PICKUP_IN_PROGRESS,
            OrderStatus.PICKUP_COMPLETED,
            OrderStatus.RECEIVED_AT_FACILITY,
            OrderStatus.PROCESSING_STARTED,
            OrderStatus.PROCESSING_COMPLETED,
            OrderStatus.QUALITY_CHECK,
            OrderStatus.READY_FOR_DELIVERY,
            OrderStatus.DELIVERY_ASSIGNED,
            OrderStatus.DELIVERY_IN_PROGRESS,
            OrderStatus.DELIVERED,
        ]
        for current, proposed in zip(path, path[1:]):
            validator.validate(current, proposed)

    def test_customer_is_not_told_about_internal_steps(self) -> None:
        assert OrderStatus.QUALITY_CHECK not in NOTIFIABLE_ORDER_STATUSES
        assert OrderStatus.DELIVERED in NOTIFIABLE_ORDER_STATUSES

    def test_closed_statuses_lead_nowhere_but_refund(self) -> None:
        assert CLOSED_ORDER_STATUSES == {OrderStatus.CANCELLED, OrderStatus.REFUNDED}
        for status in CLOSED_ORDER_STATUSES:
            assert ORDER_STATUS_TRANSITIONS[status] <= {OrderStatus.REFUNDED}


# ============================================================================
# Order Status Validation Tests
# ============================================================================


class TestValidate:
    """Test order status validation."""

    def test_same_status_is_accepted(self, validator: StatusTransitionValidator) -> None:
        validator.validate(OrderStatus.DELIVERED, OrderStatus.DELIVERED)

    def test_invalid_edge_raises(self, validator: StatusTransitionValidator) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            validator.validate(OrderStatus.ORDER_PLACED, OrderStatus.DELIVERED)

        error = exc_info.value
        assert error.kind == ErrorKind.INVALID_TRANSITION
        assert error.from_status == OrderStatus.ORDER_PLACED
        assert error.to_status == OrderStatus.DELIVERED
        assert error.allowed == sorted(
            s.value for s in ORDER_STATUS_TRANSITIONS[OrderStatus.ORDER_PLACED]
        )

    def test_cannot_leave_terminal(self, validator: StatusTransitionValidator) -> None:
        assert not validator.can_transition(OrderStatus.REFUNDED, OrderStatus.CANCELLED)

    @pytest.mark.parametrize(
        "role, current, proposed, allowed",
        [
            (StaffRole.DRIVER, OrderStatus.PICKUP_ASSIGNED, OrderStatus.PICKUP_IN_PROGRESS, True),
            (StaffRole.DRIVER, OrderStatus.RECEIVED_AT_FACILITY, OrderStatus.PROCESSING_STARTED, False),
            (StaffRole.FACILITY_TEAM, OrderStatus.RECEIVED_AT_FACILITY, OrderStatus.PROCESSING_STARTED, True),
            (StaffRole.FACILITY_TEAM, OrderStatus.ORDER_PLACED, OrderStatus.CANCELLED, False),
            (StaffRole.OPERATION_MANAGER, OrderStatus.ORDER_PLACED, OrderStatus.CANCELLED, True),
            (StaffRole.SUPER_ADMIN, OrderStatus.DELIVERED, OrderStatus.REFUNDED, True),
        ],
    )
    def test_role_permissions(
        self,
        validator: StatusTransitionValidator,
        role: StaffRole,
        current: OrderStatus,
        proposed: OrderStatus,
        allowed: bool,
    ) -> None:
        assert validator.can_transition(current, proposed, role) is allowed

    def test_role_does_not_bypass_table(self, validator: StatusTransitionValidator) -> None:
        with pytest.raises(InvalidTransitionError):
            validator.validate(
                OrderStatus.ORDER_PLACED, OrderStatus.DELIVERED, StaffRole.SUPER_ADMIN
            )

    def test_allowed_transitions_filtered_by_role(
        self, validator: StatusTransitionValidator
    ) -> None:
        assert validator.allowed_transitions(
            OrderStatus.PICKUP_ASSIGNED, StaffRole.DRIVER
        ) == {
            OrderStatus.PICKUP_IN_PROGRESS,
            OrderStatus.PICKUP_COMPLETED,
            OrderStatus.PICKUP_FAILED,
        }

    def test_custom_table(self) -> None:
        validator = StatusTransitionValidator(
            order_transitions={OrderStatus.ORDER_PLACED: {OrderStatus.DELIVERED}}
        )
        validator.validate(OrderStatus.ORDER_PLACED, OrderStatus.DELIVERED)

    def test_shared_validator(self) -> None:
        assert get_status_validator() is get_status_validator()


# ============================================================================
# Payment Status Validation Tests
# ============================================================================


class TestPaymentValidation:
    """Test aggregate and record payment status tables."""

    @pytest.mark.parametrize(
        "current, proposed",
        [
            (OrderPaymentStatus.PENDING, OrderPaymentStatus.PAID),
            (OrderPaymentStatus.FAILED, OrderPaymentStatus.PENDING),
            (OrderPaymentStatus.PAID, OrderPaymentStatus.PARTIAL_REFUND),
            (OrderPaymentStatus.PARTIAL_REFUND, OrderPaymentStatus.REFUNDED),
        ],
    )
    def test_allowed_payment_edges(
        self,
        validator: StatusTransitionValidator,
        current: OrderPaymentStatus,
        proposed: OrderPaymentStatus,
    ) -> None:
        validator.validate_payment(current, proposed)

    def test_refunded_payment_is_terminal(
        self, validator: StatusTransitionValidator
    ) -> None:
        with pytest.raises(InvalidTransitionError):
            validator.validate_payment(OrderPaymentStatus.REFUNDED, OrderPaymentStatus.PAID)

    def test_record_edges(self, validator: StatusTransitionValidator) -> None:
        validator.validate_record(PaymentStatus.PENDING, PaymentStatus.PAID)
        validator.validate_record(PaymentStatus.PAID, PaymentStatus.REFUNDED)
        with pytest.raises(InvalidTransitionError):
            validator.validate_record(PaymentStatus.FAILED, PaymentStatus.PAID)
        with pytest.raises(InvalidTransitionError):
            validator.validate_record(PaymentStatus.REFUNDED, PaymentStatus.PAID)
