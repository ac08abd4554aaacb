"""Status transition validation for orders and payments.

This module implements the StatusTransitionValidator, a pure, storage-free
check of whether an order status change, an aggregate payment status change
or a payment record status change is an allowed edge, optionally restricted
by the acting staff role.
"""

from typing import Dict, Optional, Set, TypeVar

from order_tracking.core.errors import InvalidTransitionError
from order_tracking.core.logging import get_logger
from order_tracking.services.orders.enums import (
    ORDER_PAYMENT_STATUS_TRANSITIONS,
    ORDER_STATUS_TRANSITIONS,
    PAYMENT_RECORD_TRANSITIONS,
    OrderPaymentStatus,
    OrderStatus,
    PaymentStatus,
    StaffRole,
    is_status_permitted,
)

logger = get_logger(__name__)

S = TypeVar("S", OrderStatus, OrderPaymentStatus, PaymentStatus)


class StatusTransitionValidator:
    """Decides whether status changes are legal.

    A change to the same status is always accepted; callers treat it as a
    no-op and write nothing. Any edge missing from the configured table
    raises InvalidTransitionError and the caller must not apply the change.
    """

    def __init__(
        self,
        order_transitions: Optional[Dict[OrderStatus, Set[OrderStatus]]] = None,
        payment_transitions: Optional[
            Dict[OrderPaymentStatus, Set[OrderPaymentStatus]]
        ] = None,
        record_transitions: Optional[Dict[PaymentStatus, Set[PaymentStatus]]] = None,
    ):
        """Initialize validator with transition tables.

        Args:
            order_transitions: Order status table, defaults to the lifecycle table
            payment_transitions: Aggregate payment status table
            record_transitions: Payment record status table
        """
        self._order_transitions = order_transitions or ORDER_STATUS_TRANSITIONS
        self._payment_transitions = (
            payment_transitions or ORDER_PAYMENT_STATUS_TRANSITIONS
        )
        self._record_transitions = record_transitions or PAYMENT_RECORD_TRANSITIONS

    def validate(
        self,
        current: OrderStatus,
        proposed: OrderStatus,
        role: Optional[StaffRole] = None,
    ) -> None:
        """Validate an order status change.

        Args:
            current: Current order status
            proposed: Requested order status
            role: Acting staff role, None for system or unrestricted callers

        Raises:
            InvalidTransitionError: If the edge is not allowed or the role
                may not apply the target status
        """
        if current == proposed:
            return

        self._check_edge(current, proposed, self._order_transitions, "order status")

        if not is_status_permitted(role, proposed):
            logger.info(
                "Status change not permitted for role",
                role=role.value if role else None,
                from_status=current.value,
                to_status=proposed.value,
            )
            raise InvalidTransitionError(
                f"Role {role.value} may not set order status {proposed.value}",
                from_status=current,
                to_status=proposed,
                role=role.value,
            )

    def validate_payment(
        self,
        current: OrderPaymentStatus,
        proposed: OrderPaymentStatus,
    ) -> None:
        """Validate a manual change of an order's aggregate payment status.

        Raises:
            InvalidTransitionError: If the edge is not allowed
        """
        if current == proposed:
            return
        self._check_edge(
            current, proposed, self._payment_transitions, "payment status"
        )

    def validate_record(
        self,
        current: PaymentStatus,
        proposed: PaymentStatus,
    ) -> None:
        """Validate a status change of a single payment record.

        Raises:
            InvalidTransitionError: If the edge is not allowed
        """
        if current == proposed:
            return
        self._check_edge(
            current, proposed, self._record_transitions, "payment record status"
        )

    def can_transition(
        self,
        current: OrderStatus,
        proposed: OrderStatus,
        role: Optional[StaffRole] = None,
    ) -> bool:
        """Check an order status change without raising."""
        try:
            self.validate(current, proposed, role)
        except InvalidTransitionError:
            return False
        return True

    def allowed_transitions(
        self,
        current: OrderStatus,
        role: Optional[StaffRole] = None,
    ) -> Set[OrderStatus]:
        """Get order statuses reachable in one step, filtered by role."""
        return {
            status
            for status in self._order_transitions.get(current, set())
            if is_status_permitted(role, status)
        }

    @staticmethod
    def _check_edge(
        current: S,
        proposed: S,
        table: Dict[S, Set[S]],
        label: str,
    ) -> None:
        allowed = table.get(current, set())
        if proposed not in allowed:
            logger.info(
                "Rejected status transition",
                kind=label,
                from_status=current.value,
                to_status=proposed.value,
            )
            raise InvalidTransitionError(
                f"Invalid {label} transition from {current.value} to {proposed.value}",
                from_status=current,
                to_status=proposed,
                allowed=allowed,
            )


_validator: Optional[StatusTransitionValidator] = None


def get_status_validator() -> StatusTransitionValidator:
    """Get the shared validator built on the default tables."""
    global _validator
    if _validator is None:
        _validator = StatusTransitionValidator()
    return _validator
