"""
Order status coordination with audit trail and readiness hook.

This module implements the OrderStatusCoordinator, the only writer of an
order's status and payment status. Every applied change writes its history
entry in the same transaction, status changes also write an OrderUpdate row,
and a paid order that finished processing is advanced to READY_FOR_DELIVERY
automatically.
"""

from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from order_tracking.core.logging import get_logger
from order_tracking.database.models import Order, OrderHistoryEntry
from order_tracking.schemas.orders import (
    OrderSnapshot,
    StatusChange,
    StatusChangeOutcome,
)
from order_tracking.schemas.timeline import (
    HistoryDetails,
    NoteSnapshot,
    PaymentStatusSnapshot,
    StatusSnapshot,
)
from order_tracking.services.orders.enums import (
    HistoryAction,
    OrderPaymentStatus,
    OrderStatus,
    StaffRole,
)
from order_tracking.services.orders.repository import OrderRepository
from order_tracking.services.orders.state_machine import (
    StatusTransitionValidator,
    get_status_validator,
)

logger = get_logger(__name__)

# (required status, required payment status) -> status applied automatically
READINESS_TRANSITIONS = {
    (OrderStatus.PROCESSING_COMPLETED, OrderPaymentStatus.PAID): (
        OrderStatus.READY_FOR_DELIVERY
    ),
}


class OrderStatusCoordinator:
    """
    Applies validated status changes to orders.

    All methods work inside the caller's transaction and lock the order row
    before reading it, so concurrent coordinators and ledgers serialize on
    the order.
    """

    def __init__(self, validator: Optional[StatusTransitionValidator] = None):
        """
        Initialize coordinator.

        Args:
            validator: Transition validator, defaults to the shared table-based one
        """
        self.validator = validator or get_status_validator()

    async def apply_status_change(
        self,
        session: AsyncSession,
        order_id: int,
        actor_id: Optional[int] = None,
        new_status: Optional[OrderStatus] = None,
        new_payment_status: Optional[OrderPaymentStatus] = None,
        notes: Optional[str] = None,
        role: Optional[StaffRole] = None,
        action: Optional[str] = None,
    ) -> StatusChangeOutcome:
        """
        Change an order's status and/or payment status.

        Both changes are validated before either is applied; requesting the
        current value is a no-op that writes nothing.

        Args:
            session: Session bound to the caller's transaction
            order_id: Order to change
            actor_id: Acting staff member, None for system
            new_status: Requested order status
            new_payment_status: Requested aggregate payment status
            notes: Staff notes stored with the change
            role: Acting staff role, restricts target statuses
            action: Name of the staff action that triggered the change

        Returns:
            Order snapshot and the list of applied changes

        Raises:
            NotFoundError: If the order does not exist
            InvalidTransitionError: If any requested change is not allowed
        """
        orders = OrderRepository(session)
        order = await orders.get_order(order_id, for_update=True)

        status_changed = new_status is not None and new_status != order.status
        payment_changed = (
            new_payment_status is not None
            and new_payment_status != order.payment_status
        )

        if status_changed:
            self.validator.validate(order.status, new_status, role)
        if payment_changed:
            self.validator.validate_payment(order.payment_status, new_payment_status)

        details = HistoryDetails(
            notes=notes,
            role=role.value if role else None,
            action=action,
        )

        changes: List[StatusChange] = []
        if status_changed:
            changes.append(
                await self._set_status(orders, order, new_status, actor_id, details)
            )
        if payment_changed:
            changes.append(
                await self._set_payment_status(
                    orders, order, new_payment_status, actor_id, details
                )
            )
        if changes:
            changes.extend(await self._advance_if_ready(orders, order))
        else:
            logger.debug(
                "Status change is a no-op",
                order_id=order_id,
                status=order.status.value,
                payment_status=order.payment_status.value,
            )

        return self.outcome(order, changes)

    async def apply_derived_payment_status(
        self,
        session: AsyncSession,
        order: Order,
        new_payment_status: OrderPaymentStatus,
        reason: str,
        actor_id: Optional[int] = None,
    ) -> List[StatusChange]:
        """
        Persist a payment status derived from the ledger.

        The ledger is authoritative, so the manual payment transition table
        does not gate this change. The order must already be locked by the
        caller's transaction.

        Returns:
            Applied changes, including any automatic readiness transition
        """
        if new_payment_status == order.payment_status:
            return []

        orders = OrderRepository(session)
        changes = [
            await self._set_payment_status(
                orders,
                order,
                new_payment_status,
                actor_id,
                HistoryDetails(automatic=True, reason=reason),
            )
        ]
        changes.extend(await self._advance_if_ready(orders, order))
        return changes

    async def add_note(
        self,
        session: AsyncSession,
        order_id: int,
        note: str,
        staff_id: Optional[int] = None,
        action: Optional[str] = None,
    ) -> OrderHistoryEntry:
        """
        Append a free-text note to an order's history.

        Raises:
            NotFoundError: If the order does not exist
        """
        orders = OrderRepository(session)
        await orders.get_order(order_id)
        return await orders.add_history(
            order_id=order_id,
            action=HistoryAction.NOTE_ADDED,
            description=note,
            staff_id=staff_id,
            new_value=NoteSnapshot(note=note),
            details=HistoryDetails(action=action) if action else None,
        )

    @staticmethod
    def outcome(
        order: Order, changes: List[StatusChange], notify: bool = True
    ) -> StatusChangeOutcome:
        """Build the outcome returned to callers."""
        return StatusChangeOutcome(
            order=OrderSnapshot.model_validate(order),
            changes=changes,
            notify=notify,
        )

    async def _set_status(
        self,
        orders: OrderRepository,
        order: Order,
        new_status: OrderStatus,
        actor_id: Optional[int],
        details: HistoryDetails,
    ) -> StatusChange:
        old_status = order.status
        order.status = new_status

        await orders.add_history(
            order_id=order.id,
            action=HistoryAction.STATUS_CHANGE,
            description=(
                f"Order status changed from {old_status.value} to {new_status.value}"
            ),
            staff_id=actor_id,
            old_value=StatusSnapshot(status=old_status),
            new_value=StatusSnapshot(status=new_status),
            details=details,
        )
        await orders.add_order_update(
            order_id=order.id,
            old_status=old_status,
            new_status=new_status,
            staff_id=actor_id,
            notes=details.notes or details.reason,
        )

        logger.info(
            "Order status changed",
            order_id=order.id,
            from_status=old_status.value,
            to_status=new_status.value,
            staff_id=actor_id,
            automatic=details.automatic,
        )
        return StatusChange(
            field="status",
            old_status=old_status.value,
            new_status=new_status.value,
            automatic=details.automatic,
        )

    async def _set_payment_status(
        self,
        orders: OrderRepository,
        order: Order,
        new_payment_status: OrderPaymentStatus,
        actor_id: Optional[int],
        details: HistoryDetails,
    ) -> StatusChange:
        old_payment_status = order.payment_status
        order.payment_status = new_payment_status

        await orders.add_history(
            order_id=order.id,
            action=HistoryAction.PAYMENT_UPDATE,
            description=(
                f"Payment status changed from {old_payment_status.value} "
                f"to {new_payment_status.value}"
            ),
            staff_id=actor_id,
            old_value=PaymentStatusSnapshot(payment_status=old_payment_status),
            new_value=PaymentStatusSnapshot(payment_status=new_payment_status),
            details=details,
        )

        logger.info(
            "Order payment status changed",
            order_id=order.id,
            from_status=old_payment_status.value,
            to_status=new_payment_status.value,
            staff_id=actor_id,
            automatic=details.automatic,
        )
        return StatusChange(
            field="payment_status",
            old_status=old_payment_status.value,
            new_status=new_payment_status.value,
            automatic=details.automatic,
        )

    async def _advance_if_ready(
        self, orders: OrderRepository, order: Order
    ) -> List[StatusChange]:
        target = READINESS_TRANSITIONS.get((order.status, order.payment_status))
        if target is None:
            return []

        self.validator.validate(order.status, target)
        logger.info(
            "Order ready for next stage",
            order_id=order.id,
            from_status=order.status.value,
            to_status=target.value,
        )
        change = await self._set_status(
            orders,
            order,
            target,
            actor_id=None,
            details=HistoryDetails(
                automatic=True,
                reason="Payment completed after processing",
            ),
        )
        return [change]
