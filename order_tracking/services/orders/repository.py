"""
Order repository for lifecycle state and the append-only audit trail.

This module implements the OrderRepository class: locked reads of the order
row, creation of orders for the placement subsystem, and the writers and
readers for OrderHistoryEntry and OrderUpdate rows. Store errors propagate
unchanged so the unit of work can classify conflicts and retry.
"""

from decimal import Decimal
from typing import Optional, Sequence

from pydantic import BaseModel as SchemaModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from order_tracking.core.errors import NotFoundError
from order_tracking.core.logging import get_logger
from order_tracking.database.models import Order, OrderHistoryEntry, OrderUpdate
from order_tracking.schemas.timeline import HistoryDetails
from order_tracking.services.orders.enums import HistoryAction, OrderStatus

logger = get_logger(__name__)


def _dump(snapshot: Optional[SchemaModel]) -> Optional[dict]:
    if snapshot is None:
        return None
    return snapshot.model_dump(mode="json", exclude_none=True)


class OrderRepository:
    """
    Repository for order rows and their audit records.

    Attributes:
        session: Async database session bound to the caller's transaction
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_order(
        self,
        order_number: str,
        customer_id: int,
        invoice_total: Optional[Decimal] = None,
        minimum_order_applied: bool = False,
    ) -> Order:
        """
        Create an order in ORDER_PLACED with a PENDING payment status.

        Args:
            order_number: Human-facing order reference
            customer_id: Customer placing the order
            invoice_total: Known invoice total, if already computed
            minimum_order_applied: Whether the minimum order fee applies

        Returns:
            Created order
        """
        order = Order(
            order_number=order_number,
            customer_id=customer_id,
            invoice_total=invoice_total,
            minimum_order_applied=minimum_order_applied,
        )
        self.session.add(order)
        await self.session.flush()

        logger.info(
            "Order created",
            order_id=order.id,
            order_number=order_number,
            customer_id=customer_id,
        )
        return order

    async def get_order(self, order_id: int, for_update: bool = False) -> Order:
        """
        Get an order, optionally locking its row for the transaction.

        Args:
            order_id: Order identifier
            for_update: Take a row-level lock (SELECT ... FOR UPDATE)

        Returns:
            Order instance

        Raises:
            NotFoundError: If the order does not exist
        """
        stmt = select(Order).where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()

        result = await self.session.execute(stmt)
        order = result.scalar_one_or_none()

        if order is None:
            logger.info("Order not found", order_id=order_id)
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)

        return order

    async def add_history(
        self,
        order_id: int,
        action: HistoryAction,
        description: str,
        staff_id: Optional[int] = None,
        old_value: Optional[SchemaModel] = None,
        new_value: Optional[SchemaModel] = None,
        details: Optional[HistoryDetails] = None,
    ) -> OrderHistoryEntry:
        """
        Append an audit entry for an order.

        Args:
            order_id: Order the entry belongs to
            action: Entry tag
            description: Human-readable summary
            staff_id: Acting staff member, None for system
            old_value: Structured snapshot before the change
            new_value: Structured snapshot after the change
            details: Structured metadata

        Returns:
            The flushed history entry
        """
        entry = OrderHistoryEntry(
            order_id=order_id,
            staff_id=staff_id,
            action=action,
            old_value=_dump(old_value),
            new_value=_dump(new_value),
            description=description,
            details=_dump(details),
        )
        self.session.add(entry)
        await self.session.flush()

        logger.debug(
            "Order history entry added",
            order_id=order_id,
            history_id=entry.id,
            action=action.value,
        )
        return entry

    async def add_order_update(
        self,
        order_id: int,
        old_status: OrderStatus,
        new_status: OrderStatus,
        staff_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> OrderUpdate:
        """Append an operational status update for an order."""
        update = OrderUpdate(
            order_id=order_id,
            staff_id=staff_id,
            old_status=old_status,
            new_status=new_status,
            notes=notes,
        )
        self.session.add(update)
        await self.session.flush()
        return update

    async def list_history(self, order_id: int) -> Sequence[OrderHistoryEntry]:
        """Get an order's history entries, newest first."""
        result = await self.session.execute(
            select(OrderHistoryEntry)
            .where(OrderHistoryEntry.order_id == order_id)
            .order_by(OrderHistoryEntry.created_at.desc(), OrderHistoryEntry.id.desc())
        )
        return result.scalars().all()

    async def list_order_updates(self, order_id: int) -> Sequence[OrderUpdate]:
        """Get an order's operational status updates, oldest first."""
        result = await self.session.execute(
            select(OrderUpdate)
            .where(OrderUpdate.order_id == order_id)
            .order_by(OrderUpdate.id)
        )
        return result.scalars().all()
