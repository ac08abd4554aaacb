"""
Audit models: order history entries and operational status updates.

Both tables are append-only. OrderHistoryEntry is the compliance trail for
every change to an order; OrderUpdate is a narrower status-only feed for
operational views.
"""

from typing import Any, Optional

from sqlalchemy import Enum as SQLEnum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from order_tracking.database.base import AppendOnlyModel, JSONType
from order_tracking.services.orders.enums import HistoryAction, OrderStatus


class OrderHistoryEntry(AppendOnlyModel):
    """
    Immutable audit record of something that happened to an order.

    Attributes:
        order_id: Order the entry belongs to
        staff_id: Acting staff member, NULL for system-generated entries
        action: What kind of change this records
        old_value: Structured snapshot before the change
        new_value: Structured snapshot after the change
        description: Human-readable summary
        details: Additional structured context
    """

    __tablename__ = "order_history"
    __table_args__ = (
        Index("ix_order_history_order_created", "order_id", "created_at"),
        {"comment": "Append-only order audit trail"},
    )

    order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    staff_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Acting staff member, NULL for system",
    )

    action: Mapped[HistoryAction] = mapped_column(
        SQLEnum(
            HistoryAction,
            name="history_action",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        index=True,
    )

    old_value: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
    )

    new_value: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    details: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
    )


class OrderUpdate(AppendOnlyModel):
    """
    Status-only operational record written alongside status history entries.

    Attributes:
        order_id: Order the update belongs to
        staff_id: Acting staff member, NULL for system
        old_status: Status before the change
        new_status: Status after the change
        notes: Optional staff notes
    """

    __tablename__ = "order_updates"
    __table_args__ = {"comment": "Operational feed of order status changes"}

    order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    staff_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
    )

    old_status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status"),
        nullable=False,
    )

    new_status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status"),
        nullable=False,
    )

    notes: Mapped[Optional[str]] = mapped_column(
        String(1000),
        nullable=True,
    )
