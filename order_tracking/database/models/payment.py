"""
Payment record model for the per-order payment ledger.

Payment records are never deleted. Refunds are separate rows pointing at the
payment they reverse, and the amount and owning order of a record cannot
change after insert.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from order_tracking.database.base import BaseModel, JSONType, Money, protect_columns
from order_tracking.services.orders.enums import PaymentMethod, PaymentStatus


class PaymentRecord(BaseModel):
    """
    Ledger entry for money collected or returned on an order.

    Attributes:
        id: Payment record identifier
        order_id: Order the money belongs to
        amount: Positive amount in the ledger currency
        currency: ISO 4217 currency code
        payment_method: How the money moved
        payment_status: PENDING, PAID, FAILED or REFUNDED
        is_refund: True for rows that return money to the customer
        refund_of_id: Payment record a refund row reverses
        confirmation_id: Gateway correlation identifier
        processed_at: When the gateway or staff settled the record
        notes: Free-text staff notes
        details: Structured gateway metadata
        created_by: Staff member who recorded it, NULL for gateway webhooks
    """

    __tablename__ = "payment_records"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_records_amount_positive"),
        Index("ix_payment_records_order_created", "order_id", "created_at"),
        {"comment": "Append-only payment ledger"},
    )

    order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Order the payment belongs to",
    )

    amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        comment="Positive amount",
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="BHD",
        comment="ISO 4217 currency code",
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod, name="payment_method"),
        nullable=False,
        comment="Payment method",
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
        comment="Payment record status",
    )

    is_refund: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether this row returns money",
    )

    refund_of_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("payment_records.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
        comment="Payment record reversed by this refund",
    )

    confirmation_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Gateway correlation identifier",
    )

    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Settlement timestamp",
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Staff notes",
    )

    details: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        comment="Structured gateway metadata",
    )

    created_by: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Staff member who recorded the payment",
    )


protect_columns(PaymentRecord, "order_id", "amount", "is_refund", "refund_of_id")
