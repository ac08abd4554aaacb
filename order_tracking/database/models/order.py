"""
Order model holding lifecycle and aggregate payment state.

The order row is the shared resource between the status coordinator and the
payment ledger; both lock it before changing anything that belongs to it.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Enum as SQLEnum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from order_tracking.database.base import BaseModel, Money
from order_tracking.services.orders.enums import (
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
)


class Order(BaseModel):
    """
    Laundry order tracked from placement to delivery.

    Attributes:
        id: Order identifier
        order_number: Human-facing order reference
        customer_id: Owning customer
        status: Current lifecycle status, changed only by the coordinator
        payment_status: Aggregate payment status derived from the ledger
        invoice_total: Amount owed, NULL until the invoice is computed
        minimum_order_applied: Whether the minimum order fee applies
        invoice_generated: Whether the facility generated the invoice
        payment_method: Method of the most recent payment
    """

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(
            "invoice_total IS NULL OR invoice_total >= 0",
            name="ck_orders_invoice_total_non_negative",
        ),
        {"comment": "Laundry orders with lifecycle and payment state"},
    )

    order_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Human-facing order reference",
    )

    customer_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
        comment="Customer who placed the order",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status"),
        nullable=False,
        default=OrderStatus.ORDER_PLACED,
        index=True,
        comment="Current lifecycle status",
    )

    payment_status: Mapped[OrderPaymentStatus] = mapped_column(
        SQLEnum(OrderPaymentStatus, name="order_payment_status"),
        nullable=False,
        default=OrderPaymentStatus.PENDING,
        index=True,
        comment="Aggregate payment status",
    )

    invoice_total: Mapped[Optional[Decimal]] = mapped_column(
        Money,
        nullable=True,
        comment="Invoice total, NULL until computed",
    )

    minimum_order_applied: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether the minimum order fee applies",
    )

    invoice_generated: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether the invoice document was generated",
    )

    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SQLEnum(PaymentMethod, name="payment_method"),
        nullable=True,
        comment="Method of the most recent payment",
    )

    def effective_total(self, minimum_order_fee: Decimal) -> Optional[Decimal]:
        """
        Amount the customer owes for this order.

        Args:
            minimum_order_fee: Fee owed when only the minimum order applies

        Returns:
            The invoice total, the minimum fee when no invoice exists yet but
            the minimum applies, or None when the amount is not yet known
        """
        if self.invoice_total is not None:
            return self.invoice_total
        if self.minimum_order_applied:
            return minimum_order_fee
        return None
