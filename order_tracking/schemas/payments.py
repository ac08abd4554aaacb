"""
Payment ledger schemas.

This module defines the Pydantic request schemas validated before any
transaction opens, the read model for payment records, and the derived
PaymentSummary computed fresh from the ledger.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from order_tracking.schemas.orders import StatusChangeOutcome
from order_tracking.services.orders.enums import PaymentMethod, PaymentStatus

AMOUNT_QUANTUM = Decimal("0.001")


def _coerce_amount(value: Any) -> Decimal:
    """Parse an amount without going through binary floating point."""
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value).strip())
    except (ArithmeticError, ValueError) as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


def _validate_money(value: Decimal) -> Decimal:
    if not value.is_finite():
        raise ValueError("Amount must be a finite number")
    if value.quantize(AMOUNT_QUANTUM) != value:
        raise ValueError("Amount cannot have more than 3 decimal places")
    return value.quantize(AMOUNT_QUANTUM)


class RecordPaymentRequest(BaseModel):
    """Request schema for appending a payment to an order's ledger."""

    order_id: int = Field(..., gt=0, description="Order being paid")
    amount: Decimal = Field(..., description="Strictly positive amount")
    method: PaymentMethod = Field(..., description="Payment method")
    status: PaymentStatus = Field(
        default=PaymentStatus.PAID,
        description="Initial record status reported by the gateway or staff",
    )
    notes: Optional[str] = Field(None, max_length=1000)
    confirmation_id: Optional[str] = Field(
        None,
        max_length=255,
        description="Gateway correlation identifier",
    )
    actor_id: Optional[int] = Field(
        None,
        description="Staff member recording the payment, None for webhooks",
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Gateway metadata stored with the record",
    )

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v: Any) -> Decimal:
        """Parse amount from strings, ints or Decimals."""
        return _coerce_amount(v)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        """Validate payment amount is positive with at most 3 decimals."""
        v = _validate_money(v)
        if v <= 0:
            raise ValueError("Payment amount must be greater than zero")
        return v

    @field_validator("method", mode="before")
    @classmethod
    def parse_method(cls, v: Any) -> PaymentMethod:
        """Accept payment methods case-insensitively."""
        return v if isinstance(v, PaymentMethod) else PaymentMethod.from_string(v)

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v: Any) -> PaymentStatus:
        """Accept statuses case-insensitively; refunds use their own request."""
        status = v if isinstance(v, PaymentStatus) else PaymentStatus.from_string(v)
        if status == PaymentStatus.REFUNDED:
            raise ValueError("Refunds must be recorded against an existing payment")
        return status


class SettlePaymentRequest(BaseModel):
    """Request schema for a gateway settlement of an existing record."""

    payment_id: int = Field(..., gt=0)
    status: PaymentStatus
    confirmation_id: Optional[str] = Field(None, max_length=255)
    actor_id: Optional[int] = None

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v: Any) -> PaymentStatus:
        """Accept statuses case-insensitively."""
        return v if isinstance(v, PaymentStatus) else PaymentStatus.from_string(v)


class RefundRequest(BaseModel):
    """Request schema for returning money from a PAID record."""

    payment_id: int = Field(..., gt=0, description="PAID record being refunded")
    amount: Decimal = Field(..., description="Strictly positive refund amount")
    reason: Optional[str] = Field(None, max_length=1000)
    actor_id: Optional[int] = None
    refund_to_wallet: bool = Field(
        default=False,
        description="Credit the customer's wallet instead of the original method",
    )

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v: Any) -> Decimal:
        """Parse amount from strings, ints or Decimals."""
        return _coerce_amount(v)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        """Validate refund amount is positive with at most 3 decimals."""
        v = _validate_money(v)
        if v <= 0:
            raise ValueError("Refund amount must be greater than zero")
        return v


class InvoiceTotalRequest(BaseModel):
    """Request schema for setting the amount an order owes."""

    order_id: int = Field(..., gt=0)
    invoice_total: Decimal
    minimum_order_applied: bool = False
    actor_id: Optional[int] = None

    @field_validator("invoice_total", mode="before")
    @classmethod
    def parse_total(cls, v: Any) -> Decimal:
        """Parse invoice total from strings, ints or Decimals."""
        return _coerce_amount(v)

    @field_validator("invoice_total")
    @classmethod
    def validate_total(cls, v: Decimal) -> Decimal:
        """Validate the total is non-negative with at most 3 decimals."""
        v = _validate_money(v)
        if v < 0:
            raise ValueError("Invoice total cannot be negative")
        return v


class PaymentRecordView(BaseModel):
    """Read model of a payment record."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    amount: Decimal
    currency: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    is_refund: bool
    refund_of_id: Optional[int] = None
    confirmation_id: Optional[str] = None
    processed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime


class PaymentSummary(BaseModel):
    """
    Ledger totals for one order, computed fresh from its payment records.

    total_paid is net of refunds; outstanding_amount is the effective invoice
    total minus total_paid. Pending payments are reported separately and do
    not reduce it until they settle.
    """

    order_id: int
    currency: str
    invoice_total: Optional[Decimal] = Field(
        None, description="Effective amount owed, None while unknown"
    )
    gross_paid: Decimal = Decimal("0.000")
    total_refunded: Decimal = Decimal("0.000")
    total_paid: Decimal = Decimal("0.000")
    total_pending: Decimal = Decimal("0.000")
    total_failed: Decimal = Decimal("0.000")
    outstanding_amount: Optional[Decimal] = None
    available_for_refund: Decimal = Decimal("0.000")
    payment_records_count: int = 0

    @property
    def is_fully_paid(self) -> bool:
        """Check if net collected covers the effective invoice total."""
        return self.invoice_total is not None and self.total_paid >= self.invoice_total

    @property
    def max_new_payment(self) -> Optional[Decimal]:
        """Largest amount a new payment may add, None while the total is unknown."""
        if self.outstanding_amount is None:
            return None
        return abs(self.outstanding_amount) + self.total_pending


class PaymentOutcome(BaseModel):
    """Result of a ledger write: the touched record, fresh totals and status changes."""

    payment: Optional[PaymentRecordView] = None
    summary: PaymentSummary
    status: StatusChangeOutcome
