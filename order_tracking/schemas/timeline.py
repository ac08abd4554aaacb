"""
Structured audit snapshots and timeline event schemas.

History entries store their old/new values as these snapshot models, so the
timeline decodes them by shape instead of parsing ad-hoc strings. Timeline
payloads form a tagged union discriminated by ``kind``.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from order_tracking.services.orders.enums import (
    AssignmentType,
    DriverAssignmentStatus,
    IssueSeverity,
    IssueStatus,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ProcessingStatus,
)


# ============================================================================
# History snapshots (stored in order_history.old_value / new_value)
# ============================================================================


class StatusSnapshot(BaseModel):
    """Order status at one side of a status change."""

    status: OrderStatus


class PaymentStatusSnapshot(BaseModel):
    """Aggregate payment status at one side of a change."""

    payment_status: OrderPaymentStatus


class PaymentSnapshot(BaseModel):
    """A payment record as recorded, settled or refunded."""

    payment_id: int
    amount: Decimal
    currency: str
    method: PaymentMethod
    status: PaymentStatus
    is_refund: bool = False
    refund_of_id: Optional[int] = None
    confirmation_id: Optional[str] = None


class InvoiceSnapshot(BaseModel):
    """Invoice total at one side of an invoice change."""

    invoice_total: Optional[Decimal] = None
    minimum_order_applied: bool = False


class NoteSnapshot(BaseModel):
    """Free-text note."""

    note: str


class HistoryDetails(BaseModel):
    """Structured metadata stored with a history entry."""

    automatic: bool = False
    reason: Optional[str] = None
    notes: Optional[str] = None
    role: Optional[str] = None
    action: Optional[str] = None


# ============================================================================
# Timeline payloads
# ============================================================================


class TimelineEventType(str, Enum):
    """Kind of event shown on an order timeline."""

    STATUS_CHANGE = "status_change"
    PAYMENT_STATUS = "payment_status"
    PAYMENT = "payment"
    REFUND = "refund"
    INVOICE = "invoice"
    NOTE = "note"
    DRIVER_ASSIGNMENT = "driver_assignment"
    PROCESSING = "processing"
    ISSUE = "issue"
    OTHER = "other"


class StatusChangePayload(BaseModel):
    kind: Literal["status_change"] = "status_change"
    old_status: Optional[OrderStatus] = None
    new_status: OrderStatus
    automatic: bool = False


class PaymentStatusPayload(BaseModel):
    kind: Literal["payment_status"] = "payment_status"
    old_status: Optional[OrderPaymentStatus] = None
    new_status: OrderPaymentStatus


class PaymentPayload(BaseModel):
    kind: Literal["payment"] = "payment"
    payment_id: int
    amount: Decimal
    currency: str
    method: PaymentMethod
    status: PaymentStatus
    previous_status: Optional[PaymentStatus] = None
    is_refund: bool = False
    refund_of_id: Optional[int] = None
    confirmation_id: Optional[str] = None


class InvoicePayload(BaseModel):
    kind: Literal["invoice"] = "invoice"
    old_total: Optional[Decimal] = None
    new_total: Optional[Decimal] = None
    minimum_order_applied: bool = False


class NotePayload(BaseModel):
    kind: Literal["note"] = "note"
    note: str


class DriverAssignmentPayload(BaseModel):
    kind: Literal["driver_assignment"] = "driver_assignment"
    assignment_id: int
    driver_id: int
    assignment_type: AssignmentType
    status: DriverAssignmentStatus
    estimated_time: Optional[datetime] = None
    actual_time: Optional[datetime] = None
    notes: Optional[str] = None


class ProcessingPayload(BaseModel):
    kind: Literal["processing"] = "processing"
    processing_id: int
    processing_status: ProcessingStatus
    total_pieces: Optional[int] = None
    total_weight: Optional[Decimal] = None
    quality_score: Optional[int] = None
    notes: Optional[str] = None


class IssuePayload(BaseModel):
    kind: Literal["issue"] = "issue"
    issue_id: int
    issue_type: str
    description: str
    severity: IssueSeverity
    status: IssueStatus


class GenericPayload(BaseModel):
    """Fallback for history entries whose snapshots do not match their action."""

    kind: Literal["generic"] = "generic"
    action: str
    old_value: Optional[dict[str, Any]] = None
    new_value: Optional[dict[str, Any]] = None


TimelinePayload = Annotated[
    Union[
        StatusChangePayload,
        PaymentStatusPayload,
        PaymentPayload,
        InvoicePayload,
        NotePayload,
        DriverAssignmentPayload,
        ProcessingPayload,
        IssuePayload,
        GenericPayload,
    ],
    Field(discriminator="kind"),
]


class TimelineEvent(BaseModel):
    """One normalized entry of an order's audit trail."""

    id: str = Field(..., description="Source-qualified identifier, e.g. history:12")
    type: TimelineEventType
    timestamp: datetime
    description: str
    actor_id: Optional[int] = None
    payload: TimelinePayload
