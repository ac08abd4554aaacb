"""
Order status schemas.

Request schemas for status changes and staff actions, the order snapshot
returned to callers, and the change notices handed to the notification
collaborator.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from order_tracking.services.orders.enums import (
    IssueSeverity,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    ProcessingStatus,
    StaffRole,
)


class StatusChangeRequest(BaseModel):
    """Request schema for changing an order's status and/or payment status."""

    order_id: int = Field(..., gt=0)
    actor_id: Optional[int] = Field(None, description="Staff member, None for system")
    new_status: Optional[OrderStatus] = None
    new_payment_status: Optional[OrderPaymentStatus] = None
    notes: Optional[str] = Field(None, max_length=1000)
    role: Optional[StaffRole] = None

    @field_validator("new_status", mode="before")
    @classmethod
    def parse_status(cls, v: Any) -> Optional[OrderStatus]:
        """Accept order statuses case-insensitively."""
        if v is None or isinstance(v, OrderStatus):
            return v
        return OrderStatus.from_string(v)

    @field_validator("new_payment_status", mode="before")
    @classmethod
    def parse_payment_status(cls, v: Any) -> Optional[OrderPaymentStatus]:
        """Accept payment statuses case-insensitively."""
        if v is None or isinstance(v, OrderPaymentStatus):
            return v
        return OrderPaymentStatus.from_string(v)

    @field_validator("role", mode="before")
    @classmethod
    def parse_role(cls, v: Any) -> Optional[StaffRole]:
        """Accept roles case-insensitively."""
        if v is None or isinstance(v, StaffRole):
            return v
        return StaffRole.from_string(v)

    @model_validator(mode="after")
    def require_change(self) -> "StatusChangeRequest":
        """Require at least one field to change."""
        if self.new_status is None and self.new_payment_status is None:
            raise ValueError("Either new_status or new_payment_status is required")
        return self


class StaffActionRequest(BaseModel):
    """Request schema shared by driver, facility and operations actions."""

    order_id: int = Field(..., gt=0)
    staff_id: int = Field(..., gt=0)
    action: str = Field(..., min_length=1, max_length=64)
    notes: Optional[str] = Field(None, max_length=1000)
    driver_id: Optional[int] = Field(None, gt=0)
    estimated_time: Optional[datetime] = None
    photo_url: Optional[str] = Field(None, max_length=500)

    @field_validator("action")
    @classmethod
    def normalize_action(cls, v: str) -> str:
        """Normalize action names to snake_case lower case."""
        return v.strip().lower().replace("-", "_")


class ProcessingUpdateRequest(BaseModel):
    """Request schema for a facility processing record update."""

    order_id: int = Field(..., gt=0)
    staff_id: int = Field(..., gt=0)
    processing_status: ProcessingStatus
    total_pieces: Optional[int] = Field(None, ge=0)
    total_weight: Optional[Decimal] = Field(None, ge=0)
    quality_score: Optional[int] = Field(None, ge=1, le=10)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("processing_status", mode="before")
    @classmethod
    def parse_processing_status(cls, v: Any) -> ProcessingStatus:
        """Accept processing statuses case-insensitively."""
        if isinstance(v, ProcessingStatus):
            return v
        return ProcessingStatus.from_string(v)


class IssueReportRequest(BaseModel):
    """Request schema for reporting a processing issue."""

    order_id: int = Field(..., gt=0)
    staff_id: int = Field(..., gt=0)
    issue_type: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=2000)
    severity: IssueSeverity = IssueSeverity.MEDIUM

    @field_validator("severity", mode="before")
    @classmethod
    def parse_severity(cls, v: Any) -> IssueSeverity:
        """Accept severities case-insensitively."""
        if v is None:
            return IssueSeverity.MEDIUM
        if isinstance(v, IssueSeverity):
            return v
        return IssueSeverity(str(v).strip().lower())


class NoteRequest(BaseModel):
    """Request schema for a free-text note on an order."""

    order_id: int = Field(..., gt=0)
    staff_id: Optional[int] = None
    note: str = Field(..., min_length=1, max_length=2000)


class OrderSnapshot(BaseModel):
    """Read model of an order's tracked state."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    customer_id: int
    status: OrderStatus
    payment_status: OrderPaymentStatus
    invoice_total: Optional[Decimal] = None
    minimum_order_applied: bool = False
    invoice_generated: bool = False
    payment_method: Optional[PaymentMethod] = None
    updated_at: datetime


class StatusChange(BaseModel):
    """One field change applied to an order."""

    field: Literal["status", "payment_status"]
    old_status: str
    new_status: str
    automatic: bool = False


class StatusChangeOutcome(BaseModel):
    """Result of a coordinator operation: the order plus what changed."""

    order: OrderSnapshot
    changes: list[StatusChange] = Field(default_factory=list)
    notify: bool = Field(
        default=True,
        description="Whether customers should hear about these changes",
    )

    @property
    def changed(self) -> bool:
        """Check if anything was written."""
        return bool(self.changes)


class StatusChangeNotice(BaseModel):
    """Message handed to the notification collaborator after commit."""

    order_id: int
    order_number: str
    customer_id: int
    field: Literal["status", "payment_status"]
    old_status: str
    new_status: str
