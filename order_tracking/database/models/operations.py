"""
Operational event models: driver assignments, facility processing, issues.

These rows are written by the driver, facility and operations action
handlers and are read independently by the audit timeline.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from order_tracking.database.base import BaseModel
from order_tracking.services.orders.enums import (
    AssignmentType,
    DriverAssignmentStatus,
    IssueSeverity,
    IssueStatus,
    ProcessingStatus,
)

_value_enum = dict(values_callable=lambda enum: [member.value for member in enum])


class DriverAssignment(BaseModel):
    """
    A driver's pickup or delivery trip for an order.

    Attributes:
        order_id: Order being picked up or delivered
        driver_id: Assigned driver
        assignment_type: pickup or delivery
        status: Trip progress
        estimated_time: Planned arrival
        actual_time: When the trip finished
        notes: Driver or dispatcher notes
        photo_url: Proof-of-pickup/delivery photo
    """

    __tablename__ = "driver_assignments"
    __table_args__ = (
        Index("ix_driver_assignments_order_created", "order_id", "created_at"),
        {"comment": "Driver pickup and delivery trips"},
    )

    order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    driver_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    assignment_type: Mapped[AssignmentType] = mapped_column(
        SQLEnum(AssignmentType, name="assignment_type", **_value_enum),
        nullable=False,
    )

    status: Mapped[DriverAssignmentStatus] = mapped_column(
        SQLEnum(DriverAssignmentStatus, name="driver_assignment_status"),
        nullable=False,
        default=DriverAssignmentStatus.ASSIGNED,
    )

    estimated_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    actual_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    photo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)


class OrderProcessing(BaseModel):
    """
    Facility processing record for an order.

    Attributes:
        order_id: Order being processed
        staff_id: Facility staff member in charge
        processing_status: Processing progress
        total_pieces: Garment count
        total_weight: Weight in kilograms
        quality_score: Quality check score (1-10)
        processing_notes: Facility notes
        started_at: Processing start
        completed_at: Processing end
    """

    __tablename__ = "order_processing"
    __table_args__ = (
        Index("ix_order_processing_order_created", "order_id", "created_at"),
        {"comment": "Facility processing records"},
    )

    order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    staff_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    processing_status: Mapped[ProcessingStatus] = mapped_column(
        SQLEnum(ProcessingStatus, name="processing_status"),
        nullable=False,
        default=ProcessingStatus.PENDING,
    )

    total_pieces: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    total_weight: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(8, 2, asdecimal=True), nullable=True
    )

    quality_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    processing_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class IssueReport(BaseModel):
    """
    Problem found while processing an order.

    Issues belong to a processing record and reach the order through it.

    Attributes:
        order_processing_id: Processing record the issue was raised on
        staff_id: Reporting staff member
        issue_type: Short category such as damaged_item or missing_item
        description: What went wrong
        severity: low, medium, high or critical
        status: Handling progress
    """

    __tablename__ = "issue_reports"
    __table_args__ = {"comment": "Issues raised during facility processing"}

    order_processing_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("order_processing.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    staff_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    issue_type: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False)

    severity: Mapped[IssueSeverity] = mapped_column(
        SQLEnum(IssueSeverity, name="issue_severity", **_value_enum),
        nullable=False,
        default=IssueSeverity.MEDIUM,
    )

    status: Mapped[IssueStatus] = mapped_column(
        SQLEnum(IssueStatus, name="issue_status"),
        nullable=False,
        default=IssueStatus.REPORTED,
    )
