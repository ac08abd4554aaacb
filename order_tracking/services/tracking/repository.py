"""
Repository for operational rows written by staff actions.

This module implements the OperationsRepository class for driver
assignments, facility processing records and issue reports. The list
methods return rows newest first, the order the audit timeline merges them
in.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from order_tracking.core.logging import get_logger
from order_tracking.database.base import utcnow
from order_tracking.database.models import (
    DriverAssignment,
    IssueReport,
    OrderProcessing,
)
from order_tracking.services.orders.enums import (
    AssignmentType,
    DriverAssignmentStatus,
    IssueSeverity,
    ProcessingStatus,
)

logger = get_logger(__name__)

ACTIVE_ASSIGNMENT_STATUSES = (
    DriverAssignmentStatus.ASSIGNED,
    DriverAssignmentStatus.IN_PROGRESS,
)

FINISHED_ASSIGNMENT_STATUSES = (
    DriverAssignmentStatus.COMPLETED,
    DriverAssignmentStatus.FAILED,
)


class OperationsRepository:
    """
    Repository for driver, facility and issue records of orders.

    Attributes:
        session: Async database session bound to the caller's transaction
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Driver assignments
    # ------------------------------------------------------------------

    async def create_assignment(
        self,
        order_id: int,
        driver_id: int,
        assignment_type: AssignmentType,
        estimated_time: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> DriverAssignment:
        """
        Assign a driver to an order's pickup or delivery.

        Any still active assignment of the same type is marked RESCHEDULED.
        """
        previous = await self.get_active_assignment(order_id, assignment_type)
        if previous is not None:
            previous.status = DriverAssignmentStatus.RESCHEDULED
            logger.info(
                "Driver assignment rescheduled",
                assignment_id=previous.id,
                order_id=order_id,
                driver_id=previous.driver_id,
            )

        assignment = DriverAssignment(
            order_id=order_id,
            driver_id=driver_id,
            assignment_type=assignment_type,
            status=DriverAssignmentStatus.ASSIGNED,
            estimated_time=estimated_time,
            notes=notes,
        )
        self.session.add(assignment)
        await self.session.flush()

        logger.info(
            "Driver assigned",
            assignment_id=assignment.id,
            order_id=order_id,
            driver_id=driver_id,
            assignment_type=assignment_type.value,
        )
        return assignment

    async def get_active_assignment(
        self, order_id: int, assignment_type: AssignmentType
    ) -> Optional[DriverAssignment]:
        """Get the newest ASSIGNED or IN_PROGRESS assignment of a type."""
        result = await self.session.execute(
            select(DriverAssignment)
            .where(
                DriverAssignment.order_id == order_id,
                DriverAssignment.assignment_type == assignment_type,
                DriverAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
            )
            .order_by(DriverAssignment.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def update_assignment(
        self,
        assignment: DriverAssignment,
        status: DriverAssignmentStatus,
        notes: Optional[str] = None,
        photo_url: Optional[str] = None,
    ) -> DriverAssignment:
        """Move an assignment to a new status, stamping the finish time."""
        assignment.status = status
        if status in FINISHED_ASSIGNMENT_STATUSES:
            assignment.actual_time = utcnow()
        if notes:
            assignment.notes = notes
        if photo_url:
            assignment.photo_url = photo_url
        await self.session.flush()

        logger.info(
            "Driver assignment updated",
            assignment_id=assignment.id,
            order_id=assignment.order_id,
            status=status.value,
        )
        return assignment

    async def list_assignments(self, order_id: int) -> Sequence[DriverAssignment]:
        """Get an order's driver assignments, newest first."""
        result = await self.session.execute(
            select(DriverAssignment)
            .where(DriverAssignment.order_id == order_id)
            .order_by(DriverAssignment.created_at.desc(), DriverAssignment.id.desc())
        )
        return result.scalars().all()

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def get_processing(self, order_id: int) -> Optional[OrderProcessing]:
        """Get the newest processing record of an order."""
        result = await self.session.execute(
            select(OrderProcessing)
            .where(OrderProcessing.order_id == order_id)
            .order_by(OrderProcessing.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def upsert_processing(
        self,
        order_id: int,
        staff_id: Optional[int],
        processing_status: ProcessingStatus,
        total_pieces: Optional[int] = None,
        total_weight: Optional[Decimal] = None,
        quality_score: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> OrderProcessing:
        """
        Create or update the processing record of an order.

        Start and completion times are stamped the first time the record
        reaches IN_PROGRESS and COMPLETED.
        """
        processing = await self.get_processing(order_id)
        if processing is None:
            processing = OrderProcessing(order_id=order_id)
            self.session.add(processing)

        processing.staff_id = staff_id
        processing.processing_status = processing_status
        if total_pieces is not None:
            processing.total_pieces = total_pieces
        if total_weight is not None:
            processing.total_weight = total_weight
        if quality_score is not None:
            processing.quality_score = quality_score
        if notes:
            processing.processing_notes = notes

        if processing_status == ProcessingStatus.IN_PROGRESS and not processing.started_at:
            processing.started_at = utcnow()
        if processing_status == ProcessingStatus.COMPLETED and not processing.completed_at:
            processing.completed_at = utcnow()

        await self.session.flush()

        logger.info(
            "Processing record updated",
            processing_id=processing.id,
            order_id=order_id,
            processing_status=processing_status.value,
        )
        return processing

    async def list_processing(self, order_id: int) -> Sequence[OrderProcessing]:
        """Get an order's processing records, newest first."""
        result = await self.session.execute(
            select(OrderProcessing)
            .where(OrderProcessing.order_id == order_id)
            .order_by(OrderProcessing.created_at.desc(), OrderProcessing.id.desc())
        )
        return result.scalars().all()

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    async def create_issue(
        self,
        processing: OrderProcessing,
        staff_id: Optional[int],
        issue_type: str,
        description: str,
        severity: IssueSeverity = IssueSeverity.MEDIUM,
    ) -> IssueReport:
        """Report an issue against a processing record."""
        issue = IssueReport(
            order_processing_id=processing.id,
            staff_id=staff_id,
            issue_type=issue_type,
            description=description,
            severity=severity,
        )
        self.session.add(issue)
        await self.session.flush()

        logger.warning(
            "Processing issue reported",
            issue_id=issue.id,
            order_id=processing.order_id,
            issue_type=issue_type,
            severity=severity.value,
        )
        return issue

    async def list_issues(self, order_id: int) -> Sequence[IssueReport]:
        """Get the issues raised on an order's processing records, newest first."""
        result = await self.session.execute(
            select(IssueReport)
            .join(OrderProcessing, IssueReport.order_processing_id == OrderProcessing.id)
            .where(OrderProcessing.order_id == order_id)
            .order_by(IssueReport.created_at.desc(), IssueReport.id.desc())
        )
        return result.scalars().all()
