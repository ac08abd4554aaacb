"""
Audit trail aggregation for a single order.

This module implements the AuditTrailAggregator, which reads the order's
history entries, driver assignments, processing records and issue reports,
normalizes each row into a typed TimelineEvent and merges the per-source
lists newest first.

Ordering is deterministic: events sort by timestamp descending, then by
source precedence (history, driver assignment, processing, issue), then by
id descending within a source.
"""

import heapq
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from order_tracking.core.logging import get_logger
from order_tracking.database.base import as_utc
from order_tracking.database.models import (
    DriverAssignment,
    IssueReport,
    OrderHistoryEntry,
    OrderProcessing,
)
from order_tracking.schemas.timeline import (
    DriverAssignmentPayload,
    GenericPayload,
    InvoicePayload,
    InvoiceSnapshot,
    IssuePayload,
    NotePayload,
    NoteSnapshot,
    PaymentPayload,
    PaymentSnapshot,
    PaymentStatusPayload,
    PaymentStatusSnapshot,
    ProcessingPayload,
    StatusChangePayload,
    StatusSnapshot,
    TimelineEvent,
    TimelineEventType,
)
from order_tracking.services.orders.enums import HistoryAction, PaymentStatus
from order_tracking.services.orders.repository import OrderRepository
from order_tracking.services.tracking.repository import OperationsRepository

logger = get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MICROSECOND = timedelta(microseconds=1)

PAYMENT_ACTIONS = frozenset(
    {
        HistoryAction.PAYMENT_RECORDED,
        HistoryAction.PAYMENT_SETTLED,
        HistoryAction.REFUND_PROCESSED,
    }
)

MergeKey = Tuple[int, int, int]


def _micros(timestamp: datetime) -> int:
    return (as_utc(timestamp) - EPOCH) // MICROSECOND


def merge_newest_first(sources: Sequence[Sequence[TimelineEvent]]) -> List[TimelineEvent]:
    """
    K-way merge of per-source event lists that are each sorted newest first.

    Sources are given in precedence order; equal timestamps keep that order
    and, within one source, the order of the input list.
    """
    heap: List[MergeKey] = []
    for rank, events in enumerate(sources):
        if events:
            heap.append((-_micros(events[0].timestamp), rank, 0))
    heapq.heapify(heap)

    merged: List[TimelineEvent] = []
    while heap:
        _, rank, position = heapq.heappop(heap)
        events = sources[rank]
        merged.append(events[position])

        position += 1
        if position < len(events):
            heapq.heappush(
                heap, (-_micros(events[position].timestamp), rank, position)
            )
    return merged


class AuditTrailAggregator:
    """Builds the read-only timeline of an order."""

    async def build_timeline(
        self, session: AsyncSession, order_id: int
    ) -> List[TimelineEvent]:
        """
        Build the timeline of an order, newest first.

        Args:
            session: Session used for reads only
            order_id: Order identifier

        Returns:
            Merged timeline events

        Raises:
            NotFoundError: If the order does not exist
        """
        orders = OrderRepository(session)
        operations = OperationsRepository(session)

        await orders.get_order(order_id)

        sources: List[Tuple[Sequence, Callable]] = [
            (await orders.list_history(order_id), self._from_history),
            (await operations.list_assignments(order_id), self._from_assignment),
            (await operations.list_processing(order_id), self._from_processing),
            (await operations.list_issues(order_id), self._from_issue),
        ]
        events = merge_newest_first(
            [[normalize(row) for row in rows] for rows, normalize in sources]
        )

        logger.debug("Timeline built", order_id=order_id, event_count=len(events))
        return events

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def _from_history(self, entry: OrderHistoryEntry) -> TimelineEvent:
        event_type, payload = self._decode_history(entry)
        return TimelineEvent(
            id=f"history:{entry.id}",
            type=event_type,
            timestamp=as_utc(entry.created_at),
            description=entry.description,
            actor_id=entry.staff_id,
            payload=payload,
        )

    def _decode_history(self, entry: OrderHistoryEntry):
        old_value = entry.old_value or None
        new_value = entry.new_value or {}
        details = entry.details or {}

        try:
            if entry.action == HistoryAction.STATUS_CHANGE:
                return TimelineEventType.STATUS_CHANGE, StatusChangePayload(
                    old_status=(
                        StatusSnapshot.model_validate(old_value).status
                        if old_value
                        else None
                    ),
                    new_status=StatusSnapshot.model_validate(new_value).status,
                    automatic=bool(details.get("automatic", False)),
                )

            if entry.action == HistoryAction.PAYMENT_UPDATE:
                return TimelineEventType.PAYMENT_STATUS, PaymentStatusPayload(
                    old_status=(
                        PaymentStatusSnapshot.model_validate(old_value).payment_status
                        if old_value
                        else None
                    ),
                    new_status=PaymentStatusSnapshot.model_validate(
                        new_value
                    ).payment_status,
                )

            if entry.action in PAYMENT_ACTIONS:
                snapshot = PaymentSnapshot.model_validate(new_value)
                previous: Optional[PaymentSnapshot] = (
                    PaymentSnapshot.model_validate(old_value) if old_value else None
                )
                is_refund = (
                    entry.action == HistoryAction.REFUND_PROCESSED
                    or snapshot.status == PaymentStatus.REFUNDED
                )
                return (
                    TimelineEventType.REFUND if is_refund else TimelineEventType.PAYMENT,
                    PaymentPayload(
                        **snapshot.model_dump(),
                        previous_status=previous.status if previous else None,
                    ),
                )

            if entry.action == HistoryAction.INVOICE_UPDATED:
                new_invoice = InvoiceSnapshot.model_validate(new_value)
                old_invoice = (
                    InvoiceSnapshot.model_validate(old_value) if old_value else None
                )
                return TimelineEventType.INVOICE, InvoicePayload(
                    old_total=old_invoice.invoice_total if old_invoice else None,
                    new_total=new_invoice.invoice_total,
                    minimum_order_applied=new_invoice.minimum_order_applied,
                )

            if entry.action == HistoryAction.NOTE_ADDED:
                return TimelineEventType.NOTE, NotePayload(
                    note=NoteSnapshot.model_validate(new_value).note
                )
        except ValidationError as e:
            logger.warning(
                "History entry does not match its action",
                history_id=entry.id,
                action=entry.action.value,
                error_count=e.error_count(),
            )

        return TimelineEventType.OTHER, GenericPayload(
            action=entry.action.value,
            old_value=entry.old_value,
            new_value=entry.new_value,
        )

    def _from_assignment(self, assignment: DriverAssignment) -> TimelineEvent:
        return TimelineEvent(
            id=f"driver_assignment:{assignment.id}",
            type=TimelineEventType.DRIVER_ASSIGNMENT,
            timestamp=as_utc(assignment.created_at),
            description=(
                f"Driver {assignment.driver_id} assigned to "
                f"{assignment.assignment_type.value} ({assignment.status.value})"
            ),
            actor_id=assignment.driver_id,
            payload=DriverAssignmentPayload(
                assignment_id=assignment.id,
                driver_id=assignment.driver_id,
                assignment_type=assignment.assignment_type,
                status=assignment.status,
                estimated_time=assignment.estimated_time,
                actual_time=assignment.actual_time,
                notes=assignment.notes,
            ),
        )

    def _from_processing(self, processing: OrderProcessing) -> TimelineEvent:
        return TimelineEvent(
            id=f"processing:{processing.id}",
            type=TimelineEventType.PROCESSING,
            timestamp=as_utc(processing.created_at),
            description=f"Processing {processing.processing_status.value}",
            actor_id=processing.staff_id,
            payload=ProcessingPayload(
                processing_id=processing.id,
                processing_status=processing.processing_status,
                total_pieces=processing.total_pieces,
                total_weight=processing.total_weight,
                quality_score=processing.quality_score,
                notes=processing.processing_notes,
            ),
        )

    def _from_issue(self, issue: IssueReport) -> TimelineEvent:
        return TimelineEvent(
            id=f"issue:{issue.id}",
            type=TimelineEventType.ISSUE,
            timestamp=as_utc(issue.created_at),
            description=f"Issue reported: {issue.issue_type}",
            actor_id=issue.staff_id,
            payload=IssuePayload(
                issue_id=issue.id,
                issue_type=issue.issue_type,
                description=issue.description,
                severity=issue.severity,
                status=issue.status,
            ),
        )
