"""
Public entry point of the order tracking core.

This module implements the OrderTrackingFacade. Every operation parses raw
input into a request schema before any transaction opens, runs exactly one
transaction through the UnitOfWork, sends customer notifications after the
commit, and returns an OperationResult instead of raising domain errors.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_tracking.core.config import Settings, get_settings
from order_tracking.core.errors import RequestValidationError, TrackingError
from order_tracking.core.logging import (
    configure_logging,
    get_logger,
    log_performance,
    operation_context,
)
from order_tracking.database.connection import (
    UnitOfWork,
    create_engine,
    create_session_factory,
)
from order_tracking.database.models import (
    IssueReport,
    OrderHistoryEntry,
    OrderProcessing,
)
from order_tracking.schemas.orders import (
    IssueReportRequest,
    NoteRequest,
    ProcessingUpdateRequest,
    StaffActionRequest,
    StatusChangeOutcome,
    StatusChangeRequest,
)
from order_tracking.schemas.payments import (
    InvoiceTotalRequest,
    PaymentOutcome,
    PaymentSummary,
    RecordPaymentRequest,
    RefundRequest,
    SettlePaymentRequest,
)
from order_tracking.schemas.results import OperationResult
from order_tracking.schemas.timeline import TimelineEvent
from order_tracking.services.notifications.dispatcher import (
    NotificationDispatcher,
    OrderNotifier,
)
from order_tracking.services.orders.coordinator import OrderStatusCoordinator
from order_tracking.services.orders.repository import OrderRepository
from order_tracking.services.payments.ledger import PaymentLedger
from order_tracking.services.payments.wallet import WalletGateway
from order_tracking.services.timeline.aggregator import AuditTrailAggregator
from order_tracking.services.tracking.actions import StaffActionHandler

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R", bound=BaseModel)


def parse_request(schema: Type[R], **data: Any) -> R:
    """
    Validate raw input into a request schema.

    Raises:
        RequestValidationError: With one entry per invalid field
    """
    try:
        return schema(**data)
    except ValidationError as e:
        errors = [
            {
                "field": ".".join(str(part) for part in error["loc"]) or "request",
                "message": error["msg"],
            }
            for error in e.errors()
        ]
        raise RequestValidationError(
            f"Invalid {schema.__name__}: "
            + "; ".join(f"{err['field']}: {err['message']}" for err in errors),
            errors=errors,
        ) from e


class OrderTrackingFacade:
    """
    Order lifecycle and payment reconciliation operations.

    Callers branch on ``result.ok`` and ``result.kind``; no domain error
    escapes as an exception.

    Attributes:
        unit_of_work: Transaction scope with conflict retries
        coordinator: Order status writer
        ledger: Payment ledger
        aggregator: Timeline reader
        actions: Staff action handlers
        dispatcher: Post-commit customer notifications
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        notifier: Optional[OrderNotifier] = None,
        wallet: Optional[WalletGateway] = None,
        unit_of_work: Optional[UnitOfWork] = None,
    ):
        """
        Initialize facade.

        Args:
            session_factory: Factory for sessions on the order store
            settings: Application settings, defaults to get_settings()
            notifier: Customer notification channel, defaults to logging only
            wallet: Wallet collaborator, defaults to the SQL wallet
            unit_of_work: Transaction scope, built from session_factory if None
        """
        self.settings = settings or get_settings()
        self.unit_of_work = unit_of_work or UnitOfWork(
            session_factory,
            max_attempts=self.settings.transaction_max_attempts,
            backoff_base=self.settings.retry_backoff_base,
            backoff_max=self.settings.retry_backoff_max,
        )
        self.coordinator = OrderStatusCoordinator()
        self.ledger = PaymentLedger(self.coordinator, wallet, self.settings)
        self.aggregator = AuditTrailAggregator()
        self.actions = StaffActionHandler(self.coordinator)
        self.dispatcher = NotificationDispatcher(notifier)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        notifier: Optional[OrderNotifier] = None,
    ) -> "OrderTrackingFacade":
        """Build a facade with its own engine and logging from configuration."""
        settings = settings or get_settings()
        configure_logging(settings)
        engine = create_engine(settings=settings)
        return cls(create_session_factory(engine), settings=settings, notifier=notifier)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def apply_status_change(
        self,
        order_id: int,
        actor_id: Optional[int] = None,
        new_status: Optional[str] = None,
        new_payment_status: Optional[str] = None,
        notes: Optional[str] = None,
        role: Optional[str] = None,
    ) -> OperationResult[StatusChangeOutcome]:
        """Change an order's status and/or payment status."""

        async def operation() -> StatusChangeOutcome:
            request = parse_request(
                StatusChangeRequest,
                order_id=order_id,
                actor_id=actor_id,
                new_status=new_status,
                new_payment_status=new_payment_status,
                notes=notes,
                role=role,
            )
            outcome = await self.unit_of_work.run(
                lambda session: self.coordinator.apply_status_change(
                    session,
                    request.order_id,
                    actor_id=request.actor_id,
                    new_status=request.new_status,
                    new_payment_status=request.new_payment_status,
                    notes=request.notes,
                    role=request.role,
                ),
                "apply_status_change",
            )
            await self.dispatcher.dispatch(outcome)
            return outcome

        return await self._execute(
            "apply_status_change", operation, actor_id, order_id=order_id
        )

    async def add_note(
        self, order_id: int, note: str, staff_id: Optional[int] = None
    ) -> OperationResult[OrderHistoryEntry]:
        """Append a free-text note to an order's history."""

        async def operation() -> OrderHistoryEntry:
            request = parse_request(
                NoteRequest, order_id=order_id, staff_id=staff_id, note=note
            )
            return await self.unit_of_work.run(
                lambda session: self.coordinator.add_note(
                    session, request.order_id, request.note, staff_id=request.staff_id
                ),
                "add_note",
            )

        return await self._execute("add_note", operation, staff_id, order_id=order_id)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def record_payment(
        self,
        order_id: int,
        amount: Union[str, Decimal, int],
        method: str,
        status: str = "PAID",
        notes: Optional[str] = None,
        confirmation_id: Optional[str] = None,
        actor_id: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> OperationResult[PaymentOutcome]:
        """
        Append a payment to an order's ledger.

        Example:
            >>> result = await facade.record_payment(7, "6.000", "CASH", actor_id=3)
            >>> result.value.summary.outstanding_amount
            Decimal('4.000')
        """

        async def operation() -> PaymentOutcome:
            request = parse_request(
                RecordPaymentRequest,
                order_id=order_id,
                amount=amount,
                method=method,
                status=status,
                notes=notes,
                confirmation_id=confirmation_id,
                actor_id=actor_id,
                details=details or {},
            )
            return await self._run_payment(
                lambda session: self.ledger.record_payment(
                    session,
                    request.order_id,
                    request.amount,
                    request.method,
                    status=request.status,
                    notes=request.notes,
                    confirmation_id=request.confirmation_id,
                    actor_id=request.actor_id,
                    details=request.details,
                ),
                "record_payment",
            )

        return await self._execute(
            "record_payment", operation, actor_id, order_id=order_id, method=method
        )

    async def settle_payment(
        self,
        payment_id: int,
        status: str,
        confirmation_id: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> OperationResult[PaymentOutcome]:
        """Apply a gateway settlement or reversal to an existing record."""

        async def operation() -> PaymentOutcome:
            request = parse_request(
                SettlePaymentRequest,
                payment_id=payment_id,
                status=status,
                confirmation_id=confirmation_id,
                actor_id=actor_id,
            )
            return await self._run_payment(
                lambda session: self.ledger.settle_payment(
                    session,
                    request.payment_id,
                    request.status,
                    confirmation_id=request.confirmation_id,
                    actor_id=request.actor_id,
                ),
                "settle_payment",
            )

        return await self._execute(
            "settle_payment", operation, actor_id, payment_id=payment_id
        )

    async def record_refund(
        self,
        payment_id: int,
        amount: Union[str, Decimal, int],
        reason: Optional[str] = None,
        actor_id: Optional[int] = None,
        refund_to_wallet: bool = False,
    ) -> OperationResult[PaymentOutcome]:
        """Return money from a PAID record."""

        async def operation() -> PaymentOutcome:
            request = parse_request(
                RefundRequest,
                payment_id=payment_id,
                amount=amount,
                reason=reason,
                actor_id=actor_id,
                refund_to_wallet=refund_to_wallet,
            )
            return await self._run_payment(
                lambda session: self.ledger.record_refund(
                    session,
                    request.payment_id,
                    request.amount,
                    reason=request.reason,
                    actor_id=request.actor_id,
                    refund_to_wallet=request.refund_to_wallet,
                ),
                "record_refund",
            )

        return await self._execute(
            "record_refund", operation, actor_id, payment_id=payment_id
        )

    async def set_invoice_total(
        self,
        order_id: int,
        invoice_total: Union[str, Decimal, int],
        minimum_order_applied: bool = False,
        actor_id: Optional[int] = None,
    ) -> OperationResult[PaymentOutcome]:
        """Set the amount an order owes."""

        async def operation() -> PaymentOutcome:
            request = parse_request(
                InvoiceTotalRequest,
                order_id=order_id,
                invoice_total=invoice_total,
                minimum_order_applied=minimum_order_applied,
                actor_id=actor_id,
            )
            return await self._run_payment(
                lambda session: self.ledger.set_invoice_total(
                    session,
                    request.order_id,
                    request.invoice_total,
                    minimum_order_applied=request.minimum_order_applied,
                    actor_id=request.actor_id,
                ),
                "set_invoice_total",
            )

        return await self._execute(
            "set_invoice_total", operation, actor_id, order_id=order_id
        )

    async def recalculate_payment_status(
        self, order_id: int, actor_id: Optional[int] = None
    ) -> OperationResult[StatusChangeOutcome]:
        """Re-derive an order's payment status from its ledger."""

        async def recalculate(session: AsyncSession) -> StatusChangeOutcome:
            order = await OrderRepository(session).get_order(order_id, for_update=True)
            changes = await self.ledger.recalculate_order_payment_status(
                session, order, actor_id=actor_id
            )
            return self.coordinator.outcome(order, changes)

        async def operation() -> StatusChangeOutcome:
            outcome = await self.unit_of_work.run(
                recalculate, "recalculate_payment_status"
            )
            await self.dispatcher.dispatch(outcome)
            return outcome

        return await self._execute(
            "recalculate_payment_status", operation, actor_id, order_id=order_id
        )

    async def get_payment_summary(self, order_id: int) -> OperationResult[PaymentSummary]:
        """Compute an order's ledger totals."""

        async def operation() -> PaymentSummary:
            return await self.unit_of_work.run(
                lambda session: self.ledger.get_payment_summary(session, order_id),
                "get_payment_summary",
                read_only=True,
            )

        return await self._execute(
            "get_payment_summary", operation, None, order_id=order_id
        )

    # ------------------------------------------------------------------
    # Timeline
    # ------------------------------------------------------------------

    async def build_timeline(self, order_id: int) -> OperationResult[List[TimelineEvent]]:
        """Build an order's audit timeline, newest first."""

        async def operation() -> List[TimelineEvent]:
            return await self.unit_of_work.run(
                lambda session: self.aggregator.build_timeline(session, order_id),
                "build_timeline",
                read_only=True,
            )

        return await self._execute("build_timeline", operation, None, order_id=order_id)

    # ------------------------------------------------------------------
    # Staff actions
    # ------------------------------------------------------------------

    async def handle_driver_action(
        self,
        order_id: int,
        driver_id: int,
        action: str,
        notes: Optional[str] = None,
        photo_url: Optional[str] = None,
    ) -> OperationResult[StatusChangeOutcome]:
        """Apply a driver action such as start_pickup or complete_delivery."""
        return await self._staff_action(
            self.actions.handle_driver_action,
            "handle_driver_action",
            order_id=order_id,
            staff_id=driver_id,
            action=action,
            notes=notes,
            photo_url=photo_url,
        )

    async def handle_facility_action(
        self,
        order_id: int,
        staff_id: int,
        action: str,
        notes: Optional[str] = None,
        driver_id: Optional[int] = None,
    ) -> OperationResult[StatusChangeOutcome]:
        """Apply a facility action such as start_processing."""
        return await self._staff_action(
            self.actions.handle_facility_action,
            "handle_facility_action",
            order_id=order_id,
            staff_id=staff_id,
            action=action,
            notes=notes,
            driver_id=driver_id,
        )

    async def handle_operations_action(
        self,
        order_id: int,
        staff_id: int,
        action: str,
        driver_id: Optional[int] = None,
        estimated_time: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> OperationResult[StatusChangeOutcome]:
        """Apply an operations action such as assign_pickup_driver."""
        return await self._staff_action(
            self.actions.handle_operations_action,
            "handle_operations_action",
            order_id=order_id,
            staff_id=staff_id,
            action=action,
            driver_id=driver_id,
            estimated_time=estimated_time,
            notes=notes,
        )

    async def record_processing_update(
        self,
        order_id: int,
        staff_id: int,
        processing_status: str,
        total_pieces: Optional[int] = None,
        total_weight: Optional[Union[str, Decimal]] = None,
        quality_score: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> OperationResult[OrderProcessing]:
        """Create or update the processing record of an order."""

        async def operation() -> OrderProcessing:
            request = parse_request(
                ProcessingUpdateRequest,
                order_id=order_id,
                staff_id=staff_id,
                processing_status=processing_status,
                total_pieces=total_pieces,
                total_weight=total_weight,
                quality_score=quality_score,
                notes=notes,
            )
            return await self.unit_of_work.run(
                lambda session: self.actions.record_processing_update(session, request),
                "record_processing_update",
            )

        return await self._execute(
            "record_processing_update", operation, staff_id, order_id=order_id
        )

    async def report_issue(
        self,
        order_id: int,
        staff_id: int,
        issue_type: str,
        description: str,
        severity: Optional[str] = None,
    ) -> OperationResult[IssueReport]:
        """Report a processing issue on an order."""

        async def operation() -> IssueReport:
            request = parse_request(
                IssueReportRequest,
                order_id=order_id,
                staff_id=staff_id,
                issue_type=issue_type,
                description=description,
                severity=severity,
            )
            return await self.unit_of_work.run(
                lambda session: self.actions.report_issue(session, request),
                "report_issue",
            )

        return await self._execute("report_issue", operation, staff_id, order_id=order_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _staff_action(
        self,
        handler: Callable[[AsyncSession, StaffActionRequest], Awaitable[StatusChangeOutcome]],
        name: str,
        **data: Any,
    ) -> OperationResult[StatusChangeOutcome]:
        async def operation() -> StatusChangeOutcome:
            request = parse_request(StaffActionRequest, **data)
            outcome = await self.unit_of_work.run(
                lambda session: handler(session, request), name
            )
            await self.dispatcher.dispatch(outcome)
            return outcome

        return await self._execute(
            name,
            operation,
            data.get("staff_id"),
            order_id=data.get("order_id"),
            action=data.get("action"),
        )

    async def _run_payment(
        self,
        ledger_operation: Callable[[AsyncSession], Awaitable[PaymentOutcome]],
        name: str,
    ) -> PaymentOutcome:
        outcome = await self.unit_of_work.run(ledger_operation, name)
        await self.dispatcher.dispatch(outcome.status)
        return outcome

    async def _execute(
        self,
        name: str,
        operation: Callable[[], Awaitable[T]],
        actor_id: Optional[int],
        **context: Any,
    ) -> OperationResult[T]:
        with operation_context(name, actor_id):
            try:
                with log_performance(logger, name, **context):
                    value = await operation()
            except TrackingError as e:
                return OperationResult.failure(e)
        return OperationResult.success(value)
