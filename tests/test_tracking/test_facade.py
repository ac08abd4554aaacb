"""
Test suite for OrderTrackingFacade results and post-commit notifications.
"""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import ANY, AsyncMock

import pytest
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_tracking.core.config import Settings
from order_tracking.core.errors import (
    ErrorKind,
    InsufficientWalletBalanceError,
    RequestValidationError,
)
from order_tracking.database.connection import UnitOfWork
from order_tracking.schemas.orders import (
    OrderSnapshot,
    StatusChange,
    StatusChangeNotice,
    StatusChangeOutcome,
    StatusChangeRequest,
)
from order_tracking.services.notifications.dispatcher import (
    NotificationDispatcher,
    OrderNotifier,
)
from order_tracking.services.orders.enums import (
    OrderPaymentStatus,
    OrderStatus,
)
from order_tracking.services.orders.repository import OrderRepository
from order_tracking.services.payments.repository import PaymentRepository
from order_tracking.services.payments.wallet import WalletGateway
from order_tracking.services.tracking.facade import OrderTrackingFacade, parse_request


class ExplodingNotifier(OrderNotifier):
    """Notifier whose channel is down."""

    def __init__(self) -> None:
        self.calls = 0

    async def notify_status_change(self, notice: StatusChangeNotice) -> None:
        self.calls += 1
        raise ConnectionError("SMTP unavailable")


def _outcome(*changes: StatusChange, notify: bool = True) -> StatusChangeOutcome:
    return StatusChangeOutcome(
        order=OrderSnapshot(
            id=1,
            order_number="ORD-00001",
            customer_id=500,
            status=OrderStatus.CONFIRMED,
            payment_status=OrderPaymentStatus.PENDING,
            updated_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        ),
        changes=list(changes),
        notify=notify,
    )


# ============================================================================
# Request Parsing Tests
# ============================================================================


class TestParseRequest:
    """Test raw input validation."""

    def test_collects_field_errors(self) -> None:
        with pytest.raises(RequestValidationError) as exc_info:
            parse_request(StatusChangeRequest, order_id=0, new_status="NOPE")

        fields = {error["field"] for error in exc_info.value.context["errors"]}
        assert fields == {"order_id", "new_status"}

    def test_requires_a_change(self) -> None:
        with pytest.raises(RequestValidationError):
            parse_request(StatusChangeRequest, order_id=1)


# ============================================================================
# Result Kind Tests
# ============================================================================


class TestResultKinds:
    """Test every failure comes back as a classified result."""

    async def test_status_change_success_notifies(
        self, facade: OrderTrackingFacade, notifier, create_order
    ) -> None:
        order = await create_order()

        result = await facade.apply_status_change(
            order.id, actor_id=1, new_status="confirmed", role="operation_manager"
        )

        assert result.ok
        assert result.value.order.status == OrderStatus.CONFIRMED
        assert [(n.field, n.new_status) for n in notifier.notices] == [
            ("status", "CONFIRMED")
        ]
        assert notifier.notices[0].order_number == order.order_number

    async def test_validation(self, facade: OrderTrackingFacade, create_order) -> None:
        order = await create_order()

        result = await facade.apply_status_change(order.id, role="janitor", new_status="CONFIRMED")

        assert result.kind == ErrorKind.VALIDATION
        assert not result.retryable

    async def test_not_found(self, facade: OrderTrackingFacade) -> None:
        result = await facade.apply_status_change(999, new_status="CONFIRMED")

        assert result.kind == ErrorKind.NOT_FOUND
        assert result.value is None

    async def test_invalid_transition(
        self, facade: OrderTrackingFacade, notifier, create_order
    ) -> None:
        order = await create_order()

        result = await facade.apply_status_change(order.id, new_status="DELIVERED")

        assert result.kind == ErrorKind.INVALID_TRANSITION
        assert notifier.notices == []

    async def test_overpayment(self, facade: OrderTrackingFacade, create_order) -> None:
        order = await create_order(invoice_total="1.000")

        result = await facade.record_payment(order.id, "1.500", "CASH")

        assert result.kind == ErrorKind.OVERPAYMENT_REJECTED
        assert result.error.to_dict()["context"]["max_allowed"] == "1.000"

    async def test_store_unavailable(
        self, facade: OrderTrackingFacade, engine, create_order
    ) -> None:
        """Test a broken store surfaces as a retryable result."""
        order = await create_order()
        async with engine.begin() as conn:
            await conn.exec_driver_sql("DROP TABLE order_updates")

        result = await facade.apply_status_change(order.id, new_status="CONFIRMED")

        assert result.kind == ErrorKind.STORE_UNAVAILABLE
        assert result.retryable

    @pytest.mark.parametrize(
        "error", [ConnectionRefusedError(111, "Connect call failed"), TimeoutError()]
    )
    async def test_unreachable_store(
        self, settings: Settings, notifier, error: Exception
    ) -> None:
        """Test connection failures from the driver come back as results."""

        def refuse_connection():
            raise error

        facade = OrderTrackingFacade(refuse_connection, settings=settings, notifier=notifier)

        summary = await facade.get_payment_summary(1)
        change = await facade.apply_status_change(1, new_status="CONFIRMED")

        assert summary.kind == ErrorKind.STORE_UNAVAILABLE
        assert summary.retryable
        assert change.kind == ErrorKind.STORE_UNAVAILABLE
        assert notifier.notices == []

    async def test_add_note(self, facade: OrderTrackingFacade, create_order) -> None:
        order = await create_order()

        result = await facade.add_note(order.id, "Call before pickup", staff_id=3)

        assert result.ok
        assert result.value.description == "Call before pickup"

        empty = await facade.add_note(order.id, "")
        assert empty.kind == ErrorKind.VALIDATION


# ============================================================================
# Notification Tests
# ============================================================================


class TestNotifications:
    """Test notifications are sent after commit and never fail the operation."""

    async def test_failing_notifier_does_not_undo_commit(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        unit_of_work: UnitOfWork,
        create_order,
    ) -> None:
        notifier = ExplodingNotifier()
        facade = OrderTrackingFacade(
            session_factory,
            settings=settings,
            notifier=notifier,
            unit_of_work=unit_of_work,
        )
        order = await create_order()

        result = await facade.apply_status_change(order.id, new_status="CONFIRMED")

        assert result.ok
        assert notifier.calls == 1
        stored = await unit_of_work.run(
            lambda session: OrderRepository(session).get_order(order.id)
        )
        assert stored.status == OrderStatus.CONFIRMED

    async def test_payment_status_changes_are_notified(
        self, facade: OrderTrackingFacade, notifier, create_order
    ) -> None:
        order = await create_order(invoice_total="5.000")

        assert (await facade.record_payment(order.id, "5.000", "BENEFIT_PAY")).ok

        assert [(n.field, n.old_status, n.new_status) for n in notifier.notices] == [
            ("payment_status", "PENDING", "PAID")
        ]

    async def test_noop_sends_nothing(
        self, facade: OrderTrackingFacade, notifier, create_order
    ) -> None:
        order = await create_order()

        result = await facade.apply_status_change(order.id, new_status="ORDER_PLACED")

        assert result.ok
        assert not result.value.changed
        assert notifier.notices == []


class TestNotificationDispatcher:
    """Test which changes become customer notices."""

    def test_internal_statuses_filtered(self) -> None:
        outcome = _outcome(
            StatusChange(field="status", old_status="CONFIRMED", new_status="PICKUP_ASSIGNED"),
            StatusChange(field="payment_status", old_status="PENDING", new_status="PAID"),
        )

        notices = NotificationDispatcher.notices_for(outcome)

        assert [(n.field, n.new_status) for n in notices] == [("payment_status", "PAID")]

    def test_silenced_outcome(self) -> None:
        outcome = _outcome(
            StatusChange(field="status", old_status="ORDER_PLACED", new_status="CONFIRMED"),
            notify=False,
        )
        assert NotificationDispatcher.notices_for(outcome) == []

    async def test_dispatch_counts_deliveries(self) -> None:
        notifier = ExplodingNotifier()
        dispatcher = NotificationDispatcher(notifier)
        outcome = _outcome(
            StatusChange(field="status", old_status="ORDER_PLACED", new_status="CONFIRMED"),
            StatusChange(field="payment_status", old_status="PENDING", new_status="FAILED"),
        )

        assert await dispatcher.dispatch(outcome) == 0
        assert notifier.calls == 2


# ============================================================================
# Collaborator Tests
# ============================================================================


@pytest.fixture
def mock_wallet() -> AsyncMock:
    """
    Create mock wallet gateway.

    Returns:
        AsyncMock wallet reporting a 0.000 balance after every call
    """
    wallet = AsyncMock(spec=WalletGateway)
    wallet.debit.return_value = Decimal("0.000")
    wallet.credit.return_value = Decimal("0.000")
    return wallet


@pytest.fixture
def wallet_facade(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    notifier,
    unit_of_work: UnitOfWork,
    mock_wallet: AsyncMock,
) -> OrderTrackingFacade:
    return OrderTrackingFacade(
        session_factory,
        settings=settings,
        notifier=notifier,
        wallet=mock_wallet,
        unit_of_work=unit_of_work,
    )


class TestCollaborators:
    """Test the wallet and notifier collaborators are called as expected."""

    async def test_wallet_payment_debits_customer(
        self, wallet_facade: OrderTrackingFacade, mock_wallet: AsyncMock, create_order
    ) -> None:
        order = await create_order(invoice_total="6.000", customer_id=77)

        result = await wallet_facade.record_payment(order.id, "6.000", "WALLET")

        assert result.ok
        mock_wallet.debit.assert_awaited_once_with(
            ANY,
            77,
            Decimal("6.000"),
            reference=f"order:{order.order_number}:payment",
            description=ANY,
        )
        mock_wallet.credit.assert_not_awaited()

    async def test_card_payment_leaves_wallet_alone(
        self, wallet_facade: OrderTrackingFacade, mock_wallet: AsyncMock, create_order
    ) -> None:
        order = await create_order(invoice_total="6.000")

        assert (await wallet_facade.record_payment(order.id, "6.000", "CARD")).ok

        mock_wallet.debit.assert_not_awaited()

    async def test_wallet_rejection_writes_nothing(
        self,
        wallet_facade: OrderTrackingFacade,
        mock_wallet: AsyncMock,
        unit_of_work: UnitOfWork,
        create_order,
    ) -> None:
        mock_wallet.debit.side_effect = InsufficientWalletBalanceError(
            "Insufficient wallet balance",
            balance=Decimal("1.000"),
            requested=Decimal("6.000"),
        )
        order = await create_order(invoice_total="6.000")

        result = await wallet_facade.record_payment(order.id, "6.000", "WALLET")

        assert result.kind == ErrorKind.VALIDATION
        assert result.error.balance == Decimal("1.000")
        records = await unit_of_work.run(
            lambda session: PaymentRepository(session).list_for_order(order.id)
        )
        assert list(records) == []

    async def test_refund_to_wallet_credits_customer(
        self, wallet_facade: OrderTrackingFacade, mock_wallet: AsyncMock, create_order
    ) -> None:
        order = await create_order(invoice_total="10.000", customer_id=77)
        paid = (await wallet_facade.record_payment(order.id, "10.000", "CARD")).unwrap()

        result = await wallet_facade.record_refund(
            paid.payment.id, "4.000", reason="Stained shirt", refund_to_wallet=True
        )

        assert result.ok
        mock_wallet.credit.assert_awaited_once()
        args = mock_wallet.credit.await_args
        assert args.args[1:] == (77, Decimal("4.000"))
        assert args.kwargs["description"] == "Stained shirt"

    async def test_notifier_receives_notices(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        unit_of_work: UnitOfWork,
        create_order,
    ) -> None:
        mock_notifier = AsyncMock(spec=OrderNotifier)
        facade = OrderTrackingFacade(
            session_factory,
            settings=settings,
            notifier=mock_notifier,
            unit_of_work=unit_of_work,
        )
        order = await create_order()

        assert (await facade.apply_status_change(order.id, new_status="CANCELLED")).ok

        mock_notifier.notify_status_change.assert_awaited_once()
        notice = mock_notifier.notify_status_change.await_args.args[0]
        assert notice.old_status == "ORDER_PLACED"
        assert notice.new_status == "CANCELLED"


class TestFromSettings:
    """Test building a facade straight from configuration."""

    async def test_builds_working_facade(
        self, settings: Settings, engine, notifier, create_order
    ) -> None:
        facade = OrderTrackingFacade.from_settings(settings, notifier=notifier)
        try:
            order = await create_order(invoice_total="3.000")

            summary = await facade.get_payment_summary(order.id)
            missing = await facade.get_payment_summary(999)

            assert summary.value.outstanding_amount == Decimal("3.000")
            assert missing.kind == ErrorKind.NOT_FOUND
        finally:
            structlog.reset_defaults()
