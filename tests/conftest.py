"""
Pytest configuration and shared test fixtures.

Every test that touches storage gets its own SQLite file database in
tmp_path, created from the ORM metadata, so transactions, row locking and
concurrent writers behave like they do against a real store.
"""

import itertools
from decimal import Decimal
from typing import AsyncGenerator, Awaitable, Callable, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from order_tracking.core.config import Settings
from order_tracking.database.connection import (
    UnitOfWork,
    create_engine,
    create_session_factory,
)
from order_tracking.database.models import Base, Order
from order_tracking.schemas.orders import StatusChangeNotice
from order_tracking.services.notifications.dispatcher import OrderNotifier
from order_tracking.services.orders.enums import OrderPaymentStatus, OrderStatus
from order_tracking.services.orders.repository import OrderRepository
from order_tracking.services.tracking.facade import OrderTrackingFacade


class RecordingNotifier(OrderNotifier):
    """Notifier that keeps every notice it receives."""

    def __init__(self) -> None:
        self.notices: List[StatusChangeNotice] = []

    async def notify_status_change(self, notice: StatusChangeNotice) -> None:
        self.notices.append(notice)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Create settings pointing at a per-test SQLite database file."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        environment="test",
        retry_backoff_base=0.0,
        retry_backoff_max=0.0,
    )


@pytest.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Create the engine and all tables."""
    engine = create_engine(settings=settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> UnitOfWork:
    return UnitOfWork(
        session_factory,
        max_attempts=settings.transaction_max_attempts,
        backoff_base=0.0,
        backoff_max=0.0,
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def facade(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    notifier: RecordingNotifier,
    unit_of_work: UnitOfWork,
) -> OrderTrackingFacade:
    """Create the facade wired to the test database and recording notifier."""
    return OrderTrackingFacade(
        session_factory,
        settings=settings,
        notifier=notifier,
        unit_of_work=unit_of_work,
    )


SeedOrder = Callable[..., Awaitable[Order]]


@pytest.fixture
def create_order(unit_of_work: UnitOfWork) -> SeedOrder:
    """
    Factory that seeds an order directly in storage.

    Example:
        order = await create_order(invoice_total="10.000")
    """
    numbers = itertools.count(1)

    async def _create(
        invoice_total: Optional[str] = None,
        status: OrderStatus = OrderStatus.ORDER_PLACED,
        payment_status: OrderPaymentStatus = OrderPaymentStatus.PENDING,
        minimum_order_applied: bool = False,
        customer_id: int = 500,
    ) -> Order:
        async def seed(session: AsyncSession) -> Order:
            order = await OrderRepository(session).create_order(
                order_number=f"ORD-{next(numbers):05d}",
                customer_id=customer_id,
                invoice_total=Decimal(invoice_total) if invoice_total else None,
                minimum_order_applied=minimum_order_applied,
            )
            order.status = status
            order.payment_status = payment_status
            await session.flush()
            return order

        return await unit_of_work.run(seed, "seed_order")

    return _create
