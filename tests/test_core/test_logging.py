"""
Test suite for structured logging helpers.
"""

import logging
from decimal import Decimal

import pytest
import structlog
from structlog.testing import capture_logs

from order_tracking.core.config import Settings
from order_tracking.core.errors import OverpaymentRejectedError, StoreUnavailableError
from order_tracking.core.logging import (
    actor_id_ctx,
    add_operation_context,
    configure_logging,
    get_logger,
    log_performance,
    operation_context,
    operation_id_ctx,
)


@pytest.fixture
def restore_structlog():
    yield
    structlog.reset_defaults()


# ============================================================================
# Operation Context Tests
# ============================================================================


class TestOperationContext:
    """Test operation correlation context."""

    def test_sets_and_restores(self) -> None:
        assert operation_id_ctx.get() is None

        with operation_context("record_payment", actor_id=7) as operation_id:
            assert operation_id_ctx.get() == operation_id
            assert actor_id_ctx.get() == "7"

        assert operation_id_ctx.get() is None
        assert actor_id_ctx.get() is None

    def test_nested_contexts(self) -> None:
        with operation_context("outer", actor_id=1) as outer:
            with operation_context("inner") as inner:
                assert inner != outer
                assert actor_id_ctx.get() is None
            assert operation_id_ctx.get() == outer
            assert actor_id_ctx.get() == "1"

    def test_processor_adds_context(self) -> None:
        with operation_context("settle_payment", actor_id=3) as operation_id:
            event = add_operation_context(None, "info", {"event": "x"})

        assert event == {
            "event": "x",
            "operation_id": operation_id,
            "operation": "settle_payment",
            "actor_id": "3",
        }

    def test_processor_keeps_explicit_keys(self) -> None:
        with operation_context("settle_payment", actor_id=3):
            event = add_operation_context(None, "info", {"event": "x", "actor_id": "9"})

        assert event["actor_id"] == "9"

    def test_processor_without_context(self) -> None:
        assert add_operation_context(None, "info", {"event": "x"}) == {"event": "x"}


# ============================================================================
# Performance Logging Tests
# ============================================================================


class TestLogPerformance:
    """Test outcome levels of timed operations."""

    def test_success(self) -> None:
        logger = get_logger("test")
        with capture_logs() as logs:
            with log_performance(logger, "build_timeline", order_id=4):
                pass

        completed = [log for log in logs if log["event"] == "Operation completed"]
        assert completed[0]["log_level"] == "info"
        assert completed[0]["order_id"] == 4
        assert "duration_ms" in completed[0]

    def test_rejection_is_warning(self) -> None:
        logger = get_logger("test")
        with capture_logs() as logs:
            with pytest.raises(OverpaymentRejectedError):
                with log_performance(logger, "record_payment"):
                    raise OverpaymentRejectedError(
                        "too much", requested=Decimal("5"), max_allowed=Decimal("1")
                    )

        assert logs[-1]["event"] == "Operation rejected"
        assert logs[-1]["log_level"] == "warning"
        assert logs[-1]["error_type"] == "OverpaymentRejectedError"

    @pytest.mark.parametrize("error", [StoreUnavailableError("down"), KeyError("boom")])
    def test_faults_are_errors(self, error: Exception) -> None:
        logger = get_logger("test")
        with capture_logs() as logs:
            with pytest.raises(type(error)):
                with log_performance(logger, "record_payment"):
                    raise error

        assert logs[-1]["event"] == "Operation failed"
        assert logs[-1]["log_level"] == "error"


class TestConfigureLogging:
    """Test logging configuration per environment."""

    @pytest.mark.parametrize(
        "environment, renderer",
        [
            ("development", structlog.dev.ConsoleRenderer),
            ("production", structlog.processors.JSONRenderer),
        ],
    )
    def test_renderer(self, restore_structlog, environment: str, renderer: type) -> None:
        configure_logging(
            Settings(
                database_url="sqlite+aiosqlite:///orders.db",
                environment=environment,
                log_level="WARNING",
            )
        )

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], renderer)
        assert add_operation_context in processors
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
