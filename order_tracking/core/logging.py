"""
Structured logging for the order tracking core.

Every facade call runs inside an operation context that tags its log lines
with an operation id, the operation name and the acting staff member, so the
retries, ledger writes and notifications of one call can be read together.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor

from order_tracking.core.config import Settings, get_settings

operation_id_ctx: ContextVar[Optional[str]] = ContextVar("operation_id", default=None)
operation_name_ctx: ContextVar[Optional[str]] = ContextVar("operation", default=None)
actor_id_ctx: ContextVar[Optional[str]] = ContextVar("actor_id", default=None)

SLOW_OPERATION_MS = 500


def add_operation_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Add the current operation id, name and actor to a log event.

    Keys already present on the event win over the context values.
    """
    for key, var in (
        ("operation_id", operation_id_ctx),
        ("operation", operation_name_ctx),
        ("actor_id", actor_id_ctx),
    ):
        value = var.get()
        if value is not None:
            event_dict.setdefault(key, value)
    return event_dict


def add_timestamp(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog and the standard library root logger.

    Development gets a colored console renderer; every other environment
    gets one JSON object per line on stdout.

    Args:
        settings: Application settings, defaults to get_settings()
    """
    settings = settings or get_settings()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_timestamp,
        add_operation_context,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.is_development:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )

    # SQL echo and driver chatter stay out of the ledger logs
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, typically for __name__."""
    return structlog.get_logger(name)


@contextmanager
def operation_context(
    operation: str, actor_id: Optional[Any] = None
) -> Iterator[str]:
    """
    Tag every log line inside the block with a fresh operation id.

    The previous context is restored on exit, so nested or concurrent calls
    never see each other's ids.

    Args:
        operation: Facade operation name
        actor_id: Staff identifier, or None for system-initiated work

    Yields:
        The generated operation id
    """
    operation_id = uuid4().hex
    tokens = (
        operation_id_ctx.set(operation_id),
        operation_name_ctx.set(operation),
        actor_id_ctx.set(str(actor_id) if actor_id is not None else None),
    )
    try:
        yield operation_id
    finally:
        actor_id_ctx.reset(tokens[2])
        operation_name_ctx.reset(tokens[1])
        operation_id_ctx.reset(tokens[0])


class PerformanceLogger:
    """
    Context manager timing one facade operation.

    Rejections (errors whose ``is_fault`` is False, such as an overpayment
    or an invalid transition) are logged at warning level. Store failures
    and unexpected exceptions are logged at error level.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        slow_threshold_ms: float = SLOW_OPERATION_MS,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.slow_threshold_ms = slow_threshold_ms
        self.context = context
        self.start_time: Optional[float] = None

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        self.logger.debug("Operation started", operation=self.operation, **self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        duration_ms = round((time.perf_counter() - self.start_time) * 1000, 2)

        if exc_type is None:
            log_method = (
                self.logger.warning
                if duration_ms > self.slow_threshold_ms
                else self.logger.info
            )
            log_method(
                "Operation completed",
                operation=self.operation,
                duration_ms=duration_ms,
                **self.context,
            )
            return

        is_fault = getattr(exc_val, "is_fault", True)
        log_method = self.logger.error if is_fault else self.logger.warning
        log_method(
            "Operation failed" if is_fault else "Operation rejected",
            operation=self.operation,
            duration_ms=duration_ms,
            error=str(exc_val),
            error_type=exc_type.__name__,
            **self.context,
        )


def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    **context: Any,
) -> PerformanceLogger:
    """
    Time a block and log its outcome.

    Example:
        >>> with log_performance(logger, "record_payment", order_id=42):
        ...     await ledger.record_payment(session, 42, amount, method)
    """
    return PerformanceLogger(logger, operation, **context)
