"""
SQLAlchemy declarative base and common model mixins.

This module provides the SQLAlchemy DeclarativeBase, mixins for integer
identity keys and application-assigned UTC timestamps, portable column types,
and the append-only guard used by audit and ledger tables.
"""

from datetime import datetime, timezone
from typing import Type

from sqlalchemy import JSON, DateTime, Integer, Numeric, event, inspect
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

from order_tracking.core.errors import AuditImmutabilityError
from order_tracking.core.logging import get_logger

logger = get_logger(__name__)

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Bahraini dinar amounts carry three decimals
Money = Numeric(12, 3, asdecimal=True)


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    Normalize a datetime read back from the store to aware UTC.

    SQLite returns naive values for timezone-aware columns; they were written
    as UTC, so the zone is attached rather than converted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all SQLAlchemy models with async support.

    Provides async attribute loading. Rows leave the store as pydantic
    read models, never as raw ORM instances.
    """

    __abstract__ = True


class IdentityMixin:
    """
    Mixin for integer autoincrement primary key.

    Integer keys make insertion order observable, which the audit timeline
    relies on to break timestamp ties.
    """

    @declared_attr
    def id(cls) -> Mapped[int]:
        return mapped_column(
            Integer,
            primary_key=True,
            autoincrement=True,
            comment="Unique identifier for the record",
        )


class CreatedAtMixin:
    """
    Mixin for an application-assigned creation timestamp.

    Timestamps are assigned in Python at microsecond resolution so that
    events written within the same second keep their relative order.
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            default=utcnow,
            index=True,
            comment="Timestamp when record was created",
        )


class TimestampMixin(CreatedAtMixin):
    """Adds an updated_at column maintained on every flush."""

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            default=utcnow,
            onupdate=utcnow,
            comment="Timestamp when record was last updated",
        )


class BaseModel(Base, IdentityMixin, TimestampMixin):
    """
    Base model with integer primary key and created/updated timestamps.

    Example:
        class Wallet(BaseModel):
            __tablename__ = "wallets"

            customer_id: Mapped[int] = mapped_column(Integer, unique=True)
    """

    __abstract__ = True


class AppendOnlyModel(Base, IdentityMixin, CreatedAtMixin):
    """
    Base model for rows that are written once and never changed.

    Updates and deletes of flushed instances raise AuditImmutabilityError.
    """

    __abstract__ = True


def _reject_update(mapper, connection, target) -> None:
    logger.error(
        "Attempted to modify append-only record",
        model=type(target).__name__,
        record_id=getattr(target, "id", None),
    )
    raise AuditImmutabilityError(
        f"{type(target).__name__} records are append-only",
        record_id=getattr(target, "id", None),
    )


def _reject_delete(mapper, connection, target) -> None:
    logger.error(
        "Attempted to delete protected record",
        model=type(target).__name__,
        record_id=getattr(target, "id", None),
    )
    raise AuditImmutabilityError(
        f"{type(target).__name__} records can never be deleted",
        record_id=getattr(target, "id", None),
    )


event.listen(AppendOnlyModel, "before_update", _reject_update, propagate=True)
event.listen(AppendOnlyModel, "before_delete", _reject_delete, propagate=True)


def protect_columns(model: Type[Base], *attribute_names: str) -> None:
    """
    Forbid deleting rows of a model and changing the given attributes.

    Args:
        model: Mapped class to protect
        *attribute_names: Attributes that are immutable once flushed
    """

    def _check_update(mapper, connection, target) -> None:
        state = inspect(target)
        changed = [
            name
            for name in attribute_names
            if state.attrs[name].history.has_changes()
        ]
        if changed:
            logger.error(
                "Attempted to modify immutable columns",
                model=type(target).__name__,
                record_id=getattr(target, "id", None),
                columns=changed,
            )
            raise AuditImmutabilityError(
                f"{type(target).__name__} columns {', '.join(changed)} are immutable",
                record_id=getattr(target, "id", None),
                columns=changed,
            )

    event.listen(model, "before_update", _check_update)
    event.listen(model, "before_delete", _reject_delete)
