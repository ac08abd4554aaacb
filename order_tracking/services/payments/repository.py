"""
Payment repository for the append-only payment ledger.

This module implements the PaymentRepository class for inserting payment
records and reading an order's full ledger inside the caller's transaction.
Records are never deleted.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from order_tracking.core.errors import NotFoundError
from order_tracking.core.logging import get_logger
from order_tracking.database.models import PaymentRecord
from order_tracking.services.orders.enums import PaymentMethod, PaymentStatus

logger = get_logger(__name__)


class PaymentRepository:
    """
    Repository for payment records.

    Attributes:
        session: Async database session bound to the caller's transaction
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_payment(
        self,
        order_id: int,
        amount: Decimal,
        currency: str,
        payment_method: PaymentMethod,
        payment_status: PaymentStatus,
        is_refund: bool = False,
        refund_of_id: Optional[int] = None,
        confirmation_id: Optional[str] = None,
        processed_at: Optional[datetime] = None,
        notes: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        created_by: Optional[int] = None,
    ) -> PaymentRecord:
        """
        Insert a payment record.

        Args:
            order_id: Order the money belongs to
            amount: Positive amount
            currency: ISO 4217 currency code
            payment_method: Payment method
            payment_status: Initial status
            is_refund: Whether the row returns money
            refund_of_id: Record reversed by this refund
            confirmation_id: Gateway correlation identifier
            processed_at: Settlement timestamp
            notes: Staff notes
            details: Structured gateway metadata
            created_by: Recording staff member

        Returns:
            The flushed payment record
        """
        payment = PaymentRecord(
            order_id=order_id,
            amount=amount,
            currency=currency,
            payment_method=payment_method,
            payment_status=payment_status,
            is_refund=is_refund,
            refund_of_id=refund_of_id,
            confirmation_id=confirmation_id,
            processed_at=processed_at,
            notes=notes,
            details=details or None,
            created_by=created_by,
        )
        self.session.add(payment)
        await self.session.flush()

        logger.info(
            "Payment record created",
            payment_id=payment.id,
            order_id=order_id,
            amount=str(amount),
            payment_method=payment_method.value,
            payment_status=payment_status.value,
            is_refund=is_refund,
        )
        return payment

    async def get_payment(
        self, payment_id: int, for_update: bool = False
    ) -> PaymentRecord:
        """
        Get a payment record.

        Raises:
            NotFoundError: If the record does not exist
        """
        stmt = select(PaymentRecord).where(PaymentRecord.id == payment_id)
        if for_update:
            stmt = stmt.with_for_update()

        result = await self.session.execute(stmt)
        payment = result.scalar_one_or_none()

        if payment is None:
            logger.info("Payment record not found", payment_id=payment_id)
            raise NotFoundError(
                f"Payment record {payment_id} not found", payment_id=payment_id
            )
        return payment

    async def list_for_order(self, order_id: int) -> Sequence[PaymentRecord]:
        """Get every payment record of an order in insertion order."""
        result = await self.session.execute(
            select(PaymentRecord)
            .where(PaymentRecord.order_id == order_id)
            .order_by(PaymentRecord.id)
        )
        return result.scalars().all()

