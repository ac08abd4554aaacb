"""
Payment ledger enforcing the overpayment invariant.

This module implements the PaymentLedger class: appending payments, gateway
settlements, refunds and invoice changes to an order's ledger, computing the
PaymentSummary from the records, and deriving the aggregate order payment
status. Every write locks the order row and re-reads the ledger inside the
caller's transaction, so concurrent writers cannot both pass the guard.
"""

from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from order_tracking.core.config import Settings, get_settings
from order_tracking.core.errors import (
    InvoiceNotFinalizedError,
    OverpaymentRejectedError,
    RequestValidationError,
)
from order_tracking.core.logging import get_logger
from order_tracking.database.base import utcnow
from order_tracking.database.models import Order, PaymentRecord
from order_tracking.schemas.orders import StatusChange
from order_tracking.schemas.payments import (
    AMOUNT_QUANTUM,
    PaymentOutcome,
    PaymentRecordView,
    PaymentSummary,
)
from order_tracking.schemas.timeline import (
    HistoryDetails,
    InvoiceSnapshot,
    PaymentSnapshot,
)
from order_tracking.services.orders.coordinator import OrderStatusCoordinator
from order_tracking.services.orders.enums import (
    CLOSED_ORDER_STATUSES,
    HistoryAction,
    OrderPaymentStatus,
    PaymentMethod,
    PaymentStatus,
)
from order_tracking.services.orders.repository import OrderRepository
from order_tracking.services.payments.repository import PaymentRepository
from order_tracking.services.payments.wallet import SqlWalletGateway, WalletGateway

logger = get_logger(__name__)

ZERO = Decimal("0.000")


def _total(records: Sequence[PaymentRecord]) -> Decimal:
    return sum((r.amount for r in records), ZERO).quantize(AMOUNT_QUANTUM)


def _snapshot(payment: PaymentRecord) -> PaymentSnapshot:
    return PaymentSnapshot(
        payment_id=payment.id,
        amount=payment.amount,
        currency=payment.currency,
        method=payment.payment_method,
        status=payment.payment_status,
        is_refund=payment.is_refund,
        refund_of_id=payment.refund_of_id,
        confirmation_id=payment.confirmation_id,
    )


class PaymentLedger:
    """
    Append-only payment ledger for orders.

    Net collected money never exceeds the order's effective invoice total.
    Sums are computed in Python over the fetched records so the result does
    not depend on how the store represents numerics.

    Attributes:
        coordinator: Writer of the derived aggregate payment status
        wallet: Wallet collaborator for WALLET payments and wallet refunds
        settings: Currency and minimum order fee
    """

    def __init__(
        self,
        coordinator: Optional[OrderStatusCoordinator] = None,
        wallet: Optional[WalletGateway] = None,
        settings: Optional[Settings] = None,
    ):
        self.coordinator = coordinator or OrderStatusCoordinator()
        self.wallet = wallet or SqlWalletGateway()
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def summarize(
        self, order: Order, records: Sequence[PaymentRecord]
    ) -> PaymentSummary:
        """
        Compute ledger totals for an order from its records.

        Args:
            order: Order the records belong to
            records: Every payment record of the order

        Returns:
            Fresh PaymentSummary
        """
        charges = [r for r in records if not r.is_refund]
        refunds = [r for r in records if r.is_refund]

        gross_paid = _total(
            [
                r
                for r in charges
                if r.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED)
            ]
        )
        # Gateway reversals refund the whole record without a refund row
        total_refunded = _total(refunds) + _total(
            [r for r in charges if r.payment_status == PaymentStatus.REFUNDED]
        )
        total_paid = gross_paid - total_refunded
        total_pending = _total(
            [r for r in charges if r.payment_status == PaymentStatus.PENDING]
        )
        total_failed = _total(
            [r for r in charges if r.payment_status == PaymentStatus.FAILED]
        )

        invoice_total = order.effective_total(self.settings.minimum_order_fee)
        # Pending money does not reduce what is owed until it settles
        outstanding = invoice_total - total_paid if invoice_total is not None else None

        return PaymentSummary(
            order_id=order.id,
            currency=self.settings.currency,
            invoice_total=invoice_total,
            gross_paid=gross_paid,
            total_refunded=total_refunded,
            total_paid=total_paid,
            total_pending=total_pending,
            total_failed=total_failed,
            outstanding_amount=outstanding,
            available_for_refund=max(total_paid, ZERO),
            payment_records_count=len(records),
        )

    @staticmethod
    def derive_payment_status(
        summary: PaymentSummary, records: Sequence[PaymentRecord]
    ) -> OrderPaymentStatus:
        """
        Derive the aggregate payment status of an order.

        A partially paid order stays PENDING, and so does an order whose
        total is not yet known.
        """
        if summary.invoice_total is None:
            return OrderPaymentStatus.PENDING
        if summary.total_paid >= summary.invoice_total:
            return OrderPaymentStatus.PAID
        if summary.total_refunded > 0:
            if summary.total_paid <= 0:
                return OrderPaymentStatus.REFUNDED
            return OrderPaymentStatus.PARTIAL_REFUND
        if records and all(
            r.payment_status == PaymentStatus.FAILED for r in records
        ):
            return OrderPaymentStatus.FAILED
        return OrderPaymentStatus.PENDING

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_payment_summary(
        self, session: AsyncSession, order_id: int
    ) -> PaymentSummary:
        """
        Compute the payment summary of an order.

        Raises:
            NotFoundError: If the order does not exist
        """
        order = await OrderRepository(session).get_order(order_id)
        records = await PaymentRepository(session).list_for_order(order_id)
        return self.summarize(order, records)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def record_payment(
        self,
        session: AsyncSession,
        order_id: int,
        amount: Decimal,
        method: PaymentMethod,
        status: PaymentStatus = PaymentStatus.PAID,
        notes: Optional[str] = None,
        confirmation_id: Optional[str] = None,
        currency: Optional[str] = None,
        actor_id: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> PaymentOutcome:
        """
        Append a payment to an order's ledger.

        Args:
            session: Session bound to the caller's transaction
            order_id: Order being paid
            amount: Validated positive amount
            method: Payment method
            status: Initial record status (PENDING, PAID or FAILED)
            notes: Staff notes
            confirmation_id: Gateway correlation identifier
            currency: Currency code, must match the ledger currency
            actor_id: Recording staff member, None for gateway webhooks
            details: Gateway metadata

        Returns:
            The new record with fresh totals and any status changes

        Raises:
            NotFoundError: If the order does not exist
            RequestValidationError: If the order is closed or the currency differs
            InvoiceNotFinalizedError: If the order's total is not yet known
            OverpaymentRejectedError: If the amount exceeds what is still owed
            InsufficientWalletBalanceError: If a wallet payment is not covered
        """
        if status == PaymentStatus.REFUNDED:
            raise RequestValidationError(
                "Refunds must be recorded against an existing payment",
                order_id=order_id,
            )
        if currency is not None and currency.upper() != self.settings.currency:
            raise RequestValidationError(
                f"Currency {currency} does not match ledger currency "
                f"{self.settings.currency}",
                order_id=order_id,
                currency=currency,
            )

        orders = OrderRepository(session)
        payments = PaymentRepository(session)

        order = await orders.get_order(order_id, for_update=True)
        if order.status in CLOSED_ORDER_STATUSES:
            raise RequestValidationError(
                f"Order {order_id} is {order.status.value} and accepts no payments",
                order_id=order_id,
                order_status=order.status.value,
            )

        records = await payments.list_for_order(order_id)
        summary = self.summarize(order, records)

        if status != PaymentStatus.FAILED:
            self._check_overpayment(summary, amount, status)

        if method == PaymentMethod.WALLET and status == PaymentStatus.PAID:
            await self.wallet.debit(
                session,
                order.customer_id,
                amount,
                reference=f"order:{order.order_number}:payment",
                description=f"Payment for order {order.order_number}",
            )

        payment = await payments.create_payment(
            order_id=order_id,
            amount=amount,
            currency=self.settings.currency,
            payment_method=method,
            payment_status=status,
            confirmation_id=confirmation_id,
            processed_at=utcnow() if status != PaymentStatus.PENDING else None,
            notes=notes,
            details=details,
            created_by=actor_id,
        )
        order.payment_method = method

        await orders.add_history(
            order_id=order_id,
            action=HistoryAction.PAYMENT_RECORDED,
            description=(
                f"Payment of {amount} {payment.currency} recorded via "
                f"{method.value} ({status.value})"
            ),
            staff_id=actor_id,
            new_value=_snapshot(payment),
            details=HistoryDetails(notes=notes) if notes else None,
        )

        return await self._finish(
            session, order, payment, "Payment recorded", actor_id
        )

    async def settle_payment(
        self,
        session: AsyncSession,
        payment_id: int,
        new_status: PaymentStatus,
        confirmation_id: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> PaymentOutcome:
        """
        Apply a gateway settlement or reversal to an existing record.

        PENDING records settle to PAID or FAILED; PAID records can be reversed
        to REFUNDED as a whole when no partial refund exists against them.
        Settling to the current status is a no-op.

        Raises:
            NotFoundError: If the record does not exist
            InvalidTransitionError: If the record status edge is not allowed
            OverpaymentRejectedError: If settling would exceed the invoice total
            RequestValidationError: If the record is a refund or already refunded in part
        """
        payments = PaymentRepository(session)
        orders = OrderRepository(session)

        payment = await payments.get_payment(payment_id)
        order = await orders.get_order(payment.order_id, for_update=True)
        await session.refresh(payment)

        if payment.is_refund:
            raise RequestValidationError(
                "Refund rows cannot be settled",
                payment_id=payment_id,
            )
        if new_status == payment.payment_status:
            logger.debug(
                "Settlement is a no-op",
                payment_id=payment_id,
                status=new_status.value,
            )
            return await self._finish(session, order, payment, None, actor_id)

        self.coordinator.validator.validate_record(payment.payment_status, new_status)

        records = await payments.list_for_order(order.id)
        summary = self.summarize(order, records)

        if new_status == PaymentStatus.PAID:
            if summary.invoice_total is None:
                raise InvoiceNotFinalizedError(
                    f"Order {order.id} has no invoice total yet",
                    order_id=order.id,
                )
            max_allowed = max(summary.invoice_total - summary.total_paid, ZERO)
            if payment.amount > max_allowed:
                self._reject(payment.amount, max_allowed, summary)
        elif new_status == PaymentStatus.REFUNDED:
            if any(r.refund_of_id == payment.id for r in records):
                raise RequestValidationError(
                    f"Payment {payment_id} already has partial refunds",
                    payment_id=payment_id,
                )

        if payment.payment_method == PaymentMethod.WALLET:
            reference = f"order:{order.order_number}:payment:{payment.id}"
            if new_status == PaymentStatus.PAID:
                await self.wallet.debit(
                    session, order.customer_id, payment.amount, reference
                )
            elif new_status == PaymentStatus.REFUNDED:
                await self.wallet.credit(
                    session, order.customer_id, payment.amount, reference
                )

        before = _snapshot(payment)
        payment.payment_status = new_status
        payment.processed_at = utcnow()
        if confirmation_id:
            payment.confirmation_id = confirmation_id
        await session.flush()

        await orders.add_history(
            order_id=order.id,
            action=HistoryAction.PAYMENT_SETTLED,
            description=(
                f"Payment {payment.id} changed from {before.status.value} "
                f"to {new_status.value}"
            ),
            staff_id=actor_id,
            old_value=before,
            new_value=_snapshot(payment),
        )
        logger.info(
            "Payment settled",
            payment_id=payment.id,
            order_id=order.id,
            from_status=before.status.value,
            to_status=new_status.value,
        )

        return await self._finish(
            session, order, payment, "Payment settled", actor_id
        )

    async def record_refund(
        self,
        session: AsyncSession,
        payment_id: int,
        amount: Decimal,
        reason: Optional[str] = None,
        actor_id: Optional[int] = None,
        refund_to_wallet: bool = False,
    ) -> PaymentOutcome:
        """
        Return money from a PAID record as a new refund row.

        Args:
            session: Session bound to the caller's transaction
            payment_id: PAID record being refunded
            amount: Validated positive refund amount
            reason: Why the money is returned
            actor_id: Staff member issuing the refund
            refund_to_wallet: Credit the customer's wallet with the amount

        Returns:
            The refund row with fresh totals and any status changes

        Raises:
            NotFoundError: If the original record does not exist
            RequestValidationError: If the original is not refundable or the
                amount exceeds what remains refundable on it
        """
        payments = PaymentRepository(session)
        orders = OrderRepository(session)

        original = await payments.get_payment(payment_id)
        order = await orders.get_order(original.order_id, for_update=True)
        await session.refresh(original)

        if original.is_refund or original.payment_status != PaymentStatus.PAID:
            raise RequestValidationError(
                f"Payment {payment_id} is not a settled payment and cannot be refunded",
                payment_id=payment_id,
                payment_status=original.payment_status.value,
            )

        records = await payments.list_for_order(order.id)
        already_refunded = _total([r for r in records if r.refund_of_id == original.id])
        refundable = original.amount - already_refunded
        if amount > refundable:
            logger.info(
                "Refund rejected",
                payment_id=payment_id,
                requested=str(amount),
                refundable=str(refundable),
            )
            raise RequestValidationError(
                f"Refund of {amount} exceeds refundable amount {refundable}",
                payment_id=payment_id,
                requested=amount,
                refundable=refundable,
            )

        if refund_to_wallet:
            await self.wallet.credit(
                session,
                order.customer_id,
                amount,
                reference=f"order:{order.order_number}:refund:{original.id}",
                description=(reason or f"Refund for order {order.order_number}")[:255],
            )

        refund = await payments.create_payment(
            order_id=order.id,
            amount=amount,
            currency=original.currency,
            payment_method=(
                PaymentMethod.WALLET if refund_to_wallet else original.payment_method
            ),
            payment_status=PaymentStatus.REFUNDED,
            is_refund=True,
            refund_of_id=original.id,
            processed_at=utcnow(),
            notes=reason,
            created_by=actor_id,
        )

        await orders.add_history(
            order_id=order.id,
            action=HistoryAction.REFUND_PROCESSED,
            description=(
                f"Refund of {amount} {refund.currency} issued for payment {original.id}"
            ),
            staff_id=actor_id,
            new_value=_snapshot(refund),
            details=HistoryDetails(reason=reason) if reason else None,
        )

        return await self._finish(session, order, refund, "Refund processed", actor_id)

    async def set_invoice_total(
        self,
        session: AsyncSession,
        order_id: int,
        invoice_total: Decimal,
        minimum_order_applied: bool = False,
        actor_id: Optional[int] = None,
    ) -> PaymentOutcome:
        """
        Set the amount an order owes and re-derive its payment status.

        Raises:
            NotFoundError: If the order does not exist
            RequestValidationError: If the total is below the net amount collected
        """
        orders = OrderRepository(session)
        order = await orders.get_order(order_id, for_update=True)
        records = await PaymentRepository(session).list_for_order(order_id)
        summary = self.summarize(order, records)

        if invoice_total < summary.total_paid:
            raise RequestValidationError(
                f"Invoice total {invoice_total} is below the {summary.total_paid} "
                "already collected",
                order_id=order_id,
                invoice_total=invoice_total,
                total_paid=summary.total_paid,
            )

        unchanged = (
            order.invoice_total == invoice_total
            and order.minimum_order_applied == minimum_order_applied
        )
        if not unchanged:
            before = InvoiceSnapshot(
                invoice_total=order.invoice_total,
                minimum_order_applied=order.minimum_order_applied,
            )
            order.invoice_total = invoice_total
            order.minimum_order_applied = minimum_order_applied
            await session.flush()

            await orders.add_history(
                order_id=order_id,
                action=HistoryAction.INVOICE_UPDATED,
                description=f"Invoice total set to {invoice_total}",
                staff_id=actor_id,
                old_value=before,
                new_value=InvoiceSnapshot(
                    invoice_total=invoice_total,
                    minimum_order_applied=minimum_order_applied,
                ),
            )
            logger.info(
                "Invoice total updated",
                order_id=order_id,
                old_total=str(before.invoice_total),
                new_total=str(invoice_total),
            )

        return await self._finish(
            session, order, None, "Invoice total updated", actor_id
        )

    async def recalculate_order_payment_status(
        self,
        session: AsyncSession,
        order: Order,
        reason: str = "Payment status recalculated",
        actor_id: Optional[int] = None,
    ) -> List[StatusChange]:
        """
        Derive the aggregate payment status from the ledger and persist it.

        The order must already be locked by the caller's transaction.

        Returns:
            Status changes applied, empty when the status was already current
        """
        records = await PaymentRepository(session).list_for_order(order.id)
        derived = self.derive_payment_status(self.summarize(order, records), records)
        return await self.coordinator.apply_derived_payment_status(
            session, order, derived, reason=reason, actor_id=actor_id
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_overpayment(
        self, summary: PaymentSummary, amount: Decimal, status: PaymentStatus
    ) -> None:
        if summary.invoice_total is None:
            raise InvoiceNotFinalizedError(
                f"Order {summary.order_id} has no invoice total yet",
                order_id=summary.order_id,
            )

        max_allowed = summary.max_new_payment
        if status == PaymentStatus.PAID:
            max_allowed = min(max_allowed, summary.invoice_total - summary.total_paid)
        max_allowed = max(max_allowed, ZERO)

        if amount > max_allowed:
            self._reject(amount, max_allowed, summary)

    @staticmethod
    def _reject(
        amount: Decimal, max_allowed: Decimal, summary: PaymentSummary
    ) -> None:
        logger.info(
            "Overpayment rejected",
            order_id=summary.order_id,
            requested=str(amount),
            max_allowed=str(max_allowed),
            total_paid=str(summary.total_paid),
            total_pending=str(summary.total_pending),
        )
        raise OverpaymentRejectedError(
            f"Payment of {amount} exceeds the maximum allowed {max_allowed}",
            requested=amount,
            max_allowed=max_allowed,
            outstanding=summary.outstanding_amount,
            order_id=summary.order_id,
        )

    async def _finish(
        self,
        session: AsyncSession,
        order: Order,
        payment: Optional[PaymentRecord],
        reason: Optional[str],
        actor_id: Optional[int],
    ) -> PaymentOutcome:
        changes: List[StatusChange] = []
        if reason is not None:
            changes = await self.recalculate_order_payment_status(
                session, order, reason=reason, actor_id=actor_id
            )
        records = await PaymentRepository(session).list_for_order(order.id)

        return PaymentOutcome(
            payment=PaymentRecordView.model_validate(payment) if payment else None,
            summary=self.summarize(order, records),
            status=self.coordinator.outcome(order, changes),
        )
