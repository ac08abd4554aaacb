"""
Wallet collaborator used for payments and refunds in stored balance.

The ledger treats a wallet movement as a sub-operation of its own
transaction: the gateway works in the caller's session, so the debit and the
payment record commit or roll back together.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from order_tracking.core.config import get_settings
from order_tracking.core.errors import InsufficientWalletBalanceError
from order_tracking.core.logging import get_logger
from order_tracking.database.models import (
    Wallet,
    WalletTransaction,
    WalletTransactionType,
)

logger = get_logger(__name__)


class WalletGateway(ABC):
    """Balance-holding service the ledger can debit and credit."""

    @abstractmethod
    async def debit(
        self,
        session: AsyncSession,
        customer_id: int,
        amount: Decimal,
        reference: str,
        description: Optional[str] = None,
    ) -> Decimal:
        """Take money from a customer's wallet and return the new balance.

        Raises:
            InsufficientWalletBalanceError: If the balance does not cover amount
        """

    @abstractmethod
    async def credit(
        self,
        session: AsyncSession,
        customer_id: int,
        amount: Decimal,
        reference: str,
        description: Optional[str] = None,
    ) -> Decimal:
        """Add money to a customer's wallet and return the new balance."""


class SqlWalletGateway(WalletGateway):
    """Wallet stored in the same database as the ledger."""

    async def _get_wallet(
        self, session: AsyncSession, customer_id: int
    ) -> Optional[Wallet]:
        result = await session.execute(
            select(Wallet).where(Wallet.customer_id == customer_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def debit(
        self,
        session: AsyncSession,
        customer_id: int,
        amount: Decimal,
        reference: str,
        description: Optional[str] = None,
    ) -> Decimal:
        wallet = await self._get_wallet(session, customer_id)
        balance = wallet.balance if wallet is not None else Decimal("0.000")

        if wallet is None or balance < amount:
            logger.info(
                "Wallet debit rejected",
                customer_id=customer_id,
                balance=str(balance),
                requested=str(amount),
            )
            raise InsufficientWalletBalanceError(
                f"Insufficient wallet balance: {balance} available, {amount} requested",
                balance=balance,
                requested=amount,
                customer_id=customer_id,
            )

        return await self._move(
            session, wallet, WalletTransactionType.DEBIT, amount, reference, description
        )

    async def credit(
        self,
        session: AsyncSession,
        customer_id: int,
        amount: Decimal,
        reference: str,
        description: Optional[str] = None,
    ) -> Decimal:
        wallet = await self._get_wallet(session, customer_id)
        if wallet is None:
            wallet = Wallet(
                customer_id=customer_id,
                balance=Decimal("0.000"),
                currency=get_settings().currency,
            )
            session.add(wallet)
            await session.flush()

        return await self._move(
            session, wallet, WalletTransactionType.CREDIT, amount, reference, description
        )

    async def _move(
        self,
        session: AsyncSession,
        wallet: Wallet,
        transaction_type: WalletTransactionType,
        amount: Decimal,
        reference: str,
        description: Optional[str],
    ) -> Decimal:
        balance_before = wallet.balance
        if transaction_type == WalletTransactionType.DEBIT:
            balance_after = balance_before - amount
        else:
            balance_after = balance_before + amount

        wallet.balance = balance_after
        session.add(
            WalletTransaction(
                wallet_id=wallet.id,
                transaction_type=transaction_type,
                amount=amount,
                balance_before=balance_before,
                balance_after=balance_after,
                reference=reference,
                description=description,
            )
        )
        await session.flush()

        logger.info(
            "Wallet balance changed",
            wallet_id=wallet.id,
            customer_id=wallet.customer_id,
            transaction_type=transaction_type.value,
            amount=str(amount),
            balance_after=str(balance_after),
        )
        return balance_after
