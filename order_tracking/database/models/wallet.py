"""
Customer wallet models used when orders are paid from stored balance.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from order_tracking.database.base import AppendOnlyModel, BaseModel, Money


class WalletTransactionType(str, Enum):
    """Direction of a wallet movement."""

    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class Wallet(BaseModel):
    """Stored balance of a customer."""

    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
        {"comment": "Customer wallet balances"},
    )

    customer_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        unique=True,
    )

    balance: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=Decimal("0.000"),
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="BHD")


class WalletTransaction(AppendOnlyModel):
    """
    One debit or credit of a wallet.

    Attributes:
        wallet_id: Wallet that moved
        transaction_type: DEBIT or CREDIT
        amount: Positive amount moved
        balance_before: Balance before the movement
        balance_after: Balance after the movement
        reference: Payment record reference, e.g. "payment:17"
        description: Human-readable reason
    """

    __tablename__ = "wallet_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_wallet_transactions_amount_positive"),
        {"comment": "Wallet movements"},
    )

    wallet_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("wallets.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    transaction_type: Mapped[WalletTransactionType] = mapped_column(
        SQLEnum(WalletTransactionType, name="wallet_transaction_type"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    balance_before: Mapped[Decimal] = mapped_column(Money, nullable=False)

    balance_after: Mapped[Decimal] = mapped_column(Money, nullable=False)

    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
