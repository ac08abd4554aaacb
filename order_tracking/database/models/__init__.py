"""
Database models package initialization.

Models are imported here so they register with the Base metadata for table
creation and alembic autogeneration.
"""

from order_tracking.database.base import (
    AppendOnlyModel,
    Base,
    BaseModel,
)
from order_tracking.database.models.history import OrderHistoryEntry, OrderUpdate
from order_tracking.database.models.operations import (
    DriverAssignment,
    IssueReport,
    OrderProcessing,
)
from order_tracking.database.models.order import Order
from order_tracking.database.models.payment import PaymentRecord
from order_tracking.database.models.wallet import (
    Wallet,
    WalletTransaction,
    WalletTransactionType,
)

__all__ = [
    "AppendOnlyModel",
    "Base",
    "BaseModel",
    "DriverAssignment",
    "IssueReport",
    "Order",
    "OrderHistoryEntry",
    "OrderProcessing",
    "OrderUpdate",
    "PaymentRecord",
    "Wallet",
    "WalletTransaction",
    "WalletTransactionType",
]
