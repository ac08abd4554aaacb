"""
Customer notifications for committed order status changes.

The dispatcher runs after the transaction commits. Delivery is best-effort:
a failing notifier is logged and never undoes or fails the status change.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from order_tracking.core.logging import get_logger
from order_tracking.schemas.orders import StatusChangeNotice, StatusChangeOutcome
from order_tracking.services.orders.enums import (
    NOTIFIABLE_ORDER_STATUSES,
    OrderStatus,
)

logger = get_logger(__name__)


class OrderNotifier(ABC):
    """Channel that tells customers about their orders."""

    @abstractmethod
    async def notify_status_change(self, notice: StatusChangeNotice) -> None:
        """Deliver one status change notice."""


class LoggingNotifier(OrderNotifier):
    """Notifier that only records notices in the log."""

    async def notify_status_change(self, notice: StatusChangeNotice) -> None:
        logger.info(
            "Customer notification",
            order_id=notice.order_id,
            order_number=notice.order_number,
            customer_id=notice.customer_id,
            field=notice.field,
            old_status=notice.old_status,
            new_status=notice.new_status,
        )


class NotificationDispatcher:
    """
    Turns committed status changes into notices for the customer.

    Order status changes are forwarded only for customer-facing statuses;
    every payment status change is forwarded.

    Attributes:
        notifier: Delivery channel
    """

    def __init__(self, notifier: Optional[OrderNotifier] = None):
        self.notifier = notifier or LoggingNotifier()

    @staticmethod
    def notices_for(outcome: StatusChangeOutcome) -> List[StatusChangeNotice]:
        """Select the changes of an outcome the customer should hear about."""
        if not outcome.notify:
            return []

        notices = []
        for change in outcome.changes:
            if (
                change.field == "status"
                and OrderStatus(change.new_status) not in NOTIFIABLE_ORDER_STATUSES
            ):
                continue
            notices.append(
                StatusChangeNotice(
                    order_id=outcome.order.id,
                    order_number=outcome.order.order_number,
                    customer_id=outcome.order.customer_id,
                    field=change.field,
                    old_status=change.old_status,
                    new_status=change.new_status,
                )
            )
        return notices

    async def dispatch(self, outcome: StatusChangeOutcome) -> int:
        """
        Send notices for a committed outcome.

        Returns:
            Number of notices delivered successfully
        """
        delivered = 0
        for notice in self.notices_for(outcome):
            try:
                await self.notifier.notify_status_change(notice)
                delivered += 1
            except Exception as e:
                logger.error(
                    "Failed to send status notification",
                    order_id=notice.order_id,
                    field=notice.field,
                    new_status=notice.new_status,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return delivered
