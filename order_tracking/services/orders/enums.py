"""Order lifecycle, payment and staff enums with transition tables.

This module defines the closed status types for laundry orders, payment
records, driver assignments, facility processing and issue reports, together
with the directed transition tables and role permissions that the
StatusTransitionValidator consults.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Set


class OrderStatus(str, Enum):
    """Physical order lifecycle from placement to delivery.

    Valid transitions are listed in ORDER_STATUS_TRANSITIONS. The happy path is
    ORDER_PLACED -> CONFIRMED -> PICKUP_ASSIGNED -> PICKUP_IN_PROGRESS ->
    PICKUP_COMPLETED -> RECEIVED_AT_FACILITY -> PROCESSING_STARTED ->
    PROCESSING_COMPLETED -> QUALITY_CHECK -> READY_FOR_DELIVERY ->
    DELIVERY_ASSIGNED -> DELIVERY_IN_PROGRESS -> DELIVERED.
    """

    ORDER_PLACED = "ORDER_PLACED"
    CONFIRMED = "CONFIRMED"
    PICKUP_ASSIGNED = "PICKUP_ASSIGNED"
    PICKUP_IN_PROGRESS = "PICKUP_IN_PROGRESS"
    PICKUP_COMPLETED = "PICKUP_COMPLETED"
    PICKUP_FAILED = "PICKUP_FAILED"
    RECEIVED_AT_FACILITY = "RECEIVED_AT_FACILITY"
    PROCESSING_STARTED = "PROCESSING_STARTED"
    PROCESSING_COMPLETED = "PROCESSING_COMPLETED"
    QUALITY_CHECK = "QUALITY_CHECK"
    READY_FOR_DELIVERY = "READY_FOR_DELIVERY"
    DELIVERY_ASSIGNED = "DELIVERY_ASSIGNED"
    DELIVERY_IN_PROGRESS = "DELIVERY_IN_PROGRESS"
    DELIVERED = "DELIVERED"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Args:
            value: String representation of status, case-insensitive

        Returns:
            OrderStatus enum value

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.strip().upper())
        except (ValueError, AttributeError):
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        """Check if no further transitions are possible."""
        return not ORDER_STATUS_TRANSITIONS.get(self)


class PaymentStatus(str, Enum):
    """Status of a single payment record.

    Valid transitions:
    - PENDING -> PAID, FAILED
    - PAID -> REFUNDED
    - FAILED, REFUNDED -> (terminal)
    """

    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"

    @classmethod
    def from_string(cls, value: str) -> "PaymentStatus":
        """Convert string to PaymentStatus enum.

        Raises:
            ValueError: If value is not a valid payment status
        """
        try:
            return cls(value.strip().upper())
        except (ValueError, AttributeError):
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid payment status: {value}. "
                f"Valid values are: {valid_values}"
            )


class OrderPaymentStatus(str, Enum):
    """Aggregate payment state of an order, derived from its ledger."""

    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    PARTIAL_REFUND = "PARTIAL_REFUND"
    REFUNDED = "REFUNDED"

    @classmethod
    def from_string(cls, value: str) -> "OrderPaymentStatus":
        """Convert string to OrderPaymentStatus enum.

        Raises:
            ValueError: If value is not a valid order payment status
        """
        try:
            return cls(value.strip().upper())
        except (ValueError, AttributeError):
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order payment status: {value}. "
                f"Valid values are: {valid_values}"
            )


class PaymentMethod(str, Enum):
    """Ways a customer can settle an order."""

    CARD = "CARD"
    TAP_PAY = "TAP_PAY"
    BENEFIT_PAY = "BENEFIT_PAY"
    WALLET = "WALLET"
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"

    @classmethod
    def from_string(cls, value: str) -> "PaymentMethod":
        """Convert string to PaymentMethod enum.

        Raises:
            ValueError: If value is not a valid payment method
        """
        try:
            return cls(value.strip().upper())
        except (ValueError, AttributeError):
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid payment method: {value}. "
                f"Valid values are: {valid_values}"
            )


class HistoryAction(str, Enum):
    """Tag of an order history entry."""

    STATUS_CHANGE = "status_change"
    PAYMENT_UPDATE = "payment_update"
    PAYMENT_RECORDED = "payment_recorded"
    PAYMENT_SETTLED = "payment_settled"
    REFUND_PROCESSED = "refund_processed"
    INVOICE_UPDATED = "invoice_updated"
    NOTE_ADDED = "note_added"


class StaffRole(str, Enum):
    """Staff roles allowed to move orders through the lifecycle."""

    SUPER_ADMIN = "SUPER_ADMIN"
    OPERATION_MANAGER = "OPERATION_MANAGER"
    DRIVER = "DRIVER"
    FACILITY_TEAM = "FACILITY_TEAM"

    @classmethod
    def from_string(cls, value: str) -> "StaffRole":
        """Convert string to StaffRole enum.

        Raises:
            ValueError: If value is not a valid role
        """
        try:
            return cls(value.strip().upper())
        except (ValueError, AttributeError):
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid staff role: {value}. Valid values are: {valid_values}"
            )


class AssignmentType(str, Enum):
    """Leg of the trip a driver is assigned to."""

    PICKUP = "pickup"
    DELIVERY = "delivery"


class DriverAssignmentStatus(str, Enum):
    """Progress of a driver assignment."""

    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    RESCHEDULED = "RESCHEDULED"
    FAILED = "FAILED"


class ProcessingStatus(str, Enum):
    """Progress of facility processing for an order."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    QUALITY_CHECK = "QUALITY_CHECK"
    READY_FOR_DELIVERY = "READY_FOR_DELIVERY"
    ISSUE_REPORTED = "ISSUE_REPORTED"

    @classmethod
    def from_string(cls, value: str) -> "ProcessingStatus":
        """Convert string to ProcessingStatus enum.

        Raises:
            ValueError: If value is not a valid processing status
        """
        try:
            return cls(value.strip().upper())
        except (ValueError, AttributeError):
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid processing status: {value}. "
                f"Valid values are: {valid_values}"
            )


class IssueStatus(str, Enum):
    """Handling state of a reported issue."""

    REPORTED = "REPORTED"
    INVESTIGATING = "INVESTIGATING"
    RESOLVED = "RESOLVED"
    ESCALATED = "ESCALATED"


class IssueSeverity(str, Enum):
    """Severity of a reported issue."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# State transition validation rules
ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.ORDER_PLACED: {
        OrderStatus.CONFIRMED,
        OrderStatus.PICKUP_ASSIGNED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.CONFIRMED: {
        OrderStatus.PICKUP_ASSIGNED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PICKUP_ASSIGNED: {
        OrderStatus.PICKUP_IN_PROGRESS,
        OrderStatus.PICKUP_COMPLETED,
        OrderStatus.PICKUP_FAILED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PICKUP_IN_PROGRESS: {
        OrderStatus.PICKUP_COMPLETED,
        OrderStatus.PICKUP_FAILED,
    },
    OrderStatus.PICKUP_COMPLETED: {
        OrderStatus.RECEIVED_AT_FACILITY,
    },
    OrderStatus.PICKUP_FAILED: {
        OrderStatus.PICKUP_ASSIGNED,  # Retry with another driver
        OrderStatus.CANCELLED,
    },
    OrderStatus.RECEIVED_AT_FACILITY: {
        OrderStatus.PROCESSING_STARTED,
    },
    OrderStatus.PROCESSING_STARTED: {
        OrderStatus.PROCESSING_COMPLETED,
        OrderStatus.QUALITY_CHECK,
    },
    OrderStatus.PROCESSING_COMPLETED: {
        OrderStatus.QUALITY_CHECK,
        OrderStatus.READY_FOR_DELIVERY,
    },
    OrderStatus.QUALITY_CHECK: {
        OrderStatus.READY_FOR_DELIVERY,
        OrderStatus.PROCESSING_STARTED,  # Rework needed
    },
    OrderStatus.READY_FOR_DELIVERY: {
        OrderStatus.DELIVERY_ASSIGNED,
    },
    OrderStatus.DELIVERY_ASSIGNED: {
        OrderStatus.DELIVERY_IN_PROGRESS,
        OrderStatus.DELIVERY_FAILED,
    },
    OrderStatus.DELIVERY_IN_PROGRESS: {
        OrderStatus.DELIVERED,
        OrderStatus.DELIVERY_FAILED,
    },
    OrderStatus.DELIVERY_FAILED: {
        OrderStatus.DELIVERY_ASSIGNED,  # Retry delivery
        OrderStatus.CANCELLED,
    },
    OrderStatus.DELIVERED: {
        OrderStatus.REFUNDED,
    },
    OrderStatus.CANCELLED: {
        OrderStatus.REFUNDED,
    },
    OrderStatus.REFUNDED: set(),  # Terminal
}

ORDER_PAYMENT_STATUS_TRANSITIONS: Dict[OrderPaymentStatus, Set[OrderPaymentStatus]] = {
    OrderPaymentStatus.PENDING: {
        OrderPaymentStatus.PAID,
        OrderPaymentStatus.FAILED,
    },
    OrderPaymentStatus.FAILED: {
        OrderPaymentStatus.PENDING,
        OrderPaymentStatus.PAID,
    },
    OrderPaymentStatus.PAID: {
        OrderPaymentStatus.PARTIAL_REFUND,
        OrderPaymentStatus.REFUNDED,
    },
    OrderPaymentStatus.PARTIAL_REFUND: {
        OrderPaymentStatus.PAID,
        OrderPaymentStatus.REFUNDED,
    },
    OrderPaymentStatus.REFUNDED: set(),  # Terminal
}

PAYMENT_RECORD_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
    PaymentStatus.PENDING: {
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
    },
    PaymentStatus.PAID: {
        PaymentStatus.REFUNDED,
    },
    PaymentStatus.FAILED: set(),  # Terminal
    PaymentStatus.REFUNDED: set(),  # Terminal
}

ROLE_STATUS_PERMISSIONS: Dict[StaffRole, FrozenSet[OrderStatus]] = {
    StaffRole.SUPER_ADMIN: frozenset(OrderStatus),
    StaffRole.OPERATION_MANAGER: frozenset(
        status for status in OrderStatus if status != OrderStatus.ORDER_PLACED
    ),
    StaffRole.DRIVER: frozenset({
        OrderStatus.PICKUP_IN_PROGRESS,
        OrderStatus.PICKUP_COMPLETED,
        OrderStatus.PICKUP_FAILED,
        OrderStatus.RECEIVED_AT_FACILITY,
        OrderStatus.DELIVERY_IN_PROGRESS,
        OrderStatus.DELIVERED,
        OrderStatus.DELIVERY_FAILED,
    }),
    StaffRole.FACILITY_TEAM: frozenset({
        OrderStatus.RECEIVED_AT_FACILITY,
        OrderStatus.PROCESSING_STARTED,
        OrderStatus.PROCESSING_COMPLETED,
        OrderStatus.QUALITY_CHECK,
        OrderStatus.READY_FOR_DELIVERY,
        OrderStatus.DELIVERY_ASSIGNED,
    }),
}

# Order statuses that customers are told about
NOTIFIABLE_ORDER_STATUSES: FrozenSet[OrderStatus] = frozenset(
    status
    for status in OrderStatus
    if status not in {
        OrderStatus.PICKUP_ASSIGNED,
        OrderStatus.RECEIVED_AT_FACILITY,
        OrderStatus.QUALITY_CHECK,
        OrderStatus.DELIVERY_ASSIGNED,
    }
)


def is_status_permitted(role: Optional[StaffRole], status: OrderStatus) -> bool:
    """Check if a staff role may move an order into the given status.

    Args:
        role: Acting staff role, None for system-initiated changes
        status: Target order status

    Returns:
        True if the role may apply the status
    """
    if role is None:
        return True
    return status in ROLE_STATUS_PERMISSIONS.get(role, frozenset())

# Orders in these statuses no longer accept new money
CLOSED_ORDER_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.CANCELLED, OrderStatus.REFUNDED}
)
