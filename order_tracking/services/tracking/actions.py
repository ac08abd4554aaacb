"""
Driver, facility and operations staff actions.

Each named action maps to a target order status and an operational side
effect on driver assignments or processing records. Status changes go
through the coordinator with the acting staff role, so both the transition
table and the role permissions apply.
"""

from typing import Dict, NamedTuple, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from order_tracking.core.errors import RequestValidationError
from order_tracking.core.logging import get_logger
from order_tracking.database.models import IssueReport, OrderProcessing
from order_tracking.schemas.orders import (
    IssueReportRequest,
    ProcessingUpdateRequest,
    StaffActionRequest,
    StatusChangeOutcome,
)
from order_tracking.services.orders.coordinator import OrderStatusCoordinator
from order_tracking.services.orders.enums import (
    AssignmentType,
    DriverAssignmentStatus,
    OrderStatus,
    ProcessingStatus,
    StaffRole,
)
from order_tracking.services.orders.repository import OrderRepository
from order_tracking.services.tracking.repository import OperationsRepository

logger = get_logger(__name__)


class StaffAction(NamedTuple):
    """What a named staff action does to an order."""

    status: Optional[OrderStatus]
    assignment_type: Optional[AssignmentType] = None
    assignment_status: Optional[DriverAssignmentStatus] = None
    processing_status: Optional[ProcessingStatus] = None
    note: Optional[str] = None
    notify: bool = True


DRIVER_ACTIONS: Dict[str, StaffAction] = {
    "start_pickup": StaffAction(
        OrderStatus.PICKUP_IN_PROGRESS,
        AssignmentType.PICKUP,
        DriverAssignmentStatus.IN_PROGRESS,
    ),
    # The driver still holds the items; drop_off closes the pickup assignment
    "complete_pickup": StaffAction(
        OrderStatus.PICKUP_COMPLETED,
        AssignmentType.PICKUP,
        DriverAssignmentStatus.IN_PROGRESS,
    ),
    "fail_pickup": StaffAction(
        OrderStatus.PICKUP_FAILED,
        AssignmentType.PICKUP,
        DriverAssignmentStatus.FAILED,
    ),
    "drop_off": StaffAction(
        OrderStatus.RECEIVED_AT_FACILITY,
        AssignmentType.PICKUP,
        DriverAssignmentStatus.COMPLETED,
    ),
    "start_delivery": StaffAction(
        OrderStatus.DELIVERY_IN_PROGRESS,
        AssignmentType.DELIVERY,
        DriverAssignmentStatus.IN_PROGRESS,
    ),
    "complete_delivery": StaffAction(
        OrderStatus.DELIVERED,
        AssignmentType.DELIVERY,
        DriverAssignmentStatus.COMPLETED,
    ),
    "fail_delivery": StaffAction(
        OrderStatus.DELIVERY_FAILED,
        AssignmentType.DELIVERY,
        DriverAssignmentStatus.FAILED,
    ),
}

FACILITY_ACTIONS: Dict[str, StaffAction] = {
    "receive_order": StaffAction(
        OrderStatus.RECEIVED_AT_FACILITY,
        processing_status=ProcessingStatus.PENDING,
    ),
    "start_processing": StaffAction(
        OrderStatus.PROCESSING_STARTED,
        processing_status=ProcessingStatus.IN_PROGRESS,
    ),
    "complete_processing": StaffAction(
        OrderStatus.PROCESSING_COMPLETED,
        processing_status=ProcessingStatus.COMPLETED,
        note="Processing completed",
    ),
    "assign_delivery_driver": StaffAction(
        OrderStatus.DELIVERY_ASSIGNED,
        assignment_type=AssignmentType.DELIVERY,
        notify=False,
    ),
    "generate_invoice": StaffAction(None, note="Invoice generated"),
}

OPERATIONS_ACTIONS: Dict[str, StaffAction] = {
    "confirm_order": StaffAction(OrderStatus.CONFIRMED),
    "assign_pickup_driver": StaffAction(
        OrderStatus.PICKUP_ASSIGNED,
        assignment_type=AssignmentType.PICKUP,
    ),
    "assign_delivery_driver": StaffAction(
        OrderStatus.DELIVERY_ASSIGNED,
        assignment_type=AssignmentType.DELIVERY,
    ),
}


def _lookup(actions: Dict[str, StaffAction], name: str, role: StaffRole) -> StaffAction:
    action = actions.get(name)
    if action is None:
        raise RequestValidationError(
            f"Unknown {role.value.lower()} action: {name}",
            action=name,
            valid_actions=sorted(actions),
        )
    return action


class StaffActionHandler:
    """
    Applies staff actions to orders inside the caller's transaction.

    Attributes:
        coordinator: Status writer shared with the facade
    """

    def __init__(self, coordinator: Optional[OrderStatusCoordinator] = None):
        self.coordinator = coordinator or OrderStatusCoordinator()

    async def handle_driver_action(
        self, session: AsyncSession, request: StaffActionRequest
    ) -> StatusChangeOutcome:
        """
        Apply a driver action to the driver's own active assignment.

        Raises:
            RequestValidationError: If the action is unknown or the driver
                has no active assignment of the matching type
            InvalidTransitionError: If the order cannot take the new status
        """
        action = _lookup(DRIVER_ACTIONS, request.action, StaffRole.DRIVER)
        operations = OperationsRepository(session)

        await OrderRepository(session).get_order(request.order_id, for_update=True)
        assignment = await operations.get_active_assignment(
            request.order_id, action.assignment_type
        )
        if assignment is None or assignment.driver_id != request.staff_id:
            raise RequestValidationError(
                f"Driver {request.staff_id} has no active "
                f"{action.assignment_type.value} assignment on order {request.order_id}",
                order_id=request.order_id,
                driver_id=request.staff_id,
            )

        outcome = await self.coordinator.apply_status_change(
            session,
            request.order_id,
            actor_id=request.staff_id,
            new_status=action.status,
            notes=request.notes,
            role=StaffRole.DRIVER,
            action=request.action,
        )
        await operations.update_assignment(
            assignment,
            action.assignment_status,
            notes=request.notes,
            photo_url=request.photo_url,
        )
        return outcome

    async def handle_facility_action(
        self, session: AsyncSession, request: StaffActionRequest
    ) -> StatusChangeOutcome:
        """
        Apply a facility action.

        Raises:
            RequestValidationError: If the action is unknown
            InvalidTransitionError: If the order cannot take the new status
        """
        action = _lookup(FACILITY_ACTIONS, request.action, StaffRole.FACILITY_TEAM)
        return await self._apply(session, request, action, StaffRole.FACILITY_TEAM)

    async def handle_operations_action(
        self, session: AsyncSession, request: StaffActionRequest
    ) -> StatusChangeOutcome:
        """
        Apply an operations action; driver assignments need a driver_id.

        Raises:
            RequestValidationError: If the action is unknown or incomplete
            InvalidTransitionError: If the order cannot take the new status
        """
        action = _lookup(OPERATIONS_ACTIONS, request.action, StaffRole.OPERATION_MANAGER)
        return await self._apply(session, request, action, StaffRole.OPERATION_MANAGER)

    async def record_processing_update(
        self, session: AsyncSession, request: ProcessingUpdateRequest
    ) -> OrderProcessing:
        """Create or update the processing record of an order."""
        await OrderRepository(session).get_order(request.order_id, for_update=True)
        return await OperationsRepository(session).upsert_processing(
            order_id=request.order_id,
            staff_id=request.staff_id,
            processing_status=request.processing_status,
            total_pieces=request.total_pieces,
            total_weight=request.total_weight,
            quality_score=request.quality_score,
            notes=request.notes,
        )

    async def report_issue(
        self, session: AsyncSession, request: IssueReportRequest
    ) -> IssueReport:
        """
        Report an issue on the order's processing record.

        Raises:
            RequestValidationError: If processing has not started for the order
        """
        await OrderRepository(session).get_order(request.order_id, for_update=True)
        operations = OperationsRepository(session)

        processing = await operations.get_processing(request.order_id)
        if processing is None:
            raise RequestValidationError(
                f"Order {request.order_id} has no processing record",
                order_id=request.order_id,
            )

        issue = await operations.create_issue(
            processing,
            staff_id=request.staff_id,
            issue_type=request.issue_type,
            description=request.description,
            severity=request.severity,
        )
        await operations.upsert_processing(
            order_id=request.order_id,
            staff_id=request.staff_id,
            processing_status=ProcessingStatus.ISSUE_REPORTED,
        )
        return issue

    async def _apply(
        self,
        session: AsyncSession,
        request: StaffActionRequest,
        action: StaffAction,
        role: StaffRole,
    ) -> StatusChangeOutcome:
        if action.assignment_type is not None and request.driver_id is None:
            raise RequestValidationError(
                f"Action {request.action} requires a driver_id",
                order_id=request.order_id,
                action=request.action,
            )

        orders = OrderRepository(session)
        operations = OperationsRepository(session)

        if action.status is not None:
            outcome = await self.coordinator.apply_status_change(
                session,
                request.order_id,
                actor_id=request.staff_id,
                new_status=action.status,
                notes=request.notes,
                role=role,
                action=request.action,
            )
            order = await orders.get_order(request.order_id)
        else:
            order = await orders.get_order(request.order_id, for_update=True)
            outcome = None

        if action.assignment_type is not None:
            await operations.create_assignment(
                order_id=order.id,
                driver_id=request.driver_id,
                assignment_type=action.assignment_type,
                estimated_time=request.estimated_time,
                notes=request.notes,
            )
        if action.processing_status is not None:
            await operations.upsert_processing(
                order_id=order.id,
                staff_id=request.staff_id,
                processing_status=action.processing_status,
                notes=request.notes,
            )
        if request.action == "generate_invoice":
            order.invoice_generated = True
            await session.flush()
        if action.note:
            await self.coordinator.add_note(
                session,
                order.id,
                action.note,
                staff_id=request.staff_id,
                action=request.action,
            )

        if outcome is None:
            outcome = self.coordinator.outcome(order, [])

        logger.info(
            "Staff action applied",
            order_id=order.id,
            action=request.action,
            role=role.value,
            staff_id=request.staff_id,
            changed=outcome.changed,
        )
        return outcome.model_copy(update={"notify": action.notify})
