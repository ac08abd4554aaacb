"""
Test suite for driver, facility and operations staff actions.

Tests walk an order through its whole lifecycle with staff actions and cover
the assignment checks, the processing record and issue reports.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from order_tracking.core.errors import ErrorKind
from order_tracking.database.connection import UnitOfWork
from order_tracking.services.orders.enums import (
    AssignmentType,
    DriverAssignmentStatus,
    HistoryAction,
    IssueSeverity,
    OrderPaymentStatus,
    OrderStatus,
    ProcessingStatus,
)
from order_tracking.services.orders.repository import OrderRepository
from order_tracking.services.timeline.aggregator import AuditTrailAggregator
from order_tracking.services.tracking.facade import OrderTrackingFacade
from order_tracking.services.tracking.repository import OperationsRepository

OPS_STAFF = 1
FACILITY_STAFF = 2
PICKUP_DRIVER = 8
DELIVERY_DRIVER = 9


async def _assignments(unit_of_work: UnitOfWork, order_id: int):
    return await unit_of_work.run(
        lambda session: OperationsRepository(session).list_assignments(order_id)
    )


# ============================================================================
# Lifecycle Tests
# ============================================================================


class TestLifecycle:
    """Test a full order lifecycle driven by staff actions."""

    async def test_order_from_placement_to_delivery(
        self,
        facade: OrderTrackingFacade,
        unit_of_work: UnitOfWork,
        notifier,
        create_order,
    ) -> None:
        order = await create_order(invoice_total="10.000")

        steps = [
            facade.handle_operations_action(order.id, OPS_STAFF, "confirm_order"),
            facade.handle_operations_action(
                order.id, OPS_STAFF, "assign_pickup_driver", driver_id=PICKUP_DRIVER
            ),
            facade.handle_driver_action(order.id, PICKUP_DRIVER, "start_pickup"),
            facade.handle_driver_action(order.id, PICKUP_DRIVER, "complete_pickup"),
            facade.handle_driver_action(
                order.id, PICKUP_DRIVER, "drop_off", photo_url="https://cdn.example/bag.jpg"
            ),
            facade.handle_facility_action(order.id, FACILITY_STAFF, "start_processing"),
        ]
        for step in steps:
            result = await step
            assert result.ok, result.error

        assert (await facade.record_payment(order.id, "10.000", "CARD")).ok

        completed = await facade.handle_facility_action(
            order.id, FACILITY_STAFF, "complete_processing"
        )
        assert completed.ok
        assert completed.value.order.status == OrderStatus.READY_FOR_DELIVERY
        assert completed.value.order.payment_status == OrderPaymentStatus.PAID

        for step in [
            facade.handle_facility_action(
                order.id,
                FACILITY_STAFF,
                "assign_delivery_driver",
                driver_id=DELIVERY_DRIVER,
            ),
            facade.handle_driver_action(order.id, DELIVERY_DRIVER, "start_delivery"),
            facade.handle_driver_action(order.id, DELIVERY_DRIVER, "complete_delivery"),
        ]:
            result = await step
            assert result.ok, result.error

        assert result.value.order.status == OrderStatus.DELIVERED

        assignments = await _assignments(unit_of_work, order.id)
        by_type = {a.assignment_type: a for a in assignments}
        pickup = by_type[AssignmentType.PICKUP]
        assert pickup.status == DriverAssignmentStatus.COMPLETED
        assert pickup.photo_url == "https://cdn.example/bag.jpg"
        assert pickup.actual_time is not None
        assert by_type[AssignmentType.DELIVERY].status == DriverAssignmentStatus.COMPLETED

        notified = [n.new_status for n in notifier.notices if n.field == "status"]
        assert "PICKUP_ASSIGNED" not in notified
        assert "RECEIVED_AT_FACILITY" not in notified
        assert "DELIVERY_ASSIGNED" not in notified
        assert notified[-1] == "DELIVERED"
        assert "READY_FOR_DELIVERY" in notified

        events = await unit_of_work.run(
            lambda session: AuditTrailAggregator().build_timeline(session, order.id)
        )
        assert any(e.id.startswith("driver_assignment:") for e in events)
        assert any(e.id.startswith("processing:") for e in events)


# ============================================================================
# Driver Action Tests
# ============================================================================


class TestDriverActions:
    """Test drivers can only act on their own active assignments."""

    async def test_driver_without_assignment(
        self, facade: OrderTrackingFacade, create_order
    ) -> None:
        order = await create_order(status=OrderStatus.PICKUP_ASSIGNED)

        result = await facade.handle_driver_action(order.id, PICKUP_DRIVER, "start_pickup")

        assert result.kind == ErrorKind.VALIDATION

    async def test_reassignment_moves_pickup_to_new_driver(
        self,
        facade: OrderTrackingFacade,
        unit_of_work: UnitOfWork,
        create_order,
    ) -> None:
        order = await create_order(status=OrderStatus.CONFIRMED)
        for driver_id in (PICKUP_DRIVER, DELIVERY_DRIVER):
            result = await facade.handle_operations_action(
                order.id, OPS_STAFF, "assign_pickup_driver", driver_id=driver_id
            )
            assert result.ok

        old_driver = await facade.handle_driver_action(order.id, PICKUP_DRIVER, "start_pickup")
        new_driver = await facade.handle_driver_action(order.id, DELIVERY_DRIVER, "start_pickup")

        assert old_driver.kind == ErrorKind.VALIDATION
        assert new_driver.ok
        statuses = {a.driver_id: a.status for a in await _assignments(unit_of_work, order.id)}
        assert statuses == {
            PICKUP_DRIVER: DriverAssignmentStatus.RESCHEDULED,
            DELIVERY_DRIVER: DriverAssignmentStatus.IN_PROGRESS,
        }

    async def test_failed_pickup_closes_assignment(
        self,
        facade: OrderTrackingFacade,
        unit_of_work: UnitOfWork,
        create_order,
    ) -> None:
        order = await create_order(status=OrderStatus.CONFIRMED)
        await facade.handle_operations_action(
            order.id, OPS_STAFF, "assign_pickup_driver", driver_id=PICKUP_DRIVER
        )

        result = await facade.handle_driver_action(
            order.id, PICKUP_DRIVER, "fail_pickup", notes="Nobody home"
        )

        assert result.ok
        assert result.value.order.status == OrderStatus.PICKUP_FAILED
        (assignment,) = await _assignments(unit_of_work, order.id)
        assert assignment.status == DriverAssignmentStatus.FAILED
        assert assignment.notes == "Nobody home"

    async def test_unknown_action(
        self, facade: OrderTrackingFacade, create_order
    ) -> None:
        order = await create_order()

        result = await facade.handle_driver_action(order.id, PICKUP_DRIVER, "teleport")

        assert result.kind == ErrorKind.VALIDATION
        assert "start_pickup" in result.error.context["valid_actions"]

    async def test_action_names_are_normalized(
        self, facade: OrderTrackingFacade, create_order
    ) -> None:
        order = await create_order()

        result = await facade.handle_operations_action(order.id, OPS_STAFF, " Confirm-Order ")

        assert result.ok
        assert result.value.order.status == OrderStatus.CONFIRMED


# ============================================================================
# Facility and Operations Action Tests
# ============================================================================


class TestFacilityActions:
    """Test facility and operations actions."""

    async def test_assignment_requires_driver(
        self, facade: OrderTrackingFacade, create_order
    ) -> None:
        order = await create_order(status=OrderStatus.CONFIRMED)

        result = await facade.handle_operations_action(
            order.id, OPS_STAFF, "assign_pickup_driver"
        )

        assert result.kind == ErrorKind.VALIDATION

    async def test_invalid_transition(
        self, facade: OrderTrackingFacade, create_order
    ) -> None:
        order = await create_order(status=OrderStatus.DELIVERED)

        result = await facade.handle_operations_action(order.id, OPS_STAFF, "confirm_order")

        assert result.kind == ErrorKind.INVALID_TRANSITION

    async def test_generate_invoice(
        self,
        facade: OrderTrackingFacade,
        unit_of_work: UnitOfWork,
        notifier,
        create_order,
    ) -> None:
        order = await create_order(status=OrderStatus.PROCESSING_COMPLETED)

        result = await facade.handle_facility_action(
            order.id, FACILITY_STAFF, "generate_invoice"
        )

        assert result.ok
        assert not result.value.changed
        assert result.value.order.invoice_generated is True
        assert result.value.order.status == OrderStatus.PROCESSING_COMPLETED
        assert notifier.notices == []

        history = await unit_of_work.run(
            lambda session: OrderRepository(session).list_history(order.id)
        )
        assert [h.action for h in history] == [HistoryAction.NOTE_ADDED]
        assert history[0].details["action"] == "generate_invoice"

    async def test_complete_processing_adds_note(
        self,
        facade: OrderTrackingFacade,
        unit_of_work: UnitOfWork,
        create_order,
    ) -> None:
        order = await create_order(status=OrderStatus.PROCESSING_STARTED)

        result = await facade.handle_facility_action(
            order.id, FACILITY_STAFF, "complete_processing"
        )

        assert result.ok
        history = await unit_of_work.run(
            lambda session: OrderRepository(session).list_history(order.id)
        )
        assert {h.action for h in history} == {
            HistoryAction.STATUS_CHANGE,
            HistoryAction.NOTE_ADDED,
        }

        processing = await unit_of_work.run(
            lambda session: OperationsRepository(session).get_processing(order.id)
        )
        assert processing.processing_status == ProcessingStatus.COMPLETED
        assert processing.completed_at is not None

    async def test_facility_delivery_assignment_not_notified(
        self, facade: OrderTrackingFacade, notifier, create_order
    ) -> None:
        order = await create_order(status=OrderStatus.READY_FOR_DELIVERY)

        result = await facade.handle_facility_action(
            order.id, FACILITY_STAFF, "assign_delivery_driver", driver_id=DELIVERY_DRIVER
        )

        assert result.ok
        assert result.value.changed
        assert result.value.notify is False
        assert notifier.notices == []


# ============================================================================
# Processing and Issue Tests
# ============================================================================


class TestProcessingAndIssues:
    """Test processing record updates and issue reports."""

    async def test_issue_requires_processing(
        self, facade: OrderTrackingFacade, create_order
    ) -> None:
        order = await create_order(status=OrderStatus.RECEIVED_AT_FACILITY)

        result = await facade.report_issue(
            order.id, FACILITY_STAFF, "damaged_item", "Torn collar"
        )

        assert result.kind == ErrorKind.VALIDATION

    async def test_issue_marks_processing(
        self,
        facade: OrderTrackingFacade,
        unit_of_work: UnitOfWork,
        create_order,
    ) -> None:
        order = await create_order(status=OrderStatus.PROCESSING_STARTED)
        update = await facade.record_processing_update(
            order.id,
            FACILITY_STAFF,
            "in_progress",
            total_pieces=12,
            total_weight="4.5",
            quality_score=9,
        )
        assert update.ok
        assert update.value.total_pieces == 12
        assert update.value.started_at is not None

        result = await facade.report_issue(
            order.id, FACILITY_STAFF, "damaged_item", "Torn collar", severity="HIGH"
        )

        assert result.ok
        assert result.value.severity == IssueSeverity.HIGH

        async def read(session: AsyncSession):
            operations = OperationsRepository(session)
            return (
                await operations.get_processing(order.id),
                list(await operations.list_issues(order.id)),
            )

        processing, issues = await unit_of_work.run(read)
        assert processing.processing_status == ProcessingStatus.ISSUE_REPORTED
        assert processing.total_pieces == 12
        assert [issue.issue_type for issue in issues] == ["damaged_item"]

    async def test_invalid_quality_score(
        self, facade: OrderTrackingFacade, create_order
    ) -> None:
        order = await create_order(status=OrderStatus.PROCESSING_STARTED)

        result = await facade.record_processing_update(
            order.id, FACILITY_STAFF, "IN_PROGRESS", quality_score=11
        )

        assert result.kind == ErrorKind.VALIDATION
