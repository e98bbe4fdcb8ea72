import asyncio
import logging
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from tortoise.transactions import in_transaction

from vendor_orders.core.exceptions import (
    ConflictError,
    InvalidAssignment,
    InvalidTransition,
    ValidationError,
)
from vendor_orders.models.driver import DriverAssignment
from vendor_orders.models.order import (
    CancelledBy,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from vendor_orders.models.outbox import OutboxEvent
from vendor_orders.services import transitions
from vendor_orders.services.driver_tracker import assign
from vendor_orders.services.order_store import get_order, lock_order, set_payment_status, write_order
from vendor_orders.services.transitions import (
    ALLOWED_TRANSITIONS,
    accept,
    apply_transition,
    can_transition,
    cancel,
    dispatch,
    mark_delivered,
    mark_ready,
    reject,
    start_preparing,
)

S = OrderStatus


async def _to_ready(order):
    await accept(order.id, estimated_time=15)
    return await mark_ready(order.id)


async def _to_delivered(order):
    await _to_ready(order)
    await dispatch(order.id, "D1", "+911234567890")
    return await mark_delivered(order.id)


def test_transition_graph():
    assert ALLOWED_TRANSITIONS == {
        S.NEW: {S.PREPARING, S.REJECTED, S.CANCELLED},
        S.PREPARING: {S.READY, S.CANCELLED},
        S.READY: {S.OUT_FOR_DELIVERY, S.CANCELLED},
        S.OUT_FOR_DELIVERY: {S.DELIVERED},
        S.DELIVERED: set(),
        S.CANCELLED: set(),
        S.REJECTED: set(),
    }
    assert can_transition(S.NEW, S.PREPARING)
    assert not can_transition(S.NEW, S.READY)
    assert not can_transition(S.DELIVERED, S.CANCELLED)


@pytest.mark.asyncio
async def test_accept_then_accept_again(make_order):
    order = await make_order("ORD001")
    assert order.status == S.NEW
    assert order.total_amount == Decimal("450")

    accepted = await accept(order.id, estimated_time=30)
    assert accepted.status == S.PREPARING
    assert accepted.accepted_at is not None
    assert accepted.estimated_time == 30

    with pytest.raises(InvalidTransition):
        await accept(order.id, estimated_time=30)

    stored = await get_order(order.id)
    assert stored.status == S.PREPARING
    assert stored.version == 1


@pytest.mark.asyncio
async def test_reject_requires_reason_and_is_terminal(make_order):
    order = await make_order("ORD002")

    with pytest.raises(ValidationError):
        await reject(order.id, reason="")
    with pytest.raises(ValidationError):
        await reject(order.id, reason="   ")
    assert (await get_order(order.id)).status == S.NEW

    rejected = await reject(order.id, reason="Kitchen closed")
    assert rejected.status == S.REJECTED
    assert rejected.rejection_reason == "Kitchen closed"
    assert rejected.rejected_at is not None

    with pytest.raises(InvalidTransition):
        await mark_ready(order.id)


@pytest.mark.asyncio
async def test_dispatch_only_from_ready(make_order):
    order = await make_order("ORD003")

    with pytest.raises(InvalidAssignment):
        await dispatch(order.id, driver_id="D1", driver_phone="+911234567890")
    stored = await get_order(order.id)
    assert stored.status == S.NEW
    assert stored.driver_id is None

    await _to_ready(order)
    dispatched = await dispatch(order.id, driver_id="D1", driver_phone="+911234567890")

    assert dispatched.status == S.OUT_FOR_DELIVERY
    assert dispatched.driver_id == "D1"
    assert dispatched.driver_phone == "+911234567890"
    assert dispatched.out_for_delivery_at is not None
    assignment = await DriverAssignment.get(order_id=order.id)
    assert assignment.driver_id == "D1"


@pytest.mark.asyncio
async def test_dispatch_validates_driver_fields(make_order):
    order = await make_order()
    await _to_ready(order)

    with pytest.raises(ValidationError):
        await dispatch(order.id, driver_id="", driver_phone="+911234567890")
    with pytest.raises(ValidationError):
        await dispatch(order.id, driver_id="D1", driver_phone=None)
    assert (await get_order(order.id)).status == S.READY


@pytest.mark.asyncio
async def test_full_lifecycle_releases_driver(make_order):
    order = await make_order()
    delivered = await _to_delivered(order)

    assert delivered.status == S.DELIVERED
    assert delivered.delivered_at is not None
    assert await DriverAssignment.filter(order_id=order.id).count() == 0
    # Driver details stay on the order for history
    assert (await get_order(order.id)).driver_id == "D1"


@pytest.mark.asyncio
async def test_timestamps_are_written_once(make_order):
    order = await make_order()
    await accept(order.id)
    accepted_at = (await get_order(order.id)).accepted_at

    await mark_ready(order.id)
    ready_at = (await get_order(order.id)).ready_at
    await dispatch(order.id, "D1", "+911234567890")
    await mark_delivered(order.id)

    stored = await get_order(order.id)
    assert stored.accepted_at == accepted_at
    assert stored.ready_at == ready_at
    assert stored.accepted_at <= stored.ready_at <= stored.out_for_delivery_at <= stored.delivered_at
    assert stored.rejected_at is None
    assert stored.cancelled_at is None


@pytest.mark.asyncio
async def test_items_and_total_unchanged_by_transitions(make_order):
    order = await make_order()
    before = sorted((i.menu_item_id, i.quantity, i.unit_price) for i in order.items)

    await _to_delivered(order)

    stored = await get_order(order.id)
    after = sorted((i.menu_item_id, i.quantity, i.unit_price) for i in stored.items)
    assert after == before
    assert stored.total_amount == sum(i.quantity * i.unit_price for i in stored.items)
    assert stored.total_amount == Decimal("450.00")


@pytest.mark.asyncio
@pytest.mark.parametrize("terminal", ["delivered", "rejected", "cancelled"])
async def test_terminal_states_refuse_everything(make_order, terminal):
    order = await make_order()
    if terminal == "delivered":
        await _to_delivered(order)
    elif terminal == "rejected":
        await reject(order.id, "Out of stock")
    else:
        await cancel(order.id, "Customer called", CancelledBy.CUSTOMER)

    for target in OrderStatus:
        with pytest.raises(InvalidTransition):
            await apply_transition(order.id, target, {
                "reason": "again", "driver_id": "D9", "driver_phone": "+910000000000",
            })
    with pytest.raises(InvalidTransition):
        await dispatch(order.id, "D9", "+910000000000")


@pytest.mark.asyncio
async def test_skipping_stages_is_invalid(make_order):
    order = await make_order()
    with pytest.raises(InvalidTransition):
        await mark_ready(order.id)
    with pytest.raises(InvalidTransition):
        await mark_delivered(order.id)

    await accept(order.id)
    with pytest.raises(InvalidTransition):
        await mark_delivered(order.id)
    with pytest.raises(InvalidTransition):
        await reject(order.id, "Too late to reject")
    with pytest.raises(InvalidTransition):
        await start_preparing(order.id)


@pytest.mark.asyncio
async def test_start_preparing_is_accept_without_estimate(make_order):
    order = await make_order()
    started = await start_preparing(order.id)
    assert started.status == S.PREPARING
    assert started.accepted_at is not None
    assert started.estimated_time is None


@pytest.mark.asyncio
async def test_accept_rejects_bad_estimate(make_order):
    order = await make_order()
    for bad in (0, -5, "30", True):
        with pytest.raises(ValidationError):
            await accept(order.id, estimated_time=bad)


@pytest.mark.asyncio
async def test_cancel_window(make_order):
    new_order = await make_order("ORD-C1", minutes=1)
    cancelled = await cancel(new_order.id, "  Duplicate order  ")
    assert cancelled.status == S.CANCELLED
    assert cancelled.cancellation_reason == "Duplicate order"
    assert cancelled.cancelled_by == CancelledBy.RESTAURANT
    assert cancelled.cancelled_at is not None

    ready_order = await make_order("ORD-C2", minutes=2)
    await _to_ready(ready_order)
    assert (await cancel(ready_order.id)).status == S.CANCELLED

    moving = await make_order("ORD-C3", minutes=3)
    await _to_ready(moving)
    await dispatch(moving.id, "D1", "+911234567890")
    with pytest.raises(InvalidTransition):
        await cancel(moving.id, "Too late")


@pytest.mark.asyncio
async def test_cancel_releases_early_assignment(make_order):
    order = await make_order()
    await _to_ready(order)
    await assign(order.id, "D7", "+917777777777")
    await cancel(order.id)
    assert await DriverAssignment.filter(order_id=order.id).count() == 0


@pytest.mark.asyncio
async def test_apply_transition_routes_to_operations(make_order):
    order = await make_order()

    with pytest.raises(InvalidTransition):
        await apply_transition(order.id, S.NEW)
    with pytest.raises(ValidationError):
        await apply_transition(order.id, "SHIPPED")

    assert (await apply_transition(order.id, "PREPARING", {"estimated_time": 25})).estimated_time == 25
    assert (await apply_transition(order.id, S.READY)).status == S.READY
    with pytest.raises(ValidationError):
        await apply_transition(order.id, S.OUT_FOR_DELIVERY, {"driver_id": "D1"})
    dispatched = await apply_transition(
        order.id, S.OUT_FOR_DELIVERY, {"driver_id": "D1", "driver_phone": "+911234567890"}
    )
    assert dispatched.driver_id == "D1"
    assert (await apply_transition(order.id, S.DELIVERED)).status == S.DELIVERED


@pytest.mark.asyncio
async def test_apply_transition_reject_and_cancel(make_order):
    first = await make_order("ORD-A1", minutes=1)
    with pytest.raises(ValidationError):
        await apply_transition(first.id, S.REJECTED, {})
    rejected = await apply_transition(first.id, S.REJECTED, {"reason": "Closed"})
    assert rejected.rejection_reason == "Closed"

    second = await make_order("ORD-A2", minutes=2)
    cancelled = await apply_transition(second.id, S.CANCELLED, {"reason": "Fraud", "cancelled_by": "SYSTEM"})
    assert cancelled.cancelled_by == CancelledBy.SYSTEM


@pytest.mark.asyncio
async def test_cancel_reason_must_be_text(make_order):
    order = await make_order()
    with pytest.raises(ValidationError):
        await apply_transition(order.id, S.CANCELLED, {"reason": 5})
    with pytest.raises(ValidationError):
        await cancel(order.id, ["not", "text"])
    assert (await get_order(order.id)).status == S.NEW

    cancelled = await cancel(order.id, "   ")
    assert cancelled.status == S.CANCELLED
    assert cancelled.cancellation_reason is None


@pytest.mark.asyncio
async def test_cash_order_with_failed_payment_cannot_be_delivered(make_order):
    cash = await make_order("ORD-CASH", minutes=1, payment_method=PaymentMethod.CASH)
    await _to_ready(cash)
    await dispatch(cash.id, "D1", "+911234567890")
    await set_payment_status(cash.id, PaymentStatus.FAILED)

    with pytest.raises(ValidationError):
        await mark_delivered(cash.id)
    assert (await get_order(cash.id)).status == S.OUT_FOR_DELIVERY

    await set_payment_status(cash.id, PaymentStatus.PAID)
    assert (await mark_delivered(cash.id)).status == S.DELIVERED

    card = await make_order("ORD-CARD", minutes=2, payment_method=PaymentMethod.CARD)
    await _to_ready(card)
    await dispatch(card.id, "D1", "+911234567890")
    await set_payment_status(card.id, PaymentStatus.FAILED)
    assert (await mark_delivered(card.id)).status == S.DELIVERED


@pytest.mark.asyncio
async def test_concurrent_conflicting_transitions(make_order):
    order = await make_order()

    results = await asyncio.gather(
        accept(order.id, estimated_time=10),
        reject(order.id, "Kitchen closed"),
        return_exceptions=True,
    )

    successes = [r for r in results if isinstance(r, Order)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], (InvalidTransition, ConflictError))

    stored = await get_order(order.id)
    assert stored.status == successes[0].status
    if stored.status == S.PREPARING:
        assert stored.rejection_reason is None and stored.rejected_at is None
    else:
        assert stored.accepted_at is None and stored.estimated_time is None
    assert stored.version == 1


@pytest.mark.asyncio
async def test_stale_version_write_is_a_conflict(make_order):
    order = await make_order()
    stale = await Order.get(id=order.id)
    await accept(order.id)

    async with in_transaction() as conn:
        await lock_order(order.id, conn)
        with pytest.raises(ConflictError):
            await write_order(stale, {"status": S.REJECTED, "rejection_reason": "stale"}, conn)

    stored = await get_order(order.id)
    assert stored.status == S.PREPARING
    assert stored.rejection_reason is None


@pytest.mark.asyncio
async def test_transitions_publish_lifecycle_events(make_order):
    order = await make_order("ORD-EV")
    await accept(order.id)
    await mark_ready(order.id)

    events = await OutboxEvent.filter(aggregate_id=order.id).order_by("created_at")
    assert [e.event_type for e in events] == [
        "order.created.v1",
        "order.status_changed.v1",
        "order.status_changed.v1",
    ]
    assert events[0].payload["from_status"] is None
    assert events[0].payload["to_status"] == "NEW"
    assert (events[2].payload["from_status"], events[2].payload["to_status"]) == ("PREPARING", "READY")
    assert events[2].payload["order_number"] == "ORD-EV"


@pytest.mark.asyncio
async def test_refused_transition_publishes_nothing(make_order):
    order = await make_order()
    with pytest.raises(InvalidTransition):
        await mark_ready(order.id)
    assert await OutboxEvent.filter(event_type="order.status_changed.v1").count() == 0


@pytest.mark.asyncio
async def test_publish_failure_does_not_roll_back(make_order):
    order = await make_order()

    with patch("vendor_orders.events.notification_hook.publish", AsyncMock(side_effect=RuntimeError("queue down"))):
        accepted = await accept(order.id)

    assert accepted.status == S.PREPARING
    assert (await get_order(order.id)).status == S.PREPARING
    assert await OutboxEvent.filter(event_type="order.status_changed.v1").count() == 0


@pytest.mark.asyncio
async def test_failed_outbox_insert_is_logged_and_rolled_back_alone(make_order, caplog):
    order = await make_order()

    with patch(
        "vendor_orders.events.notification_hook.create_outbox_event",
        AsyncMock(side_effect=RuntimeError("outbox table locked")),
    ):
        with caplog.at_level(logging.ERROR, logger="vendor_orders.notifications"):
            rejected = await reject(order.id, "Closed")

    assert "Failed to queue order.status_changed.v1" in caplog.text
    stored = await get_order(order.id)
    assert stored.status == S.REJECTED
    assert stored.rejection_reason == "Closed"
    assert stored.version == rejected.version == 1


@pytest.mark.asyncio
async def test_event_commits_or_rolls_back_with_the_transition(make_order):
    order = await make_order()

    with pytest.raises(RuntimeError):
        async with in_transaction() as conn:
            await accept(order.id)
            queued = await OutboxEvent.filter(
                aggregate_id=order.id, event_type="order.status_changed.v1"
            ).using_db(conn).count()
            assert queued == 1
            raise RuntimeError("caller aborted")

    assert (await get_order(order.id)).status == S.NEW
    assert await OutboxEvent.filter(event_type="order.status_changed.v1").count() == 0

    await accept(order.id)
    committed = await OutboxEvent.filter(aggregate_id=order.id, event_type="order.status_changed.v1")
    assert len(committed) == 1
    assert committed[0].published is False
    assert (committed[0].payload["from_status"], committed[0].payload["to_status"]) == ("NEW", "PREPARING")


def test_dispatch_rule_reports_assignment_errors():
    assert transitions.TRANSITIONS["dispatch"].source_error is InvalidAssignment
    assert transitions.TRANSITIONS["accept"].source_error is InvalidTransition
