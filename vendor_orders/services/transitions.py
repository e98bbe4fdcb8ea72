"""
Status transition engine: the only code allowed to change ``Order.status``.

    NEW --accept / start_preparing--> PREPARING --mark_ready--> READY
    READY --dispatch--> OUT_FOR_DELIVERY --mark_delivered--> DELIVERED
    NEW --reject--> REJECTED
    NEW | PREPARING | READY --cancel--> CANCELLED

Every call re-reads the locked row, checks it against the rule, and writes
status, timestamp and transition fields in one version-checked update. The
lifecycle event is queued in the same transaction; a failed queue insert is
only logged.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Type

from vendor_orders.core.exceptions import (
    InvalidAssignment,
    InvalidTransition,
    OrderServiceError,
    ValidationError,
)
from vendor_orders.events.notification_hook import LifecycleEvent, publish_safely
from vendor_orders.models.order import (
    TERMINAL_STATUSES,
    CancelledBy,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from vendor_orders.services import driver_tracker
from vendor_orders.services.order_store import OrderId, parse_enum, require_text, update_order, utcnow

log = logging.getLogger("vendor_orders.transitions")

S = OrderStatus


@dataclass(frozen=True)
class Transition:
    name: str
    sources: FrozenSet[OrderStatus]
    target: OrderStatus
    timestamp_field: str
    source_error: Type[OrderServiceError] = InvalidTransition


TRANSITIONS: Dict[str, Transition] = {
    "accept": Transition("accept", frozenset({S.NEW}), S.PREPARING, "accepted_at"),
    "start_preparing": Transition("start_preparing", frozenset({S.NEW}), S.PREPARING, "accepted_at"),
    "reject": Transition("reject", frozenset({S.NEW}), S.REJECTED, "rejected_at"),
    "mark_ready": Transition("mark_ready", frozenset({S.PREPARING}), S.READY, "ready_at"),
    "dispatch": Transition(
        "dispatch", frozenset({S.READY}), S.OUT_FOR_DELIVERY, "out_for_delivery_at",
        source_error=InvalidAssignment,
    ),
    "mark_delivered": Transition("mark_delivered", frozenset({S.OUT_FOR_DELIVERY}), S.DELIVERED, "delivered_at"),
    "cancel": Transition("cancel", frozenset({S.NEW, S.PREPARING, S.READY}), S.CANCELLED, "cancelled_at"),
}


def _allowed_transitions() -> Dict[OrderStatus, FrozenSet[OrderStatus]]:
    graph = {status: set() for status in OrderStatus}
    for rule in TRANSITIONS.values():
        for source in rule.sources:
            graph[source].add(rule.target)
    return {status: frozenset(targets) for status, targets in graph.items()}


ALLOWED_TRANSITIONS = _allowed_transitions()


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


async def _run(
    rule: Transition,
    order_id: OrderId,
    fields: Optional[Dict[str, Any]] = None,
    check: Optional[Callable[[Order], None]] = None,
    after_write=None,
) -> Order:
    # Status read under the lock, for the event written in the same transaction
    read_status: Dict[str, OrderStatus] = {}

    def mutate(order: Order) -> Dict[str, Any]:
        current = order.status
        read_status["from"] = current
        if current in TERMINAL_STATUSES or current == rule.target:
            raise InvalidTransition(
                f"Cannot {rule.name} order {order.order_number}: it is already {current.value}."
            )
        if current not in rule.sources:
            raise rule.source_error(
                f"Cannot {rule.name} order {order.order_number} from status {current.value}."
            )
        if check:
            check(order)

        changes = {"status": rule.target}
        changes.update(fields or {})
        if getattr(order, rule.timestamp_field) is None:
            changes[rule.timestamp_field] = utcnow()
        return changes

    async def write_dependents(order: Order, conn: Any) -> None:
        if after_write:
            await after_write(order, conn)
        if rule.target in TERMINAL_STATUSES:
            await driver_tracker.release_assignment(order, conn)
        await publish_safely(LifecycleEvent(
            order_id=order.id,
            order_number=order.order_number,
            from_status=read_status["from"],
            to_status=rule.target,
            timestamp=order.updated_at,
        ), conn)

    try:
        previous, order = await update_order(order_id, mutate, write_dependents)
    except OrderServiceError as e:
        log.warning(f"{rule.name} refused for order {order_id}: {e.message}")
        raise

    log.info(f"Order {order.order_number}: {previous.value} -> {order.status.value} ({rule.name}).")
    return order


async def accept(order_id: OrderId, estimated_time: Optional[int] = None) -> Order:
    """Vendor accepts a NEW order; the kitchen starts preparing it."""
    if estimated_time is not None and (
        isinstance(estimated_time, bool) or not isinstance(estimated_time, int) or estimated_time <= 0
    ):
        raise ValidationError(f"estimated_time must be a positive number of minutes, got {estimated_time!r}.")
    return await _run(TRANSITIONS["accept"], order_id, {"estimated_time": estimated_time})


async def start_preparing(order_id: OrderId) -> Order:
    return await _run(TRANSITIONS["start_preparing"], order_id)


async def reject(order_id: OrderId, reason: str) -> Order:
    reason = require_text(reason, "reason")
    return await _run(TRANSITIONS["reject"], order_id, {"rejection_reason": reason})


async def mark_ready(order_id: OrderId) -> Order:
    return await _run(TRANSITIONS["mark_ready"], order_id)


async def dispatch(order_id: OrderId, driver_id: str, driver_phone: str) -> Order:
    """Hands a READY order to a driver. Driver fields are only ever set here."""
    driver_id = require_text(driver_id, "driver_id")
    driver_phone = require_text(driver_phone, "driver_phone")

    async def record_driver(order: Order, conn: Any) -> None:
        await driver_tracker.upsert_assignment(order, driver_id, driver_phone, conn)

    return await _run(
        TRANSITIONS["dispatch"],
        order_id,
        {"driver_id": driver_id, "driver_phone": driver_phone},
        after_write=record_driver,
    )


def _check_cash_collected(order: Order) -> None:
    if order.payment_method == PaymentMethod.CASH and order.payment_status == PaymentStatus.FAILED:
        raise ValidationError(
            f"Cash order {order.order_number} has a FAILED payment and cannot be marked delivered."
        )


async def mark_delivered(order_id: OrderId) -> Order:
    return await _run(TRANSITIONS["mark_delivered"], order_id, check=_check_cash_collected)


async def cancel(
    order_id: OrderId,
    reason: Optional[str] = None,
    cancelled_by: CancelledBy = CancelledBy.RESTAURANT,
) -> Order:
    """Admin cancellation of an order that has not left the restaurant."""
    cancelled_by = parse_enum(CancelledBy, cancelled_by, "cancelled_by")
    if reason is not None and not isinstance(reason, str):
        raise ValidationError(f"reason must be a string, got {type(reason).__name__}.")
    reason = reason.strip() if reason and reason.strip() else None
    return await _run(
        TRANSITIONS["cancel"],
        order_id,
        {"cancellation_reason": reason, "cancelled_by": cancelled_by},
    )


async def apply_transition(
    order_id: OrderId,
    target_status: OrderStatus,
    metadata: Optional[Mapping[str, Any]] = None,
) -> Order:
    """
    Generic guarded entry point: routes to the operation that owns the edge
    into ``target_status``. Metadata carries that operation's inputs
    (estimated_time, reason, driver_id, driver_phone, cancelled_by).
    """
    target = parse_enum(OrderStatus, target_status, "status")
    metadata = metadata or {}

    if target == S.NEW:
        raise InvalidTransition("NEW is assigned at creation and cannot be a transition target.")
    if target == S.PREPARING:
        return await accept(order_id, metadata.get("estimated_time"))
    if target == S.REJECTED:
        return await reject(order_id, metadata.get("reason"))
    if target == S.READY:
        return await mark_ready(order_id)
    if target == S.OUT_FOR_DELIVERY:
        return await dispatch(order_id, metadata.get("driver_id"), metadata.get("driver_phone"))
    if target == S.DELIVERED:
        return await mark_delivered(order_id)
    return await cancel(
        order_id,
        metadata.get("reason"),
        metadata.get("cancelled_by") or CancelledBy.RESTAURANT,
    )
