import logging
from typing import Any, List, Optional

from tortoise.transactions import in_transaction

from vendor_orders.core import config
from vendor_orders.core.exceptions import InvalidAssignment, NotFound
from vendor_orders.models.driver import DriverAssignment
from vendor_orders.models.order import ACTIVE_STATUSES, Order, OrderStatus
from vendor_orders.services.order_store import OrderId, lock_order, require_text, utcnow

log = logging.getLogger("vendor_orders.drivers")

# Statuses in which a driver may be released. An OUT_FOR_DELIVERY order must keep
# a driver reference until it is delivered, so unassign stops at dispatch.
UNASSIGNABLE_STATUSES = frozenset({OrderStatus.NEW, OrderStatus.PREPARING, OrderStatus.READY})


def assignable_statuses() -> frozenset:
    if config.ALLOW_EARLY_DRIVER_ASSIGNMENT:
        return frozenset({OrderStatus.PREPARING, OrderStatus.READY})
    return frozenset({OrderStatus.READY})


async def upsert_assignment(order: Order, driver_id: str, driver_phone: Optional[str], conn: Any) -> DriverAssignment:
    """Records the order's driver, replacing any previous one. Caller holds the order lock."""
    assignment = await DriverAssignment.filter(order_id=order.id).using_db(conn).first()
    if assignment:
        assignment.driver_id = driver_id
        assignment.driver_phone = driver_phone
        assignment.assigned_at = utcnow()
        await assignment.save(using_db=conn)
        return assignment

    return await DriverAssignment.create(
        order_id=order.id,
        driver_id=driver_id,
        driver_phone=driver_phone,
        assigned_at=utcnow(),
        using_db=conn,
    )


async def release_assignment(order: Order, conn: Any) -> int:
    return await DriverAssignment.filter(order_id=order.id).using_db(conn).delete()


async def assign(order_id: OrderId, driver_id: str, driver_phone: Optional[str] = None) -> DriverAssignment:
    """Attaches a driver to an order that is READY (or PREPARING with early assignment on)."""
    driver_id = require_text(driver_id, "driver_id")

    async with in_transaction() as conn:
        order = await lock_order(order_id, conn)
        if order.status not in assignable_statuses():
            raise InvalidAssignment(
                f"Cannot assign a driver to order {order.order_number} in status {order.status.value}."
            )
        assignment = await upsert_assignment(order, driver_id, driver_phone, conn)

    log.info(f"Driver {driver_id} assigned to order {order.order_number}.")
    return assignment


async def unassign(order_id: OrderId) -> None:
    """Releases the driver of an order that has not been dispatched yet."""
    async with in_transaction() as conn:
        order = await lock_order(order_id, conn)
        if order.status not in UNASSIGNABLE_STATUSES:
            raise InvalidAssignment(
                f"Cannot release the driver of order {order.order_number} in status {order.status.value}."
            )
        if not await release_assignment(order, conn):
            raise InvalidAssignment(f"Order {order.order_number} has no driver assigned.")

    log.info(f"Driver released from order {order.order_number}.")


async def get_assignment(order_id: OrderId) -> Optional[DriverAssignment]:
    if not await Order.exists(id=order_id):
        raise NotFound(f"Order {order_id} not found.")
    return await DriverAssignment.get_or_none(order_id=order_id)


async def orders_for_driver(driver_id: str) -> List[Order]:
    """Active orders currently held by a driver, newest first."""
    order_ids = await DriverAssignment.filter(driver_id=driver_id).values_list("order_id", flat=True)
    if not order_ids:
        return []
    return await (
        Order.filter(id__in=list(order_ids), status__in=list(ACTIVE_STATUSES))
        .order_by("-created_at", "-order_number")
        .prefetch_related("items")
    )
