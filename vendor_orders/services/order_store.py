import logging
import random
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union
from uuid import UUID

from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from vendor_orders.core.exceptions import (
    ConflictError,
    DuplicateOrder,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from vendor_orders.events.notification_hook import LifecycleEvent, publish_safely
from vendor_orders.models.order import (
    TERMINAL_STATUSES,
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
)

log = logging.getLogger("vendor_orders.store")

OrderId = Union[UUID, str]
Mutation = Callable[[Order], Dict[str, Any]]
AfterWrite = Callable[[Order, Any], Awaitable[None]]

CENTS = Decimal("0.01")
ORDER_NUMBER_ATTEMPTS = 5
NOTES_MAX_LENGTH = 500


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes coming from callers are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def require_text(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"'{field}' must be a non-empty string.")
    return str(value).strip()


def generate_order_number(now: Optional[datetime] = None) -> str:
    """ORD + yymmdd + 4 random digits, e.g. ORD2610190042."""
    now = now or utcnow()
    return f"ORD{now:%y%m%d}{random.randint(0, 9999):04d}"


def parse_enum(enum_cls, value: Any, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"'{field}' must be one of {allowed}, got {value!r}.")


def _to_money(value: Any, field: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"'{field}' must be a number, got {value!r}.")
    if not amount.is_finite():
        raise ValidationError(f"'{field}' must be a finite number.")
    return amount


def _normalize_items(items: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], Decimal]:
    """Validates line items and returns them with line totals plus the order total."""
    if not items:
        raise ValidationError("Order must contain at least one item.")

    lines = []
    total = Decimal("0")
    for position, item in enumerate(items):
        quantity = item.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(f"Item {position}: quantity must be a positive integer, got {quantity!r}.")
        unit_price = _to_money(item.get("unit_price"), f"items[{position}].unit_price")
        if unit_price < 0:
            raise ValidationError(f"Item {position}: unit_price cannot be negative.")

        line_total = unit_price * quantity
        total += line_total
        lines.append({
            "position": position,
            "menu_item_id": require_text(item.get("menu_item_id"), f"items[{position}].menu_item_id"),
            "name": require_text(item.get("name"), f"items[{position}].name"),
            "quantity": quantity,
            "unit_price": unit_price,
            "line_total": line_total,
            "customizations": list(item.get("customizations") or []),
        })
    return lines, total.quantize(CENTS)


async def create_order(
    customer: Dict[str, Any],
    items: List[Dict[str, Any]],
    order_number: Optional[str] = None,
    order_type: OrderType = OrderType.DELIVERY,
    payment_method: PaymentMethod = PaymentMethod.CASH,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
    total_amount: Optional[Any] = None,
    special_requests: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Order:
    """
    Stores a new order in status NEW together with its line items.

    The total is derived from the items; a caller-supplied total must agree with
    it. A colliding order number raises DuplicateOrder. Generated numbers are
    retried a few times before giving up.
    """
    lines, total = _normalize_items(items)
    if total_amount is not None and _to_money(total_amount, "total_amount").quantize(CENTS) != total:
        raise ValidationError(
            f"total_amount {total_amount} does not match the sum of the items ({total})."
        )

    fields = {
        "customer_id": require_text(customer.get("id"), "customer.id"),
        "customer_name": require_text(customer.get("name"), "customer.name"),
        "customer_phone": customer.get("phone"),
        "delivery_address": customer.get("address"),
        "order_type": parse_enum(OrderType, order_type, "order_type"),
        "payment_method": parse_enum(PaymentMethod, payment_method, "payment_method"),
        "payment_status": parse_enum(PaymentStatus, payment_status, "payment_status"),
        "total_amount": total,
        "special_requests": special_requests,
        "created_at": as_utc(created_at) if created_at else utcnow(),
    }

    if order_number is not None:
        order = await _insert_order(require_text(order_number, "order_number"), fields, lines)
    else:
        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            try:
                order = await _insert_order(generate_order_number(), fields, lines)
                break
            except DuplicateOrder:
                if attempt == ORDER_NUMBER_ATTEMPTS:
                    raise
                log.warning(f"Generated order number collided, retrying ({attempt}/{ORDER_NUMBER_ATTEMPTS}).")

    log.info(f"Order {order.order_number} created with total {order.total_amount}.")
    await order.fetch_related("items")
    return order


async def _insert_order(order_number: str, fields: Dict[str, Any], lines: List[Dict[str, Any]]) -> Order:
    try:
        async with in_transaction() as conn:
            if await Order.filter(order_number=order_number).using_db(conn).exists():
                raise DuplicateOrder(f"Order number {order_number} already exists.")

            order = await Order.create(
                order_number=order_number,
                status=OrderStatus.NEW,
                using_db=conn,
                **fields,
            )
            for line in lines:
                await OrderItem.create(order=order, using_db=conn, **line)
            await publish_safely(LifecycleEvent(
                order_id=order.id,
                order_number=order.order_number,
                from_status=None,
                to_status=order.status,
                timestamp=order.created_at,
            ), conn)
    except IntegrityError:
        # Lost the race on the unique order_number constraint
        raise DuplicateOrder(f"Order number {order_number} already exists.")
    return order


async def get_order(order_id: OrderId) -> Order:
    """Fetches an order with its line items."""
    order = await Order.get_or_none(id=order_id).prefetch_related("items")
    if not order:
        raise NotFound(f"Order {order_id} not found.")
    return order


async def get_order_by_number(order_number: str) -> Order:
    order = await Order.get_or_none(order_number=order_number).prefetch_related("items")
    if not order:
        raise NotFound(f"Order {order_number} not found.")
    return order


async def lock_order(order_id: OrderId, conn: Any) -> Order:
    """Re-reads the persisted row and holds its lock until the transaction ends."""
    order = await Order.filter(id=order_id).using_db(conn).select_for_update().first()
    if not order:
        raise NotFound(f"Order {order_id} not found.")
    return order


async def write_order(order: Order, changes: Dict[str, Any], conn: Any) -> None:
    """
    Applies ``changes`` with a version check. The status index lives on the same
    row, so it moves in the same statement.
    """
    changes = dict(changes, updated_at=utcnow(), version=order.version + 1)
    updated = await Order.filter(id=order.id, version=order.version).using_db(conn).update(**changes)
    if not updated:
        raise ConflictError(
            f"Order {order.order_number} was modified concurrently; re-read it before retrying."
        )
    for field, value in changes.items():
        setattr(order, field, value)


async def update_order(
    order_id: OrderId,
    mutate: Mutation,
    after_write: Optional[AfterWrite] = None,
) -> Tuple[OrderStatus, Order]:
    """
    Serialised read-modify-write of one order.

    ``mutate`` receives the freshly locked order and returns the field changes
    (or raises to abort with nothing written). ``after_write`` runs inside the
    same transaction for dependent rows. Returns the status held before the
    write and the updated order.
    """
    async with in_transaction() as conn:
        order = await lock_order(order_id, conn)
        previous_status = order.status
        changes = mutate(order)
        await write_order(order, changes, conn)
        if after_write:
            await after_write(order, conn)
    return previous_status, order


async def set_payment_status(order_id: OrderId, payment_status: PaymentStatus) -> Order:
    """Records the independent payment lifecycle. Refunds are owned elsewhere."""
    payment_status = parse_enum(PaymentStatus, payment_status, "payment_status")
    _, order = await update_order(order_id, lambda order: {"payment_status": payment_status})
    log.info(f"Order {order.order_number} payment status set to {payment_status.value}.")
    return order


async def update_notes(order_id: OrderId, notes: Optional[str]) -> Order:
    """
    Rewrites the order's special requests. Blank notes clear them.
    Items and total are never touched; terminal orders are left as they are.
    """
    if notes is not None and not isinstance(notes, str):
        raise ValidationError(f"notes must be a string, got {type(notes).__name__}.")
    notes = notes.strip() if notes and notes.strip() else None
    if notes and len(notes) > NOTES_MAX_LENGTH:
        raise ValidationError(f"notes cannot exceed {NOTES_MAX_LENGTH} characters.")

    def mutate(order: Order) -> Dict[str, Any]:
        if order.status in TERMINAL_STATUSES:
            raise InvalidTransition(
                f"Order {order.order_number} is {order.status.value}; its notes can no longer change."
            )
        return {"special_requests": notes}

    _, order = await update_order(order_id, mutate)
    log.info(f"Order {order.order_number} notes updated.")
    return order
