"""
Notification hook: decouples lifecycle side effects (push, SMS, analytics) from
the transactional core.

Order writes queue their event on the same connection, inside the transaction
that changes the order. The event lands in the outbox table only if the change
commits, and the outbox poller hands it to every registered subscriber, at
least once.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import UUID

from tortoise.transactions import in_transaction

from vendor_orders.events.outbox_utility import create_outbox_event
from vendor_orders.models.order import OrderStatus

log = logging.getLogger("vendor_orders.notifications")

ORDER_CREATED = "order.created.v1"
ORDER_STATUS_CHANGED = "order.status_changed.v1"

# Subscribers receive (event_type, payload)
Subscriber = Callable[[str, Dict[str, Any]], Awaitable[None]]

_subscribers: Dict[str, Subscriber] = {}


@dataclass(frozen=True)
class LifecycleEvent:
    order_id: UUID
    order_number: str
    from_status: Optional[OrderStatus]
    to_status: OrderStatus
    timestamp: datetime

    @property
    def event_type(self) -> str:
        return ORDER_CREATED if self.from_status is None else ORDER_STATUS_CHANGED

    def to_payload(self) -> Dict[str, Any]:
        return {
            "order_id": str(self.order_id),
            "order_number": self.order_number,
            "from_status": self.from_status.value if self.from_status else None,
            "to_status": self.to_status.value,
            "timestamp": self.timestamp.isoformat(),
        }


async def publish(event: LifecycleEvent, conn: Any = None) -> None:
    """Queues the event for asynchronous delivery, on ``conn`` when given."""
    await create_outbox_event(
        aggregate_type="order",
        aggregate_id=event.order_id,
        event_type=event.event_type,
        payload=event.to_payload(),
        conn=conn,
    )


async def publish_safely(event: LifecycleEvent, conn: Any = None) -> None:
    """
    Queues the event without ever failing the caller.

    Inside a transaction the outbox insert runs in a savepoint, so a failed
    insert is rolled back on its own and the order write still commits.
    """
    try:
        if conn is None:
            await publish(event)
            return
        async with in_transaction(conn.connection_name) as savepoint:
            await publish(event, savepoint)
    except Exception:
        log.exception(
            f"Failed to queue {event.event_type} for order {event.order_number} "
            f"({event.from_status} -> {event.to_status})"
        )


def register_subscriber(name: str, handler: Subscriber) -> None:
    _subscribers[name] = handler
    log.info(f"Subscriber '{name}' registered.")


def unregister_subscriber(name: str) -> None:
    _subscribers.pop(name, None)


def get_subscribers() -> Dict[str, Subscriber]:
    return dict(_subscribers)


def clear_subscribers() -> None:
    _subscribers.clear()
