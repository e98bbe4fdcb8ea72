import logging
from typing import Any, Dict

from vendor_orders.events.notification_hook import (
    ORDER_CREATED,
    ORDER_STATUS_CHANGED,
    get_subscribers,
    register_subscriber,
)

log = logging.getLogger("notification_consumer")


async def log_lifecycle_event(event_type: str, payload: Dict[str, Any]) -> None:
    """
    Stand-in for the push/SMS gateway: records what would be sent.
    """
    if event_type == ORDER_CREATED:
        log.info(f"EXTERNAL NOTIFICATION: New order {payload.get('order_number')} received.")
    elif event_type == ORDER_STATUS_CHANGED:
        log.info(
            f"EXTERNAL NOTIFICATION: Order {payload.get('order_number')} status updated "
            f"{payload.get('from_status')} -> {payload.get('to_status')}"
        )
    else:
        log.warning(f"No notification template for event type: {event_type}")


def register_default_subscribers() -> None:
    if "log" not in get_subscribers():
        register_subscriber("log", log_lifecycle_event)
