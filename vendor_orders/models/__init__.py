# vendor_orders/models/__init__.py
from .order import (
    CancelledBy,
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
)
from .driver import DriverAssignment
from .outbox import OutboxEvent
from .processed_event import ProcessedEvent

# Export all models
__all__ = [
    "CancelledBy",
    "DriverAssignment",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderType",
    "OutboxEvent",
    "PaymentMethod",
    "PaymentStatus",
    "ProcessedEvent",
]
