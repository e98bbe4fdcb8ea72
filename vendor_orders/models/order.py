from enum import Enum
from tortoise import fields, models
import uuid


class OrderStatus(str, Enum):
    NEW = "NEW"  # Initial state, assigned at creation only
    PREPARING = "PREPARING"
    READY = "READY"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"  # terminal
    CANCELLED = "CANCELLED"  # terminal
    REJECTED = "REJECTED"  # terminal


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REJECTED})
ACTIVE_STATUSES = frozenset(set(OrderStatus) - TERMINAL_STATUSES)


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    UPI = "UPI"
    WALLET = "WALLET"
    ONLINE = "ONLINE"


class OrderType(str, Enum):
    DELIVERY = "DELIVERY"
    PICKUP = "PICKUP"


class CancelledBy(str, Enum):
    CUSTOMER = "CUSTOMER"
    RESTAURANT = "RESTAURANT"
    SYSTEM = "SYSTEM"


class Order(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    order_number = fields.CharField(max_length=32, unique=True)
    status = fields.CharEnumField(OrderStatus, default=OrderStatus.NEW)

    # Customer is owned by the ordering system; we keep its id plus a search snapshot
    customer_id = fields.CharField(max_length=64)
    customer_name = fields.CharField(max_length=255)
    customer_phone = fields.CharField(max_length=32, null=True)
    delivery_address = fields.TextField(null=True)

    order_type = fields.CharEnumField(OrderType, default=OrderType.DELIVERY)
    payment_method = fields.CharEnumField(PaymentMethod, default=PaymentMethod.CASH)
    payment_status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.PENDING)
    total_amount = fields.DecimalField(max_digits=14, decimal_places=2)
    special_requests = fields.TextField(null=True)

    # Set by specific transitions
    estimated_time = fields.IntField(null=True)  # minutes, from accept
    rejection_reason = fields.TextField(null=True)
    cancellation_reason = fields.TextField(null=True)
    cancelled_by = fields.CharEnumField(CancelledBy, null=True)
    driver_id = fields.CharField(max_length=64, null=True)
    driver_phone = fields.CharField(max_length=32, null=True)

    # Lifecycle timestamps, each written once
    created_at = fields.DatetimeField()
    accepted_at = fields.DatetimeField(null=True)
    ready_at = fields.DatetimeField(null=True)
    out_for_delivery_at = fields.DatetimeField(null=True)
    delivered_at = fields.DatetimeField(null=True)
    rejected_at = fields.DatetimeField(null=True)
    cancelled_at = fields.DatetimeField(null=True)
    updated_at = fields.DatetimeField(auto_now=True)

    version = fields.IntField(default=0)  # Optimistic concurrency counter

    class Meta:
        table = "orders"
        indexes = [
            ("status", "created_at"),    # Status index: partitioned, newest-first listing
            ("created_at",),             # Date range queries
            ("customer_id",),            # Customer order history
            ("driver_id",),              # Driver workload
        ]

    def __str__(self):
        return f"{self.order_number} ({self.status})"


class OrderItem(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    order = fields.ForeignKeyField("models.Order", related_name="items")
    position = fields.IntField()  # Keeps the line order the customer placed
    menu_item_id = fields.CharField(max_length=64)
    name = fields.CharField(max_length=255)
    quantity = fields.IntField()
    unit_price = fields.DecimalField(max_digits=12, decimal_places=2)
    line_total = fields.DecimalField(max_digits=14, decimal_places=2)
    customizations = fields.JSONField(default=list)

    class Meta:
        table = "order_items"
        indexes = [
            ("order_id",),              # Order line items
            ("menu_item_id",),          # Menu item popularity
        ]
