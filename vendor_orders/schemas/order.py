from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, Field

from vendor_orders.models.order import (
    CancelledBy,
    Order,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
)


class CustomerRef(BaseModel):
    """Customer owned by the ordering system, referenced by id."""
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    address: Optional[str] = None


class OrderItemRequest(BaseModel):
    """Schema for a single line item in the order request."""
    menu_item_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    customizations: List[Any] = Field(default_factory=list)


class OrderCreateRequest(BaseModel):
    """Schema for an order handed over by the customer-facing ordering system."""
    order_number: Optional[str] = Field(None, min_length=1, max_length=32)
    customer: CustomerRef
    items: List[OrderItemRequest] = Field(..., min_length=1)
    order_type: OrderType = OrderType.DELIVERY
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_status: PaymentStatus = PaymentStatus.PENDING
    total_amount: Optional[Decimal] = None
    special_requests: Optional[str] = None
    created_at: Optional[datetime] = None


class AcceptRequest(BaseModel):
    estimated_time: Optional[int] = Field(None, gt=0, description="Preparation estimate in minutes.")


class RejectRequest(BaseModel):
    reason: str


class DispatchRequest(BaseModel):
    driver_id: str
    driver_phone: str


class CancelRequest(BaseModel):
    reason: Optional[str] = None
    cancelled_by: CancelledBy = CancelledBy.RESTAURANT


class OrderStatusUpdate(BaseModel):
    """Generic status change; only the fields the target transition needs are read."""
    status: OrderStatus
    estimated_time: Optional[int] = None
    reason: Optional[str] = None
    driver_id: Optional[str] = None
    driver_phone: Optional[str] = None
    cancelled_by: Optional[CancelledBy] = None


class DriverAssignRequest(BaseModel):
    driver_id: str
    driver_phone: Optional[str] = None


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus


class NotesUpdate(BaseModel):
    """Replaces the special requests; null or blank clears them."""
    notes: Optional[str] = Field(None, max_length=500)


class OrderItemResponse(BaseModel):
    menu_item_id: str
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    customizations: List[Any]


class OrderDetailResponse(BaseModel):
    """Schema for fetching detailed order information."""
    id: uuid.UUID
    order_number: str
    status: OrderStatus
    customer: CustomerRef
    order_type: OrderType
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    total_amount: Decimal
    items: List[OrderItemResponse]
    special_requests: Optional[str] = None
    estimated_time: Optional[int] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[CancelledBy] = None
    driver_id: Optional[str] = None
    driver_phone: Optional[str] = None
    created_at: datetime
    accepted_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    out_for_delivery_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderDetailResponse":
        """Builds the response from an order whose items are already fetched."""
        items = sorted(order.items, key=lambda item: item.position)
        return cls(
            id=order.id,
            order_number=order.order_number,
            status=order.status,
            customer=CustomerRef(
                id=order.customer_id,
                name=order.customer_name,
                phone=order.customer_phone,
                address=order.delivery_address,
            ),
            order_type=order.order_type,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            total_amount=order.total_amount,
            items=[
                OrderItemResponse(
                    menu_item_id=item.menu_item_id,
                    name=item.name,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    line_total=item.line_total,
                    customizations=item.customizations or [],
                )
                for item in items
            ],
            special_requests=order.special_requests,
            estimated_time=order.estimated_time,
            rejection_reason=order.rejection_reason,
            cancellation_reason=order.cancellation_reason,
            cancelled_by=order.cancelled_by,
            driver_id=order.driver_id,
            driver_phone=order.driver_phone,
            created_at=order.created_at,
            accepted_at=order.accepted_at,
            ready_at=order.ready_at,
            out_for_delivery_at=order.out_for_delivery_at,
            delivered_at=order.delivered_at,
            rejected_at=order.rejected_at,
            cancelled_at=order.cancelled_at,
        )


class OrderPageResponse(BaseModel):
    items: List[OrderDetailResponse]
    page: int
    page_size: int
    total_count: int
    has_more: bool


class DriverAssignmentResponse(BaseModel):
    order_id: uuid.UUID
    driver_id: str
    driver_phone: Optional[str] = None
    assigned_at: datetime


class OrderStatsResponse(BaseModel):
    period: str
    start: datetime
    end: datetime
    total_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
    status_breakdown: Dict[str, int]
