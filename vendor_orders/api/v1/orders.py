import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from vendor_orders.core import config
from vendor_orders.core.security import require_admin, require_api_key
from vendor_orders.models.order import Order, OrderStatus
from vendor_orders.schemas.order import (
    AcceptRequest,
    CancelRequest,
    DispatchRequest,
    DriverAssignmentResponse,
    DriverAssignRequest,
    NotesUpdate,
    OrderCreateRequest,
    OrderDetailResponse,
    OrderPageResponse,
    OrderStatsResponse,
    OrderStatusUpdate,
    PaymentStatusUpdate,
    RejectRequest,
)
from vendor_orders.schemas.response import SuccessResponse
from vendor_orders.services.driver_tracker import assign, get_assignment, orders_for_driver, unassign
from vendor_orders.services.order_queries import list_orders, order_stats
from vendor_orders.services.order_store import create_order, get_order, set_payment_status, update_notes
from vendor_orders.services.transitions import (
    accept,
    apply_transition,
    cancel,
    dispatch,
    mark_delivered,
    mark_ready,
    reject,
    start_preparing,
)

router = APIRouter(dependencies=[Depends(require_api_key)])
log = logging.getLogger("vendor_orders.api")


async def _order_response(order: Order, message: Optional[str] = None) -> SuccessResponse:
    await order.fetch_related("items")
    data = OrderDetailResponse.from_order(order).model_dump(mode="json")
    return SuccessResponse(data=data, message=message)


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def create_order_endpoint(request_data: OrderCreateRequest):
    """Stores an order placed through the customer app. It starts in NEW."""
    order = await create_order(
        customer=request_data.customer.model_dump(),
        items=[item.model_dump() for item in request_data.items],
        order_number=request_data.order_number,
        order_type=request_data.order_type,
        payment_method=request_data.payment_method,
        payment_status=request_data.payment_status,
        total_amount=request_data.total_amount,
        special_requests=request_data.special_requests,
        created_at=request_data.created_at,
    )
    return await _order_response(order, "Order created.")


@router.get("/", response_model=SuccessResponse)
async def list_orders_endpoint(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    q: Optional[str] = Query(None, description="Matches order number, customer, address or item name."),
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
):
    """Paginated order list, newest first."""
    result = await list_orders(
        status=status_filter,
        query=q,
        date_from=date_from,
        date_to=date_to,
        page=page,
        page_size=page_size,
    )
    data = OrderPageResponse(
        items=[OrderDetailResponse.from_order(order) for order in result.items],
        page=result.page,
        page_size=result.page_size,
        total_count=result.total_count,
        has_more=result.has_more,
    ).model_dump(mode="json")
    return SuccessResponse(data=data)


@router.get("/stats", response_model=SuccessResponse)
async def order_stats_endpoint(period: str = "today"):
    """Dashboard counters for today, the last week or the last month."""
    stats = await order_stats(period)
    return SuccessResponse(data=OrderStatsResponse(**stats).model_dump(mode="json"))


@router.get("/driver/{driver_id}", response_model=SuccessResponse)
async def driver_orders_endpoint(driver_id: str):
    """Active orders a driver currently holds."""
    orders = await orders_for_driver(driver_id)
    data = [OrderDetailResponse.from_order(order).model_dump(mode="json") for order in orders]
    return SuccessResponse(data=data)


@router.get("/{order_id}", response_model=SuccessResponse)
async def get_order_endpoint(order_id: UUID):
    """Fetches details for a specific order."""
    order = await get_order(order_id)
    return await _order_response(order)


# ----------- Lifecycle commands -----------

@router.post("/{order_id}/accept", response_model=SuccessResponse)
async def accept_order_endpoint(order_id: UUID, payload: Optional[AcceptRequest] = None):
    order = await accept(order_id, payload.estimated_time if payload else None)
    log.info(f"Order {order.order_number} accepted.")
    return await _order_response(order, "Order accepted.")


@router.post("/{order_id}/start-preparing", response_model=SuccessResponse)
async def start_preparing_endpoint(order_id: UUID):
    order = await start_preparing(order_id)
    return await _order_response(order, "Order preparation started.")


@router.post("/{order_id}/reject", response_model=SuccessResponse)
async def reject_order_endpoint(order_id: UUID, payload: RejectRequest):
    order = await reject(order_id, payload.reason)
    log.info(f"Order {order.order_number} rejected: {order.rejection_reason}")
    return await _order_response(order, "Order rejected.")


@router.post("/{order_id}/mark-ready", response_model=SuccessResponse)
async def mark_ready_endpoint(order_id: UUID):
    order = await mark_ready(order_id)
    return await _order_response(order, "Order is ready.")


@router.post("/{order_id}/dispatch", response_model=SuccessResponse)
async def dispatch_order_endpoint(order_id: UUID, payload: DispatchRequest):
    order = await dispatch(order_id, payload.driver_id, payload.driver_phone)
    return await _order_response(order, f"Order out for delivery with driver {order.driver_id}.")


@router.post("/{order_id}/mark-delivered", response_model=SuccessResponse)
async def mark_delivered_endpoint(order_id: UUID):
    order = await mark_delivered(order_id)
    return await _order_response(order, "Order delivered.")


@router.post("/{order_id}/cancel", response_model=SuccessResponse, dependencies=[Depends(require_admin)])
async def cancel_order_endpoint(order_id: UUID, payload: Optional[CancelRequest] = None):
    """Admin-only cancellation before the order leaves the restaurant."""
    payload = payload or CancelRequest()
    order = await cancel(order_id, payload.reason, payload.cancelled_by)
    log.info(f"Order {order.order_number} cancelled by {order.cancelled_by.value}.")
    return await _order_response(order, "Order cancelled.")


@router.patch("/{order_id}/status", response_model=SuccessResponse)
async def update_status_endpoint(order_id: UUID, payload: OrderStatusUpdate, role: str = Depends(require_api_key)):
    """
    Generic status change used by the dashboard (e.g. 'READY', 'OUT_FOR_DELIVERY').
    Cancelling through this route still needs the admin key.
    """
    if payload.status == OrderStatus.CANCELLED:
        require_admin(role)
    order = await apply_transition(order_id, payload.status, payload.model_dump(exclude={"status"}, exclude_none=True))
    return await _order_response(order, f"Order status successfully updated to {order.status.value}")


# ----------- Driver assignment -----------

@router.get("/{order_id}/driver", response_model=SuccessResponse)
async def get_driver_endpoint(order_id: UUID):
    assignment = await get_assignment(order_id)
    if assignment is None:
        return SuccessResponse(data=None, message="No driver assigned.")
    return SuccessResponse(data=_assignment_data(assignment))


@router.put("/{order_id}/driver", response_model=SuccessResponse)
async def assign_driver_endpoint(order_id: UUID, payload: DriverAssignRequest):
    assignment = await assign(order_id, payload.driver_id, payload.driver_phone)
    return SuccessResponse(data=_assignment_data(assignment), message="Driver assigned.")


@router.delete("/{order_id}/driver", response_model=SuccessResponse)
async def unassign_driver_endpoint(order_id: UUID):
    await unassign(order_id)
    return SuccessResponse(message="Driver released.")


def _assignment_data(assignment) -> dict:
    return DriverAssignmentResponse(
        order_id=assignment.order_id,
        driver_id=assignment.driver_id,
        driver_phone=assignment.driver_phone,
        assigned_at=assignment.assigned_at,
    ).model_dump(mode="json")


# ----------- Payment -----------

@router.patch("/{order_id}/payment", response_model=SuccessResponse)
async def update_payment_endpoint(order_id: UUID, payload: PaymentStatusUpdate):
    order = await set_payment_status(order_id, payload.payment_status)
    return await _order_response(order, f"Payment status updated to {order.payment_status.value}")


@router.put("/{order_id}/notes", response_model=SuccessResponse)
async def update_notes_endpoint(order_id: UUID, payload: NotesUpdate):
    """Rewrites the order's special requests."""
    order = await update_notes(order_id, payload.notes)
    return await _order_response(order, "Order notes updated successfully")
