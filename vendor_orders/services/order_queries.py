import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from tortoise.expressions import Q
from tortoise.queryset import QuerySet

from vendor_orders.core import config
from vendor_orders.core.exceptions import ValidationError
from vendor_orders.models.order import Order, OrderItem, OrderStatus
from vendor_orders.services.order_store import CENTS, as_utc, parse_enum, utcnow

log = logging.getLogger("vendor_orders.queries")

# Orders that never produced revenue
NON_REVENUE_STATUSES = frozenset({OrderStatus.REJECTED, OrderStatus.CANCELLED})
STATS_PERIODS = ("today", "week", "month")


@dataclass
class Page:
    items: List[Order]
    page: int
    page_size: int
    total_count: int

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total_count


def _check_page(page: int, page_size: int) -> None:
    if page < 1:
        raise ValidationError(f"page must be >= 1, got {page}.")
    if not 1 <= page_size <= config.MAX_PAGE_SIZE:
        raise ValidationError(f"page_size must be between 1 and {config.MAX_PAGE_SIZE}, got {page_size}.")


async def _paginate(queryset: QuerySet, page: int, page_size: int) -> Page:
    _check_page(page, page_size)
    total_count = await queryset.count()
    items = await (
        queryset.order_by("-created_at", "-order_number")
        .offset((page - 1) * page_size)
        .limit(page_size)
        .prefetch_related("items")
    )
    return Page(items=list(items), page=page, page_size=page_size, total_count=total_count)


async def _search_condition(text: str) -> Q:
    """Matches order number, customer name, delivery address, or any item name."""
    condition = (
        Q(order_number__icontains=text)
        | Q(customer_name__icontains=text)
        | Q(delivery_address__icontains=text)
    )
    item_order_ids = await OrderItem.filter(name__icontains=text).values_list("order_id", flat=True)
    if item_order_ids:
        condition = condition | Q(id__in=list(set(item_order_ids)))
    return condition


async def list_orders(
    status: Optional[OrderStatus] = None,
    query: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = 1,
    page_size: int = config.DEFAULT_PAGE_SIZE,
) -> Page:
    """Combined filter behind the vendor's order list; every filter is optional."""
    queryset = Order.all()
    if status is not None:
        queryset = queryset.filter(status=parse_enum(OrderStatus, status, "status"))
    if query is not None and query.strip():
        queryset = queryset.filter(await _search_condition(query.strip()))
    if date_from is not None:
        queryset = queryset.filter(created_at__gte=as_utc(date_from))
    if date_to is not None:
        queryset = queryset.filter(created_at__lte=as_utc(date_to))
    if date_from is not None and date_to is not None and as_utc(date_from) > as_utc(date_to):
        raise ValidationError("date_from must not be after date_to.")
    return await _paginate(queryset, page, page_size)


async def list_by_status(status: OrderStatus, page: int = 1, page_size: int = config.DEFAULT_PAGE_SIZE) -> Page:
    return await list_orders(status=status, page=page, page_size=page_size)


async def search(query: str, page: int = 1, page_size: int = config.DEFAULT_PAGE_SIZE) -> Page:
    if query is None or not query.strip():
        raise ValidationError("Search query must not be empty.")
    return await list_orders(query=query, page=page, page_size=page_size)


async def list_by_date_range(
    start: datetime,
    end: datetime,
    page: int = 1,
    page_size: int = config.DEFAULT_PAGE_SIZE,
) -> Page:
    """Orders created within [start, end], both ends inclusive."""
    if start is None or end is None:
        raise ValidationError("Both start and end are required.")
    return await list_orders(date_from=start, date_to=end, page=page, page_size=page_size)


def _period_bounds(period: str, now: datetime):
    if period == "today":
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return start, start + timedelta(days=1) - timedelta(microseconds=1)
    if period == "week":
        return now - timedelta(days=7), now
    if period == "month":
        return now - timedelta(days=30), now
    raise ValidationError(f"period must be one of {', '.join(STATS_PERIODS)}, got {period!r}.")


async def order_stats(period: str = "today", now: Optional[datetime] = None) -> Dict:
    """Order counts and revenue for the dashboard cards."""
    start, end = _period_bounds(period, as_utc(now) if now else utcnow())
    rows = await Order.filter(created_at__gte=start, created_at__lte=end).values("status", "total_amount")

    breakdown = {status.value: 0 for status in OrderStatus}
    revenue = Decimal("0")
    revenue_orders = 0
    for row in rows:
        status = OrderStatus(row["status"])
        breakdown[status.value] += 1
        if status not in NON_REVENUE_STATUSES:
            revenue += Decimal(str(row["total_amount"]))
            revenue_orders += 1

    average = (revenue / revenue_orders).quantize(CENTS) if revenue_orders else Decimal("0.00")
    return {
        "period": period,
        "start": start,
        "end": end,
        "total_orders": len(rows),
        "total_revenue": revenue.quantize(CENTS),
        "average_order_value": average,
        "status_breakdown": breakdown,
    }
