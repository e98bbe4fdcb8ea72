from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from tortoise import Tortoise

from vendor_orders.core.db import init_db
from vendor_orders.events import notification_hook
from vendor_orders.services.order_store import create_order

BASE_TIME = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
async def db():
    """Fresh in-memory database per test."""
    await init_db(db_url="sqlite://:memory:")
    yield
    await Tortoise._drop_databases()


@pytest.fixture(autouse=True)
def no_subscribers():
    notification_hook.clear_subscribers()
    yield
    notification_hook.clear_subscribers()


@pytest.fixture
def make_order(db):
    """Factory creating orders with two default items totalling 450.00."""
    async def _make(order_number=None, minutes=0, items=None, customer=None, **kwargs):
        return await create_order(
            customer=customer or {
                "id": "cust-1",
                "name": "Rahul Sharma",
                "phone": "+919876543210",
                "address": "12 MG Road, Bengaluru",
            },
            items=items or [
                {"menu_item_id": "m-1", "name": "Paneer Wrap", "quantity": 2, "unit_price": Decimal("150.00")},
                {"menu_item_id": "m-2", "name": "Chili Paneer Rice", "quantity": 1, "unit_price": Decimal("150.00")},
            ],
            order_number=order_number,
            created_at=BASE_TIME + timedelta(minutes=minutes),
            **kwargs,
        )
    return _make
