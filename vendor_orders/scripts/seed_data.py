# vendor_orders/scripts/seed_data.py
import asyncio
import logging
from decimal import Decimal
from vendor_orders.core.config import LOG_FORMAT
from vendor_orders.core.db import init_db, close_db
from vendor_orders.core.exceptions import DuplicateOrder
from vendor_orders.models.order import OrderStatus
from vendor_orders.services.order_store import create_order, get_order_by_number
from vendor_orders.services.transitions import accept, mark_ready

log = logging.getLogger("seed_data")

DEMO_ORDERS = [
    {
        "order_number": "ORD001",
        "customer": {"id": "cust-001", "name": "Rahul Sharma", "phone": "+919876543210", "address": "12 MG Road, Bengaluru"},
        "items": [
            {"menu_item_id": "menu-paneer-wrap", "name": "Paneer Wrap", "quantity": 2, "unit_price": Decimal("149.00")},
            {"menu_item_id": "menu-chili-rice", "name": "Chili Paneer Rice", "quantity": 1, "unit_price": Decimal("152.00")},
        ],
    },
    {
        "order_number": "ORD002",
        "customer": {"id": "cust-002", "name": "Priya Patel", "phone": "+919812345678", "address": "4 Park Street, Kolkata"},
        "items": [
            {"menu_item_id": "menu-biryani", "name": "Chicken Biryani", "quantity": 1, "unit_price": Decimal("249.00")},
        ],
        "payment_method": "UPI",
    },
    {
        "order_number": "ORD003",
        "customer": {"id": "cust-003", "name": "Amit Kumar", "phone": "+919900112233", "address": "88 Linking Road, Mumbai"},
        "items": [
            {"menu_item_id": "menu-cold-drink", "name": "Cold Drink", "quantity": 3, "unit_price": Decimal("49.00")},
        ],
    },
]

async def seed():
    for demo in DEMO_ORDERS:
        try:
            order = await create_order(**demo)
        except DuplicateOrder:
            log.info(f"{demo['order_number']} already present, skipping.")
            continue
        log.info(f"Order {order.order_number}: {order.id} total {order.total_amount}")

    # Leave one order further along the lifecycle for the dashboard
    order = await get_order_by_number("ORD003")
    if order.status == OrderStatus.NEW:
        await accept(order.id, estimated_time=20)
        await mark_ready(order.id)

    log.info("Orders seeded.")

async def main():
    await init_db()
    await seed()
    await close_db()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    asyncio.run(main())
