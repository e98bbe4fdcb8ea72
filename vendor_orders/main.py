import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, status
from vendor_orders.core.db import init_db, close_db
from vendor_orders.api.v1.orders import router as orders_router
from vendor_orders.core.config import PROJECT_NAME, VERSION, LOG_LEVEL, LOG_FORMAT, RUN_OUTBOX_POLLER
from vendor_orders.core.exception_handlers import setup_exception_handlers
from vendor_orders.consumers.outbox_poller import run_outbox_poller

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
log = logging.getLogger("vendor_orders")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown events."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    await init_db() # Connect to DB and generate schemas
    poller = asyncio.create_task(run_outbox_poller()) if RUN_OUTBOX_POLLER else None
    yield
    if poller:
        poller.cancel()
        try:
            await poller
        except asyncio.CancelledError:
            pass
    await close_db()
    log.info(f"{PROJECT_NAME} stopped.")

app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    # Configure API documentation and paths
    docs_url="/docs",
    redoc_url="/redoc"
)

# Include routers for modular API structure
app.include_router(orders_router, prefix="/api/v1/orders", tags=["Order Lifecycle"])


setup_exception_handlers(app)

@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Simple health check endpoint."""
    return {"status": "ok", "app_name": PROJECT_NAME}
