import asyncio
import logging
from vendor_orders.models.outbox import OutboxEvent
from vendor_orders.models.processed_event import ProcessedEvent
from vendor_orders.events.notification_hook import get_subscribers
from vendor_orders.consumers.notification_consumer import register_default_subscribers
from vendor_orders.core.db import init_db, close_db
from vendor_orders.core import config

log = logging.getLogger("outbox_poller")


class DeliveryError(Exception):
    """One or more subscribers failed; the event stays in the outbox for a retry."""


async def deliver_event(event: OutboxEvent) -> None:
    """
    Hands an OutboxEvent to every subscriber that has not processed it yet.
    Subscribers that succeed are recorded so a retry skips them.
    """
    failed = []
    for name, handler in get_subscribers().items():
        delivery_key = f"{event.id}:{name}"
        # Idempotency Check
        if await ProcessedEvent.filter(event_id=delivery_key).exists():
            continue
        try:
            await handler(event.event_type, event.payload)
        except Exception:
            log.exception(f"Subscriber '{name}' failed on {event.event_type} (ID: {event.id.hex[:8]}...)")
            failed.append(name)
            continue
        await ProcessedEvent.create(event_id=delivery_key)

    if failed:
        raise DeliveryError(f"Delivery failed for subscribers: {', '.join(failed)}")


async def poll_outbox_for_new_events() -> int:
    """
    Queries the Outbox table for unpublished events and attempts to deliver them.
    Returns how many events were published in this pass.
    """
    # Select events that haven't been published and haven't exceeded max attempts
    events = await (
        OutboxEvent.filter(published=False, attempts__lt=config.MAX_ATTEMPTS)
        .order_by('created_at')
        .limit(config.BATCH_SIZE)
    )

    published = 0
    for event in events:
        try:
            await deliver_event(event)
        except DeliveryError as e:
            # Increment attempts on failure and save
            event.attempts += 1
            await event.save(update_fields=['attempts'])
            if event.attempts >= config.MAX_ATTEMPTS:
                log.error(f"Giving up on event {event.id} after {event.attempts} attempts: {e}")
            continue

        # Mark the event as published on success
        event.published = True
        await event.save(update_fields=['published'])
        published += 1
    return published


async def run_outbox_poller():
    """Main loop for the poller. Expects the database to be initialised."""
    register_default_subscribers()
    log.info("--- Outbox Poller Started ---")

    while True:
        try:
            await poll_outbox_for_new_events()
        except Exception as e:
            log.error(f"Poller encountered a critical DB error: {e}.")

        await asyncio.sleep(config.POLLING_INTERVAL)


async def start_outbox_poller():
    """Standalone entry point: owns its own database connection."""
    await init_db(generate_schemas=False)
    try:
        await run_outbox_poller()
    finally:
        await close_db()

if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
    try:
        asyncio.run(start_outbox_poller())
    except KeyboardInterrupt:
        log.info("Poller service stopped.")
