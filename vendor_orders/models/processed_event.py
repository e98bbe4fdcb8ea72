from tortoise import fields, models
import uuid


class ProcessedEvent(models.Model):
    """
    Delivery ledger for subscribers. Stores '<outbox event id>:<subscriber>' so a
    retried event is not handed again to a subscriber that already took it.
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    event_id = fields.CharField(max_length=192, unique=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "processed_events"
