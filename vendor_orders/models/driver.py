from tortoise import fields, models
import uuid


class DriverAssignment(models.Model):
    """Which driver currently holds an active order. At most one row per order."""
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    order = fields.OneToOneField("models.Order", related_name="driver_assignment")
    driver_id = fields.CharField(max_length=64)
    driver_phone = fields.CharField(max_length=32, null=True)
    assigned_at = fields.DatetimeField()

    class Meta:
        table = "driver_assignments"
        indexes = [
            ("driver_id",),  # One driver may hold many orders
        ]
