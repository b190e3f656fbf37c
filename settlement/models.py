import uuid

from django.db import models

from common.models import ReferencedModel


class SettlementEvent(ReferencedModel):
    """Idempotency record: one row per committed settlement that carried an event id."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    event_id = models.UUIDField(unique=True)
    event_type = models.CharField(max_length=64)
    created_by = models.CharField(max_length=150, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=["event_type", "created_at"], name="settle_event_type_created_idx")]
