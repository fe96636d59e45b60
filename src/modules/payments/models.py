"""Webhook de-duplication records.

One row per webhook event processed successfully.  ``event_id`` is
unique, so two workers racing on the same delivery cannot both record
it.  Rows expire after ``WEBHOOK_EVENT_TTL_SECONDS`` and are swept by
the ``payments.purge_expired_webhook_events`` task.
"""

from __future__ import annotations

from django.db import models

from modules.core.models import BaseModel


class ProcessedWebhookEvent(BaseModel):
    event_id: models.CharField = models.CharField(max_length=255, unique=True)
    provider: models.CharField = models.CharField(max_length=40)
    result = models.JSONField(default=dict, blank=True)
    expires_at = models.DateTimeField(db_index=True)

    class Meta:
        db_table = "processed_webhook_events"
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.provider}:{self.event_id}"
