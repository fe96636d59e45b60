"""Seen-event stores backing webhook de-duplication.

Both backends keep ``event_id -> result`` for ``WEBHOOK_EVENT_TTL_SECONDS``
(24 h by default) and are shared by every worker process:

- ``DatabaseSeenEventStore``: ``ProcessedWebhookEvent`` rows, unique on
  ``event_id``; expired rows are swept by a periodic task.
- ``CacheSeenEventStore``: Django cache (Redis in production); the cache
  expires keys on its own, so ``purge_expired`` is a no-op.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Optional

import structlog
from django.conf import settings
from django.core.cache import cache
from django.db import IntegrityError, transaction
from django.utils import timezone

from modules.payments.models import ProcessedWebhookEvent

logger = structlog.get_logger(__name__)

CACHE_PREFIX = "webhook:seen:"


class SeenEventStore(ABC):
    def __init__(self, ttl_seconds: int | None = None) -> None:
        self.ttl_seconds = (
            ttl_seconds
            if ttl_seconds is not None
            else settings.WEBHOOK_EVENT_TTL_SECONDS
        )

    @abstractmethod
    def has(self, event_id: str) -> bool: ...

    @abstractmethod
    def mark(
        self, event_id: str, provider: str, result: Optional[dict[str, Any]] = None
    ) -> bool:
        """Record *event_id*.  Returns ``False`` if it was already recorded."""

    @abstractmethod
    def get_result(self, event_id: str) -> Optional[dict[str, Any]]: ...

    @abstractmethod
    def purge_expired(self) -> int: ...


class DatabaseSeenEventStore(SeenEventStore):
    def has(self, event_id: str) -> bool:
        return ProcessedWebhookEvent.objects.filter(
            event_id=event_id, expires_at__gt=timezone.now()
        ).exists()

    def mark(
        self, event_id: str, provider: str, result: Optional[dict[str, Any]] = None
    ) -> bool:
        now = timezone.now()
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        # An expired row for the same id is replaced rather than kept.
        ProcessedWebhookEvent.objects.filter(
            event_id=event_id, expires_at__lte=now
        ).delete()
        try:
            with transaction.atomic():
                _, created = ProcessedWebhookEvent.objects.get_or_create(
                    event_id=event_id,
                    defaults={
                        "provider": provider,
                        "result": result or {},
                        "expires_at": expires_at,
                    },
                )
        except IntegrityError:
            created = False
        if not created:
            logger.info("webhook.already_marked", event_id=event_id)
        return created

    def get_result(self, event_id: str) -> Optional[dict[str, Any]]:
        record = ProcessedWebhookEvent.objects.filter(
            event_id=event_id, expires_at__gt=timezone.now()
        ).first()
        return record.result if record else None

    def purge_expired(self) -> int:
        deleted, _ = ProcessedWebhookEvent.objects.filter(
            expires_at__lte=timezone.now()
        ).delete()
        return deleted


class CacheSeenEventStore(SeenEventStore):
    def _key(self, event_id: str) -> str:
        return f"{CACHE_PREFIX}{event_id}"

    def has(self, event_id: str) -> bool:
        return cache.get(self._key(event_id)) is not None

    def mark(
        self, event_id: str, provider: str, result: Optional[dict[str, Any]] = None
    ) -> bool:
        value = {"provider": provider, "result": result or {}}
        # cache.add is atomic on Redis: only the first writer wins.
        created = cache.add(self._key(event_id), value, timeout=self.ttl_seconds)
        if not created:
            logger.info("webhook.already_marked", event_id=event_id)
        return created

    def get_result(self, event_id: str) -> Optional[dict[str, Any]]:
        value = cache.get(self._key(event_id))
        return value["result"] if value else None

    def purge_expired(self) -> int:
        return 0


def get_seen_event_store() -> SeenEventStore:
    backend = settings.WEBHOOK_SEEN_EVENT_BACKEND
    if backend == "cache":
        return CacheSeenEventStore()
    if backend == "database":
        return DatabaseSeenEventStore()
    raise ValueError(f"Unknown webhook seen-event backend: {backend!r}")
