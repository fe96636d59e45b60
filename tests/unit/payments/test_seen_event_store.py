"""Unit tests for the webhook seen-event stores (database and cache backends)."""

from __future__ import annotations

import pytest
from freezegun import freeze_time

from modules.payments.models import ProcessedWebhookEvent
from modules.payments.webhooks.store import (
    CacheSeenEventStore,
    DatabaseSeenEventStore,
    get_seen_event_store,
)

pytestmark = pytest.mark.unit


@pytest.fixture(params=["database", "cache"])
def store(request):
    if request.param == "database":
        return DatabaseSeenEventStore(ttl_seconds=3600)
    return CacheSeenEventStore(ttl_seconds=3600)


class TestSeenEventStore:
    def test_unknown_event_is_not_seen(self, store):
        assert store.has("bkash:TR001:Completed") is False
        assert store.get_result("bkash:TR001:Completed") is None

    def test_mark_then_has(self, store):
        assert store.mark("bkash:TR001:Completed", "bkash", {"applied": True}) is True
        assert store.has("bkash:TR001:Completed") is True
        assert store.get_result("bkash:TR001:Completed") == {"applied": True}

    def test_second_mark_loses(self, store):
        store.mark("bkash:TR001:Completed", "bkash", {"applied": True})
        assert store.mark("bkash:TR001:Completed", "bkash", {"applied": False}) is False
        assert store.get_result("bkash:TR001:Completed") == {"applied": True}

    def test_ids_are_independent(self, store):
        store.mark("bkash:TR001:Completed", "bkash")
        assert store.has("payment-callback:TR001:Completed") is False


class TestDatabaseSeenEventStore:
    def test_record_expires_after_ttl(self):
        store = DatabaseSeenEventStore(ttl_seconds=60)
        with freeze_time("2026-03-01 12:00:00"):
            store.mark("bkash:evt-1", "bkash")
        with freeze_time("2026-03-01 12:00:59"):
            assert store.has("bkash:evt-1") is True
        with freeze_time("2026-03-01 12:01:01"):
            assert store.has("bkash:evt-1") is False

    def test_expired_record_can_be_marked_again(self):
        store = DatabaseSeenEventStore(ttl_seconds=60)
        with freeze_time("2026-03-01 12:00:00"):
            store.mark("bkash:evt-1", "bkash", {"first": True})
        with freeze_time("2026-03-01 13:00:00"):
            assert store.mark("bkash:evt-1", "bkash", {"first": False}) is True
            assert store.get_result("bkash:evt-1") == {"first": False}
        assert ProcessedWebhookEvent.objects.count() == 1

    def test_purge_expired(self):
        store = DatabaseSeenEventStore(ttl_seconds=60)
        with freeze_time("2026-03-01 12:00:00"):
            store.mark("bkash:old", "bkash")
        with freeze_time("2026-03-01 12:30:00"):
            store.mark("bkash:new", "bkash")
            assert store.purge_expired() == 1
        assert list(ProcessedWebhookEvent.objects.values_list("event_id", flat=True)) == [
            "bkash:new"
        ]

    def test_ttl_defaults_to_setting(self, settings):
        settings.WEBHOOK_EVENT_TTL_SECONDS = 120
        assert DatabaseSeenEventStore().ttl_seconds == 120


class TestCacheSeenEventStore:
    def test_purge_is_left_to_the_cache(self):
        store = CacheSeenEventStore(ttl_seconds=60)
        store.mark("bkash:evt-1", "bkash")
        assert store.purge_expired() == 0
        assert store.has("bkash:evt-1") is True


class TestGetSeenEventStore:
    def test_database_backend(self, settings):
        settings.WEBHOOK_SEEN_EVENT_BACKEND = "database"
        assert isinstance(get_seen_event_store(), DatabaseSeenEventStore)

    def test_cache_backend(self, settings):
        settings.WEBHOOK_SEEN_EVENT_BACKEND = "cache"
        assert isinstance(get_seen_event_store(), CacheSeenEventStore)

    def test_unknown_backend(self, settings):
        settings.WEBHOOK_SEEN_EVENT_BACKEND = "memcached"
        with pytest.raises(ValueError):
            get_seen_event_store()
