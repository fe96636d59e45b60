"""Integration tests for the Celery configuration and periodic payment tasks."""

from datetime import timedelta

import pytest
from django.core import mail
from django.utils import timezone
from freezegun import freeze_time

from modules.orders.constants import PaymentState
from modules.orders.models import Order
from modules.payments.models import ProcessedWebhookEvent

pytestmark = pytest.mark.integration


@pytest.fixture(autouse=True)
def _celery_eager(settings):
    """Run tasks synchronously inside the test process."""
    settings.CELERY_TASK_ALWAYS_EAGER = True
    settings.CELERY_TASK_EAGER_PROPAGATES = True


class TestCeleryConfig:
    """Celery loads through Django settings."""

    def test_celery_app_is_importable(self):
        from config.celery import app

        assert app.main == "storefront"

    def test_celery_app_exported_from_init(self):
        from config import celery_app

        assert celery_app.main == "storefront"

    def test_celery_serializer_is_json(self, settings):
        assert settings.CELERY_TASK_SERIALIZER == "json"
        assert settings.CELERY_RESULT_SERIALIZER == "json"
        assert settings.CELERY_ACCEPT_CONTENT == ["json"]

    def test_celery_timezone_matches_django(self, settings):
        assert settings.CELERY_TIMEZONE == settings.TIME_ZONE

    def test_payment_tasks_are_scheduled(self, settings):
        scheduled = {entry["task"] for entry in settings.CELERY_BEAT_SCHEDULE.values()}
        assert scheduled == {
            "payments.purge_expired_webhook_events",
            "payments.reconcile_stuck_payments",
        }


class TestTaskDispatch:
    def test_scheduled_tasks_are_registered(self, settings):
        import modules.payments.tasks  # noqa: F401
        from config.celery import app

        for entry in settings.CELERY_BEAT_SCHEDULE.values():
            assert entry["task"] in app.tasks

    def test_purge_runs_through_the_registered_name(self):
        from config.celery import app

        ProcessedWebhookEvent.objects.create(
            event_id="bkash:TR1:Completed",
            provider="bkash",
            expires_at=timezone.now() - timedelta(minutes=1),
        )

        result = app.tasks["payments.purge_expired_webhook_events"].delay()

        assert result.successful()
        assert result.result == {"deleted": 1}
        assert not ProcessedWebhookEvent.objects.exists()


class TestPurgeExpiredWebhookEvents:
    def test_only_expired_records_are_deleted(self):
        from modules.payments.tasks import purge_expired_webhook_events

        now = timezone.now()
        ProcessedWebhookEvent.objects.create(
            event_id="bkash:old", provider="bkash", expires_at=now - timedelta(hours=1)
        )
        ProcessedWebhookEvent.objects.create(
            event_id="bkash:fresh", provider="bkash", expires_at=now + timedelta(hours=1)
        )

        result = purge_expired_webhook_events.delay()

        assert result.result == {"deleted": 1}
        assert list(
            ProcessedWebhookEvent.objects.values_list("event_id", flat=True)
        ) == ["bkash:fresh"]


class TestReconcileStuckPayments:
    def _stick(self, order):
        with freeze_time(timezone.now() - timedelta(minutes=30)):
            Order.objects.filter(id=order.id).update(
                payment_state=PaymentState.EXECUTING, updated_at=timezone.now()
            )

    def test_stuck_payment_completed_at_gateway_is_marked_paid(
        self, bkash_order, mock_gateway
    ):
        from modules.payments.tasks import reconcile_stuck_payments

        self._stick(bkash_order)
        mock_gateway.configure(query_status="Completed")

        result = reconcile_stuck_payments.delay()

        assert result.result == {"reconciled": 1}
        bkash_order.refresh_from_db()
        assert bkash_order.payment_state == PaymentState.PAID

    def test_stuck_payment_still_open_is_reopened(self, bkash_order, mock_gateway):
        from modules.payments.tasks import reconcile_stuck_payments

        self._stick(bkash_order)

        reconcile_stuck_payments.delay()

        bkash_order.refresh_from_db()
        assert bkash_order.payment_state == PaymentState.INTENT_CREATED

    def test_recent_executing_payment_is_left_alone(self, bkash_order, mock_gateway):
        from modules.payments.tasks import reconcile_stuck_payments

        Order.objects.filter(id=bkash_order.id).update(
            payment_state=PaymentState.EXECUTING
        )

        result = reconcile_stuck_payments.delay()

        assert result.result == {"reconciled": 0}
        assert not [c for c in mock_gateway.calls if c["method"] == "query_payment"]


class TestPaymentNotificationTask:
    def test_sends_email_to_customer(self, user):
        from modules.payments.tasks import send_payment_notification

        result = send_payment_notification.delay(
            user.pk,
            "PaymentCompleted",
            {"order_number": "ORD-20260110-A1B2C3", "amount": "5620.00", "trx_id": "TRX1"},
        )

        assert result.result == {"sent": True}
        assert len(mail.outbox) == 1
        message = mail.outbox[0]
        assert message.to == ["nusrat@example.com"]
        assert "ORD-20260110-A1B2C3" in message.subject
        assert "TRX1" in message.body

    def test_user_without_email_is_skipped(self, user):
        from modules.payments.tasks import send_payment_notification

        user.email = ""
        user.save()

        result = send_payment_notification.delay(
            user.pk, "PaymentFailed", {"order_number": "ORD-1"}
        )

        assert result.result == {"sent": False}
        assert mail.outbox == []
