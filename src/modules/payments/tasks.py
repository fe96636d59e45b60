"""Asynchronous tasks for the payments module."""

import structlog
from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail

logger = structlog.get_logger(__name__)

NOTIFICATION_SUBJECTS = {
    "PaymentCompleted": "Payment received for order {order_number}",
    "PaymentFailed": "Payment failed for order {order_number}",
    "PaymentCancelled": "Payment cancelled for order {order_number}",
    "PaymentRefunded": "Refund issued for order {order_number}",
}

NOTIFICATION_BODIES = {
    "PaymentCompleted": (
        "We received your bKash payment of BDT {amount} (TrxID: {trx_id}). "
        "Your order is now being processed."
    ),
    "PaymentFailed": (
        "Your bKash payment could not be completed. "
        "You can retry the payment from your orders."
    ),
    "PaymentCancelled": (
        "Your bKash payment was cancelled. "
        "If this was a mistake you can retry the payment from your orders."
    ),
    "PaymentRefunded": (
        "BDT {amount} has been refunded to your bKash account "
        "(Refund TrxID: {refund_trx_id})."
    ),
}


@shared_task(name="payments.purge_expired_webhook_events")
def purge_expired_webhook_events():
    """Delete seen-event records older than the de-duplication window."""
    from modules.payments.webhooks.store import get_seen_event_store

    deleted = get_seen_event_store().purge_expired()
    logger.info("webhook.events_purged", deleted=deleted)
    return {"deleted": deleted}


@shared_task(name="payments.reconcile_stuck_payments")
def reconcile_stuck_payments():
    """Query the gateway for orders left mid-execution."""
    from modules.payments.services import PaymentService

    reconciled = PaymentService().reconcile_stuck_payments()
    return {"reconciled": reconciled}


@shared_task(name="payments.send_payment_notification")
def send_payment_notification(user_id, event_name, context):
    """Email the customer about a payment event.  Failures are logged only."""
    from django.contrib.auth import get_user_model

    log = logger.bind(user_id=user_id, event_name=event_name)
    user = get_user_model().objects.filter(pk=user_id).first()
    if user is None or not user.email:
        log.info("payment.notification_skipped", reason="no_email")
        return {"sent": False}

    subject = NOTIFICATION_SUBJECTS[event_name].format(**context)
    body = NOTIFICATION_BODIES[event_name].format(**context)
    greeting = f"Hi {user.first_name or user.username},\n\n"
    try:
        send_mail(
            subject=f"[{settings.STORE_NAME}] {subject}",
            message=f"{greeting}{body}\n\n{settings.STORE_NAME}",
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[user.email],
        )
    except Exception as exc:  # noqa: BLE001
        log.error("payment.notification_failed", error=str(exc))
        return {"sent": False}

    log.info("payment.notification_sent")
    return {"sent": True}
