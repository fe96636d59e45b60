"""Asynchronous tasks for the orders module."""

import structlog
from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail

logger = structlog.get_logger(__name__)

MESSAGES = {
    "created": (
        "Order {order_number} received",
        "Thanks for your order {order_number}. We will let you know when it ships.",
    ),
    "cancelled": (
        "Order {order_number} cancelled",
        "Your order {order_number} has been cancelled.",
    ),
    "shipped": (
        "Order {order_number} shipped",
        "Good news: your order {order_number} is on its way.",
    ),
    "delivered": (
        "Order {order_number} delivered",
        "Your order {order_number} has been delivered. Enjoy!",
    ),
}


@shared_task(name="orders.send_order_notification")
def send_order_notification(user_id, kind, context):
    """Email the customer about an order lifecycle event."""
    from django.contrib.auth import get_user_model

    log = logger.bind(user_id=user_id, kind=kind)
    user = get_user_model().objects.filter(pk=user_id).first()
    if user is None or not user.email:
        log.info("order.notification_skipped", reason="no_email")
        return {"sent": False}

    subject, body = (text.format(**context) for text in MESSAGES[kind])
    try:
        send_mail(
            subject=f"[{settings.STORE_NAME}] {subject}",
            message=f"Hi {user.first_name or user.username},\n\n{body}\n\n{settings.STORE_NAME}",
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[user.email],
        )
    except Exception as exc:  # noqa: BLE001
        log.error("order.notification_failed", error=str(exc))
        return {"sent": False}

    log.info("order.notification_sent")
    return {"sent": True}
