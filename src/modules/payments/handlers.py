"""Event handlers for payment domain events.

Each handler logs the event and hands the customer email to Celery;
the request that caused the event never waits on the mail server.
"""

from __future__ import annotations

import structlog

from modules.payments.events import (
    PaymentCancelled,
    PaymentCompleted,
    PaymentEvent,
    PaymentFailed,
    PaymentRefunded,
)
from modules.payments.tasks import send_payment_notification
from shared.domain.bus import IEventHandler

logger = structlog.get_logger(__name__)


class PaymentNotificationHandler(IEventHandler[PaymentEvent]):
    def handle(self, event: PaymentEvent) -> None:
        logger.info(
            "payment.event_received",
            event_name=event.event_name,
            order_id=str(event.aggregate_id),
            payment_id=event.payment_id,
        )
        if event.user_id is None:
            return
        context = {
            "order_number": event.order_number,
            "amount": f"{event.amount:.2f}" if event.amount is not None else "",
            "trx_id": getattr(event, "trx_id", ""),
            "refund_trx_id": getattr(event, "refund_trx_id", ""),
        }
        send_payment_notification.delay(event.user_id, event.event_name, context)


payment_notification_handler = PaymentNotificationHandler()

HANDLED_EVENTS = (PaymentCompleted, PaymentFailed, PaymentCancelled, PaymentRefunded)
