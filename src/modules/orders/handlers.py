"""Event handlers for Orders domain events."""

from __future__ import annotations

import structlog

from modules.orders.constants import OrderStatus
from modules.orders.events import OrderCancelled, OrderCreated, OrderStatusChanged
from modules.orders.tasks import send_order_notification
from shared.domain.bus import IEventHandler

logger = structlog.get_logger(__name__)

# Status changes the customer is emailed about.
NOTIFIED_STATUSES = {OrderStatus.SHIPPED, OrderStatus.DELIVERED}


class OrderCreatedHandler(IEventHandler[OrderCreated]):
    def handle(self, event: OrderCreated) -> None:
        logger.info(
            "order.event.created",
            order_id=str(event.aggregate_id),
            payment_method=event.payment_method,
        )
        if event.user_id is not None:
            send_order_notification.delay(
                event.user_id, "created", {"order_number": event.order_number}
            )


class OrderCancelledHandler(IEventHandler[OrderCancelled]):
    def handle(self, event: OrderCancelled) -> None:
        logger.info("order.event.cancelled", order_id=str(event.aggregate_id))
        if event.user_id is not None:
            send_order_notification.delay(
                event.user_id, "cancelled", {"order_number": event.order_number}
            )


class OrderStatusChangedHandler(IEventHandler[OrderStatusChanged]):
    def handle(self, event: OrderStatusChanged) -> None:
        logger.info(
            "order.event.status_changed",
            order_id=str(event.aggregate_id),
            old_status=event.old_status,
            new_status=event.new_status,
        )
        if event.user_id is not None and event.new_status in NOTIFIED_STATUSES:
            send_order_notification.delay(
                event.user_id, event.new_status, {"order_number": event.order_number}
            )


order_created_handler = OrderCreatedHandler()
order_cancelled_handler = OrderCancelledHandler()
order_status_changed_handler = OrderStatusChangedHandler()

SUBSCRIPTIONS = (
    (OrderCreated, order_created_handler),
    (OrderCancelled, order_cancelled_handler),
    (OrderStatusChanged, order_status_changed_handler),
)
