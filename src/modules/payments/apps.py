from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.payments"
    label = "payments"

    def ready(self) -> None:
        from modules.payments.handlers import (
            HANDLED_EVENTS,
            payment_notification_handler,
        )
        from shared.infrastructure.bus import event_bus

        for event_class in HANDLED_EVENTS:
            event_bus.subscribe(event_class, payment_notification_handler)
