"""Payment URL configuration."""

from __future__ import annotations

from django.urls import path

from modules.payments.views import (
    BkashCallbackView,
    BkashWebhookView,
    PaymentCallbackWebhookView,
    mock_checkout_page,
)

urlpatterns = [
    path(
        "payments/bkash/callback/",
        BkashCallbackView.as_view(),
        name="bkash_callback",
    ),
    path("payments/bkash/mock/", mock_checkout_page, name="bkash_mock_page"),
    path("webhooks/bkash/", BkashWebhookView.as_view(), name="webhook_bkash"),
    path(
        "webhooks/payment-callback/",
        PaymentCallbackWebhookView.as_view(),
        name="webhook_payment_callback",
    ),
]
