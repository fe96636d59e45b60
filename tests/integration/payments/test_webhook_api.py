"""Integration tests for the signed webhook endpoints.

Covers:
- Signature verification (HMAC and timestamped) before any state change.
- Idempotent delivery: a replayed event is acknowledged without re-applying.
- A delivery that fails half-way is not recorded, so the retry applies it.
- The generic payment-callback format resolved through the order id.
"""

from __future__ import annotations

import hashlib
import hmac
import json

import pytest
from freezegun import freeze_time

from modules.orders.constants import PaymentMethod, PaymentState
from modules.orders.models import Order, PaymentDetails
from modules.payments.gateway.mock import UNAVAILABLE
from modules.payments.models import ProcessedWebhookEvent

pytestmark = [pytest.mark.integration, pytest.mark.django_db]

BKASH_URL = "/api/v1/webhooks/bkash/"
CALLBACK_URL = "/api/v1/webhooks/payment-callback/"
BKASH_SECRET = "test-bkash-webhook-secret"
CALLBACK_SECRET = "test-payment-webhook-secret"
FROZEN_NOW = "2026-03-01 12:00:00"
FROZEN_TS = 1772366400


def _sign(body: bytes, secret: str = BKASH_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _body(**payload) -> bytes:
    return json.dumps(payload).encode()


def _payment_id(order) -> str:
    return PaymentDetails.objects.get(order_id=order.id).payment_id


def _state(order) -> str:
    return Order.objects.values_list("payment_state", flat=True).get(id=order.id)


def _post_bkash(client, body: bytes, signature: str | None = None):
    return client.post(
        BKASH_URL,
        data=body,
        content_type="application/json",
        HTTP_X_BKASH_SIGNATURE=_sign(body) if signature is None else signature,
    )


def _query_calls(gateway) -> int:
    return sum(call["method"] == "query_payment" for call in gateway.calls)


class TestBkashWebhook:
    def test_completed_notification_marks_order_paid(
        self, api_client, bkash_order, mock_gateway
    ):
        mock_gateway.configure(query_status="Completed")
        body = _body(
            paymentID=_payment_id(bkash_order),
            transactionStatus="Completed",
            trxID="BFD90JRLST",
            amount="5620.00",
        )

        response = _post_bkash(api_client, body)

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert _state(bkash_order) == PaymentState.PAID
        record = ProcessedWebhookEvent.objects.get()
        assert record.event_id == f"bkash:{_payment_id(bkash_order)}:Completed"
        assert record.provider == "bkash"
        assert record.result["applied"] is True

    def test_replayed_notification_is_applied_once(
        self, api_client, bkash_order, product, mock_gateway
    ):
        mock_gateway.configure(query_status="Completed")
        body = _body(paymentID=_payment_id(bkash_order), transactionStatus="Completed")

        first = _post_bkash(api_client, body)
        second = _post_bkash(api_client, body)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json() == {"received": True, "duplicate": True}
        assert _query_calls(mock_gateway) == 1
        assert ProcessedWebhookEvent.objects.count() == 1
        product.refresh_from_db()
        assert product.stock_quantity == 2

    def test_failed_notification_releases_stock(self, api_client, bkash_order, product):
        body = _body(paymentID=_payment_id(bkash_order), transactionStatus="Failed")

        response = _post_bkash(api_client, body)

        assert response.status_code == 200
        assert _state(bkash_order) == PaymentState.FAILED
        product.refresh_from_db()
        assert product.stock_quantity == 5

    def test_failed_notification_after_payment_is_ignored(
        self, api_client, bkash_order, mock_gateway
    ):
        mock_gateway.configure(query_status="Completed")
        payment_id = _payment_id(bkash_order)
        _post_bkash(api_client, _body(paymentID=payment_id, transactionStatus="Completed"))

        response = _post_bkash(
            api_client, _body(paymentID=payment_id, transactionStatus="Failed")
        )

        assert response.status_code == 200
        assert _state(bkash_order) == PaymentState.PAID
        record = ProcessedWebhookEvent.objects.get(event_id=f"bkash:{payment_id}:Failed")
        assert record.result["applied"] is False

    def test_tampered_body_is_rejected_without_state_change(
        self, api_client, bkash_order, mock_gateway
    ):
        mock_gateway.configure(query_status="Completed")
        signed = _body(paymentID=_payment_id(bkash_order), transactionStatus="Failed")
        tampered = _body(paymentID=_payment_id(bkash_order), transactionStatus="Completed")

        response = _post_bkash(api_client, tampered, signature=_sign(signed))

        assert response.status_code == 401
        assert _state(bkash_order) == PaymentState.INTENT_CREATED
        assert _query_calls(mock_gateway) == 0
        assert not ProcessedWebhookEvent.objects.exists()

    def test_missing_signature_is_rejected(self, api_client, bkash_order):
        body = _body(paymentID=_payment_id(bkash_order), transactionStatus="Failed")
        response = _post_bkash(api_client, body, signature="")
        assert response.status_code == 401

    def test_unconfigured_secret_returns_server_error(self, api_client, bkash_order, settings):
        settings.BKASH_WEBHOOK_SECRET = ""
        body = _body(paymentID=_payment_id(bkash_order), transactionStatus="Failed")

        response = _post_bkash(api_client, body)

        assert response.status_code == 500
        assert _state(bkash_order) == PaymentState.INTENT_CREATED

    def test_invalid_json(self, api_client):
        response = _post_bkash(api_client, b"{not json")
        assert response.status_code == 400

    def test_missing_status(self, api_client, bkash_order):
        response = _post_bkash(api_client, _body(paymentID=_payment_id(bkash_order)))
        assert response.status_code == 400

    def test_unknown_payment_id(self, api_client):
        body = _body(paymentID="MOCK-PAY-unknown", transactionStatus="Failed")

        response = _post_bkash(api_client, body)

        assert response.status_code == 404
        assert not ProcessedWebhookEvent.objects.exists()

    def test_unconfirmed_delivery_is_retried(self, api_client, bkash_order, mock_gateway):
        body = _body(paymentID=_payment_id(bkash_order), transactionStatus="Completed")
        mock_gateway.configure(query_outcome=UNAVAILABLE)

        first = _post_bkash(api_client, body)

        assert first.status_code == 500
        assert not ProcessedWebhookEvent.objects.exists()
        assert _state(bkash_order) == PaymentState.INTENT_CREATED

        mock_gateway.configure(query_outcome="succeed", query_status="Completed")
        second = _post_bkash(api_client, body)

        assert second.status_code == 200
        assert second.json() == {"received": True}
        assert _state(bkash_order) == PaymentState.PAID


class TestTimestampedSignatures:
    @pytest.fixture(autouse=True)
    def _timestamped(self, settings):
        settings.BKASH_WEBHOOK_SIGNATURE_SCHEME = "timestamped"

    @staticmethod
    def _header(body: bytes, timestamp: int) -> str:
        signature = _sign(f"{timestamp}.".encode() + body)
        return f"t={timestamp},v1={signature}"

    @freeze_time(FROZEN_NOW)
    def test_fresh_signature_is_accepted(self, api_client, bkash_order):
        body = _body(paymentID=_payment_id(bkash_order), transactionStatus="Failed")

        response = _post_bkash(api_client, body, signature=self._header(body, FROZEN_TS))

        assert response.status_code == 200
        assert _state(bkash_order) == PaymentState.FAILED

    @freeze_time(FROZEN_NOW)
    def test_expired_signature_is_rejected(self, api_client, bkash_order):
        body = _body(paymentID=_payment_id(bkash_order), transactionStatus="Failed")

        response = _post_bkash(
            api_client, body, signature=self._header(body, FROZEN_TS - 600)
        )

        assert response.status_code == 401
        assert _state(bkash_order) == PaymentState.INTENT_CREATED


class TestPaymentCallbackWebhook:
    @staticmethod
    def _post(client, body: bytes, header: str = "HTTP_X_WEBHOOK_SIGNATURE"):
        return client.post(
            CALLBACK_URL,
            data=body,
            content_type="application/json",
            **{header: _sign(body, CALLBACK_SECRET)},
        )

    def test_completed_status_resolved_by_order_id(
        self, api_client, bkash_order, mock_gateway
    ):
        mock_gateway.configure(query_status="Completed")
        body = _body(
            transactionId="GW-TX-1",
            orderId=str(bkash_order.id),
            status="completed",
            amount="5620.00",
        )

        response = self._post(api_client, body)

        assert response.status_code == 200
        assert _state(bkash_order) == PaymentState.PAID
        record = ProcessedWebhookEvent.objects.get()
        assert record.event_id == "payment-callback:GW-TX-1"

    def test_alternate_signature_header(self, api_client, bkash_order):
        body = _body(transactionId="GW-TX-2", orderId=str(bkash_order.id), status="failed")

        response = self._post(api_client, body, header="HTTP_X_SIGNATURE")

        assert response.status_code == 200
        assert _state(bkash_order) == PaymentState.FAILED

    def test_bkash_secret_does_not_sign_generic_callbacks(self, api_client, bkash_order):
        body = _body(transactionId="GW-TX-3", orderId=str(bkash_order.id), status="failed")

        response = api_client.post(
            CALLBACK_URL,
            data=body,
            content_type="application/json",
            HTTP_X_WEBHOOK_SIGNATURE=_sign(body, BKASH_SECRET),
        )

        assert response.status_code == 401

    def test_pending_status_is_acknowledged_and_ignored(self, api_client, bkash_order):
        body = _body(transactionId="GW-TX-4", orderId=str(bkash_order.id), status="pending")

        response = self._post(api_client, body)

        assert response.status_code == 200
        assert _state(bkash_order) == PaymentState.INTENT_CREATED
        assert ProcessedWebhookEvent.objects.get().result == {"ignored": True}

    def test_order_without_intent_is_not_found(self, api_client, place_order):
        order = place_order(payment_method=PaymentMethod.CASH_ON_DELIVERY).order
        body = _body(transactionId="GW-TX-5", orderId=str(order.id), status="completed")

        response = self._post(api_client, body)

        assert response.status_code == 404

    def test_missing_order_reference(self, api_client):
        body = _body(transactionId="GW-TX-6", status="failed")
        response = self._post(api_client, body)
        assert response.status_code == 400
