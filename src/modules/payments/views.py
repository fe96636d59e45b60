"""Payment HTTP surface: bKash redirect callback, mock checkout page and
inbound webhooks.

All four endpoints are public.  The callback is visited by the customer's
browser and only ever *redirects*; the webhooks authenticate the caller by
signature, so they read the raw body and never go through DRF parsing.
"""

from __future__ import annotations

from urllib.parse import urlencode

import structlog
from django.conf import settings
from django.http import Http404, HttpRequest, HttpResponse, HttpResponseRedirect
from django.utils.html import format_html
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from modules.payments.exceptions import PaymentError, PaymentNotFound
from modules.payments.services import PaymentService
from modules.payments.webhooks.processor import (
    BKASH,
    PAYMENT_CALLBACK,
    WebhookProcessor,
    WebhookStatus,
)

logger = structlog.get_logger(__name__)

WEBHOOK_HTTP_STATUS = {
    WebhookStatus.OK: status.HTTP_200_OK,
    WebhookStatus.DUPLICATE: status.HTTP_200_OK,
    WebhookStatus.SIGNATURE_INVALID: status.HTTP_401_UNAUTHORIZED,
    WebhookStatus.MALFORMED: status.HTTP_400_BAD_REQUEST,
    WebhookStatus.NOT_CONFIGURED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    WebhookStatus.ORDER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    WebhookStatus.PROCESSING_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _frontend_redirect(**params: str) -> HttpResponseRedirect:
    query = urlencode({key: value for key, value in params.items() if value})
    return HttpResponseRedirect(f"{settings.FRONTEND_URL}/checkout/bkash-result?{query}")


class BkashCallbackView(APIView):
    """GET /api/v1/payments/bkash/callback/?paymentID=...&status=...

    bKash sends the customer here after checkout.  The outcome is applied
    through the reconciliation engine and the customer is redirected to the
    storefront result page.
    """

    authentication_classes: list = []
    permission_classes = [AllowAny]

    def get(self, request: Request) -> HttpResponse:
        payment_id = request.query_params.get("paymentID", "")
        callback_status = request.query_params.get("status", "")
        if not payment_id:
            return _frontend_redirect(status="failure", message="Missing payment reference.")

        try:
            outcome = PaymentService().handle_callback(payment_id, callback_status)
        except PaymentNotFound:
            return _frontend_redirect(status="failure", message="Payment not found.")
        except PaymentError as exc:
            logger.warning("payment.callback_failed", payment_id=payment_id, error=str(exc))
            return _frontend_redirect(status="failure", message=str(exc))

        return _frontend_redirect(
            status=outcome.status,
            orderId=str(outcome.order.id),
            trxID=outcome.trx_id,
            amount=f"{outcome.amount:.2f}" if outcome.amount is not None else "",
            message=outcome.message,
        )


MOCK_PAGE = """<!doctype html>
<html>
  <head><meta charset="utf-8"><title>bKash mock checkout</title></head>
  <body style="font-family: sans-serif; max-width: 28rem; margin: 3rem auto;">
    <h1 style="color: #e2136e;">bKash (mock)</h1>
    <p>Payment <code>{payment_id}</code></p>
    <p>Amount: <strong>BDT {amount}</strong></p>
    <p>
      <a href="{success_url}">Pay</a> |
      <a href="{failure_url}">Fail</a> |
      <a href="{cancel_url}">Cancel</a>
    </p>
  </body>
</html>
"""


def mock_checkout_page(request: HttpRequest) -> HttpResponse:
    """Stand-in for the bKash hosted page when ``BKASH_MOCK`` is on."""
    if not settings.BKASH_MOCK:
        raise Http404("Mock checkout is disabled.")

    payment_id = request.GET.get("paymentID", "")
    amount = request.GET.get("amount", "")

    def callback(outcome: str) -> str:
        query = urlencode({"paymentID": payment_id, "status": outcome})
        return f"{settings.BKASH_CALLBACK_URL}?{query}"

    html = format_html(
        MOCK_PAGE,
        payment_id=payment_id,
        amount=amount,
        success_url=callback("success"),
        failure_url=callback("failure"),
        cancel_url=callback("cancel"),
    )
    return HttpResponse(html)


class WebhookView(APIView):
    """Signed server-to-server notifications.

    Returns 500 for ``NOT_CONFIGURED`` and ``PROCESSING_FAILED`` so the
    provider retries later.
    """

    authentication_classes: list = []
    permission_classes = [AllowAny]
    throttle_classes: list = []
    provider: str = ""

    def post(self, request: Request) -> Response:
        result = WebhookProcessor().process(self.provider, request.headers, request.body)
        http_status = WEBHOOK_HTTP_STATUS[result.status]
        if result.status == WebhookStatus.OK:
            return Response({"received": True}, status=http_status)
        if result.status == WebhookStatus.DUPLICATE:
            return Response({"received": True, "duplicate": True}, status=http_status)
        return Response({"detail": result.detail}, status=http_status)


class BkashWebhookView(WebhookView):
    provider = BKASH


class PaymentCallbackWebhookView(WebhookView):
    provider = PAYMENT_CALLBACK
