"""Inbound webhook processing: verify, de-duplicate, apply.

``WebhookProcessor.process`` never raises for a bad delivery; it returns a
``WebhookResult`` whose status the view maps onto an HTTP response.  Order
of checks:

1. the provider's secret is configured (else ``NOT_CONFIGURED``, so the
   provider keeps retrying until it is);
2. the signature over the raw body is valid;
3. the body is a JSON object with an event id;
4. the event id has not been seen in the last 24 h;
5. the report is applied through the reconciliation engine.

The event is recorded as seen only after step 5 succeeds, so a delivery
that failed half-way is processed again when the provider retries.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

import structlog
from django.conf import settings

from modules.orders.exceptions import OrderNotFound
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.payments.exceptions import PaymentError, PaymentNotFound
from modules.payments.gateway.port import COMPLETED
from modules.payments.services import CANCELLED, FAILED, PaymentService
from modules.payments.webhooks.store import SeenEventStore, get_seen_event_store
from modules.payments.webhooks.verification import (
    CERTIFICATE,
    HMAC,
    SignatureVerifier,
    build_verifier,
    extract_event_id,
)

logger = structlog.get_logger(__name__)

BKASH = "bkash"
PAYMENT_CALLBACK = "payment-callback"


class WebhookStatus(str, Enum):
    OK = "ok"
    DUPLICATE = "duplicate"
    SIGNATURE_INVALID = "signature_invalid"
    MALFORMED = "malformed"
    NOT_CONFIGURED = "not_configured"
    ORDER_NOT_FOUND = "order_not_found"
    PROCESSING_FAILED = "processing_failed"


@dataclass(frozen=True)
class WebhookResult:
    status: WebhookStatus
    event_id: Optional[str] = None
    detail: str = ""
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WebhookProvider:
    """Where a provider's secret, scheme and signature headers come from."""

    name: str
    secret_setting: str
    scheme_setting: str
    signature_headers: Tuple[str, ...]


PROVIDERS: Dict[str, WebhookProvider] = {
    BKASH: WebhookProvider(
        name=BKASH,
        secret_setting="BKASH_WEBHOOK_SECRET",
        scheme_setting="BKASH_WEBHOOK_SIGNATURE_SCHEME",
        signature_headers=("X-Bkash-Signature",),
    ),
    PAYMENT_CALLBACK: WebhookProvider(
        name=PAYMENT_CALLBACK,
        secret_setting="PAYMENT_WEBHOOK_SECRET",
        scheme_setting="PAYMENT_WEBHOOK_SIGNATURE_SCHEME",
        signature_headers=("X-Webhook-Signature", "X-Signature"),
    ),
}

# Generic callback statuses -> bKash transaction statuses.
GENERIC_STATUS_MAP = {
    "completed": COMPLETED,
    "success": COMPLETED,
    "failed": FAILED,
    "cancelled": CANCELLED,
    "canceled": CANCELLED,
}


class MalformedPayload(Exception):
    pass


@dataclass(frozen=True)
class GatewayReport:
    payment_id: str
    transaction_status: str
    trx_id: str = ""
    amount: Optional[Decimal] = None


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


class WebhookProcessor:
    def __init__(
        self,
        payment_service: Optional[PaymentService] = None,
        store: Optional[SeenEventStore] = None,
        order_repository: Optional[OrderDjangoRepository] = None,
    ) -> None:
        self._payment_service = payment_service
        self._store = store or get_seen_event_store()
        self._order_repo = order_repository or OrderDjangoRepository()

    @property
    def payment_service(self) -> PaymentService:
        if self._payment_service is None:
            self._payment_service = PaymentService(order_repository=self._order_repo)
        return self._payment_service

    def _verifier_for(self, provider: WebhookProvider) -> SignatureVerifier:
        scheme = getattr(settings, provider.scheme_setting, HMAC)
        if scheme == HMAC:
            return build_verifier(scheme, header_names=provider.signature_headers)
        if scheme == CERTIFICATE:
            return build_verifier(scheme)
        return build_verifier(scheme, header_name=provider.signature_headers[0])

    def process(
        self, provider_name: str, headers: Mapping[str, str], body: bytes
    ) -> WebhookResult:
        provider = PROVIDERS[provider_name]
        log = logger.bind(provider=provider_name)

        secret = getattr(settings, provider.secret_setting, "")
        if not secret:
            log.error("webhook.not_configured", setting=provider.secret_setting)
            return WebhookResult(WebhookStatus.NOT_CONFIGURED, detail="Webhook not configured")

        if not self._verifier_for(provider).verify(headers, body, secret):
            log.warning("webhook.signature_invalid", security_event=True)
            return WebhookResult(WebhookStatus.SIGNATURE_INVALID, detail="Invalid signature")

        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            log.warning("webhook.malformed", reason="invalid_json")
            return WebhookResult(WebhookStatus.MALFORMED, detail="Invalid JSON body")
        if not isinstance(payload, dict):
            log.warning("webhook.malformed", reason="not_an_object")
            return WebhookResult(WebhookStatus.MALFORMED, detail="Expected a JSON object")

        raw_event_id = extract_event_id(payload)
        if not raw_event_id:
            log.warning("webhook.malformed", reason="missing_event_id")
            return WebhookResult(WebhookStatus.MALFORMED, detail="Missing event id")

        # Ids are only unique per provider.
        event_id = f"{provider_name}:{raw_event_id}"
        log = log.bind(event_id=event_id)
        if self._store.has(event_id):
            log.info("webhook.duplicate")
            return WebhookResult(
                WebhookStatus.DUPLICATE,
                event_id=event_id,
                data=self._store.get_result(event_id) or {},
            )

        try:
            report = self._parse(provider_name, payload)
        except MalformedPayload as exc:
            log.warning("webhook.malformed", reason=str(exc))
            return WebhookResult(WebhookStatus.MALFORMED, event_id=event_id, detail=str(exc))
        except OrderNotFound as exc:
            log.warning("webhook.order_not_found", reason=str(exc))
            return WebhookResult(
                WebhookStatus.ORDER_NOT_FOUND, event_id=event_id, detail="Order not found"
            )

        if report is None:
            result: Dict[str, Any] = {"ignored": True}
        else:
            try:
                outcome = self.payment_service.apply_gateway_report(
                    payment_id=report.payment_id,
                    transaction_status=report.transaction_status,
                    trx_id=report.trx_id,
                    amount=report.amount,
                )
            except PaymentNotFound:
                log.warning("webhook.order_not_found", payment_id=report.payment_id)
                return WebhookResult(
                    WebhookStatus.ORDER_NOT_FOUND,
                    event_id=event_id,
                    detail="Order not found",
                )
            except PaymentError as exc:
                log.error("webhook.processing_failed", error=str(exc))
                return WebhookResult(
                    WebhookStatus.PROCESSING_FAILED,
                    event_id=event_id,
                    detail="Processing failed",
                )
            result = {
                "order_id": str(outcome.order_id),
                "payment_state": outcome.payment_state,
                "applied": outcome.applied,
            }

        if not self._store.mark(event_id, provider_name, result):
            # A concurrent delivery of the same event finished first.
            return WebhookResult(WebhookStatus.DUPLICATE, event_id=event_id, data=result)

        log.info("webhook.processed", **result)
        return WebhookResult(WebhookStatus.OK, event_id=event_id, data=result)

    # ------------------------------------------------------------------
    # Payload parsing
    # ------------------------------------------------------------------

    def _parse(self, provider_name: str, payload: Dict[str, Any]) -> Optional[GatewayReport]:
        if provider_name == BKASH:
            return self._parse_bkash(payload)
        return self._parse_generic(payload)

    @staticmethod
    def _parse_bkash(payload: Dict[str, Any]) -> GatewayReport:
        payment_id = payload.get("paymentID")
        status = payload.get("transactionStatus")
        if not payment_id or not status:
            raise MalformedPayload("paymentID and transactionStatus are required")
        return GatewayReport(
            payment_id=str(payment_id),
            transaction_status=str(status),
            trx_id=str(payload.get("trxID") or ""),
            amount=_to_decimal(payload.get("amount")),
        )

    def _parse_generic(self, payload: Dict[str, Any]) -> Optional[GatewayReport]:
        """``{transactionId, paymentID?, orderId, status, amount, errorMessage}``.

        Without ``paymentID`` the order's own stored intent id is used.
        Statuses other than completed/failed/cancelled are acknowledged
        and ignored.
        """
        status = str(payload.get("status") or "").lower()
        if not status:
            raise MalformedPayload("status is required")
        transaction_status = GENERIC_STATUS_MAP.get(status)
        if transaction_status is None:
            logger.info("webhook.status_ignored", status=status)
            return None

        payment_id = payload.get("paymentID")
        if not payment_id:
            order_id = payload.get("orderId")
            if not order_id:
                raise MalformedPayload("orderId or paymentID is required")
            order = self._order_repo.get_by_id(str(order_id))
            details = getattr(order, "payment_details", None) if order else None
            if details is None or not details.payment_id:
                raise OrderNotFound(f"No bKash payment for order {order_id}.")
            payment_id = details.payment_id

        if payload.get("errorMessage"):
            logger.info("webhook.provider_error", error_message=payload["errorMessage"])

        return GatewayReport(
            payment_id=str(payment_id),
            transaction_status=transaction_status,
            trx_id=str(payload.get("transactionId") or ""),
            amount=_to_decimal(payload.get("amount")),
        )
