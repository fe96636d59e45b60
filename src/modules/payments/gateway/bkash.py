"""bKash tokenized checkout adapter.

Flow:
1. Grant token -> ``id_token`` (cached, refreshed 60 s before expiry).
2. Create payment -> ``paymentID`` + ``bkashURL`` (user is redirected).
3. User authorises on bKash, which redirects to ``callbackURL``.
4. Execute payment -> capture.
5. Query payment -> verify status (used by webhooks and reconciliation).
6. Refund payment.

Error mapping: timeouts, connection errors and 5xx responses become
``GatewayUnavailable`` (safe to retry); 4xx responses and any body whose
``statusCode`` is not ``"0000"`` become ``GatewayRejected``.
"""

from __future__ import annotations

import threading
import time
from decimal import Decimal, InvalidOperation
from typing import Any

import requests
import structlog
from django.conf import settings

from modules.payments.gateway.port import (
    CreateResult,
    ExecuteResult,
    GatewayRejected,
    GatewayUnavailable,
    PaymentCreated,
    PaymentExecuted,
    PaymentGateway,
    PaymentQueried,
    PaymentRefunded,
    QueryResult,
    RefundResult,
)

logger = structlog.get_logger(__name__)

SUCCESS_CODE = "0000"
TOKEN_EXPIRY_BUFFER_SECONDS = 60
DEFAULT_TOKEN_TTL_SECONDS = 3600

GRANT_PATH = "/tokenized/checkout/token/grant"
REFRESH_PATH = "/tokenized/checkout/token/refresh"
CREATE_PATH = "/tokenized/checkout/create"
EXECUTE_PATH = "/tokenized/checkout/execute"
QUERY_PATH = "/tokenized/checkout/payment/status"
REFUND_PATH = "/tokenized/checkout/payment/refund"


class _TokenError(Exception):
    def __init__(self, failure: GatewayRejected | GatewayUnavailable) -> None:
        super().__init__(failure.reason)
        self.failure = failure


def _to_decimal(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _format_amount(amount: Decimal) -> str:
    return f"{Decimal(amount):.2f}"


class BkashGateway(PaymentGateway):
    """Live bKash client over ``requests``.

    One instance is shared per process (see ``modules.payments.gateway``);
    the token cache and its lock live on the instance.
    """

    name = "bkash"

    def __init__(
        self,
        base_url: str | None = None,
        app_key: str | None = None,
        app_secret: str | None = None,
        username: str | None = None,
        password: str | None = None,
        callback_url: str | None = None,
        timeout: float | None = None,
        enabled: bool | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = (base_url or settings.BKASH_BASE_URL).rstrip("/")
        self.app_key = app_key if app_key is not None else settings.BKASH_APP_KEY
        self.app_secret = (
            app_secret if app_secret is not None else settings.BKASH_APP_SECRET
        )
        self.username = username if username is not None else settings.BKASH_USERNAME
        self.password = password if password is not None else settings.BKASH_PASSWORD
        self.callback_url = callback_url or settings.BKASH_CALLBACK_URL
        self.timeout = timeout or settings.BKASH_TIMEOUT_SECONDS
        self.enabled = settings.BKASH_ENABLED if enabled is None else enabled
        self.session = session or requests.Session()
        self.session.headers.update(
            {"Content-Type": "application/json", "Accept": "application/json"}
        )

        self._id_token: str | None = None
        self._refresh_token: str | None = None
        self._token_expires_at: float = 0.0
        self._token_lock = threading.Lock()

    def is_configured(self) -> bool:
        return bool(
            self.enabled
            and self.app_key
            and self.app_secret
            and self.username
            and self.password
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _post(
        self,
        path: str,
        body: dict[str, Any],
        headers: dict[str, str],
    ) -> dict[str, Any] | GatewayRejected | GatewayUnavailable:
        """POST and map transport-level failures onto the result types."""
        url = f"{self.base_url}{path}"
        try:
            response = self.session.post(
                url, json=body, headers=headers, timeout=self.timeout
            )
        except requests.Timeout:
            logger.warning("bkash.timeout", path=path, timeout=self.timeout)
            return GatewayUnavailable(reason="bKash request timed out.")
        except requests.RequestException as exc:
            logger.warning("bkash.connection_error", path=path, error=str(exc))
            return GatewayUnavailable(reason="bKash is unreachable.")

        try:
            data = response.json()
        except ValueError:
            data = {"body": response.text}
        if not isinstance(data, dict):
            data = {"body": data}

        if response.status_code >= 500:
            logger.warning(
                "bkash.server_error", path=path, status_code=response.status_code
            )
            return GatewayUnavailable(
                reason=f"bKash returned HTTP {response.status_code}.", raw=data
            )
        if response.status_code >= 400:
            logger.warning(
                "bkash.client_error", path=path, status_code=response.status_code
            )
            message = data.get("statusMessage") or data.get("message")
            return GatewayRejected(
                reason=str(message or f"HTTP {response.status_code}"),
                code=str(data.get("statusCode", response.status_code)),
                raw=data,
            )
        return data

    @staticmethod
    def _rejected_if_not_ok(data: dict[str, Any]) -> GatewayRejected | None:
        # Some error bodies carry errorCode/errorMessage instead of statusCode.
        code = str(data.get("statusCode") or data.get("errorCode") or "")
        if code == SUCCESS_CODE:
            return None
        message = data.get("statusMessage") or data.get("errorMessage") or "Rejected"
        return GatewayRejected(reason=str(message), code=code, raw=data)

    # ------------------------------------------------------------------
    # Token management
    # ------------------------------------------------------------------

    def _token_is_fresh(self) -> bool:
        return bool(self._id_token) and (
            time.monotonic() < self._token_expires_at - TOKEN_EXPIRY_BUFFER_SECONDS
        )

    def _store_token(self, data: dict[str, Any]) -> str:
        self._id_token = data["id_token"]
        self._refresh_token = data.get("refresh_token") or self._refresh_token
        ttl = int(data.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS)
        self._token_expires_at = time.monotonic() + ttl
        return self._id_token

    def _credential_headers(self) -> dict[str, str]:
        return {"username": self.username, "password": self.password}

    def _grant(self) -> str:
        logger.info("bkash.token_grant_requested")
        result = self._post(
            GRANT_PATH,
            {"app_key": self.app_key, "app_secret": self.app_secret},
            self._credential_headers(),
        )
        if not isinstance(result, dict):
            raise _TokenError(result)
        rejected = self._rejected_if_not_ok(result)
        if rejected is not None or not result.get("id_token"):
            logger.error(
                "bkash.token_grant_failed", status_code=result.get("statusCode")
            )
            raise _TokenError(
                rejected
                or GatewayRejected(reason="Token grant returned no token.", raw=result)
            )
        logger.info("bkash.token_granted", expires_in=result.get("expires_in"))
        return self._store_token(result)

    def _refresh(self) -> str:
        logger.info("bkash.token_refresh_requested")
        result = self._post(
            REFRESH_PATH,
            {
                "app_key": self.app_key,
                "app_secret": self.app_secret,
                "refresh_token": self._refresh_token,
            },
            self._credential_headers(),
        )
        if (
            isinstance(result, dict)
            and self._rejected_if_not_ok(result) is None
            and result.get("id_token")
        ):
            return self._store_token(result)
        logger.warning("bkash.token_refresh_failed_falling_back_to_grant")
        return self._grant()

    def _get_token(self) -> str:
        if self._token_is_fresh():
            return self._id_token  # type: ignore[return-value]
        # Only one thread talks to the token endpoint; the rest reuse its token.
        with self._token_lock:
            if self._token_is_fresh():
                return self._id_token  # type: ignore[return-value]
            if self._refresh_token:
                return self._refresh()
            return self._grant()

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": self._get_token(), "X-APP-Key": self.app_key}

    def _call(
        self, path: str, body: dict[str, Any]
    ) -> dict[str, Any] | GatewayRejected | GatewayUnavailable:
        try:
            headers = self._auth_headers()
        except _TokenError as exc:
            return exc.failure
        return self._post(path, body, headers)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_payment(
        self,
        amount: Decimal,
        order_id: str,
        payer_reference: str | None = None,
    ) -> CreateResult:
        body = {
            "mode": "0011",
            "payerReference": payer_reference or order_id,
            "callbackURL": self.callback_url,
            "amount": _format_amount(amount),
            "currency": "BDT",
            "intent": "sale",
            "merchantInvoiceNumber": order_id,
        }
        log = logger.bind(order_id=order_id, amount=body["amount"])
        log.info("bkash.create_requested")

        result = self._call(CREATE_PATH, body)
        if not isinstance(result, dict):
            log.error("bkash.create_failed", reason=result.reason)
            return result
        rejected = self._rejected_if_not_ok(result)
        if rejected is not None:
            log.error("bkash.create_rejected", code=rejected.code, reason=rejected.reason)
            return rejected
        if not result.get("paymentID") or not result.get("bkashURL"):
            log.error("bkash.create_incomplete")
            return GatewayRejected(
                reason="bKash create payment returned no paymentID or bkashURL.",
                raw=result,
            )

        log.info("bkash.created", payment_id=result["paymentID"])
        return PaymentCreated(
            payment_id=result["paymentID"],
            redirect_url=result["bkashURL"],
            amount=_to_decimal(result.get("amount")) or Decimal(amount),
            create_time=str(result.get("paymentCreateTime", "")),
            raw=result,
        )

    def execute_payment(self, payment_id: str) -> ExecuteResult:
        log = logger.bind(payment_id=payment_id)
        log.info("bkash.execute_requested")

        result = self._call(EXECUTE_PATH, {"paymentID": payment_id})
        if not isinstance(result, dict):
            log.error("bkash.execute_failed", reason=result.reason)
            return result
        rejected = self._rejected_if_not_ok(result)
        if rejected is not None:
            # e.g. "already executed": the caller falls back to a query.
            log.warning("bkash.execute_rejected", code=rejected.code)
            return rejected

        log.info(
            "bkash.executed",
            trx_id=result.get("trxID"),
            transaction_status=result.get("transactionStatus"),
        )
        return PaymentExecuted(
            payment_id=str(result.get("paymentID") or payment_id),
            trx_id=str(result.get("trxID") or ""),
            transaction_status=str(result.get("transactionStatus") or ""),
            amount=_to_decimal(result.get("amount")),
            customer_msisdn=str(result.get("customerMsisdn") or ""),
            payer_reference=str(result.get("payerReference") or ""),
            execute_time=str(result.get("paymentExecuteTime") or ""),
            raw=result,
        )

    def query_payment(self, payment_id: str) -> QueryResult:
        log = logger.bind(payment_id=payment_id)
        log.info("bkash.query_requested")

        result = self._call(QUERY_PATH, {"paymentID": payment_id})
        if not isinstance(result, dict):
            log.error("bkash.query_failed", reason=result.reason)
            return result
        rejected = self._rejected_if_not_ok(result)
        if rejected is not None:
            log.warning("bkash.query_rejected", code=rejected.code)
            return rejected

        log.info("bkash.queried", transaction_status=result.get("transactionStatus"))
        return PaymentQueried(
            payment_id=str(result.get("paymentID") or payment_id),
            transaction_status=str(result.get("transactionStatus") or ""),
            trx_id=str(result.get("trxID") or ""),
            amount=_to_decimal(result.get("amount")),
            customer_msisdn=str(result.get("customerMsisdn") or ""),
            raw=result,
        )

    def refund_payment(
        self,
        payment_id: str,
        trx_id: str,
        amount: Decimal,
        reason: str = "Customer refund",
    ) -> RefundResult:
        log = logger.bind(payment_id=payment_id, trx_id=trx_id)
        log.info("bkash.refund_requested", amount=_format_amount(amount))

        result = self._call(
            REFUND_PATH,
            {
                "paymentID": payment_id,
                "trxID": trx_id,
                "amount": _format_amount(amount),
                "reason": reason,
                "sku": "refund",
            },
        )
        if not isinstance(result, dict):
            log.error("bkash.refund_failed", reason=result.reason)
            return result
        rejected = self._rejected_if_not_ok(result)
        if rejected is not None:
            log.error("bkash.refund_rejected", code=rejected.code, reason=rejected.reason)
            return rejected

        log.info("bkash.refunded", refund_trx_id=result.get("refundTrxID"))
        return PaymentRefunded(
            refund_trx_id=str(result.get("refundTrxID") or ""),
            original_trx_id=str(result.get("originalTrxID") or trx_id),
            amount=_to_decimal(result.get("amount")) or Decimal(amount),
            transaction_status=str(result.get("transactionStatus") or ""),
            raw=result,
        )
