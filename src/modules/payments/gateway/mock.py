"""Configurable stand-in for bKash, for local development and tests.

Never talks to the network.  Intents live in memory on the instance;
``create_payment`` hands back a ``redirect_url`` pointing at the local
mock page, where a human can choose success, failure or cancellation.
Tests flip outcomes with ``configure()`` to exercise every branch of the
reconciliation engine with the same result shapes the live client uses.
"""

from __future__ import annotations

import time
from decimal import Decimal
from typing import Any
from urllib.parse import urlencode

import structlog
from django.conf import settings
from django.utils import timezone

from modules.payments.gateway.port import (
    COMPLETED,
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

SUCCEED = "succeed"
REJECT = "reject"
UNAVAILABLE = "unavailable"


class MockBkashGateway(PaymentGateway):
    """In-memory bKash double."""

    name = "bkash-mock"

    def __init__(self, configured: bool = True) -> None:
        self.configured = configured
        self.create_outcome = SUCCEED
        self.execute_outcome = SUCCEED
        self.query_outcome = SUCCEED
        self.refund_outcome = SUCCEED
        self.execute_status = COMPLETED
        self.query_status: str | None = None
        self.failure_reason = "Mock gateway declined the request"
        self.intents: dict[str, dict[str, Any]] = {}
        self.calls: list[dict[str, Any]] = []
        self._counter = 0

    def configure(self, **outcomes: Any) -> None:
        """Set any of ``create_outcome``, ``execute_outcome``, ``query_outcome``,
        ``refund_outcome``, ``execute_status``, ``query_status``,
        ``failure_reason`` or ``configured``."""
        for key, value in outcomes.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown mock gateway option: {key}")
            setattr(self, key, value)

    def is_configured(self) -> bool:
        return self.configured

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{int(time.time() * 1000)}-{self._counter}"

    def _failure(self, outcome: str) -> GatewayRejected | GatewayUnavailable:
        if outcome == UNAVAILABLE:
            return GatewayUnavailable(
                reason="Mock gateway unavailable", raw={"error": "unavailable"}
            )
        return GatewayRejected(
            reason=self.failure_reason,
            code="2001",
            raw={"statusCode": "2001", "statusMessage": self.failure_reason},
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_payment(
        self,
        amount: Decimal,
        order_id: str,
        payer_reference: str | None = None,
    ) -> CreateResult:
        self.calls.append(
            {"method": "create_payment", "amount": amount, "order_id": order_id}
        )
        if self.create_outcome != SUCCEED:
            return self._failure(self.create_outcome)

        payment_id = self._next_id("MOCK-PAY")
        amount_text = f"{Decimal(amount):.2f}"
        redirect_url = (
            f"{settings.BKASH_MOCK_PAGE_URL}?"
            f"{urlencode({'paymentID': payment_id, 'amount': amount_text})}"
        )
        raw = {
            "statusCode": "0000",
            "statusMessage": "OK (mock)",
            "paymentID": payment_id,
            "bkashURL": redirect_url,
            "amount": amount_text,
            "currency": "BDT",
            "intent": "sale",
            "paymentCreateTime": timezone.now().isoformat(),
            "transactionStatus": "Initiated",
            "merchantInvoiceNumber": order_id,
        }
        self.intents[payment_id] = {
            "order_id": order_id,
            "amount": Decimal(amount_text),
            "status": "Initiated",
            "trx_id": "",
        }
        logger.info("bkash_mock.created", payment_id=payment_id, order_id=order_id)
        return PaymentCreated(
            payment_id=payment_id,
            redirect_url=redirect_url,
            amount=Decimal(amount_text),
            create_time=raw["paymentCreateTime"],
            raw=raw,
        )

    def execute_payment(self, payment_id: str) -> ExecuteResult:
        self.calls.append({"method": "execute_payment", "payment_id": payment_id})
        if self.execute_outcome != SUCCEED:
            return self._failure(self.execute_outcome)

        intent = self.intents.setdefault(
            payment_id, {"order_id": "", "amount": None, "status": "", "trx_id": ""}
        )
        intent["status"] = self.execute_status
        if self.execute_status == COMPLETED and not intent["trx_id"]:
            intent["trx_id"] = self._next_id("MOCK-TRX")
        raw = {
            "statusCode": "0000",
            "statusMessage": "OK (mock execute)",
            "paymentID": payment_id,
            "trxID": intent["trx_id"],
            "transactionStatus": self.execute_status,
            "amount": f"{intent['amount']:.2f}" if intent["amount"] else "",
            "currency": "BDT",
            "paymentExecuteTime": timezone.now().isoformat(),
            "merchantInvoiceNumber": intent["order_id"],
            "customerMsisdn": "01700000000",
        }
        logger.info(
            "bkash_mock.executed",
            payment_id=payment_id,
            transaction_status=self.execute_status,
        )
        return PaymentExecuted(
            payment_id=payment_id,
            trx_id=intent["trx_id"],
            transaction_status=self.execute_status,
            amount=intent["amount"],
            customer_msisdn=raw["customerMsisdn"],
            execute_time=raw["paymentExecuteTime"],
            raw=raw,
        )

    def query_payment(self, payment_id: str) -> QueryResult:
        self.calls.append({"method": "query_payment", "payment_id": payment_id})
        if self.query_outcome != SUCCEED:
            return self._failure(self.query_outcome)

        intent = self.intents.get(payment_id, {})
        status = self.query_status or intent.get("status") or "Initiated"
        trx_id = intent.get("trx_id") or ""
        if status == COMPLETED and not trx_id:
            trx_id = self._next_id("MOCK-TRX")
            if intent:
                intent["trx_id"] = trx_id
        amount = intent.get("amount")
        raw = {
            "statusCode": "0000",
            "statusMessage": "OK (mock query)",
            "paymentID": payment_id,
            "trxID": trx_id,
            "transactionStatus": status,
            "amount": f"{amount:.2f}" if amount else "",
            "currency": "BDT",
        }
        return PaymentQueried(
            payment_id=payment_id,
            transaction_status=status,
            trx_id=trx_id,
            amount=amount,
            raw=raw,
        )

    def refund_payment(
        self,
        payment_id: str,
        trx_id: str,
        amount: Decimal,
        reason: str = "Customer refund",
    ) -> RefundResult:
        self.calls.append(
            {
                "method": "refund_payment",
                "payment_id": payment_id,
                "trx_id": trx_id,
                "amount": amount,
                "reason": reason,
            }
        )
        if self.refund_outcome != SUCCEED:
            return self._failure(self.refund_outcome)

        refund_trx_id = self._next_id("MOCK-REFUND")
        raw = {
            "statusCode": "0000",
            "statusMessage": "OK (mock refund)",
            "originalTrxID": trx_id,
            "refundTrxID": refund_trx_id,
            "transactionStatus": "Refunded",
            "amount": f"{Decimal(amount):.2f}",
            "currency": "BDT",
        }
        return PaymentRefunded(
            refund_trx_id=refund_trx_id,
            original_trx_id=trx_id,
            amount=Decimal(amount),
            transaction_status="Refunded",
            raw=raw,
        )
