"""Payment gateway port (abstract interface).

Defines the contract every gateway adapter implements, plus the result
types it returns.  Each operation returns either its success variant or
``GatewayRejected`` / ``GatewayUnavailable``; callers branch on the type,
never on fields of the raw provider payload.  ``raw`` keeps the provider
response verbatim so it can be stored for audit.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Union

COMPLETED = "Completed"


@dataclass(frozen=True)
class PaymentCreated:
    """An intent exists at the gateway; the user must visit ``redirect_url``."""

    payment_id: str
    redirect_url: str
    amount: Decimal
    create_time: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentExecuted:
    payment_id: str
    trx_id: str
    transaction_status: str
    amount: Decimal | None = None
    customer_msisdn: str = ""
    payer_reference: str = ""
    execute_time: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.transaction_status == COMPLETED


@dataclass(frozen=True)
class PaymentQueried:
    payment_id: str
    transaction_status: str
    trx_id: str = ""
    amount: Decimal | None = None
    customer_msisdn: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.transaction_status == COMPLETED


@dataclass(frozen=True)
class PaymentRefunded:
    refund_trx_id: str
    original_trx_id: str
    amount: Decimal
    transaction_status: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayRejected:
    """The provider answered and declined the request."""

    reason: str
    code: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayUnavailable:
    """The provider could not be reached (timeout, network, 5xx)."""

    reason: str
    raw: dict[str, Any] = field(default_factory=dict)


GatewayFailure = Union[GatewayRejected, GatewayUnavailable]
CreateResult = Union[PaymentCreated, GatewayRejected, GatewayUnavailable]
ExecuteResult = Union[PaymentExecuted, GatewayRejected, GatewayUnavailable]
QueryResult = Union[PaymentQueried, GatewayRejected, GatewayUnavailable]
RefundResult = Union[PaymentRefunded, GatewayRejected, GatewayUnavailable]


class PaymentGateway(ABC):
    """Abstract mobile-wallet gateway interface."""

    name: str = "gateway"

    @abstractmethod
    def is_configured(self) -> bool:
        """Capability check: ``False`` means the API should degrade, not fail."""

    @abstractmethod
    def create_payment(
        self,
        amount: Decimal,
        order_id: str,
        payer_reference: str | None = None,
    ) -> CreateResult:
        """Create a payment intent for *order_id*.

        The gateway does not deduplicate: the caller must not create two
        intents for the same attempt.
        """

    @abstractmethod
    def execute_payment(self, payment_id: str) -> ExecuteResult:
        """Capture a payment the user authorised at the gateway."""

    @abstractmethod
    def query_payment(self, payment_id: str) -> QueryResult:
        """Ask the gateway for the current status of an intent."""

    @abstractmethod
    def refund_payment(
        self,
        payment_id: str,
        trx_id: str,
        amount: Decimal,
        reason: str = "Customer refund",
    ) -> RefundResult:
        """Refund a captured payment."""
