"""Domain events for the payment leg of an order.

Published by the reconciliation engine only after the transaction that
made the transition has committed.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class PaymentEvent(DomainEvent):
    order_number: str = ""
    user_id: Optional[int] = None
    payment_id: str = ""
    amount: Optional[Decimal] = None


@dataclass(frozen=True)
class PaymentCompleted(PaymentEvent):
    """The gateway confirmed the payment; the order is paid."""

    trx_id: str = ""


@dataclass(frozen=True)
class PaymentFailed(PaymentEvent):
    """The payment failed; stock was released and a retry is possible."""

    reason: str = ""


@dataclass(frozen=True)
class PaymentCancelled(PaymentEvent):
    """The customer (or an order cancellation) abandoned the payment."""

    reason: str = ""


@dataclass(frozen=True)
class PaymentRefunded(PaymentEvent):
    refund_trx_id: str = ""
