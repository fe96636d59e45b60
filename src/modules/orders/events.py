"""Domain events for the Orders bounded context."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class OrderEvent(DomainEvent):
    order_number: str = ""
    user_id: Optional[int] = None


@dataclass(frozen=True)
class OrderCreated(OrderEvent):
    """Raised when an order is created."""

    payment_method: str = ""


@dataclass(frozen=True)
class OrderCancelled(OrderEvent):
    """Raised when an order is cancelled."""

    reason: str = ""


@dataclass(frozen=True)
class OrderStatusChanged(OrderEvent):
    """Raised when an order status changes."""

    old_status: str = ""
    new_status: str = ""
