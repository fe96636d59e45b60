"""Shipping classification from the delivery city.

Dhaka deliveries are same-metro; everything else ships outside Dhaka.
The client's own ``shippingMethod`` choice is ignored: cost is always
derived from the address at creation time.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings

from modules.orders.constants import ShippingMethod

DHAKA_KEYWORDS = ("dhaka", "ঢাকা")


@dataclass(frozen=True)
class ShippingQuote:
    method: str
    cost: Decimal


def is_inside_dhaka(city: str | None) -> bool:
    normalized = (city or "").strip().lower()
    return any(keyword in normalized for keyword in DHAKA_KEYWORDS)


def quote_shipping(city: str | None) -> ShippingQuote:
    """Return the shipping method and cost for *city*."""
    if is_inside_dhaka(city):
        return ShippingQuote(
            method=ShippingMethod.INSIDE_DHAKA,
            cost=Decimal(settings.SHIPPING_INSIDE_DHAKA_COST),
        )
    return ShippingQuote(
        method=ShippingMethod.OUTSIDE_DHAKA,
        cost=Decimal(settings.SHIPPING_OUTSIDE_DHAKA_COST),
    )
