"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- MockBkashGateway when ``BKASH_MOCK`` is on (development) or in tests
- BkashGateway (live tokenized checkout) otherwise
"""

from django.conf import settings

from modules.payments.gateway.bkash import BkashGateway
from modules.payments.gateway.mock import MockBkashGateway
from modules.payments.gateway.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """Return the process-wide payment gateway, building it on first use."""
    global _current_gateway
    if _current_gateway is None:
        if settings.BKASH_MOCK:
            _current_gateway = MockBkashGateway()
        else:
            _current_gateway = BkashGateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Forget the active gateway; the next call rebuilds it from settings."""
    global _current_gateway
    _current_gateway = None


__all__ = [
    "BkashGateway",
    "MockBkashGateway",
    "PaymentGateway",
    "get_gateway",
    "reset_gateway",
    "set_gateway",
]
