"""Payment domain exceptions.

Gateway results are translated into these at the reconciliation engine
boundary; raw provider bodies stay in ``PaymentDetails`` and never reach
the caller.  ``StaleTransition`` is internal: the engine logs it and
reports success, since the order already moved past the expected state.
"""

from __future__ import annotations


class PaymentError(Exception):
    """Base class for payment errors surfaced to the API layer."""


class PaymentGatewayNotConfigured(PaymentError):
    """Gateway credentials are missing or the gateway is disabled."""


class PaymentGatewayUnavailable(PaymentError):
    """The gateway could not be reached; the order kept its prior state."""


class PaymentGatewayRejected(PaymentError):
    """The gateway explicitly declined the request."""

    def __init__(self, message: str, code: str = "") -> None:
        super().__init__(message)
        self.code = code


class InvalidPaymentTransition(PaymentError):
    """The requested operation is not legal from the order's payment state."""


class PaymentNotFound(PaymentError):
    """No order carries the given gateway payment id."""


class StaleTransition(Exception):
    """A compare-and-set found the order no longer in the expected state."""

    def __init__(self, order_id: str, expected: tuple[str, ...], actual: str) -> None:
        self.order_id = order_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Order {order_id} is {actual}, expected one of {', '.join(expected)}."
        )
