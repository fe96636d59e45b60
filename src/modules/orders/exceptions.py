"""Order domain exceptions.

Raised by the Service Layer when business rules are violated.
The API layer (Views) catches these and translates them into
appropriate HTTP responses.  Stock and product errors live in
``modules.products.exceptions``; payment errors in
``modules.payments.exceptions``.
"""

from __future__ import annotations


class OrderNotFound(Exception):
    """The requested order does not exist."""


class InvalidOrderStatus(Exception):
    """An invalid order status transition was attempted."""


class OrderPermissionDenied(Exception):
    """The caller is neither the order owner nor an admin."""


class OrderNotCancellable(Exception):
    """The order's payment leg prevents cancellation (e.g. paid, not refunded)."""
