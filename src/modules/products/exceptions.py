"""Product and inventory domain exceptions.

Raised by the repository/inventory layer when stock rules are violated.
The API layer (Views) catches these and translates them into
appropriate HTTP responses.
"""

from __future__ import annotations


class ProductNotFound(Exception):
    """A referenced product does not exist."""


class InactiveProduct(Exception):
    """A referenced product is inactive and cannot be sold."""


class InsufficientStock(Exception):
    """Not enough stock to reserve a line.

    Carries the offending product so the caller can report which one
    lacked stock.  The batch it belonged to has been rolled back.
    """

    def __init__(
        self,
        product_id: str,
        sku: str,
        requested: int,
        available: int,
    ) -> None:
        self.product_id = product_id
        self.sku = sku
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {sku}: "
            f"requested {requested}, available {available}."
        )
