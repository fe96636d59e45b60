"""Product repository interface.

Extends ``IRepository[Product]`` with the stock primitives used by
``InventoryAdjuster``: both are single conditional UPDATE statements so
concurrent reservations can never drive stock below zero.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Optional

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from django.db import models

    from modules.products.models import Product


class IProductRepository(IRepository["Product"]):
    """Repository contract for the Product aggregate."""

    @abstractmethod
    def list(
        self, filters: Optional[Dict[str, Any]] = None
    ) -> "models.QuerySet[Product]":
        """List products with optional filters."""

    @abstractmethod
    def get_by_ids(self, ids: list[str]) -> Dict[str, "Product"]:
        """Return the products for *ids*, keyed by ``str(id)``."""

    @abstractmethod
    def decrement_stock(self, id: str, quantity: int) -> bool:
        """Subtract *quantity* only if enough stock remains.

        Returns ``False`` (and changes nothing) when the product is
        missing or short.
        """

    @abstractmethod
    def increment_stock(self, id: str, quantity: int) -> bool:
        """Add *quantity* back.  Returns ``False`` if the product is gone."""
