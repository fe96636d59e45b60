"""Inventory adjuster: applies or reverses stock changes for order lines.

``reserve`` is all-or-nothing.  Each line is a conditional decrement
(``stock_quantity >= qty``) and the whole batch runs inside one atomic
block, so a short line rolls back every decrement already applied in the
batch.  Lines are processed in product-id order to keep lock acquisition
order stable across concurrent reservations.

``release`` is the compensating action.  It is tolerant: products that
disappeared in the meantime are logged and skipped.  Guarding against a
double release is the payment engine's job, not this module's.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, List, Optional
from uuid import UUID

import structlog
from django.db import transaction

from modules.products.exceptions import (
    InactiveProduct,
    InsufficientStock,
    ProductNotFound,
)
from modules.products.repositories.django_repository import ProductDjangoRepository
from modules.products.repositories.interfaces import IProductRepository

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StockLine:
    """A product/quantity pair to reserve or release."""

    product_id: UUID
    quantity: int


def _merge(lines: Iterable[StockLine]) -> List[StockLine]:
    totals: "OrderedDict[str, int]" = OrderedDict()
    for line in lines:
        if line.quantity < 1:
            raise ValueError("Stock line quantity must be at least 1.")
        key = str(line.product_id)
        totals[key] = totals.get(key, 0) + line.quantity
    return [
        StockLine(product_id=UUID(key), quantity=qty)
        for key, qty in sorted(totals.items())
    ]


class InventoryAdjuster:
    """Reserve/release stock for a batch of order lines."""

    def __init__(self, product_repository: Optional[IProductRepository] = None) -> None:
        self._product_repo = product_repository or ProductDjangoRepository()

    def reserve(self, lines: Iterable[StockLine], require_active: bool = False) -> None:
        """Decrement stock for every line, or for none of them.

        Raises:
            ProductNotFound: a line references an unknown product.
            InactiveProduct: ``require_active`` and a product is inactive.
            InsufficientStock: a line asks for more than is available.
        """
        merged = _merge(lines)
        with transaction.atomic():
            for line in merged:
                product_id = str(line.product_id)
                if require_active:
                    product = self._product_repo.get_by_id(product_id)
                    if product is None:
                        raise ProductNotFound(f"Product {product_id} not found.")
                    if not product.is_active:
                        raise InactiveProduct(f"Product {product.sku} is inactive.")

                if self._product_repo.decrement_stock(product_id, line.quantity):
                    logger.info(
                        "inventory.reserved",
                        product_id=product_id,
                        quantity=line.quantity,
                    )
                    continue

                product = self._product_repo.get_by_id(product_id)
                if product is None:
                    raise ProductNotFound(f"Product {product_id} not found.")
                logger.warning(
                    "inventory.insufficient_stock",
                    product_id=product_id,
                    requested=line.quantity,
                    available=product.stock_quantity,
                )
                raise InsufficientStock(
                    product_id=product_id,
                    sku=product.sku,
                    requested=line.quantity,
                    available=product.stock_quantity,
                )

    def release(self, lines: Iterable[StockLine]) -> None:
        """Give stock back for every line; unknown products are skipped."""
        for line in _merge(lines):
            product_id = str(line.product_id)
            if self._product_repo.increment_stock(product_id, line.quantity):
                logger.info(
                    "inventory.released",
                    product_id=product_id,
                    quantity=line.quantity,
                )
            else:
                logger.warning(
                    "inventory.release_skipped",
                    product_id=product_id,
                    quantity=line.quantity,
                    reason="product_missing",
                )
