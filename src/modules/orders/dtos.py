"""Order DTOs for the Service Layer.

Framework-agnostic data transfer objects using Pydantic v2.
These are the contracts between the API layer (DRF Serializers)
and the Service layer.  DTOs are immutable (``frozen=True``).

- ``CreateOrderItemDTO``: input for a single order line item.
- ``ShippingAddressDTO``: delivery address; its city decides shipping.
- ``CreateOrderDTO``: input for order creation (nested items).
- ``BkashPaymentPrompt``: what the client needs to continue a bKash
  payment (or why it cannot).
- ``CreateOrderResult``: the created order plus the payment prompt.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from modules.orders.constants import PaymentMethod, ShippingMethod

# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class CreateOrderItemDTO(BaseModel):
    """Immutable DTO for a single order item in a creation request.

    The frontend sends ``product_id`` and ``quantity``.
    ``unit_price`` is resolved by the Service Layer from the product catalog.
    """

    model_config = ConfigDict(frozen=True)

    product_id: UUID
    quantity: int

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1.")
        return v


class ShippingAddressDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    first_name: str
    last_name: str
    phone: str
    street: str
    city: str
    state: str = ""
    zip_code: str = ""
    country: str = "Bangladesh"

    @field_validator("first_name", "last_name", "phone", "street", "city")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("This field may not be blank.")
        return v.strip()


class CreateOrderDTO(BaseModel):
    """Immutable DTO for order creation requests.

    Validates:
    - ``items`` must contain at least one item.
    - Each item quantity must be positive.
    - No product appears twice.

    ``shipping_method`` is what the client asked for; the service derives
    the real one from the address and ignores this value.
    """

    model_config = ConfigDict(frozen=True)

    user_id: int
    items: List[CreateOrderItemDTO]
    shipping_address: ShippingAddressDTO
    payment_method: PaymentMethod
    shipping_method: Optional[ShippingMethod] = None
    notes: Optional[str] = ""
    idempotency_key: Optional[str] = None

    @field_validator("items")
    @classmethod
    def items_must_not_be_empty(
        cls, v: List[CreateOrderItemDTO]
    ) -> List[CreateOrderItemDTO]:
        if not v:
            raise ValueError("Order must have at least one item.")
        return v

    @model_validator(mode="after")
    def no_duplicate_products(self):
        """Prevent duplicate product IDs in the same order."""
        product_ids = [item.product_id for item in self.items]
        if len(product_ids) != len(set(product_ids)):
            raise ValueError("Duplicate product IDs are not allowed in the same order.")
        return self


# ---------------------------------------------------------------------------
# Output DTOs
# ---------------------------------------------------------------------------


class BkashPaymentPrompt(BaseModel):
    model_config = ConfigDict(frozen=True)

    requires_bkash_payment: bool = True
    bkash_configured: bool = True
    bkash_url: Optional[str] = None
    bkash_payment_id: Optional[str] = None
    bkash_error: Optional[str] = None
    message: Optional[str] = None

    def as_response_fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class CreateOrderResult(BaseModel):
    """Order creation outcome.

    ``replayed`` is ``True`` when an ``Idempotency-Key`` matched an
    existing order and nothing new was created.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    order: Any
    replayed: bool = False
    payment: Optional[BkashPaymentPrompt] = None
