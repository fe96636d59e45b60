"""Order, OrderItem, PaymentDetails and OrderStatusHistory models.

Business rules implemented:
- Order number auto-generated as human-readable identifier.
- Idempotency via a unique ``(user, idempotency_key)`` constraint.
- OrderItem snapshots product price at creation time (``unit_price``).
- OrderItem subtotal is always ``quantity * unit_price`` (calculated on save).
- ``payment_state`` is the reconciliation engine's state; ``payment_status``
  is derived from it and only ever written alongside it.
- ``PaymentDetails`` keeps gateway correlation ids and every raw gateway
  response verbatim for audit.
- Every order status change (and every payment event) appends a history
  record; history rows are never updated or deleted.
"""

from __future__ import annotations

import secrets
from decimal import Decimal
from typing import Any

import structlog
from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel
from modules.orders.constants import (
    ORDER_NUMBER_MAX_RETRIES,
    PREPAID_METHODS,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    OrderStatus,
    PaymentMethod,
    PaymentState,
    PaymentStatus,
    ShippingMethod,
)

logger = structlog.get_logger(__name__)


class Order(BaseModel):
    """Order aggregate root.

    ``order_number`` is a human-readable identifier auto-generated on first
    save (format: ``ORD-YYYYMMDD-XXXXXX``).  The UUIDv7 ``id`` is used for
    all internal references, API look-ups and as the gateway's merchant
    invoice number.

    ``idempotency_key`` is nullable and unique per user: only orders created with an
    ``Idempotency-Key`` header carry one.
    """

    order_number: models.CharField = models.CharField(
        max_length=20, unique=True, editable=False
    )
    user: models.ForeignKey = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="orders",
    )
    total_amount: models.DecimalField = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    shipping_address: models.JSONField = models.JSONField(default=dict)
    shipping_method: models.CharField = models.CharField(
        max_length=20,
        choices=ShippingMethod.choices,
    )
    shipping_cost: models.DecimalField = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    payment_method: models.CharField = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
    )
    payment_status: models.CharField = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    payment_state: models.CharField = models.CharField(
        max_length=20,
        choices=PaymentState.choices,
        default=PaymentState.NO_PAYMENT,
    )
    order_status: models.CharField = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
    )
    payment_attempts: models.PositiveIntegerField = models.PositiveIntegerField(
        default=0
    )
    notes: models.TextField = models.TextField(blank=True, default="")
    idempotency_key: models.CharField = models.CharField(
        max_length=255,
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["order_status"], name="orders_status_idx"),
            models.Index(
                fields=["payment_state", "updated_at"],
                name="orders_payment_state_idx",
            ),
            models.Index(fields=["-created_at"], name="orders_created_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "idempotency_key"],
                name="orders_user_idempotency_key_uniq",
            ),
        ]

    # ------------------------------------------------------------------
    # State Machine helpers
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` if the order is in a terminal state."""
        return self.order_status in TERMINAL_STATES

    @property
    def is_prepaid(self) -> bool:
        return self.payment_method in PREPAID_METHODS

    def can_transition_to(self, new_status: str) -> bool:
        """Check whether transitioning to *new_status* is valid.

        Prepaid orders cannot reach ``processing`` until the payment is
        completed; any other payment status blocks it.
        """
        allowed = VALID_TRANSITIONS.get(self.order_status, set())
        if new_status not in allowed:
            return False
        if (
            new_status == OrderStatus.PROCESSING
            and self.is_prepaid
            and self.payment_status != PaymentStatus.COMPLETED
        ):
            return False
        return True

    # ------------------------------------------------------------------
    # Order number generation
    # ------------------------------------------------------------------

    @staticmethod
    def generate_order_number() -> str:
        """Generate a human-readable order number: ``ORD-YYYYMMDD-XXXXXX``."""
        now = timezone.now()
        suffix = secrets.token_hex(3).upper()
        return f"ORD-{now:%Y%m%d}-{suffix}"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self.order_number:
            for attempt in range(ORDER_NUMBER_MAX_RETRIES):
                candidate = self.generate_order_number()
                if not Order.objects.filter(order_number=candidate).exists():
                    self.order_number = candidate
                    break
            else:
                raise RuntimeError(
                    f"Failed to generate unique order_number after "
                    f"{ORDER_NUMBER_MAX_RETRIES} attempts"
                )
        super().save(*args, **kwargs)

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        return f"{self.order_number} ({self.order_status}/{self.payment_state})"


class OrderItem(BaseModel):
    """Line item linking an Order to a Product.

    ``unit_price`` is a **snapshot** of the product price at the time of
    purchase; it never changes even if the product price is updated later.
    ``subtotal`` is always ``quantity * unit_price``, recalculated on every save.
    """

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="items",
    )
    product: models.ForeignKey = models.ForeignKey(
        "products.Product",
        on_delete=models.PROTECT,
        related_name="order_items",
    )
    quantity: models.PositiveIntegerField = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1)],
    )
    unit_price: models.DecimalField = models.DecimalField(
        max_digits=10,
        decimal_places=2,
    )
    subtotal: models.DecimalField = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        editable=False,
    )

    class Meta:
        db_table = "order_items"
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=1),
                name="order_items_quantity_positive",
            ),
        ]

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def clean(self) -> None:
        super().clean()
        if self.quantity is not None and self.quantity < 1:
            raise ValidationError({"quantity": "Quantity must be at least 1."})

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self.unit_price:
            unit_price = getattr(self.product, "price", None)
            if unit_price is None:
                raise ValidationError({"unit_price": "Product price is required."})
            self.unit_price = unit_price
        self.subtotal = self.quantity * self.unit_price
        super().save(*args, **kwargs)

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        return f"{self.product} x{self.quantity} ({self.subtotal})"


class PaymentDetails(BaseModel):
    """Gateway correlation data for an order's payment leg.

    Only the reconciliation engine writes here.  ``payment_id`` is the
    intent id the engine itself obtained from the gateway; inbound
    callbacks and webhooks are correlated against it, never against ids
    they carry for other fields.  The ``*_response`` columns hold the
    gateway's raw JSON for audit and are never branched on.
    """

    order: models.OneToOneField = models.OneToOneField(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="payment_details",
    )
    payment_id: models.CharField = models.CharField(
        max_length=100, blank=True, default="", db_index=True
    )
    trx_id: models.CharField = models.CharField(max_length=100, blank=True, default="")
    amount: models.DecimalField = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True
    )
    currency: models.CharField = models.CharField(max_length=8, default="BDT")
    customer_msisdn: models.CharField = models.CharField(
        max_length=20, blank=True, default=""
    )
    payer_reference: models.CharField = models.CharField(
        max_length=100, blank=True, default=""
    )
    merchant_invoice_number: models.CharField = models.CharField(
        max_length=100, blank=True, default=""
    )
    transaction_status: models.CharField = models.CharField(
        max_length=40, blank=True, default=""
    )
    payment_create_time: models.CharField = models.CharField(
        max_length=64, blank=True, default=""
    )
    payment_execute_time: models.CharField = models.CharField(
        max_length=64, blank=True, default=""
    )
    paid_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    failure_reason: models.TextField = models.TextField(blank=True, default="")
    refund_trx_id: models.CharField = models.CharField(
        max_length=100, blank=True, default=""
    )
    refunded_at = models.DateTimeField(null=True, blank=True)
    create_response = models.JSONField(null=True, blank=True)
    execute_response = models.JSONField(null=True, blank=True)
    query_response = models.JSONField(null=True, blank=True)
    refund_response = models.JSONField(null=True, blank=True)

    class Meta:
        db_table = "order_payment_details"

    def __str__(self) -> str:
        return f"{self.order_id} payment {self.payment_id or '-'}"


class OrderStatusHistory(BaseModel):
    """Append-only audit trail for order status transitions.

    Each record captures a single status change with the responsible user
    and optional notes (e.g. cancellation reason).  Payment events are
    recorded too, with ``old_status == new_status`` and a note describing
    the event.  ``user`` is nullable: ``None`` means the change was made
    by the system (gateway callback, webhook, periodic reconciliation).
    """

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="status_history",
    )
    old_status: models.CharField = models.CharField(  # noqa: DJ01
        max_length=20,
        choices=OrderStatus.choices,
        null=True,
        blank=True,
    )
    new_status: models.CharField = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
    )
    user: models.ForeignKey = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    notes: models.TextField = models.TextField(blank=True, default="")

    class Meta:
        db_table = "order_status_history"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(
                fields=["order", "created_at"],
                name="osh_order_created_idx",
            ),
        ]

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        return f"{self.order} : {self.old_status} -> {self.new_status}"
