"""Django ORM implementation of the Order repository.

Satisfies ``IOrderRepository`` using Django's QuerySet API.
All write operations are wrapped in ``transaction.atomic()`` to ensure
the Order aggregate (Order + OrderItems) is persisted atomically.

Payment state changes are single conditional UPDATEs keyed on the
expected prior state (compare-and-set), so two concurrent events for the
same order can never both apply.  Order status changes use
``select_for_update()``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from modules.orders.constants import PAYMENT_STATUS_FOR_STATE
from modules.orders.models import Order, OrderItem, OrderStatusHistory, PaymentDetails
from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)

_RELATIONS = ("items__product", "status_history")


class OrderDjangoRepository(IOrderRepository):
    """Concrete Order repository backed by Django ORM."""

    # ------------------------------------------------------------------
    # Create (aggregate root + children)
    # ------------------------------------------------------------------

    @transaction.atomic
    def create(self, data: Dict[str, Any]) -> Order:
        """Create an order with its items atomically.

        ``total_amount`` is the sum of item subtotals plus ``shipping_cost``.
        """
        order = Order(
            user_id=data["user_id"],
            shipping_address=data["shipping_address"],
            shipping_method=data["shipping_method"],
            shipping_cost=data["shipping_cost"],
            payment_method=data["payment_method"],
            idempotency_key=data.get("idempotency_key"),
            notes=data.get("notes", ""),
        )
        order.save()

        total = Decimal("0.00")
        items = data.get("items", [])
        for item_data in items:
            item = OrderItem(
                order=order,
                product_id=item_data["product_id"],
                quantity=item_data["quantity"],
                unit_price=item_data["unit_price"],
            )
            item.save()
            total += item.subtotal

        order.total_amount = total + Decimal(data["shipping_cost"])
        order.save(update_fields=["total_amount", "updated_at"])

        log = logger.bind(order_id=str(order.id), item_count=len(items))
        log.info("order.persisted")

        return order

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def _base_queryset(self) -> QuerySet:
        return Order.objects.select_related("user", "payment_details").prefetch_related(
            *_RELATIONS
        )

    def get_by_id(self, id: str) -> Optional[Order]:
        """Retrieve an order with eager-loaded relations.

        Returns ``None`` for non-existent or invalid IDs.
        """
        try:
            return self._base_queryset().filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> QuerySet:
        """Queryset of orders with optional filters and eager-loaded relations.

        Supported filter keys are any ORM look-ups, e.g. ``user_id``,
        ``order_status``, ``payment_status``.
        """
        queryset = self._base_queryset()
        if filters:
            queryset = queryset.filter(**filters)
        return queryset

    @transaction.atomic
    def save(self, entity: Order) -> Order:
        """Persist (create or update) an order."""
        entity.save()
        logger.info("order.saved", order_id=str(entity.id))
        return entity

    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order with a row-level lock (SELECT FOR UPDATE).

        Eager-loads items (with product) so the caller can iterate
        over them while the row is locked.  Returns ``None`` for
        non-existent or invalid IDs.
        """
        try:
            return (
                Order.objects.select_for_update()
                .prefetch_related(*_RELATIONS)
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def get_by_idempotency_key(self, user_id: int, key: str) -> Optional[Order]:
        """Retrieve *user_id*'s order placed with idempotency key *key*."""
        return (
            self._base_queryset().filter(user_id=user_id, idempotency_key=key).first()
        )

    def get_by_payment_id(self, payment_id: str) -> Optional[Order]:
        if not payment_id:
            return None
        return (
            self._base_queryset()
            .filter(payment_details__payment_id=payment_id)
            .first()
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @transaction.atomic
    def add_history(
        self,
        order_id: UUID,
        status: str,
        notes: str = "",
        old_status: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> OrderStatusHistory:
        """Record a status change in the order's audit trail."""
        if old_status is None:
            order = Order.objects.filter(id=order_id).first()
            old_status = order.order_status if order else None

        history = OrderStatusHistory(
            order_id=order_id,
            old_status=old_status,
            new_status=status,
            notes=notes,
            user_id=user_id,
        )
        history.save()

        logger.info(
            "order.history_added",
            order_id=str(order_id),
            old_status=old_status,
            new_status=status,
        )
        return history

    # ------------------------------------------------------------------
    # Payment leg
    # ------------------------------------------------------------------

    def transition_payment_state(
        self,
        order_id: UUID,
        expected: Iterable[str],
        new_state: str,
        expected_attempts: Optional[int] = None,
        **fields: Any,
    ) -> bool:
        expected = tuple(expected)
        queryset = Order.objects.filter(id=order_id, payment_state__in=expected)
        if expected_attempts is not None:
            queryset = queryset.filter(payment_attempts=expected_attempts)
        updated = queryset.update(
            payment_state=new_state,
            payment_status=PAYMENT_STATUS_FOR_STATE[new_state],
            updated_at=timezone.now(),
            **fields,
        )
        if updated:
            logger.info(
                "order.payment_state_changed",
                order_id=str(order_id),
                expected=list(expected),
                new_state=new_state,
            )
        return updated == 1

    def get_payment_state(self, order_id: UUID) -> Optional[str]:
        return (
            Order.objects.filter(id=order_id)
            .values_list("payment_state", flat=True)
            .first()
        )

    def update_payment_details(self, order_id: UUID, **fields: Any) -> PaymentDetails:
        details, _ = PaymentDetails.objects.update_or_create(
            order_id=order_id, defaults=fields
        )
        return details

    def list_stuck_payments(self, state: str, older_than: datetime) -> List[Order]:
        return list(
            Order.objects.filter(payment_state=state, updated_at__lt=older_than)
            .select_related("payment_details")
            .order_by("updated_at")
        )
