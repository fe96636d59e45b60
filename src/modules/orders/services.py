"""Order service layer (Use Cases).

Orchestrates the business logic for order creation, status management
and cancellation.  The service defines the unit-of-work boundary:
creation commits the order, its items and the stock reservation together
*before* any gateway call, so a bKash failure never loses the order.

Business rules enforced:
- Products must exist and be active; stock is reserved all-or-nothing.
- Shipping method and cost come from the delivery city, never the client.
- Idempotency: a repeated ``Idempotency-Key`` returns the original order.
- Status transitions follow the order state machine; prepaid orders do
  not reach ``processing`` unpaid.
- Cancellation releases stock exactly once (through the payment engine)
  and is refused for paid bKash orders that have not been refunded.
- Every status change is recorded in the order history.
"""

from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING, Any, Dict, Optional
from uuid import UUID

import structlog
from django.db import IntegrityError, transaction
from django.db.models import QuerySet

from modules.orders.constants import (
    BKASH_NOT_CONFIGURED_MESSAGE,
    BKASH_RETRY_MESSAGE,
    OrderStatus,
    PaymentMethod,
    PaymentState,
)
from modules.orders.dtos import BkashPaymentPrompt, CreateOrderResult
from modules.orders.events import OrderCancelled, OrderCreated, OrderStatusChanged
from modules.orders.exceptions import (
    InvalidOrderStatus,
    OrderNotCancellable,
    OrderNotFound,
    OrderPermissionDenied,
)
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.shipping import quote_shipping
from modules.payments.exceptions import PaymentError, PaymentGatewayNotConfigured
from modules.payments.services import PaymentService
from modules.products.exceptions import InactiveProduct, ProductNotFound
from modules.products.inventory import InventoryAdjuster, StockLine
from modules.products.repositories.django_repository import ProductDjangoRepository
from shared.infrastructure.bus import event_bus as default_event_bus

if TYPE_CHECKING:
    from modules.orders.dtos import CreateOrderDTO
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.products.repositories.interfaces import IProductRepository
    from shared.domain.bus import IEventBus

logger = structlog.get_logger(__name__)


class OrderService:
    """Application service for Order use-cases.

    Receives repositories via constructor injection (DIP).  The payment
    engine is built on first use so read-only requests never touch the
    gateway factory.
    """

    def __init__(
        self,
        order_repository: Optional[IOrderRepository] = None,
        product_repository: Optional[IProductRepository] = None,
        inventory: Optional[InventoryAdjuster] = None,
        payment_service: Optional[PaymentService] = None,
        event_bus: Optional[IEventBus] = None,
    ) -> None:
        self._order_repo = order_repository or OrderDjangoRepository()
        self._product_repo = product_repository or ProductDjangoRepository()
        self._inventory = inventory or InventoryAdjuster(self._product_repo)
        self._payment_service = payment_service
        self._event_bus = event_bus or default_event_bus

    @property
    def payments(self) -> PaymentService:
        if self._payment_service is None:
            self._payment_service = PaymentService(
                order_repository=self._order_repo, inventory=self._inventory
            )
        return self._payment_service

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_order(self, dto: CreateOrderDTO) -> CreateOrderResult:
        """Create a new order, reserving stock, then start its bKash payment.

        Steps:
        1. Return the existing order if the idempotency key was used.
        2. Validate every product exists and is active.
        3. Reserve stock for all lines (all-or-nothing).
        4. Classify shipping from the city and persist order + items +
           initial history in the same transaction.
        5. For bKash, ask the payment engine for an intent.  Gateway
           problems are reported in the result; the order stands.

        Raises:
            ProductNotFound: a product does not exist.
            InactiveProduct: a product is inactive.
            InsufficientStock: not enough stock for a line.
        """
        log = logger.bind(user_id=dto.user_id, payment_method=dto.payment_method)
        log.info("order.creation_started")

        # 1. Idempotency check
        if dto.idempotency_key:
            existing = self._order_repo.get_by_idempotency_key(
                dto.user_id, dto.idempotency_key
            )
            if existing:
                log.info(
                    "order.idempotency_hit",
                    order_id=str(existing.id),
                    key=dto.idempotency_key,
                )
                return CreateOrderResult(order=existing, replayed=True)

        try:
            order = self._persist_order(dto, log)
        except IntegrityError:
            # A concurrent request with the same key won the insert.
            existing = None
            if dto.idempotency_key:
                existing = self._order_repo.get_by_idempotency_key(
                    dto.user_id, dto.idempotency_key
                )
            if existing is None:
                raise
            log.info("order.idempotency_race", order_id=str(existing.id))
            return CreateOrderResult(order=existing, replayed=True)

        log = log.bind(order_id=str(order.id))
        log.info("order.created", total_amount=str(order.total_amount))

        payment = None
        if dto.payment_method == PaymentMethod.BKASH:
            payment = self._start_bkash_payment(order)

        order_with_relations = self._order_repo.get_by_id(str(order.id))
        return CreateOrderResult(order=order_with_relations or order, payment=payment)

    @transaction.atomic
    def _persist_order(self, dto: CreateOrderDTO, log: Any) -> Order:
        product_ids = [str(item.product_id) for item in dto.items]
        products = self._product_repo.get_by_ids(product_ids)
        for product_id in product_ids:
            product = products.get(product_id)
            if product is None:
                raise ProductNotFound(f"Product {product_id} not found.")
            if not product.is_active:
                raise InactiveProduct(f"Product {product.sku} is inactive.")

        self._inventory.reserve(
            StockLine(product_id=item.product_id, quantity=item.quantity)
            for item in dto.items
        )

        quote = quote_shipping(dto.shipping_address.city)
        if dto.shipping_method and dto.shipping_method != quote.method:
            log.info(
                "order.shipping_method_overridden",
                requested=dto.shipping_method,
                applied=quote.method,
            )

        order = self._order_repo.create(
            {
                "user_id": dto.user_id,
                "items": [
                    {
                        "product_id": item.product_id,
                        "quantity": item.quantity,
                        "unit_price": products[str(item.product_id)].price,
                    }
                    for item in dto.items
                ],
                "shipping_address": dto.shipping_address.model_dump(),
                "shipping_method": quote.method,
                "shipping_cost": quote.cost,
                "payment_method": dto.payment_method,
                "notes": dto.notes or "",
                "idempotency_key": dto.idempotency_key,
            }
        )
        self._order_repo.add_history(
            order_id=order.id,
            status=OrderStatus.PENDING,
            notes="Order created",
            user_id=dto.user_id,
        )
        self._publish_on_commit(
            OrderCreated(
                aggregate_id=order.id,
                order_number=order.order_number,
                user_id=order.user_id,
                payment_method=order.payment_method,
            )
        )
        return order

    def _start_bkash_payment(self, order: Order) -> BkashPaymentPrompt:
        try:
            initiation = self.payments.initiate_payment(order.id)
        except PaymentGatewayNotConfigured:
            logger.warning("order.bkash_not_configured", order_id=str(order.id))
            return BkashPaymentPrompt(
                bkash_configured=False, message=BKASH_NOT_CONFIGURED_MESSAGE
            )
        except PaymentError as exc:
            logger.warning(
                "order.bkash_initiation_failed", order_id=str(order.id), error=str(exc)
            )
            return BkashPaymentPrompt(bkash_error=str(exc), message=BKASH_RETRY_MESSAGE)
        return BkashPaymentPrompt(
            bkash_url=initiation.redirect_url,
            bkash_payment_id=initiation.payment_id,
        )

    @transaction.atomic
    def update_status(
        self,
        order_id: UUID,
        new_status: str,
        notes: str = "",
        user_id: Optional[int] = None,
    ) -> Order:
        """Transition an order to a new status (admin).

        Acquires a row-level lock (``SELECT FOR UPDATE``) on the order
        before validating the transition.  Cancellation is delegated to
        ``cancel_order`` so stock handling stays in one place.

        Raises:
            OrderNotFound: order does not exist.
            InvalidOrderStatus: transition is not allowed.
        """
        if new_status == OrderStatus.CANCELLED:
            return self.cancel_order(
                order_id, notes=notes, user_id=user_id, is_admin=True
            )

        order = self._order_repo.get_for_update(str(order_id))
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")

        log = logger.bind(
            order_id=str(order_id),
            current_status=order.order_status,
            new_status=new_status,
        )

        if not order.can_transition_to(new_status):
            log.warning("order.invalid_transition", payment_status=order.payment_status)
            raise InvalidOrderStatus(
                f"Cannot transition from {order.order_status} to {new_status}."
            )

        old_status = order.order_status
        order.order_status = new_status
        order.save(update_fields=["order_status"])

        self._order_repo.add_history(
            order_id=order.id,
            status=new_status,
            notes=notes,
            old_status=old_status,
            user_id=user_id,
        )

        log.info("order.status_updated")
        self._publish_on_commit(
            OrderStatusChanged(
                aggregate_id=order.id,
                order_number=order.order_number,
                user_id=order.user_id,
                old_status=old_status,
                new_status=new_status,
            )
        )
        return self._order_repo.get_by_id(str(order_id))

    @transaction.atomic
    def cancel_order(
        self,
        order_id: UUID,
        notes: str = "",
        user_id: Optional[int] = None,
        is_admin: bool = False,
    ) -> Order:
        """Cancel an order and release its stock exactly once.

        Acquires a row-level lock on the order **first** so concurrent
        cancellations and payment events serialise on it.  Stock moves
        only through the payment engine's ``cancel_payment``: orders whose
        payment already failed or was cancelled hold no stock, and a
        refunded order's stock stays sold.

        Raises:
            OrderNotFound: order does not exist.
            OrderPermissionDenied: caller is neither owner nor admin.
            InvalidOrderStatus: cancellation not allowed from current status.
            OrderNotCancellable: paid and not refunded, or payment executing.
        """
        # 1. Lock the order row
        order = self._order_repo.get_for_update(str(order_id))
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        if not is_admin and order.user_id != user_id:
            raise OrderPermissionDenied("You can only cancel your own orders.")

        log = logger.bind(
            order_id=str(order_id),
            current_status=order.order_status,
            payment_state=order.payment_state,
        )

        # 2. Validate FSM transition
        if not order.can_transition_to(OrderStatus.CANCELLED):
            log.warning("order.cancel_not_allowed")
            raise InvalidOrderStatus(
                f"Cannot cancel order in status {order.order_status}."
            )

        # 3. Payment leg decides what happens to the stock
        state = order.payment_state
        if state == PaymentState.PAID:
            raise OrderNotCancellable(
                "This order has been paid. Refund the payment before cancelling."
            )
        if state == PaymentState.EXECUTING:
            raise OrderNotCancellable(
                "A payment is being confirmed for this order. Try again shortly."
            )
        if state in (PaymentState.NO_PAYMENT, PaymentState.INTENT_CREATED):
            self.payments.cancel_payment(order.id, reason=notes or "Order cancelled.")
        else:
            log.info("order.cancel_without_restock")

        # 4. Update status on the already-locked row
        old_status = order.order_status
        order.order_status = OrderStatus.CANCELLED
        order.save(update_fields=["order_status"])

        # 5. Record history
        self._order_repo.add_history(
            order_id=order.id,
            status=OrderStatus.CANCELLED,
            notes=notes or "Order cancelled",
            old_status=old_status,
            user_id=user_id,
        )

        log.info("order.cancelled")
        self._publish_on_commit(
            OrderCancelled(
                aggregate_id=order.id,
                order_number=order.order_number,
                user_id=order.user_id,
                reason=notes,
            )
        )
        return self._order_repo.get_by_id(str(order_id))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(
        self,
        order_id: str,
        user_id: Optional[int] = None,
        is_admin: bool = False,
    ) -> Order:
        """Retrieve a single order by ID.

        Raises:
            OrderNotFound: if the order does not exist.
            OrderPermissionDenied: caller is neither owner nor admin.
        """
        order = self._order_repo.get_by_id(order_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        if not is_admin and order.user_id != user_id:
            raise OrderPermissionDenied("You can only view your own orders.")
        return order

    def list_orders(
        self,
        user_id: Optional[int] = None,
        is_admin: bool = True,
        filters: Optional[Dict[str, Any]] = None,
    ) -> QuerySet:
        """Orders visible to the caller: admins see all, customers their own."""
        filters = dict(filters or {})
        if not is_admin:
            filters["user_id"] = user_id
        return self._order_repo.list(filters)

    # ------------------------------------------------------------------
    # Domain events
    # ------------------------------------------------------------------

    def _publish_on_commit(self, event: Any) -> None:
        transaction.on_commit(partial(self._event_bus.publish, event))
