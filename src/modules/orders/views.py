"""Order API views.

Exposes the ``OrderService`` (and, for the payment actions, the payment
engine) via HTTP using DRF ViewSets.  Domain exceptions are caught and
translated into appropriate HTTP status codes; raw gateway responses never
reach the client.
"""

from __future__ import annotations

from uuid import UUID

import structlog
from django_filters.rest_framework import DjangoFilterBackend
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter, SearchFilter
from rest_framework.permissions import BasePermission, IsAdminUser, IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import BaseThrottle
from rest_framework.viewsets import GenericViewSet

from modules.core.pagination import StandardResultsSetPagination
from modules.orders.constants import PaymentMethod, PaymentState
from modules.orders.dtos import CreateOrderDTO, CreateOrderItemDTO, ShippingAddressDTO
from modules.orders.exceptions import (
    InvalidOrderStatus,
    OrderNotCancellable,
    OrderNotFound,
    OrderPermissionDenied,
)
from modules.orders.filters import OrderFilter
from modules.orders.models import Order
from modules.orders.serializers import (
    CancelOrderSerializer,
    CreateOrderSerializer,
    OrderListSerializer,
    OrderSerializer,
    PaymentStatusSerializer,
    RefundSerializer,
    UpdateOrderStatusSerializer,
)
from modules.orders.services import OrderService
from modules.payments.exceptions import (
    InvalidPaymentTransition,
    PaymentError,
    PaymentGatewayNotConfigured,
    PaymentGatewayRejected,
    PaymentGatewayUnavailable,
)
from modules.products.exceptions import InactiveProduct, InsufficientStock, ProductNotFound

logger = structlog.get_logger(__name__)

SETTLED_STATES = (PaymentState.PAID, PaymentState.REFUNDED)

PAYMENT_ERROR_STATUS = (
    (PaymentGatewayNotConfigured, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PaymentGatewayUnavailable, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (PaymentGatewayRejected, status.HTTP_502_BAD_GATEWAY),
    (InvalidPaymentTransition, status.HTTP_400_BAD_REQUEST),
)


def _not_found() -> Response:
    return Response({"detail": "Order not found."}, status=status.HTTP_404_NOT_FOUND)


def _forbidden(exc: Exception) -> Response:
    return Response({"detail": str(exc)}, status=status.HTTP_403_FORBIDDEN)


def _payment_error(exc: PaymentError) -> Response:
    for error_class, http_status in PAYMENT_ERROR_STATUS:
        if isinstance(exc, error_class):
            return Response({"detail": str(exc)}, status=http_status)
    return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)


def _insufficient_stock(exc: InsufficientStock) -> Response:
    return Response(
        {
            "detail": str(exc),
            "product_id": exc.product_id,
            "requested": exc.requested,
            "available": exc.available,
        },
        status=status.HTTP_400_BAD_REQUEST,
    )


class OrderViewSet(GenericViewSet):
    """ViewSet for Order operations.

    Uses ``OrderService`` with injected repositories (DIP).
    Does **not** extend ``ModelViewSet``; all ORM access goes through
    the service/repository layer.
    """

    queryset = Order.objects.all()
    filterset_class = OrderFilter
    search_fields = ["order_number", "user__email"]
    ordering_fields = ["created_at", "total_amount", "order_status"]
    ordering = ["-created_at", "-id"]
    filter_backends = [DjangoFilterBackend, SearchFilter, OrderingFilter]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = OrderService()

    def get_permissions(self) -> list[BasePermission]:
        if self.action in {"partial_update", "refund"}:
            return [IsAuthenticated(), IsAdminUser()]
        return [IsAuthenticated()]

    def get_throttles(self) -> list[BaseThrottle]:
        """Per-action throttling scopes."""
        throttle_scope: str | None
        if self.action == "create":
            throttle_scope = "order_creation"
        elif self.action == "retry_payment":
            throttle_scope = "payment_retry"
        else:
            throttle_scope = None
        self.throttle_scope = throttle_scope
        return super().get_throttles()

    @property
    def _is_admin(self) -> bool:
        return bool(self.request.user.is_staff)

    def _load(self, pk: str) -> Order:
        return self._service.get_order(
            pk, user_id=self.request.user.pk, is_admin=self._is_admin
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, request: Request) -> Response:
        """POST /api/v1/orders/

        Supports idempotency via the ``Idempotency-Key`` header.
        Returns 200 if the key was already used, 201 for new orders,
        including bKash orders whose payment could not be started.
        """
        create_serializer = CreateOrderSerializer(data=request.data)
        create_serializer.is_valid(raise_exception=True)

        data = create_serializer.validated_data
        try:
            dto = CreateOrderDTO(
                user_id=request.user.pk,
                items=[
                    CreateOrderItemDTO(
                        product_id=item["product_id"],
                        quantity=item["quantity"],
                    )
                    for item in data["items"]
                ],
                shipping_address=ShippingAddressDTO(**data["shipping_address"]),
                payment_method=data["payment_method"],
                shipping_method=data.get("shipping_method"),
                notes=data.get("notes", ""),
                idempotency_key=request.headers.get("Idempotency-Key") or None,
            )
        except PydanticValidationError as exc:
            return Response(
                {"detail": [error["msg"] for error in exc.errors()]},
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            result = self._service.create_order(dto)
        except ProductNotFound as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        except InactiveProduct as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        except InsufficientStock as exc:
            return _insufficient_stock(exc)

        body = dict(OrderSerializer(result.order).data)
        if result.replayed:
            return Response(body, status=status.HTTP_200_OK)
        if result.payment is not None:
            body.update(result.payment.as_response_fields())
        return Response(body, status=status.HTTP_201_CREATED)

    # ------------------------------------------------------------------
    # List / Retrieve
    # ------------------------------------------------------------------

    def get_queryset(self):
        return self._service.list_orders(
            user_id=self.request.user.pk, is_admin=self._is_admin
        )

    def list(self, request: Request) -> Response:
        """GET /api/v1/orders/

        Customers see their own orders, admins see every order.
        Filtering is handled by ``OrderFilter`` and ordering by
        ``OrderingFilter``.  Results are paginated.
        """
        queryset = self.filter_queryset(self.get_queryset())

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        serializer = OrderListSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/"""
        try:
            order = self._load(pk)
        except OrderNotFound:
            return _not_found()
        except OrderPermissionDenied as exc:
            return _forbidden(exc)
        return Response(OrderSerializer(order).data)

    # ------------------------------------------------------------------
    # Status Update (admin)
    # ------------------------------------------------------------------

    def partial_update(self, request: Request, pk: str | None = None) -> Response:
        """PATCH /api/v1/orders/{pk}/"""
        serializer = UpdateOrderStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = self._service.update_status(
                order_id=UUID(pk),
                new_status=serializer.validated_data["status"],
                notes=serializer.validated_data["notes"],
                user_id=request.user.pk,
            )
        except ValueError:
            return Response(
                {"detail": "Invalid order ID format."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        except OrderNotFound:
            return _not_found()
        except (InvalidOrderStatus, OrderNotCancellable) as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(OrderSerializer(order).data)

    # ------------------------------------------------------------------
    # Cancel (dedicated action)
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"])
    def cancel(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/cancel/

        Cancels an order and releases its stock (owner or admin).
        """
        serializer = CancelOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = self._service.cancel_order(
                order_id=UUID(pk),
                notes=serializer.validated_data["notes"],
                user_id=request.user.pk,
                is_admin=self._is_admin,
            )
        except ValueError:
            return Response(
                {"detail": "Invalid order ID format."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        except OrderNotFound:
            return _not_found()
        except OrderPermissionDenied as exc:
            return _forbidden(exc)
        except (InvalidOrderStatus, OrderNotCancellable) as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(OrderSerializer(order).data)

    # ------------------------------------------------------------------
    # Payment actions
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"], url_path="retry-payment")
    def retry_payment(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/retry-payment/

        Starts a new bKash intent.  After a failed or cancelled payment the
        stock is reserved again, so this can fail with insufficient stock.
        """
        try:
            order = self._load(pk)
            initiation = self._service.payments.initiate_payment(order.id)
        except OrderNotFound:
            return _not_found()
        except OrderPermissionDenied as exc:
            return _forbidden(exc)
        except InsufficientStock as exc:
            return _insufficient_stock(exc)
        except PaymentError as exc:
            return _payment_error(exc)

        return Response(
            {
                "order_id": str(order.id),
                "payment_state": initiation.order.payment_state,
                "payment_attempts": initiation.order.payment_attempts,
                "bkash_url": initiation.redirect_url,
                "bkash_payment_id": initiation.payment_id,
            }
        )

    @action(detail=True, methods=["get"], url_path="payment-status")
    def payment_status(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/payment-status/

        Asks bKash about the order's intent and applies the answer before
        responding.  Settled payments are returned as stored.
        """
        try:
            order = self._load(pk)
            details = getattr(order, "payment_details", None)
            if (
                order.payment_method == PaymentMethod.BKASH
                and details is not None
                and details.payment_id
                and order.payment_state not in SETTLED_STATES
            ):
                order = self._service.payments.reconcile_payment(order.id)
        except OrderNotFound:
            return _not_found()
        except OrderPermissionDenied as exc:
            return _forbidden(exc)
        except PaymentError as exc:
            logger.warning("order.payment_status_failed", order_id=pk, error=str(exc))
            return _payment_error(exc)

        return Response(PaymentStatusSerializer(order).data)

    @action(detail=True, methods=["post"])
    def refund(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/refund/ (admin, full refunds only)."""
        serializer = RefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = self._service.payments.refund_payment(
                pk,
                amount=serializer.validated_data.get("amount"),
                reason=serializer.validated_data["reason"],
                user_id=request.user.pk,
            )
        except OrderNotFound:
            return _not_found()
        except PaymentError as exc:
            return _payment_error(exc)

        return Response(OrderSerializer(order).data)
