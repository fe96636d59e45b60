"""Order DRF serializers for API input/output.

The serializer operates at the Interface layer (API Views).
Business logic lives in the Service Layer, which receives
Pydantic DTOs from ``dtos.py``.
"""

from __future__ import annotations

from rest_framework import serializers

from modules.orders.constants import OrderStatus, PaymentMethod, ShippingMethod
from modules.orders.models import Order, OrderItem, OrderStatusHistory, PaymentDetails

# ---------------------------------------------------------------------------
# Input Serializers
# ---------------------------------------------------------------------------


class CreateOrderItemSerializer(serializers.Serializer):
    """Validates a single item in an order creation request."""

    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)


class ShippingAddressSerializer(serializers.Serializer):
    first_name = serializers.CharField(max_length=100)
    last_name = serializers.CharField(max_length=100)
    phone = serializers.CharField(max_length=20)
    street = serializers.CharField(max_length=255)
    city = serializers.CharField(max_length=100)
    state = serializers.CharField(max_length=100, required=False, default="", allow_blank=True)
    zip_code = serializers.CharField(max_length=20, required=False, default="", allow_blank=True)
    country = serializers.CharField(max_length=100, required=False, default="Bangladesh")


class CreateOrderSerializer(serializers.Serializer):
    """Validates the order creation request payload.

    ``shipping_method`` is accepted for compatibility with existing
    clients; the server derives the real method from the city.
    """

    items = CreateOrderItemSerializer(many=True, allow_empty=False)
    shipping_address = ShippingAddressSerializer()
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices)
    shipping_method = serializers.ChoiceField(
        choices=ShippingMethod.choices, required=False, allow_null=True
    )
    notes = serializers.CharField(required=False, default="", allow_blank=True)

    def validate_items(self, value):
        product_ids = [item["product_id"] for item in value]
        if len(product_ids) != len(set(product_ids)):
            raise serializers.ValidationError(
                "Duplicate product IDs are not allowed in the same order."
            )
        return value


class UpdateOrderStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=OrderStatus.choices)
    notes = serializers.CharField(required=False, default="", allow_blank=True)


class CancelOrderSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, default="", allow_blank=True)


class RefundSerializer(serializers.Serializer):
    amount = serializers.DecimalField(
        max_digits=12, decimal_places=2, required=False, allow_null=True
    )
    reason = serializers.CharField(
        required=False, default="Customer refund", max_length=255
    )


# ---------------------------------------------------------------------------
# Output Serializers (Read)
# ---------------------------------------------------------------------------


class OrderItemSerializer(serializers.ModelSerializer):
    """Read serializer for order items with product snapshot."""

    product_name = serializers.CharField(source="product.name", read_only=True)
    product_sku = serializers.CharField(source="product.sku", read_only=True)

    class Meta:
        model = OrderItem
        fields = [
            "id",
            "product_id",
            "product_name",
            "product_sku",
            "quantity",
            "unit_price",
            "subtotal",
        ]
        read_only_fields = fields


class StatusHistorySerializer(serializers.ModelSerializer):
    """Read serializer for order status history records."""

    class Meta:
        model = OrderStatusHistory
        fields = [
            "id",
            "old_status",
            "new_status",
            "notes",
            "created_at",
        ]
        read_only_fields = fields


class PaymentDetailsSerializer(serializers.ModelSerializer):
    """Customer-safe view of the payment leg.

    Raw gateway responses are not exposed.
    """

    class Meta:
        model = PaymentDetails
        fields = [
            "payment_id",
            "trx_id",
            "amount",
            "currency",
            "transaction_status",
            "paid_at",
            "failed_at",
            "refund_trx_id",
            "refunded_at",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """Read serializer for orders with nested items, payment and history."""

    items = OrderItemSerializer(many=True, read_only=True)
    status_history = StatusHistorySerializer(many=True, read_only=True)
    payment_details = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "user_id",
            "order_status",
            "payment_method",
            "payment_status",
            "payment_state",
            "payment_attempts",
            "shipping_address",
            "shipping_method",
            "shipping_cost",
            "total_amount",
            "notes",
            "created_at",
            "updated_at",
            "items",
            "payment_details",
            "status_history",
        ]
        read_only_fields = fields

    def get_payment_details(self, obj: Order):
        details = getattr(obj, "payment_details", None)
        if details is None:
            return None
        return PaymentDetailsSerializer(details).data


class OrderListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for order list (no nested relations)."""

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "user_id",
            "order_status",
            "payment_method",
            "payment_status",
            "total_amount",
            "created_at",
        ]
        read_only_fields = fields


class PaymentStatusSerializer(serializers.ModelSerializer):
    """Payment-only view returned by the payment-status endpoint."""

    payment_details = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "payment_method",
            "payment_status",
            "payment_state",
            "payment_attempts",
            "payment_details",
        ]
        read_only_fields = fields

    def get_payment_details(self, obj: Order):
        details = getattr(obj, "payment_details", None)
        if details is None:
            return None
        return PaymentDetailsSerializer(details).data
