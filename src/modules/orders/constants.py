"""Order domain constants.

Defines status choices for the order lifecycle, the payment lifecycle
and the valid transitions of both state machines.
"""

from django.db import models


class OrderStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    SHIPPED = "shipped", "Shipped"
    DELIVERED = "delivered", "Delivered"
    CANCELLED = "cancelled", "Cancelled"


VALID_TRANSITIONS: dict[str, set[str]] = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

TERMINAL_STATES: set[str] = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


class PaymentMethod(models.TextChoices):
    CARD = "card", "Card"
    CASH_ON_DELIVERY = "cash_on_delivery", "Cash on delivery"
    BKASH = "bkash", "bKash"


# Methods that must be paid before the order can move to processing.
PREPAID_METHODS: set[str] = {PaymentMethod.CARD, PaymentMethod.BKASH}


class ShippingMethod(models.TextChoices):
    INSIDE_DHAKA = "inside_dhaka", "Inside Dhaka"
    OUTSIDE_DHAKA = "outside_dhaka", "Outside Dhaka"


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"
    REFUNDED = "refunded", "Refunded"


class PaymentState(models.TextChoices):
    """Reconciliation engine state of an order's payment leg."""

    NO_PAYMENT = "NO_PAYMENT", "No payment"
    INTENT_CREATED = "INTENT_CREATED", "Intent created"
    EXECUTING = "EXECUTING", "Executing"
    PAID = "PAID", "Paid"
    FAILED = "FAILED", "Failed"
    CANCELLED = "CANCELLED", "Cancelled"
    REFUNDED = "REFUNDED", "Refunded"


# payment_status is never written directly: it is derived from the state.
PAYMENT_STATUS_FOR_STATE: dict[str, str] = {
    PaymentState.NO_PAYMENT: PaymentStatus.PENDING,
    PaymentState.INTENT_CREATED: PaymentStatus.PENDING,
    PaymentState.EXECUTING: PaymentStatus.PENDING,
    PaymentState.PAID: PaymentStatus.COMPLETED,
    PaymentState.FAILED: PaymentStatus.FAILED,
    PaymentState.CANCELLED: PaymentStatus.CANCELLED,
    PaymentState.REFUNDED: PaymentStatus.REFUNDED,
}

# Enforced by the payment engine on every compare-and-set.
PAYMENT_TRANSITIONS: dict[str, set[str]] = {
    PaymentState.NO_PAYMENT: {PaymentState.INTENT_CREATED, PaymentState.CANCELLED},
    PaymentState.INTENT_CREATED: {
        # an initiation whose gateway call failed hands its claim back
        PaymentState.NO_PAYMENT,
        PaymentState.INTENT_CREATED,
        PaymentState.EXECUTING,
        PaymentState.PAID,
        PaymentState.FAILED,
        PaymentState.CANCELLED,
    },
    PaymentState.EXECUTING: {
        PaymentState.INTENT_CREATED,
        PaymentState.PAID,
        PaymentState.FAILED,
        PaymentState.CANCELLED,
    },
    PaymentState.PAID: {PaymentState.REFUNDED},
    PaymentState.FAILED: {PaymentState.INTENT_CREATED},
    PaymentState.CANCELLED: {PaymentState.INTENT_CREATED},
    PaymentState.REFUNDED: set(),
}

# States in which the order's line items are currently deducted from stock.
STOCK_HELD_STATES: set[str] = {
    PaymentState.NO_PAYMENT,
    PaymentState.INTENT_CREATED,
    PaymentState.EXECUTING,
    PaymentState.PAID,
    PaymentState.REFUNDED,
}

# Stock was handed back on entering these; leaving them re-reserves it.
RELEASED_STATES: tuple[str, ...] = tuple(
    state for state in PaymentState.values if state not in STOCK_HELD_STATES
)
# An intent exists at the gateway and has not been settled yet.
UNSETTLED_STATES: tuple[str, ...] = (PaymentState.INTENT_CREATED, PaymentState.EXECUTING)
# States a new intent may be created from.
STARTABLE_STATES: tuple[str, ...] = (
    PaymentState.NO_PAYMENT,
    PaymentState.INTENT_CREATED,
    *RELEASED_STATES,
)


def is_payment_transition_allowed(current: str, new_state: str) -> bool:
    return new_state in PAYMENT_TRANSITIONS.get(current, set())


ORDER_NUMBER_MAX_RETRIES = 5

BKASH_RETRY_MESSAGE = "bKash payment initiation failed. You can retry from your orders."
BKASH_NOT_CONFIGURED_MESSAGE = (
    "bKash payment is not available right now. "
    "Your order was placed and can be paid later."
)
