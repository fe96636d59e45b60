from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.core.cache import cache
from rest_framework.test import APIClient

from modules.orders.constants import PaymentMethod
from modules.orders.dtos import CreateOrderDTO, CreateOrderItemDTO, ShippingAddressDTO
from modules.orders.services import OrderService
from modules.payments.gateway import MockBkashGateway, reset_gateway, set_gateway
from modules.products.models import Product, ProductStatus

User = get_user_model()

DHAKA_ADDRESS = {
    "first_name": "Nusrat",
    "last_name": "Jahan",
    "phone": "01711000001",
    "street": "House 12, Road 5, Dhanmondi",
    "city": "Dhaka",
}


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture(autouse=True)
def _clear_cache():
    """Throttle counters and cached webhook ids must not leak between tests."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def mock_gateway():
    """Every test talks to the in-memory bKash double."""
    gateway = MockBkashGateway()
    set_gateway(gateway)
    yield gateway
    reset_gateway()


@pytest.fixture()
def api_client():
    """DRF APIClient for testing API endpoints."""
    return APIClient()


@pytest.fixture()
def api_client_with_correlation(api_client):
    """APIClient pre-configured with a known correlation ID header."""
    cid = "test-correlation-id-fixture"
    api_client.defaults["HTTP_X_REQUEST_ID"] = cid
    return api_client, cid


# ---------------------------------------------------------------------------
# Users and clients
# ---------------------------------------------------------------------------


@pytest.fixture()
def user():
    return User.objects.create_user(
        username="nusrat",
        email="nusrat@example.com",
        password="testpass123",
        first_name="Nusrat",
    )


@pytest.fixture()
def other_user():
    return User.objects.create_user(
        username="karim", email="karim@example.com", password="testpass123"
    )


@pytest.fixture()
def admin_user():
    return User.objects.create_superuser(
        "shopadmin", email="admin@example.com", password="testpass123"
    )


@pytest.fixture()
def auth_client(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture()
def other_client(other_user):
    client = APIClient()
    client.force_authenticate(user=other_user)
    return client


@pytest.fixture()
def admin_client(admin_user):
    client = APIClient()
    client.force_authenticate(user=admin_user)
    return client


# ---------------------------------------------------------------------------
# Catalog and orders
# ---------------------------------------------------------------------------


@pytest.fixture()
def product():
    return Product.objects.create(
        sku="PNJ-001",
        name="Cotton Panjabi",
        price=Decimal("1850.00"),
        stock_quantity=5,
        status=ProductStatus.ACTIVE,
    )


@pytest.fixture()
def tea():
    return Product.objects.create(
        sku="TEA-001",
        name="Sylhet Tea 500g",
        price=Decimal("420.00"),
        stock_quantity=50,
        status=ProductStatus.ACTIVE,
    )


@pytest.fixture()
def inactive_product():
    return Product.objects.create(
        sku="OLD-001",
        name="Discontinued Lungi",
        price=Decimal("500.00"),
        stock_quantity=10,
        status=ProductStatus.INACTIVE,
    )


@pytest.fixture()
def shipping_address():
    return dict(DHAKA_ADDRESS)


@pytest.fixture()
def place_order(user, product):
    """Create an order through ``OrderService``; returns the ``CreateOrderResult``.

    Defaults to 3 x ``product`` paid with bKash and shipped inside Dhaka,
    so with the mock gateway the order comes back in ``INTENT_CREATED``.
    """

    def _place(
        payment_method=PaymentMethod.BKASH,
        quantity=3,
        item_product=None,
        owner=None,
        city="Dhaka",
        idempotency_key=None,
    ):
        dto = CreateOrderDTO(
            user_id=(owner or user).pk,
            items=[
                CreateOrderItemDTO(
                    product_id=(item_product or product).id, quantity=quantity
                )
            ],
            shipping_address=ShippingAddressDTO(**{**DHAKA_ADDRESS, "city": city}),
            payment_method=payment_method,
            idempotency_key=idempotency_key,
        )
        return OrderService().create_order(dto)

    return _place


@pytest.fixture()
def bkash_order(place_order):
    """A bKash order for 3 units whose intent was created (stock 5 -> 2)."""
    return place_order().order
