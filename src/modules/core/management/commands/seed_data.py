from __future__ import annotations

import random
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from modules.orders.constants import PaymentMethod
from modules.orders.dtos import CreateOrderDTO, CreateOrderItemDTO, ShippingAddressDTO
from modules.orders.models import Order
from modules.orders.services import OrderService
from modules.products.models import Product, ProductStatus
from modules.products.repositories.django_repository import ProductDjangoRepository

CATALOG = [
    ("PNJ-001", "Cotton Panjabi", "Clothing", Decimal("1850.00")),
    ("PNJ-002", "Silk Panjabi", "Clothing", Decimal("3200.00")),
    ("SAR-001", "Jamdani Saree", "Clothing", Decimal("7500.00")),
    ("SAR-002", "Tant Saree", "Clothing", Decimal("2400.00")),
    ("LUN-001", "Check Lungi", "Clothing", Decimal("650.00")),
    ("TEA-001", "Sylhet Tea 500g", "Grocery", Decimal("420.00")),
    ("HON-001", "Sundarbans Honey 1kg", "Grocery", Decimal("950.00")),
    ("MNG-001", "Rajshahi Mango Box 5kg", "Grocery", Decimal("1200.00")),
    ("NKS-001", "Nakshi Kantha", "Home", Decimal("4800.00")),
    ("JUT-001", "Jute Tote Bag", "Home", Decimal("350.00")),
]

ADDRESSES = [
    ("Rahim", "Uddin", "01711000001", "House 12, Road 5, Dhanmondi", "Dhaka"),
    ("Karima", "Begum", "01811000002", "45 Agrabad C/A", "Chittagong"),
    ("Shafiq", "Islam", "01911000003", "Zindabazar", "Sylhet"),
]


class Command(BaseCommand):
    help = "Seed database with development users, products and orders."

    def add_arguments(self, parser):
        parser.add_argument("--orders", type=int, default=10)

    def handle(self, *args, **options):
        random.seed(42)
        self.stdout.write("Seeding development data...")

        users_created = self._seed_users()
        products = self._seed_products()
        orders_created = self._seed_orders(products, options["orders"])

        self.stdout.write(
            self.style.SUCCESS(
                "Seed completed: "
                f"users={users_created}, "
                f"products={len(products)}, "
                f"orders={orders_created}"
            )
        )

    def _seed_users(self) -> int:
        User = get_user_model()
        created = 0
        if not User.objects.filter(username="admin").exists():
            User.objects.create_superuser(
                "admin", email="admin@example.com", password="admin123"
            )
            created += 1
        if not User.objects.filter(username="customer").exists():
            User.objects.create_user(
                "customer",
                email="customer@example.com",
                password="customer123",
                first_name="Nusrat",
            )
            created += 1
        return created

    def _seed_products(self) -> list[Product]:
        self.stdout.write("Creating products...")
        repo = ProductDjangoRepository()
        existing = {
            product.sku: product
            for product in repo.list({"sku__in": [row[0] for row in CATALOG]})
        }
        products: list[Product] = []
        for sku, name, category, price in CATALOG:
            product = existing.get(sku) or repo.save(
                Product(
                    sku=sku,
                    name=name,
                    description=category,
                    price=price,
                    stock_quantity=random.randint(20, 200),
                    status=ProductStatus.ACTIVE,
                )
            )
            products.append(product)
        self.stdout.write(self.style.SUCCESS("Creating products... Done!"))
        return products

    def _seed_orders(self, products: list[Product], count: int) -> int:
        """Cash-on-delivery orders through the real service (no gateway calls)."""
        self.stdout.write("Creating orders...")
        customer = get_user_model().objects.get(username="customer")
        service = OrderService()
        created = 0
        for i in range(count):
            key = f"seed-order-{i + 1}"
            if Order.objects.filter(idempotency_key=key).exists():
                continue
            first, last, phone, street, city = random.choice(ADDRESSES)
            picked = random.sample(products, k=random.randint(1, 3))
            service.create_order(
                CreateOrderDTO(
                    user_id=customer.pk,
                    items=[
                        CreateOrderItemDTO(product_id=p.id, quantity=random.randint(1, 2))
                        for p in picked
                    ],
                    shipping_address=ShippingAddressDTO(
                        first_name=first,
                        last_name=last,
                        phone=phone,
                        street=street,
                        city=city,
                    ),
                    payment_method=PaymentMethod.CASH_ON_DELIVERY,
                    idempotency_key=key,
                )
            )
            created += 1
        self.stdout.write(self.style.SUCCESS("Creating orders... Done!"))
        return created
