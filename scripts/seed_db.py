#!/usr/bin/env python
"""
Development Data Seeder

Fills the order store with a catalog, customers (with session tokens),
addresses and coupons so the checkout flow can be exercised locally.

Usage:
    python scripts/seed_db.py --customers 5 --products 20
"""

import argparse
import asyncio
import random
import secrets
from decimal import Decimal

import structlog
from faker import Faker

from settlement.config import get_settings
from settlement.config.logging import configure_logging
from settlement.database.models import Address, Coupon, CouponType, Customer, Product
from settlement.database.store import SettlementStore
from settlement.integrations.identity import hash_token
from settlement.pricing.coupons import hash_coupon_code

logger = structlog.get_logger(__name__)

fake = Faker("ja_JP")
random.seed(42)
Faker.seed(42)

TAX_RATES = [Decimal("0.1"), Decimal("0.08")]

DEMO_COUPONS = [
    ("WELCOME500", CouponType.THRESHOLD_FLAT, 3000, 500),
    ("SPRING10", CouponType.THRESHOLD_PERCENT, 5000, 10),
]


def build_products(n: int):
    return [
        Product(
            code=f"SKU-{fake.unique.random_number(digits=8)}",
            title=f"{fake.word().title()} {random.choice(['Tea', 'Bowl', 'Towel', 'Soap', 'Notebook'])}",
            description=fake.sentence(nb_words=12),
            price=Decimal(random.randrange(300, 12000, 50)),
            tax_rate=random.choice(TAX_RATES),
            stock=random.randint(0, 200),
            available=True,
        )
        for _ in range(n)
    ]


def build_customer():
    token = secrets.token_hex(48)
    customer = Customer(
        email=fake.unique.email(),
        first_name=fake.first_name(),
        last_name=fake.last_name(),
        token_hash=hash_token(token),
    )
    return customer, token


def build_address(customer: Customer, default: bool) -> Address:
    return Address(
        customer_key=customer.customer_key,
        first_name=customer.first_name,
        last_name=customer.last_name,
        postal_code=fake.postcode(),
        pref_code=random.randint(1, 47),
        pref=fake.prefecture(),
        city=fake.city(),
        ward=fake.town(),
        address2=fake.chome() + fake.ban(),
        phone_number=fake.phone_number(),
        email=customer.email,
        default_address=default,
    )


async def seed(n_customers: int, n_products: int) -> None:
    settings = get_settings()
    store = await SettlementStore.from_url(settings.database.async_url, create_schema=True)

    try:
        async with store.transaction() as session:
            products = build_products(n_products)
            session.add_all(products)
            await session.flush()

            credentials = []
            for _ in range(n_customers):
                customer, token = build_customer()
                session.add(customer)
                await session.flush()
                session.add_all([build_address(customer, default=(i == 0)) for i in range(2)])
                credentials.append((customer.customer_key, customer.email, token))

            for code, coupon_type, target, reward in DEMO_COUPONS:
                session.add(Coupon(
                    code_hash=hash_coupon_code(code),
                    coupon_type=coupon_type,
                    target=target,
                    reward=reward,
                ))
            session.add(Coupon(
                code_hash=hash_coupon_code("BUNDLE3"),
                coupon_type=CouponType.PRODUCT_QUANTITY_FLAT,
                product_key=products[0].product_key,
                target=3,
                reward=300,
            ))

        logger.info(
            "Seed data loaded",
            customers=n_customers,
            products=n_products,
            coupons=len(DEMO_COUPONS) + 1,
        )
        for customer_key, email, token in credentials:
            logger.info("Seeded customer", customer_key=customer_key, email=email, token=token)
    finally:
        await store.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the order store with development data")
    parser.add_argument("--customers", type=int, default=5, help="Customers to create (default: 5)")
    parser.add_argument("--products", type=int, default=20, help="Products to create (default: 20)")
    args = parser.parse_args()

    configure_logging()
    asyncio.run(seed(args.customers, args.products))
