"""
Test Suite Configuration
"""
import secrets
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List

import pytest

from settlement.config import Settings
from settlement.database.models import Address, Customer, Product
from settlement.database.store import SettlementStore
from settlement.environment import Environment
from settlement.errors import ErpError, GatewayError
from settlement.integrations.gateway import GatewayIntent, STATUS_SUCCEEDED
from settlement.integrations.identity import hash_token


# =============================================================================
# RECORDING COLLABORATORS
# =============================================================================

class FakeGateway:
    """In-memory payment gateway that records every call"""

    def __init__(self):
        self.intents: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.refunds: List[str] = []
        self.fail_refund = False

    async def create_intent(self, amount, currency, metadata) -> GatewayIntent:
        intent_id = f"pi_test_{len(self.intents) + 1}"
        self.intents[intent_id] = {"amount": amount, "currency": currency, "status": "requires_payment_method"}
        self.calls.append(("create", intent_id, amount))
        return GatewayIntent(
            id=intent_id,
            amount=amount,
            status="requires_payment_method",
            client_secret=f"{intent_id}_secret",
        )

    async def update_intent(self, intent_id, amount, metadata) -> GatewayIntent:
        self.intents[intent_id]["amount"] = amount
        self.calls.append(("update", intent_id, amount))
        return GatewayIntent(id=intent_id, amount=amount, status=self.intents[intent_id]["status"])

    async def get_intent_status(self, intent_id) -> str:
        self.calls.append(("status", intent_id))
        return self.intents[intent_id]["status"]

    async def refund(self, intent_id, reason) -> Dict[str, Any]:
        self.calls.append(("refund", intent_id))
        if self.fail_refund:
            raise GatewayError("Refund declined", upstream_status=402)
        self.refunds.append(intent_id)
        return {"id": f"re_{intent_id}", "status": "succeeded"}

    def pay(self, intent_id: str) -> None:
        """Simulate the shopper completing payment."""
        self.intents[intent_id]["status"] = STATUS_SUCCEEDED

    async def aclose(self) -> None:
        return None


class FakeErp:
    def __init__(self):
        self.pushes: List[tuple] = []
        self.fail = False

    async def push_settlement(self, endpoint_name, payload_json) -> Dict[str, Any]:
        if self.fail:
            raise ErpError("ERP unavailable", upstream_status=503)
        self.pushes.append((endpoint_name, payload_json))
        return {"result": "ok"}

    async def aclose(self) -> None:
        return None


class FakeNotifier:
    def __init__(self):
        self.sent: List[tuple] = []

    async def send_order_confirmation(self, email, purchase, lines, products) -> None:
        self.sent.append((email, purchase.purchase_key, len(lines)))

    async def aclose(self) -> None:
        return None


@dataclass
class SeededCustomer:
    customer_key: int
    token: str
    address_keys: List[int] = field(default_factory=list)

    @property
    def headers(self) -> Dict[str, str]:
        return {"X-Customer-Key": str(self.customer_key), "Authorization": f"Bearer {self.token}"}


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
    )


@pytest.fixture
async def store():
    """Order store on a fresh in-memory database"""
    store = await SettlementStore.from_url("sqlite+aiosqlite:///:memory:", create_schema=True)
    yield store
    await store.dispose()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def erp() -> FakeErp:
    return FakeErp()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def env(store, gateway, erp, notifier) -> Environment:
    return Environment(
        store=store,
        gateway=gateway,
        erp=erp,
        notifier=notifier,
        currency="jpy",
        minimum_charge=50,
        stamp_refund_time=True,
    )


async def seed_customer(store: SettlementStore, email: str = "taro@example.com") -> SeededCustomer:
    token = secrets.token_hex(48)
    async with store.transaction() as session:
        customer = Customer(email=email, first_name="Taro", last_name="Yamada", token_hash=hash_token(token))
        session.add(customer)
        await session.flush()
        addresses = [
            Address(
                customer_key=customer.customer_key,
                first_name="Taro",
                last_name="Yamada",
                postal_code="150-0001",
                pref_code=13,
                pref="Tokyo",
                city="Shibuya-ku",
                ward="Jingumae 1-1",
                default_address=False,
            ),
            Address(
                customer_key=customer.customer_key,
                first_name="Hanako",
                last_name="Yamada",
                postal_code="530-0001",
                pref_code=27,
                pref="Osaka",
                city="Kita-ku",
                ward="Umeda 2-2",
                default_address=True,
            ),
        ]
        session.add_all(addresses)
        await session.flush()
        return SeededCustomer(
            customer_key=customer.customer_key,
            token=token,
            address_keys=[a.address_key for a in addresses],
        )


async def seed_product(
    store: SettlementStore,
    code: str,
    price: str,
    tax_rate: str = "0.1",
    available: bool = True,
) -> int:
    async with store.transaction() as session:
        product = Product(
            code=code,
            title=f"Product {code}",
            price=Decimal(price),
            tax_rate=Decimal(tax_rate),
            stock=10,
            available=available,
        )
        session.add(product)
        await session.flush()
        return product.product_key


@pytest.fixture
async def customer(store) -> SeededCustomer:
    return await seed_customer(store)


@pytest.fixture
async def products(store) -> Dict[str, int]:
    """Catalog: tea 1000 @10%, bowl 500 @8%, candy 20 @10%, retired (unavailable)"""
    return {
        "tea": await seed_product(store, "SKU-TEA", "1000"),
        "bowl": await seed_product(store, "SKU-BOWL", "500", "0.08"),
        "candy": await seed_product(store, "SKU-CANDY", "20"),
        "retired": await seed_product(store, "SKU-OLD", "800", available=False),
    }


@pytest.fixture
def make_product(store):
    """Factory for extra catalog entries"""
    async def _make(code: str, price: str, tax_rate: str = "0.1", available: bool = True) -> int:
        return await seed_product(store, code, price, tax_rate, available)
    return _make


@pytest.fixture
def make_customer(store):
    async def _make(email: str) -> SeededCustomer:
        return await seed_customer(store, email)
    return _make


@pytest.fixture
def guest_address_fields() -> dict:
    return {
        "first_name": "Jiro",
        "last_name": "Sato",
        "postal_code": "060-0001",
        "city": "Sapporo",
        "pref": "Hokkaido",
        "ward": "Chuo-ku 3-3",
    }
