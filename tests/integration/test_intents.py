"""
Integration Tests - Intent Coordinator
"""
import pytest

from settlement.checkout import cart
from settlement.checkout.addresses import AddressFields
from settlement.checkout.intents import (
    AddressAssignment,
    Destination,
    GuestLine,
    create_intent,
    is_local_intent,
    update_intent,
)
from settlement.database import queries
from settlement.database.models import Coupon, CouponType, PurchaseStatus
from settlement.errors import AuthorizationError, NotFoundError, SplitMismatchError, ValidationError
from settlement.pricing.coupons import hash_coupon_code


async def add_coupon(store, code, **fields):
    async with store.transaction() as session:
        session.add(Coupon(code_hash=hash_coupon_code(code), **fields))


class TestCreateIntent:
    """Tests for create_intent"""

    async def test_cart_checkout(self, env, gateway, customer, products):
        lines = await cart.add_to_cart(env.store, customer.customer_key, products["tea"], 2)

        result = await create_intent(env, customer.customer_key, [lines[0].line_item_key])

        assert result.amount == 2200
        assert result.payable == 2200
        assert result.client_secret == f"{result.intent_id}_secret"
        assert gateway.calls == [("create", result.intent_id, 2200)]

        async with env.store.transaction() as session:
            purchase = await queries.get_purchase_by_intent(session, result.intent_id)
            bound = await queries.get_purchase_lines(session, purchase.purchase_key)
        assert purchase.status == PurchaseStatus.CREATED
        assert [l.line_item_key for l in bound] == [lines[0].line_item_key]

    async def test_lines_stay_in_cart_until_settled(self, env, customer, products):
        lines = await cart.add_to_cart(env.store, customer.customer_key, products["tea"], 1)

        await create_intent(env, customer.customer_key, [lines[0].line_item_key])

        assert len(await cart.list_cart(env.store, customer.customer_key)) == 1

    async def test_multi_address_split(self, env, customer, products):
        lines = await cart.add_to_cart(env.store, customer.customer_key, products["tea"], 3)
        key = lines[0].line_item_key
        home, office = customer.address_keys

        result = await create_intent(
            env,
            customer.customer_key,
            [key],
            assignments=[AddressAssignment(key, [Destination(2, address_key=home), Destination(1, address_key=office)])],
        )

        async with env.store.transaction() as session:
            split = await queries.get_purchase_lines(session, result.purchase_key)
        assert len(split) == 2
        assert {(l.address_key, l.quantity) for l in split} == {(home, 2), (office, 1)}
        assert split[0].line_item_key == key
        assert all(l.unit_price == lines[0].unit_price for l in split)
        assert result.amount == 3300

    async def test_split_into_new_address(self, env, customer, products, guest_address_fields):
        lines = await cart.add_to_cart(env.store, customer.customer_key, products["tea"], 2)
        key = lines[0].line_item_key

        result = await create_intent(
            env,
            customer.customer_key,
            [key],
            assignments=[AddressAssignment(key, [
                Destination(1, address_key=customer.address_keys[0]),
                Destination(1, address=AddressFields(**guest_address_fields)),
            ])],
        )

        async with env.store.transaction() as session:
            split = await queries.get_purchase_lines(session, result.purchase_key)
            owned = await queries.get_customer_addresses(session, customer.customer_key)
        assert len(split) == 2
        assert len(owned) == 3

    async def test_split_quantity_mismatch(self, env, gateway, customer, products):
        lines = await cart.add_to_cart(env.store, customer.customer_key, products["tea"], 3)
        key = lines[0].line_item_key

        with pytest.raises(ValidationError):
            await create_intent(
                env,
                customer.customer_key,
                [key],
                assignments=[AddressAssignment(key, [
                    Destination(1, address_key=customer.address_keys[0]),
                    Destination(1, address_key=customer.address_keys[1]),
                ])],
            )
        assert gateway.calls == []

    async def test_duplicate_destination_address(self, env, customer, products):
        lines = await cart.add_to_cart(env.store, customer.customer_key, products["tea"], 2)
        key = lines[0].line_item_key
        home = customer.address_keys[0]

        with pytest.raises(ValidationError):
            await create_intent(
                env,
                customer.customer_key,
                [key],
                assignments=[AddressAssignment(key, [Destination(1, address_key=home), Destination(1, address_key=home)])],
            )

    async def test_foreign_address_rejected(self, env, customer, products, make_customer):
        other = await make_customer("jiro@example.com")
        lines = await cart.add_to_cart(env.store, customer.customer_key, products["tea"], 1)
        key = lines[0].line_item_key

        with pytest.raises(AuthorizationError):
            await create_intent(
                env,
                customer.customer_key,
                [key],
                assignments=[AddressAssignment(key, [Destination(1, address_key=other.address_keys[0])])],
            )

    async def test_unknown_cart_line(self, env, customer):
        with pytest.raises(NotFoundError):
            await create_intent(env, customer.customer_key, [424242])

    async def test_below_minimum_charge(self, env, gateway, customer, products):
        lines = await cart.add_to_cart(env.store, customer.customer_key, products["candy"], 1)

        with pytest.raises(ValidationError):
            await create_intent(env, customer.customer_key, [lines[0].line_item_key])
        assert gateway.calls == []

    async def test_guest_checkout(self, env, gateway, products, guest_address_fields):
        result = await create_intent(
            env,
            None,
            guest_lines=[GuestLine(products["bowl"], 2, [Destination(2, address=AddressFields(**guest_address_fields))])],
        )

        assert result.amount == 1080
        async with env.store.transaction() as session:
            lines = await queries.get_purchase_lines(session, result.purchase_key)
        assert lines[0].customer_key is None
        assert lines[0].address_key is not None

    async def test_guest_cannot_use_address_keys(self, env, customer, products):
        with pytest.raises(ValidationError):
            await create_intent(
                env,
                None,
                guest_lines=[GuestLine(products["bowl"], 1, [Destination(1, address_key=customer.address_keys[0])])],
            )


class TestUpdateIntent:
    """Tests for coupon application"""

    async def test_threshold_coupon(self, env, gateway, customer, products):
        await add_coupon(env.store, "TAKE300", coupon_type=CouponType.THRESHOLD_FLAT, target=2000, reward=300)
        lines = await cart.add_to_cart(env.store, customer.customer_key, products["tea"], 2)
        intent = await create_intent(env, customer.customer_key, [lines[0].line_item_key])

        update = await update_intent(env, intent.intent_id, "take300")

        assert (update.total, update.discount, update.payable) == (2200, 300, 1900)
        assert gateway.intents[intent.intent_id]["amount"] == 1900

    async def test_unknown_coupon_gives_no_discount(self, env, gateway, customer, products):
        lines = await cart.add_to_cart(env.store, customer.customer_key, products["tea"], 2)
        intent = await create_intent(env, customer.customer_key, [lines[0].line_item_key])

        update = await update_intent(env, intent.intent_id, "NOSUCHCODE")

        assert update.discount == 0
        assert update.payable == 2200

    async def test_coupon_into_minimum_band_rejected(self, env, gateway, customer, products):
        await add_coupon(env.store, "ALMOST", coupon_type=CouponType.THRESHOLD_FLAT, target=0, reward=2180)
        lines = await cart.add_to_cart(env.store, customer.customer_key, products["tea"], 2)
        intent = await create_intent(env, customer.customer_key, [lines[0].line_item_key])

        with pytest.raises(ValidationError):
            await update_intent(env, intent.intent_id, "ALMOST")
        assert gateway.intents[intent.intent_id]["amount"] == 2200

    async def test_free_order_skips_gateway(self, env, gateway, customer, products):
        await add_coupon(env.store, "ALLFREE", coupon_type=CouponType.THRESHOLD_FLAT, target=0, reward=100000)
        lines = await cart.add_to_cart(env.store, customer.customer_key, products["tea"], 2)
        intent = await create_intent(env, customer.customer_key, [lines[0].line_item_key])

        update = await update_intent(env, intent.intent_id, "ALLFREE")

        assert update.payable == 0
        assert [c[0] for c in gateway.calls] == ["create"]

    async def test_clearing_coupon(self, env, customer, products):
        await add_coupon(env.store, "TAKE300", coupon_type=CouponType.THRESHOLD_FLAT, target=2000, reward=300)
        lines = await cart.add_to_cart(env.store, customer.customer_key, products["tea"], 2)
        intent = await create_intent(env, customer.customer_key, [lines[0].line_item_key])

        await update_intent(env, intent.intent_id, "TAKE300")
        update = await update_intent(env, intent.intent_id, None)

        assert update.discount == 0
        async with env.store.transaction() as session:
            purchase = await queries.get_purchase_by_intent(session, intent.intent_id)
        assert purchase.coupon_key is None
        assert purchase.coupon_discount == 0

    async def test_unknown_intent(self, env):
        with pytest.raises(NotFoundError):
            await update_intent(env, "pi_missing", None)


async def test_free_cart_gets_local_intent(env, gateway, customer, make_product):
    free = await make_product("SKU-FREE", "0")
    lines = await cart.add_to_cart(env.store, customer.customer_key, free, 1)

    result = await create_intent(env, customer.customer_key, [lines[0].line_item_key])

    assert is_local_intent(result.intent_id)
    assert result.client_secret is None
    assert gateway.calls == []


class TestSplitPricing:
    """Amounts follow the lines as they are stored after a split"""

    async def split_checkout(self, env, customer, make_product):
        odd = await make_product("SKU-ODD", "105")
        lines = await cart.add_to_cart(env.store, customer.customer_key, odd, 2)
        key = lines[0].line_item_key
        home, office = customer.address_keys
        return await create_intent(
            env,
            customer.customer_key,
            [key],
            assignments=[AddressAssignment(key, [Destination(1, address_key=home), Destination(1, address_key=office)])],
        )

    async def test_split_lines_priced_before_reservation(self, env, gateway, customer, make_product):
        result = await self.split_checkout(env, customer, make_product)

        # 105 * 1.1 = 115.5 rounds to 116 on each split line
        assert result.amount == 232
        assert gateway.calls == [("create", result.intent_id, 232)]
        async with env.store.transaction() as session:
            purchase = await queries.get_purchase_by_intent(session, result.intent_id)
        assert purchase.amount == 232

    async def test_update_keeps_amount_and_gateway_aligned(self, env, gateway, customer, make_product):
        result = await self.split_checkout(env, customer, make_product)

        update = await update_intent(env, result.intent_id, None)

        async with env.store.transaction() as session:
            purchase = await queries.get_purchase_by_intent(session, result.intent_id)
        assert update.total == purchase.amount == 232
        assert purchase.payable == gateway.intents[result.intent_id]["amount"]

    async def test_comp_coupon_never_exceeds_amount(self, env, customer, make_product):
        await add_coupon(env.store, "COMPED", coupon_type=CouponType.THRESHOLD_FLAT, target=0, reward=5000)
        result = await self.split_checkout(env, customer, make_product)

        update = await update_intent(env, result.intent_id, "COMPED")

        async with env.store.transaction() as session:
            purchase = await queries.get_purchase_by_intent(session, result.intent_id)
        assert update.payable == 0
        assert purchase.coupon_discount == purchase.amount
        assert purchase.payable == 0

    async def test_split_mismatch_rolls_back(self, env, gateway, customer, products, monkeypatch):
        lines = await cart.add_to_cart(env.store, customer.customer_key, products["tea"], 2)
        key = lines[0].line_item_key
        home, office = customer.address_keys

        async def short_count(session, purchase_key, line_item_keys):
            return len(list(line_item_keys)) - 1

        monkeypatch.setattr(queries, "count_purchase_lines", short_count)

        with pytest.raises(SplitMismatchError):
            await create_intent(
                env,
                customer.customer_key,
                [key],
                assignments=[AddressAssignment(key, [Destination(1, address_key=home), Destination(1, address_key=office)])],
            )

        intent_id = gateway.calls[0][1]
        async with env.store.transaction() as session:
            assert await queries.get_purchase_by_intent(session, intent_id) is None
        remaining = await cart.list_cart(env.store, customer.customer_key)
        assert [(l.line_item_key, l.quantity, l.purchase_key) for l in remaining] == [(key, 2, None)]


async def test_duplicate_assignment_rejected(env, gateway, customer, products):
    lines = await cart.add_to_cart(env.store, customer.customer_key, products["tea"], 1)
    key = lines[0].line_item_key
    home, office = customer.address_keys

    with pytest.raises(ValidationError):
        await create_intent(
            env,
            customer.customer_key,
            [key],
            assignments=[
                AddressAssignment(key, [Destination(1, address_key=home)]),
                AddressAssignment(key, [Destination(1, address_key=office)]),
            ],
        )
    assert gateway.calls == []
