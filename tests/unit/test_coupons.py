"""
Unit Tests - Coupon Lookup
"""
import pytest

from settlement.database.models import Coupon, CouponType, Purchase, PurchaseStatus
from settlement.errors import ValidationError
from settlement.pricing.coupons import find_coupon_rule, hash_coupon_code, validate_coupon_code


async def add_coupon(store, code, coupon_type=CouponType.THRESHOLD_FLAT, **fields) -> int:
    async with store.transaction() as session:
        coupon = Coupon(code_hash=hash_coupon_code(code), coupon_type=coupon_type, **fields)
        session.add(coupon)
        await session.flush()
        return coupon.coupon_key


class TestCodeFormat:
    """Tests for code normalization"""

    def test_hash_ignores_case_and_whitespace(self):
        assert hash_coupon_code("  welcome500 ") == hash_coupon_code("WELCOME500")

    def test_hash_is_not_the_code(self):
        assert "WELCOME500" not in hash_coupon_code("WELCOME500")

    @pytest.mark.parametrize("code", ["ab", "has space", "semi;colon", "x" * 65])
    def test_malformed_codes_rejected(self, code):
        with pytest.raises(ValidationError):
            validate_coupon_code(code)


class TestFindCouponRule:
    """Tests for find_coupon_rule against the store"""

    async def test_known_code(self, store):
        key = await add_coupon(store, "WELCOME500", target=2000, reward=300)

        async with store.transaction() as session:
            rule = await find_coupon_rule(session, "welcome500")

        assert rule is not None
        assert rule.coupon_key == key
        assert rule.reward == 300

    async def test_unknown_code_gives_no_rule(self, store):
        async with store.transaction() as session:
            assert await find_coupon_rule(session, "NOSUCHCODE") is None

    async def test_empty_code_gives_no_rule(self, store):
        async with store.transaction() as session:
            assert await find_coupon_rule(session, None) is None
            assert await find_coupon_rule(session, "") is None

    async def test_malformed_coupon_ignored(self, store):
        await add_coupon(store, "BROKEN1", coupon_type=CouponType.PRODUCT_QUANTITY_FLAT, target=1, reward=100)

        async with store.transaction() as session:
            assert await find_coupon_rule(session, "BROKEN1") is None

    async def test_exhausted_coupon_ignored(self, store):
        key = await add_coupon(store, "ONCEONLY", target=0, reward=100, max_uses=1)

        async with store.transaction() as session:
            assert await find_coupon_rule(session, "ONCEONLY") is not None
            session.add(Purchase(
                payment_intent_id="pi_used",
                amount=1000,
                coupon_discount=100,
                coupon_key=key,
                status=PurchaseStatus.SUCCEEDED,
            ))

        async with store.transaction() as session:
            assert await find_coupon_rule(session, "ONCEONLY") is None

    async def test_unsettled_uses_do_not_count(self, store):
        key = await add_coupon(store, "ONCEONLY", target=0, reward=100, max_uses=1)

        async with store.transaction() as session:
            session.add(Purchase(
                payment_intent_id="pi_open",
                amount=1000,
                coupon_discount=100,
                coupon_key=key,
                status=PurchaseStatus.CREATED,
            ))

        async with store.transaction() as session:
            assert await find_coupon_rule(session, "ONCEONLY") is not None
