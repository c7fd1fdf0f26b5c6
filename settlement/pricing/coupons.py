"""
Coupon Lookup

Coupon codes are secrets: only their SHA256 hash is stored, and lookups hash
the submitted code first. A code that is not found, malformed at rest, or
used up yields no rule, never an error.
"""

import hashlib
import re
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.database import queries
from settlement.errors import ValidationError
from settlement.pricing.engine import CouponRule

logger = structlog.get_logger(__name__)

COUPON_CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{4,64}$")


def normalize_coupon_code(code: str) -> str:
    return code.strip().upper()


def hash_coupon_code(code: str) -> str:
    return hashlib.sha256(normalize_coupon_code(code).encode("utf-8")).hexdigest()


def validate_coupon_code(code: str) -> str:
    """Check the submitted code's format and return it normalized."""
    normalized = normalize_coupon_code(code)
    if not COUPON_CODE_PATTERN.match(normalized):
        raise ValidationError("Malformed coupon code")
    return normalized


async def find_coupon_rule(session: AsyncSession, code: Optional[str]) -> Optional[CouponRule]:
    """
    Resolve a submitted coupon code to an evaluable rule.

    Args:
        session: Open database session
        code: Code as typed by the shopper (None or empty for no coupon)

    Returns:
        CouponRule, or None when the code is unknown or exhausted
    """
    if not code:
        return None

    normalized = validate_coupon_code(code)
    coupon = await queries.get_coupon_by_hash(session, hash_coupon_code(normalized))
    if coupon is None:
        logger.info("Coupon not found")
        return None

    rule = CouponRule(
        coupon_type=coupon.coupon_type,
        target=coupon.target,
        reward=coupon.reward,
        product_key=coupon.product_key,
        coupon_key=coupon.coupon_key,
    )
    if rule.is_malformed:
        logger.warning("Malformed coupon ignored", coupon_key=coupon.coupon_key)
        return None

    if coupon.max_uses > 0:
        uses = await queries.count_coupon_uses(session, coupon.coupon_key)
        if uses >= coupon.max_uses:
            logger.info("Coupon exhausted", coupon_key=coupon.coupon_key, uses=uses)
            return None

    return rule
