"""
Pricing Module
"""
from .engine import (
    CartLine,
    CouponRule,
    PriceBreakdown,
    compute_total,
    ensure_chargeable,
    line_total,
    round_currency,
)
from .coupons import find_coupon_rule, hash_coupon_code

__all__ = [
    "CartLine",
    "CouponRule",
    "PriceBreakdown",
    "compute_total",
    "ensure_chargeable",
    "line_total",
    "round_currency",
    "find_coupon_rule",
    "hash_coupon_code",
]
