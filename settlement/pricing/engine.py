"""
Pricing & Discount Engine

Pure functions from (cart lines, coupon) to (total, discount, payable).

Rounding rule: each line is rounded half-up to a whole currency unit
(unit price x (1 + tax rate) x quantity) and the order total is the integer
sum of those lines, so the published total always equals the sum of the line
totals sent to the ERP.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Protocol, Union

from settlement.database.models import CouponType
from settlement.errors import ValidationError

Number = Union[int, float, Decimal]


class PricedLine(Protocol):
    """Anything carrying frozen line pricing (LineItem rows, CartLine)."""
    product_key: int
    unit_price: Number
    tax_rate: Number
    quantity: int


@dataclass(frozen=True)
class CartLine:
    """Plain line used where no LineItem row exists yet"""
    product_key: int
    unit_price: Decimal
    tax_rate: Decimal
    quantity: int


@dataclass(frozen=True)
class CouponRule:
    """The evaluable part of a coupon"""
    coupon_type: CouponType
    target: int
    reward: int
    product_key: Optional[int] = None
    coupon_key: Optional[int] = None

    @property
    def is_malformed(self) -> bool:
        if self.target < 0 or self.reward < 0:
            return True
        return self.coupon_type.is_product_scoped and self.product_key is None


@dataclass(frozen=True)
class PriceBreakdown:
    """Result of pricing a cart"""
    total: int
    discount: int = 0

    @property
    def payable(self) -> int:
        return max(self.total - self.discount, 0)


def _decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps float inputs like 0.1 exact
    return Decimal(str(value))


def round_currency(value: Number) -> int:
    """Round half-up to a whole currency unit."""
    return int(_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def unit_price_with_tax(line: PricedLine) -> int:
    return round_currency(_decimal(line.unit_price) * (1 + _decimal(line.tax_rate)))


def line_total(line: PricedLine) -> int:
    return round_currency(_decimal(line.unit_price) * (1 + _decimal(line.tax_rate)) * line.quantity)


def line_subtotal(line: PricedLine) -> int:
    """Line amount before tax."""
    return round_currency(_decimal(line.unit_price) * line.quantity)


def compute_subtotal(lines: Iterable[PricedLine]) -> int:
    return sum(line_total(line) for line in lines)


def compute_discount(lines: Iterable[PricedLine], total: int, coupon: Optional[CouponRule]) -> int:
    """
    Evaluate a coupon against the cart.

    Unknown or malformed coupons give no discount rather than an error.
    The result never exceeds the total.
    """
    if coupon is None or coupon.is_malformed:
        return 0

    if coupon.coupon_type == CouponType.THRESHOLD_FLAT:
        discount = coupon.reward if total >= coupon.target else 0
    elif coupon.coupon_type == CouponType.THRESHOLD_PERCENT:
        discount = round_currency(Decimal(coupon.reward) / 100 * total) if total >= coupon.target else 0
    else:
        quantity = sum(line.quantity for line in lines if line.product_key == coupon.product_key)
        if quantity < coupon.target:
            discount = 0
        elif coupon.coupon_type == CouponType.PRODUCT_QUANTITY_FLAT:
            discount = coupon.reward
        else:
            discount = round_currency(Decimal(coupon.reward) / 100 * total)

    return min(discount, total)


def compute_total(lines: Iterable[PricedLine], coupon: Optional[CouponRule] = None) -> PriceBreakdown:
    """
    Price a cart.

    Args:
        lines: Cart lines with frozen unit price, tax rate and quantity
        coupon: Optional coupon rule to evaluate

    Returns:
        PriceBreakdown with integer total and discount
    """
    lines = list(lines)
    total = compute_subtotal(lines)
    return PriceBreakdown(total=total, discount=compute_discount(lines, total, coupon))


def ensure_chargeable(payable: int, minimum_charge: int) -> None:
    """
    Reject payable amounts the gateway cannot charge.

    Zero is always allowed (a fully comped order never reaches the gateway).
    """
    if payable < 0:
        raise ValidationError("Payable amount cannot be negative", details={"payable": payable})
    if 0 < payable < minimum_charge:
        raise ValidationError(
            f"Payable amount {payable} is below the minimum charge of {minimum_charge}",
            details={"payable": payable, "minimum_charge": minimum_charge},
        )
