"""
Order Store Queries

Reusable reads and the conditional writes the settlement engines rely on.
Conditional updates carry the current state in their WHERE clause and return
the affected row count, so duplicate calls collapse to zero rows.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.database.models import (
    Address,
    Coupon,
    Customer,
    LineItem,
    Product,
    Purchase,
    PurchaseStatus,
    ShippingStatus,
)


# =============================================================================
# REFERENCE DATA
# =============================================================================

async def get_customer(session: AsyncSession, customer_key: int) -> Optional[Customer]:
    return await session.get(Customer, customer_key)


async def get_customer_by_token_hash(
    session: AsyncSession, customer_key: int, token_hash: str
) -> Optional[Customer]:
    result = await session.execute(
        select(Customer).where(
            Customer.customer_key == customer_key,
            Customer.token_hash == token_hash,
        )
    )
    return result.scalar_one_or_none()


async def get_customer_addresses(session: AsyncSession, customer_key: int) -> List[Address]:
    result = await session.execute(
        select(Address)
        .where(Address.customer_key == customer_key)
        .order_by(Address.address_key)
    )
    return list(result.scalars().all())


async def get_addresses(session: AsyncSession, address_keys: Iterable[int]) -> Dict[int, Address]:
    keys = set(address_keys)
    if not keys:
        return {}
    result = await session.execute(select(Address).where(Address.address_key.in_(keys)))
    return {address.address_key: address for address in result.scalars().all()}


async def get_product(session: AsyncSession, product_key: int) -> Optional[Product]:
    return await session.get(Product, product_key)


async def get_products(session: AsyncSession, product_keys: Iterable[int]) -> Dict[int, Product]:
    keys = set(product_keys)
    if not keys:
        return {}
    result = await session.execute(select(Product).where(Product.product_key.in_(keys)))
    return {product.product_key: product for product in result.scalars().all()}


async def get_coupon_by_hash(session: AsyncSession, code_hash: str) -> Optional[Coupon]:
    result = await session.execute(select(Coupon).where(Coupon.code_hash == code_hash))
    return result.scalar_one_or_none()


async def count_coupon_uses(session: AsyncSession, coupon_key: int) -> int:
    """Number of settled purchases that applied the coupon."""
    result = await session.execute(
        select(func.count(Purchase.purchase_key)).where(
            Purchase.coupon_key == coupon_key,
            Purchase.status == PurchaseStatus.SUCCEEDED,
        )
    )
    return result.scalar() or 0


# =============================================================================
# LINE ITEMS
# =============================================================================

def _in_cart_condition():
    return or_(
        LineItem.purchase_key.is_(None),
        Purchase.status == PurchaseStatus.CREATED,
    )


async def get_cart_lines(session: AsyncSession, customer_key: int) -> List[LineItem]:
    """Lines not yet bound to a purchase, or bound to one still in `created`."""
    result = await session.execute(
        select(LineItem)
        .outerjoin(Purchase, LineItem.purchase_key == Purchase.purchase_key)
        .where(LineItem.customer_key == customer_key, _in_cart_condition())
        .order_by(LineItem.line_item_key)
    )
    return list(result.scalars().all())


async def get_cart_line(
    session: AsyncSession, customer_key: int, line_item_key: int
) -> Optional[LineItem]:
    result = await session.execute(
        select(LineItem)
        .outerjoin(Purchase, LineItem.purchase_key == Purchase.purchase_key)
        .where(
            LineItem.line_item_key == line_item_key,
            LineItem.customer_key == customer_key,
            _in_cart_condition(),
        )
    )
    return result.scalar_one_or_none()


async def find_mergeable_cart_line(
    session: AsyncSession, customer_key: int, product_key: int, unit_price, tax_rate
) -> Optional[LineItem]:
    """In-cart line for the same product at the same frozen price and tax rate."""
    result = await session.execute(
        select(LineItem)
        .outerjoin(Purchase, LineItem.purchase_key == Purchase.purchase_key)
        .where(
            LineItem.customer_key == customer_key,
            LineItem.product_key == product_key,
            LineItem.unit_price == unit_price,
            LineItem.tax_rate == tax_rate,
            _in_cart_condition(),
        )
        .order_by(LineItem.line_item_key)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_purchase_lines(session: AsyncSession, purchase_key: int) -> List[LineItem]:
    result = await session.execute(
        select(LineItem)
        .where(LineItem.purchase_key == purchase_key)
        .order_by(LineItem.line_item_key)
    )
    return list(result.scalars().all())


async def count_purchase_lines(
    session: AsyncSession, purchase_key: int, line_item_keys: Iterable[int]
) -> int:
    """Stored lines of the purchase among the given keys."""
    result = await session.execute(
        select(func.count(LineItem.line_item_key)).where(
            LineItem.purchase_key == purchase_key,
            LineItem.line_item_key.in_(list(line_item_keys)),
        )
    )
    return result.scalar() or 0


async def bind_lines_to_purchase(
    session: AsyncSession, line_item_keys: List[int], purchase_key: int
) -> int:
    result = await session.execute(
        update(LineItem)
        .where(LineItem.line_item_key.in_(line_item_keys))
        .values(purchase_key=purchase_key)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def assign_missing_addresses(
    session: AsyncSession, purchase_key: int, address_key: int
) -> int:
    """Give every line of the purchase without an address the fallback address."""
    result = await session.execute(
        update(LineItem)
        .where(
            LineItem.purchase_key == purchase_key,
            LineItem.address_key.is_(None),
        )
        .values(address_key=address_key)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def mark_lines_shipped(
    session: AsyncSession, purchase_key: int, line_item_keys: List[int], shipped_time: datetime
) -> int:
    """none -> shipped, only for lines still in `none`."""
    result = await session.execute(
        update(LineItem)
        .where(
            LineItem.purchase_key == purchase_key,
            LineItem.line_item_key.in_(line_item_keys),
            LineItem.shipping_status == ShippingStatus.NONE,
        )
        .values(shipping_status=ShippingStatus.SHIPPED, shipped_time=shipped_time)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def mark_lines_canceled(session: AsyncSession, purchase_key: int) -> int:
    result = await session.execute(
        update(LineItem)
        .where(
            LineItem.purchase_key == purchase_key,
            LineItem.shipping_status != ShippingStatus.CANCELED,
        )
        .values(shipping_status=ShippingStatus.CANCELED)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


# =============================================================================
# PURCHASES
# =============================================================================

async def get_purchase(session: AsyncSession, purchase_key: int) -> Optional[Purchase]:
    return await session.get(Purchase, purchase_key)


async def get_purchase_by_intent(session: AsyncSession, payment_intent_id: str) -> Optional[Purchase]:
    result = await session.execute(
        select(Purchase).where(Purchase.payment_intent_id == payment_intent_id)
    )
    return result.scalar_one_or_none()


async def get_customer_purchases(session: AsyncSession, customer_key: int) -> List[Purchase]:
    result = await session.execute(
        select(Purchase)
        .where(
            Purchase.customer_key == customer_key,
            Purchase.status != PurchaseStatus.CREATED,
        )
        .order_by(Purchase.purchase_key.desc())
    )
    return list(result.scalars().all())


async def transition_purchase(
    session: AsyncSession,
    payment_intent_id: str,
    status: PurchaseStatus,
    address_key: int,
    email: Optional[str],
    purchase_time: datetime,
) -> int:
    """
    Move a purchase to `status` only if it is in a different, non-terminal state.

    Returns the affected row count; 0 means another call already applied it.
    """
    values = {"status": status, "address_key": address_key, "purchase_time": purchase_time}
    if email:
        values["email"] = email
    result = await session.execute(
        update(Purchase)
        .where(
            and_(
                Purchase.payment_intent_id == payment_intent_id,
                Purchase.status != status,
                Purchase.status != PurchaseStatus.CANCELED,
            )
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def cancel_purchase(session: AsyncSession, purchase_key: int) -> int:
    """succeeded -> canceled; returns 0 if the purchase was not succeeded."""
    result = await session.execute(
        update(Purchase)
        .where(
            Purchase.purchase_key == purchase_key,
            Purchase.status == PurchaseStatus.SUCCEEDED,
        )
        .values(status=PurchaseStatus.CANCELED)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def record_refund(
    session: AsyncSession, purchase_key: int, refunded_time: datetime, audit_stamp: bool
) -> None:
    """Record an accepted refund; `refund_time` is the audit stamp some environments add."""
    values = {"refunded_time": refunded_time}
    if audit_stamp:
        values["refund_time"] = refunded_time
    await session.execute(
        update(Purchase)
        .where(Purchase.purchase_key == purchase_key)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


async def store_settlement_snapshot(
    session: AsyncSession,
    purchase_key: int,
    snapshot: str,
    synced_time: Optional[datetime],
) -> None:
    await session.execute(
        update(Purchase)
        .where(Purchase.purchase_key == purchase_key)
        .values(settlement_snapshot=snapshot, settlement_synced_time=synced_time)
        .execution_options(synchronize_session=False)
    )
