"""
Cart Store

Unpurchased line items per customer. Unit price and tax rate are copied from
the catalog when a line is added and never change afterwards.
"""

from dataclasses import dataclass
from typing import List

import structlog
from sqlalchemy import delete

from settlement.database import queries
from settlement.database.models import LineItem, Purchase
from settlement.database.store import SettlementStore
from settlement.errors import NotFoundError, ValidationError

logger = structlog.get_logger(__name__)

MAX_LINE_QUANTITY = 100


@dataclass
class PurchaseHistory:
    purchase: Purchase
    lines: List[LineItem]


def validate_quantity(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise ValidationError("Quantity must be an integer")
    if quantity < 1 or quantity > MAX_LINE_QUANTITY:
        raise ValidationError(
            f"Quantity must be between 1 and {MAX_LINE_QUANTITY}",
            details={"quantity": quantity},
        )


def _detach_from_open_purchase(line: LineItem) -> None:
    """
    Take an edited line back out of the open purchase it was bound to.

    The purchase keeps the amount its intent reserved, so the shopper has to
    open a new intent for the edited cart.
    """
    if line.purchase_key is None:
        return
    logger.info(
        "Cart line detached from open purchase",
        line_item_key=line.line_item_key,
        purchase_key=line.purchase_key,
    )
    line.purchase_key = None
    line.address_key = None


async def list_cart(store: SettlementStore, customer_key: int) -> List[LineItem]:
    async with store.transaction() as session:
        return await queries.get_cart_lines(session, customer_key)


async def add_to_cart(
    store: SettlementStore, customer_key: int, product_key: int, quantity: int
) -> List[LineItem]:
    """
    Add a product to the customer's cart at today's catalog price.

    A line for the same product at the same frozen price and tax rate is
    merged into instead of duplicated.

    Returns:
        The updated cart
    """
    validate_quantity(quantity)

    async with store.transaction() as session:
        product = await queries.get_product(session, product_key)
        if product is None:
            raise NotFoundError("Product", product_key)
        if not product.available:
            raise ValidationError("Product is not available", details={"product_key": product_key})

        existing = await queries.find_mergeable_cart_line(
            session, customer_key, product_key, product.price, product.tax_rate
        )
        if existing is not None:
            new_quantity = existing.quantity + quantity
            validate_quantity(new_quantity)
            _detach_from_open_purchase(existing)
            existing.quantity = new_quantity
            logger.info(
                "Cart line merged",
                customer_key=customer_key,
                line_item_key=existing.line_item_key,
                quantity=new_quantity,
            )
        else:
            session.add(LineItem(
                customer_key=customer_key,
                product_key=product_key,
                unit_price=product.price,
                tax_rate=product.tax_rate,
                quantity=quantity,
            ))
            logger.info("Cart line added", customer_key=customer_key, product_key=product_key)

        await session.flush()
        return await queries.get_cart_lines(session, customer_key)


async def update_cart_quantity(
    store: SettlementStore, customer_key: int, line_item_key: int, quantity: int
) -> List[LineItem]:
    validate_quantity(quantity)

    async with store.transaction() as session:
        line = await queries.get_cart_line(session, customer_key, line_item_key)
        if line is None:
            raise NotFoundError("Cart line", line_item_key)
        _detach_from_open_purchase(line)
        line.quantity = quantity
        await session.flush()
        return await queries.get_cart_lines(session, customer_key)


async def remove_from_cart(
    store: SettlementStore, customer_key: int, line_item_key: int
) -> List[LineItem]:
    """
    Delete an in-cart line. Settled lines are never deleted.

    Removing a line bound to an open purchase leaves that purchase short of
    its reserved amount; finalize refuses it.
    """
    async with store.transaction() as session:
        line = await queries.get_cart_line(session, customer_key, line_item_key)
        if line is None:
            raise NotFoundError("Cart line", line_item_key)
        await session.execute(
            delete(LineItem)
            .where(LineItem.line_item_key == line.line_item_key)
            .execution_options(synchronize_session=False)
        )
        session.expunge(line)
        logger.info("Cart line removed", customer_key=customer_key, line_item_key=line_item_key)
        return await queries.get_cart_lines(session, customer_key)


async def list_purchases(store: SettlementStore, customer_key: int) -> List[PurchaseHistory]:
    """Purchase history: every purchase past `created`, newest first."""
    async with store.transaction() as session:
        purchases = await queries.get_customer_purchases(session, customer_key)
        history = []
        for purchase in purchases:
            lines = await queries.get_purchase_lines(session, purchase.purchase_key)
            history.append(PurchaseHistory(purchase=purchase, lines=lines))
        return history
