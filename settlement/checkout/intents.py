"""
Intent Coordinator

Opens the gateway charge intent for a cart, records the local Purchase bound
to it, and splits line items across shipping destinations.

The gateway call and the local transaction are separate steps: if the local
write fails after the intent exists, the intent is left orphaned (and logged)
for the reconciliation sweep rather than compensated here.
"""

import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.checkout.addresses import AddressFields
from settlement.checkout.cart import validate_quantity
from settlement.database import queries
from settlement.database.models import LineItem, Purchase, PurchaseStatus
from settlement.environment import Environment
from settlement.errors import (
    AuthorizationError,
    NotFoundError,
    SettlementError,
    SplitMismatchError,
    ValidationError,
)
from settlement.pricing.coupons import find_coupon_rule, validate_coupon_code
from settlement.pricing.engine import CartLine, compute_subtotal, compute_total, ensure_chargeable

logger = structlog.get_logger(__name__)

LOCAL_INTENT_PREFIX = "local_"


# =============================================================================
# REQUEST / RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class Destination:
    """One shipping destination for part of a line's quantity"""
    quantity: int
    address_key: Optional[int] = None
    address: Optional[AddressFields] = None


@dataclass(frozen=True)
class AddressAssignment:
    """Destinations for one cart line (authenticated checkout)"""
    line_item_key: int
    destinations: Sequence[Destination]


@dataclass(frozen=True)
class GuestLine:
    """Guest cart line, priced from the catalog when the intent is created"""
    product_key: int
    quantity: int
    destinations: Sequence[Destination] = field(default_factory=tuple)


@dataclass(frozen=True)
class IntentResult:
    intent_id: str
    client_secret: Optional[str]
    purchase_key: int
    amount: int
    payable: int


@dataclass(frozen=True)
class IntentUpdate:
    intent_id: str
    total: int
    discount: int
    payable: int


def is_local_intent(intent_id: str) -> bool:
    """Intents minted locally for zero-payable orders never reached the gateway."""
    return intent_id.startswith(LOCAL_INTENT_PREFIX)


# =============================================================================
# VALIDATION
# =============================================================================

def _validate_destinations(
    destinations: Sequence[Destination],
    line_quantity: int,
    line_ref: str,
    allow_address_keys: bool,
) -> None:
    if not destinations:
        return

    seen_keys = set()
    for destination in destinations:
        validate_quantity(destination.quantity)
        if (destination.address_key is None) == (destination.address is None):
            raise ValidationError(
                f"Each destination of {line_ref} needs exactly one of address_key or address"
            )
        if destination.address_key is not None:
            if not allow_address_keys:
                raise ValidationError("Guest destinations must carry full address fields")
            if destination.address_key in seen_keys:
                raise ValidationError(
                    f"Destinations of {line_ref} must use distinct addresses",
                    details={"address_key": destination.address_key},
                )
            seen_keys.add(destination.address_key)
        else:
            destination.address.validate()

    split_total = sum(d.quantity for d in destinations)
    if split_total != line_quantity:
        raise ValidationError(
            f"Destination quantities of {line_ref} sum to {split_total}, expected {line_quantity}",
            details={"expected": line_quantity, "actual": split_total},
        )


# =============================================================================
# MULTI-ADDRESS SPLIT
# =============================================================================

async def _split_line(
    session: AsyncSession,
    line: LineItem,
    destinations: Sequence[Destination],
    address_owner: Optional[int],
) -> List[LineItem]:
    """
    Spread one line over its destinations.

    The original line takes the first destination; every further destination
    gets a clone carrying the same product, price and tax rate.
    """
    produced: List[LineItem] = []
    for index, destination in enumerate(destinations):
        address_key = destination.address_key
        if destination.address is not None:
            address = destination.address.to_model(address_owner)
            session.add(address)
            await session.flush()
            address_key = address.address_key

        if index == 0:
            target = line
        else:
            target = LineItem(
                customer_key=line.customer_key,
                product_key=line.product_key,
                purchase_key=line.purchase_key,
                unit_price=line.unit_price,
                tax_rate=line.tax_rate,
                quantity=destination.quantity,
            )
            session.add(target)

        target.quantity = destination.quantity
        target.address_key = address_key
        produced.append(target)

    await session.flush()

    stored = await queries.count_purchase_lines(
        session, line.purchase_key, [item.line_item_key for item in produced]
    )
    if stored != len(destinations):
        raise SplitMismatchError(line.line_item_key, expected=len(destinations), actual=stored)
    return produced


def _charged_lines(line, destinations: Sequence[Destination]) -> List[CartLine]:
    """The lines as they will be stored: one per destination quantity."""
    quantities = [d.quantity for d in destinations] or [line.quantity]
    return [
        CartLine(
            product_key=line.product_key,
            unit_price=line.unit_price,
            tax_rate=line.tax_rate,
            quantity=quantity,
        )
        for quantity in quantities
    ]


# =============================================================================
# CREATE
# =============================================================================

async def create_intent(
    env: Environment,
    customer_key: Optional[int],
    line_item_keys: Sequence[int] = (),
    guest_lines: Sequence[GuestLine] = (),
    assignments: Sequence[AddressAssignment] = (),
) -> IntentResult:
    """
    Open a charge intent for a cart and bind the cart to a new purchase.

    Args:
        env: Settlement environment
        customer_key: Validated caller, or None for guest checkout
        line_item_keys: Cart lines to purchase (authenticated checkout)
        guest_lines: Products and quantities (guest checkout)
        assignments: Per-line shipping destinations (authenticated checkout)

    Returns:
        IntentResult with the client secret the shopper pays with
    """
    is_guest = customer_key is None
    if is_guest:
        if not guest_lines or line_item_keys or assignments:
            raise ValidationError("Guest checkout submits guest_lines only")
    elif not line_item_keys or guest_lines:
        raise ValidationError("Checkout submits the cart's line_item_keys")

    # Load and validate everything before any external call
    async with env.store.transaction() as session:
        if is_guest:
            products = await queries.get_products(session, [g.product_key for g in guest_lines])
            priced: List[CartLine] = []
            for index, guest_line in enumerate(guest_lines):
                validate_quantity(guest_line.quantity)
                product = products.get(guest_line.product_key)
                if product is None:
                    raise NotFoundError("Product", guest_line.product_key)
                if not product.available:
                    raise ValidationError("Product is not available", details={"product_key": product.product_key})
                _validate_destinations(
                    guest_line.destinations, guest_line.quantity, f"guest line {index}", allow_address_keys=False
                )
                priced.append(CartLine(
                    product_key=product.product_key,
                    unit_price=product.price,
                    tax_rate=product.tax_rate,
                    quantity=guest_line.quantity,
                ))
        else:
            keys = list(dict.fromkeys(line_item_keys))
            cart = {line.line_item_key: line for line in await queries.get_cart_lines(session, customer_key)}
            missing = [key for key in keys if key not in cart]
            if missing:
                raise NotFoundError("Cart line", missing[0])
            priced = [cart[key] for key in keys]

            owned = {a.address_key for a in await queries.get_customer_addresses(session, customer_key)}
            assigned = set()
            for assignment in assignments:
                if assignment.line_item_key in assigned:
                    raise ValidationError(
                        "Line has more than one address assignment",
                        details={"line_item_key": assignment.line_item_key},
                    )
                assigned.add(assignment.line_item_key)
                if assignment.line_item_key not in keys:
                    raise ValidationError(
                        "Address assignment references a line outside this checkout",
                        details={"line_item_key": assignment.line_item_key},
                    )
                _validate_destinations(
                    assignment.destinations,
                    cart[assignment.line_item_key].quantity,
                    f"line {assignment.line_item_key}",
                    allow_address_keys=True,
                )
                for destination in assignment.destinations:
                    if destination.address_key is not None and destination.address_key not in owned:
                        raise AuthorizationError(
                            "Address does not belong to the caller",
                            details={"address_key": destination.address_key},
                        )

    # Price the lines as split, since rounding is per stored line
    if is_guest:
        charged = [c for g, p in zip(guest_lines, priced) for c in _charged_lines(p, g.destinations)]
    else:
        destinations_by_key = {a.line_item_key: a.destinations for a in assignments}
        charged = [c for p in priced for c in _charged_lines(p, destinations_by_key.get(p.line_item_key, ()))]
    breakdown = compute_total(charged)
    ensure_chargeable(breakdown.payable, env.minimum_charge)

    # Reservation at the gateway; nothing to reserve for a free order
    if breakdown.payable > 0:
        intent = await env.gateway.create_intent(
            breakdown.payable,
            env.currency,
            {"customer_key": customer_key if customer_key is not None else "guest"},
        )
        intent_id, client_secret = intent.id, intent.client_secret
    else:
        intent_id, client_secret = f"{LOCAL_INTENT_PREFIX}{uuid.uuid4().hex}", None

    try:
        async with env.store.transaction() as session:
            purchase = Purchase(
                customer_key=customer_key,
                payment_intent_id=intent_id,
                amount=breakdown.total,
                coupon_discount=0,
                status=PurchaseStatus.CREATED,
            )
            session.add(purchase)
            await session.flush()

            splits: Dict[int, Sequence[Destination]] = {}
            if is_guest:
                for guest_line, priced_line in zip(guest_lines, priced):
                    line = LineItem(
                        customer_key=None,
                        product_key=priced_line.product_key,
                        purchase_key=purchase.purchase_key,
                        unit_price=priced_line.unit_price,
                        tax_rate=priced_line.tax_rate,
                        quantity=priced_line.quantity,
                    )
                    session.add(line)
                    await session.flush()
                    if guest_line.destinations:
                        splits[line.line_item_key] = guest_line.destinations
            else:
                bound = await queries.bind_lines_to_purchase(session, keys, purchase.purchase_key)
                if bound != len(keys):
                    raise SettlementError(
                        f"Bound {bound} of {len(keys)} cart lines to purchase",
                        details={"purchase_key": purchase.purchase_key},
                    )
                splits = {a.line_item_key: a.destinations for a in assignments if a.destinations}

            expected_lines = len(priced) + sum(len(d) - 1 for d in splits.values())
            lines = {line.line_item_key: line for line in await queries.get_purchase_lines(session, purchase.purchase_key)}
            for line_item_key, destinations in splits.items():
                await _split_line(session, lines[line_item_key], destinations, customer_key)

            stored = await queries.get_purchase_lines(session, purchase.purchase_key)
            if len(stored) != expected_lines:
                raise SettlementError(
                    f"Purchase has {len(stored)} lines after split, expected {expected_lines}",
                    details={"purchase_key": purchase.purchase_key},
                )
            if compute_subtotal(stored) != breakdown.total:
                raise SettlementError(
                    "Stored lines do not add up to the reserved amount",
                    details={"purchase_key": purchase.purchase_key, "amount": breakdown.total},
                )
            purchase_key = purchase.purchase_key
    except Exception:
        logger.error(
            "Purchase not recorded for gateway intent",
            payment_intent_id=intent_id,
            customer_key=customer_key,
        )
        raise

    logger.info(
        "Payment intent created",
        payment_intent_id=intent_id,
        purchase_key=purchase_key,
        amount=breakdown.total,
        guest=is_guest,
        destinations=sum(len(d) for d in splits.values()),
    )
    return IntentResult(
        intent_id=intent_id,
        client_secret=client_secret,
        purchase_key=purchase_key,
        amount=breakdown.total,
        payable=breakdown.payable,
    )


# =============================================================================
# UPDATE (COUPON)
# =============================================================================

async def update_intent(env: Environment, intent_id: str, coupon_code: Optional[str]) -> IntentUpdate:
    """
    Apply (or clear) a coupon on an open intent.

    Not identity-gated: holding the opaque intent id is the capability. A
    purchase past `created` is left untouched and its stored figures returned.
    """
    if coupon_code:
        validate_coupon_code(coupon_code)

    async with env.store.transaction() as session:
        purchase = await queries.get_purchase_by_intent(session, intent_id)
        if purchase is None:
            raise NotFoundError("Payment intent", intent_id)
        if purchase.status != PurchaseStatus.CREATED:
            logger.info("Coupon update on settled purchase ignored", payment_intent_id=intent_id)
            return IntentUpdate(intent_id, purchase.amount, purchase.coupon_discount, purchase.payable)

        lines = await queries.get_purchase_lines(session, purchase.purchase_key)
        rule = await find_coupon_rule(session, coupon_code)
        breakdown = compute_total(lines, rule)
        purchase_key = purchase.purchase_key

    ensure_chargeable(breakdown.payable, env.minimum_charge)

    if breakdown.payable > 0 and not is_local_intent(intent_id):
        await env.gateway.update_intent(
            intent_id,
            breakdown.payable,
            {"purchase_key": purchase_key, "coupon_discount": breakdown.discount},
        )

    async with env.store.transaction() as session:
        purchase = await queries.get_purchase(session, purchase_key)
        if purchase.status == PurchaseStatus.CREATED:
            # Amount and discount always come from the same pricing of the stored lines
            purchase.amount = breakdown.total
            purchase.coupon_discount = breakdown.discount
            purchase.coupon_key = rule.coupon_key if rule and breakdown.discount else None

    logger.info(
        "Payment intent updated",
        payment_intent_id=intent_id,
        total=breakdown.total,
        discount=breakdown.discount,
        payable=breakdown.payable,
    )
    return IntentUpdate(intent_id, breakdown.total, breakdown.discount, breakdown.payable)
