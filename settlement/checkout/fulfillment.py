"""
Fulfillment Callback Handler

Applies "shipped" pushed back by the ERP. `none -> shipped` is the only legal
transition; lines already shipped (or canceled) are left alone, so a retried
callback reports "nothing to do" instead of failing.
"""

import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

import structlog
from prometheus_client import Counter

from settlement.database import queries
from settlement.environment import Environment
from settlement.errors import ValidationError

logger = structlog.get_logger(__name__)

STATUS_SUCCESS = "success"
STATUS_NOTHING_TO_DO = "nothing_to_do"

FULFILLMENT_UPDATES = Counter(
    "settlement_fulfillment_lines_shipped_total",
    "Line items transitioned to shipped by ERP callbacks",
)


@dataclass(frozen=True)
class FulfillmentResult:
    status: str
    purchase_key: int
    shipped: int
    fulfillment_ack: Optional[str] = None


def parse_purchase_reference(reference, order_number_prefix: str) -> int:
    """Accept an order number (`ORD-12`) or a bare purchase key."""
    text = str(reference).strip()
    if order_number_prefix and text.startswith(order_number_prefix):
        text = text[len(order_number_prefix):]
    try:
        key = int(text)
    except ValueError:
        raise ValidationError("Malformed purchase reference", details={"purchase_reference": str(reference)})
    if key <= 0:
        raise ValidationError("Malformed purchase reference", details={"purchase_reference": str(reference)})
    return key


def build_fulfillment_ack(purchase_key: int, line_item_keys: Sequence[int]) -> str:
    """Unique per call: item keys plus a millisecond timestamp and random suffix."""
    keys = "-".join(str(key) for key in sorted(line_item_keys))
    return f"FUL-{purchase_key}-{keys}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


async def apply_fulfillment(
    env: Environment,
    purchase_reference,
    shipped_line_refs: Sequence[int],
    other_line_refs: Sequence[int] = (),
) -> FulfillmentResult:
    """
    Mark the given lines of a purchase as shipped.

    Raises:
        ValidationError: Unknown purchase or no shipped lines given
    """
    purchase_key = parse_purchase_reference(purchase_reference, env.order_number_prefix)
    keys = sorted({int(key) for key in shipped_line_refs})
    if not keys:
        raise ValidationError("No shipped line items given", details={"purchase_key": purchase_key})

    async with env.store.transaction() as session:
        purchase = await queries.get_purchase(session, purchase_key)
        if purchase is None:
            raise ValidationError("Unknown purchase", details={"purchase_key": purchase_key})
        shipped = await queries.mark_lines_shipped(session, purchase_key, keys, datetime.now(timezone.utc))

    if other_line_refs:
        logger.info("Lines reported not shipped", purchase_key=purchase_key, line_item_keys=list(other_line_refs))

    if shipped == 0:
        logger.info("Fulfillment callback had nothing to do", purchase_key=purchase_key, line_item_keys=keys)
        return FulfillmentResult(status=STATUS_NOTHING_TO_DO, purchase_key=purchase_key, shipped=0)

    FULFILLMENT_UPDATES.inc(shipped)
    ack = build_fulfillment_ack(purchase_key, keys)
    logger.info("Lines shipped", purchase_key=purchase_key, shipped=shipped, fulfillment_ack=ack)
    return FulfillmentResult(status=STATUS_SUCCESS, purchase_key=purchase_key, shipped=shipped, fulfillment_ack=ack)
