"""
Finalization Engine

Reconciles the gateway's view of a payment with the local purchase exactly
once. The status transition is a conditional update, so only the call that
actually changes the row pushes the settlement to the ERP and sends the
confirmation; every other call just reports the current status.

A failed ERP push does not undo the local transition (the customer did pay):
the snapshot is still stored and `settlement_synced_time` stays empty for the
reconciliation sweep.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from prometheus_client import Counter

from settlement.checkout.addresses import resolve_fallback_address
from settlement.checkout.intents import is_local_intent
from settlement.checkout.payload import build_settlement_payload, serialize_payload
from settlement.database import queries
from settlement.database.models import PurchaseStatus
from settlement.environment import Environment
from settlement.errors import AuthorizationError, NotFoundError, SettlementError, ValidationError
from settlement.integrations.gateway import STATUS_CREATED, STATUS_SUCCEEDED
from settlement.pricing.engine import compute_subtotal

logger = structlog.get_logger(__name__)


SETTLEMENTS_FINALIZED = Counter(
    "settlement_purchases_finalized_total",
    "Purchases transitioned by finalize",
    ["status"],
)

ERP_PUSH_FAILURES = Counter(
    "settlement_erp_push_failures_total",
    "Settlement payloads the ERP did not acknowledge",
    ["operation"],
)


@dataclass(frozen=True)
class FinalizeResult:
    status: str
    purchase_key: int
    payable: int
    transitioned: bool = False
    erp_synced: Optional[bool] = None


async def finalize(
    env: Environment,
    intent_id: str,
    customer_key: Optional[int],
    email: Optional[str],
    billing_address_key: Optional[int],
) -> FinalizeResult:
    """
    Settle a purchase after the shopper returns from the payment flow.

    Safe to call repeatedly with the same intent id.

    Args:
        env: Settlement environment
        intent_id: Gateway intent id (the purchase's capability token)
        customer_key: Validated caller, or None for guest checkout
        email: Confirmation address
        billing_address_key: Preferred fallback address

    Returns:
        FinalizeResult with the resolved status, whichever branch fired
    """
    if not intent_id or len(intent_id) > 100:
        raise ValidationError("Malformed payment intent id")

    async with env.store.transaction() as session:
        purchase = await queries.get_purchase_by_intent(session, intent_id)
        if purchase is None:
            raise NotFoundError("Payment intent", intent_id)
        if purchase.customer_key is not None and purchase.customer_key != customer_key:
            raise AuthorizationError("Purchase does not belong to the caller")

        purchase_key = purchase.purchase_key
        payable = purchase.payable
        current_status = purchase.status

        lines = await queries.get_purchase_lines(session, purchase_key)
        lines_total = compute_subtotal(lines)
        amount = purchase.amount

        if purchase.customer_key is not None:
            candidates = await queries.get_customer_addresses(session, purchase.customer_key)
        else:
            candidates = list(
                (await queries.get_addresses(session, [l.address_key for l in lines if l.address_key])).values()
            )
            candidates.sort(key=lambda address: address.address_key)

    if current_status == PurchaseStatus.CANCELED:
        logger.info("Finalize on canceled purchase ignored", purchase_key=purchase_key)
        return FinalizeResult(status=current_status.value, purchase_key=purchase_key, payable=payable)

    # The lines must still be what the intent reserved money for
    if current_status == PurchaseStatus.CREATED and lines_total != amount:
        logger.error(
            "Purchase lines differ from reserved amount",
            purchase_key=purchase_key,
            payment_intent_id=intent_id,
            amount=amount,
            lines_total=lines_total,
        )
        raise ValidationError(
            "Purchase lines changed after the payment intent was created",
            details={"purchase_key": purchase_key, "amount": amount, "lines_total": lines_total},
        )

    # Nothing was ever charged for a free order
    if payable == 0:
        status = STATUS_SUCCEEDED
    elif is_local_intent(intent_id):
        raise SettlementError("Local intent carries a payable amount", details={"purchase_key": purchase_key})
    else:
        status = await env.gateway.get_intent_status(intent_id)

    fallback = resolve_fallback_address(billing_address_key, candidates, owner=purchase.customer_key)

    if status not in (STATUS_SUCCEEDED, STATUS_CREATED):
        logger.info("Payment not completed", payment_intent_id=intent_id, status=status)
        return FinalizeResult(status=status, purchase_key=purchase_key, payable=payable)

    now = datetime.now(timezone.utc)
    async with env.store.transaction() as session:
        changed = await queries.transition_purchase(
            session, intent_id, PurchaseStatus(status), fallback.address_key, email, now
        )
        if changed and status == STATUS_SUCCEEDED:
            assigned = await queries.assign_missing_addresses(session, purchase_key, fallback.address_key)
            logger.info("Fallback address assigned", purchase_key=purchase_key, lines=assigned)

    if not changed:
        logger.info("Finalize already applied", payment_intent_id=intent_id, status=status)
        return FinalizeResult(status=status, purchase_key=purchase_key, payable=payable)

    SETTLEMENTS_FINALIZED.labels(status=status).inc()
    logger.info("Purchase finalized", purchase_key=purchase_key, status=status, payable=payable)

    if status != STATUS_SUCCEEDED:
        return FinalizeResult(status=status, purchase_key=purchase_key, payable=payable, transitioned=True)

    erp_synced = await _settle(env, purchase_key, now)
    return FinalizeResult(
        status=status,
        purchase_key=purchase_key,
        payable=payable,
        transitioned=True,
        erp_synced=erp_synced,
    )


async def _settle(env: Environment, purchase_key: int, purchase_time: datetime) -> bool:
    """Push the settlement, store the snapshot and send the confirmation."""
    async with env.store.transaction() as session:
        purchase = await queries.get_purchase(session, purchase_key)
        lines = await queries.get_purchase_lines(session, purchase_key)
        products = await queries.get_products(session, [line.product_key for line in lines])
        addresses = await queries.get_addresses(session, [line.address_key for line in lines])
        customer = (
            await queries.get_customer(session, purchase.customer_key)
            if purchase.customer_key is not None
            else None
        )

    billing = addresses.get(purchase.address_key)
    customer_name = customer.full_name if customer else (billing.full_name if billing else "")
    payload = build_settlement_payload(
        purchase,
        order_number=env.order_number(purchase_key),
        customer_name=customer_name,
        currency=env.currency,
        lines=lines,
        products=products,
        addresses=addresses,
        purchase_time=purchase_time,
    )
    snapshot = serialize_payload(payload)

    synced_time: Optional[datetime] = None
    try:
        ack = await env.erp.push_settlement(env.order_endpoint, snapshot)
        synced_time = datetime.now(timezone.utc)
        logger.info("Settlement pushed to ERP", purchase_key=purchase_key, order_number=payload.order_number, ack=ack)
    except SettlementError as e:
        ERP_PUSH_FAILURES.labels(operation="settle").inc()
        logger.error(
            "Settlement push failed, left for reconciliation",
            purchase_key=purchase_key,
            error=e.message,
        )

    async with env.store.transaction() as session:
        await queries.store_settlement_snapshot(session, purchase_key, snapshot, synced_time)

    recipient = purchase.email or (customer.email if customer else None)
    if recipient:
        try:
            await env.notifier.send_order_confirmation(recipient, purchase, lines, products)
        except Exception as e:
            logger.error("Order confirmation failed", purchase_key=purchase_key, error=str(e))
    else:
        logger.warning("No email for order confirmation", purchase_key=purchase_key)

    return synced_time is not None
