"""
Cancellation / Refund Engine

Reverses a settled order. Local state commits first (lines and purchase
marked canceled, never deleted), then the stored settlement snapshot is
replayed to the ERP with its deletion flag set, then captured money is
refunded. A refund failure is raised to the caller; an ERP replay failure is
logged for the reconciliation sweep so it cannot block the refund.

An accepted refund is recorded in `refunded_time`. Canceling again a purchase
whose refund never went through retries the refund.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from prometheus_client import Counter

from settlement.checkout.finalization import ERP_PUSH_FAILURES
from settlement.checkout.intents import is_local_intent
from settlement.checkout.payload import mark_deleted
from settlement.database import queries
from settlement.database.models import Purchase, PurchaseStatus
from settlement.environment import Environment
from settlement.errors import AuthorizationError, NotFoundError, SettlementError, ValidationError

logger = structlog.get_logger(__name__)

REFUND_REASON = "requested_by_customer"

REFUNDS_ISSUED = Counter(
    "settlement_refunds_total",
    "Gateway refunds requested by cancellations",
    ["result"],
)


@dataclass(frozen=True)
class CancelResult:
    status: str
    purchase_key: int
    refunded: bool = False
    erp_synced: Optional[bool] = None


def _refund_pending(purchase: Purchase) -> bool:
    return (
        purchase.payable > 0
        and not is_local_intent(purchase.payment_intent_id)
        and purchase.refunded_time is None
    )


async def cancel(env: Environment, purchase_key: int, customer_key: int) -> CancelResult:
    """
    Cancel a settled purchase owned by the caller.

    Returns:
        CancelResult; an already canceled purchase is reported as-is unless
        its refund is still outstanding, in which case the refund is retried
    """
    async with env.store.transaction() as session:
        purchase = await queries.get_purchase(session, purchase_key)
        if purchase is None:
            raise NotFoundError("Purchase", purchase_key)
        if purchase.customer_key is None or purchase.customer_key != customer_key:
            raise AuthorizationError("Purchase does not belong to the caller")

        intent_id = purchase.payment_intent_id
        payable = purchase.payable
        snapshot = purchase.settlement_snapshot

        if purchase.status == PurchaseStatus.CANCELED:
            changed = 0
            refund_pending = _refund_pending(purchase)
        elif purchase.status != PurchaseStatus.SUCCEEDED:
            raise ValidationError(
                "Only settled purchases can be canceled",
                details={"purchase_key": purchase_key, "status": purchase.status.value},
            )
        else:
            changed = await queries.cancel_purchase(session, purchase_key)
            if changed:
                lines = await queries.mark_lines_canceled(session, purchase_key)
            refund_pending = _refund_pending(purchase)

    erp_synced = None
    if changed:
        logger.info("Purchase canceled", purchase_key=purchase_key, lines=lines, payable=payable)
        erp_synced = await _replay_deletion(env, purchase_key, snapshot)
    elif refund_pending:
        logger.warning("Retrying refund for canceled purchase", purchase_key=purchase_key)
    else:
        # Already canceled, or a concurrent cancel won the conditional update
        logger.info("Purchase already canceled", purchase_key=purchase_key)
        return CancelResult(status=PurchaseStatus.CANCELED.value, purchase_key=purchase_key)

    refunded = False
    if refund_pending:
        await _refund(env, purchase_key, intent_id, payable)
        refunded = True

    return CancelResult(
        status=PurchaseStatus.CANCELED.value,
        purchase_key=purchase_key,
        refunded=refunded,
        erp_synced=erp_synced,
    )


async def _refund(env: Environment, purchase_key: int, intent_id: str, payable: int) -> None:
    try:
        await env.gateway.refund(intent_id, REFUND_REASON)
    except SettlementError:
        REFUNDS_ISSUED.labels(result="failed").inc()
        logger.error(
            "Refund failed for canceled purchase",
            purchase_key=purchase_key,
            payment_intent_id=intent_id,
            payable=payable,
        )
        raise
    REFUNDS_ISSUED.labels(result="issued").inc()

    async with env.store.transaction() as session:
        await queries.record_refund(
            session, purchase_key, datetime.now(timezone.utc), audit_stamp=env.stamp_refund_time
        )
    logger.info("Refund recorded", purchase_key=purchase_key, payment_intent_id=intent_id)


async def _replay_deletion(env: Environment, purchase_key: int, snapshot: Optional[str]) -> bool:
    if not snapshot:
        ERP_PUSH_FAILURES.labels(operation="cancel").inc()
        logger.error("No settlement snapshot to replay", purchase_key=purchase_key)
        return False

    try:
        await env.erp.push_settlement(env.order_endpoint, mark_deleted(snapshot))
    except SettlementError as e:
        ERP_PUSH_FAILURES.labels(operation="cancel").inc()
        logger.error(
            "Cancellation push failed, left for reconciliation",
            purchase_key=purchase_key,
            error=e.message,
        )
        return False

    logger.info("Cancellation pushed to ERP", purchase_key=purchase_key)
    return True
