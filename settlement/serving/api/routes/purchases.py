"""
Purchases API Endpoints

Purchase history and customer-initiated cancellation.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from settlement.checkout.cancellation import cancel
from settlement.checkout.cart import list_purchases
from settlement.environment import Environment
from settlement.serving.api.dependencies import get_environment, require_customer

router = APIRouter()


class PurchaseLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_item_key: int
    product_key: int
    unit_price: Decimal
    tax_rate: Decimal
    quantity: int
    address_key: Optional[int] = None
    shipping_status: str
    shipped_time: Optional[datetime] = None


class PurchaseResponse(BaseModel):
    """Settled or canceled purchase with its lines"""
    purchase_key: int
    order_number: str
    status: str
    amount: int
    coupon_discount: int
    payable: int
    purchase_time: Optional[datetime] = None
    refund_time: Optional[datetime] = None
    refunded: bool = False
    lines: List[PurchaseLineResponse]


class PurchaseListResponse(BaseModel):
    items: List[PurchaseResponse]
    total: int


class CancelResponse(BaseModel):
    status: str
    purchase_key: int
    refunded: bool
    erp_synced: Optional[bool] = None


@router.get("", response_model=PurchaseListResponse)
async def get_purchases(
    customer_key: int = Depends(require_customer),
    env: Environment = Depends(get_environment),
) -> PurchaseListResponse:
    """Purchase history, newest first."""
    history = await list_purchases(env.store, customer_key)
    items = [
        PurchaseResponse(
            purchase_key=entry.purchase.purchase_key,
            order_number=env.order_number(entry.purchase.purchase_key),
            status=entry.purchase.status.value,
            amount=entry.purchase.amount,
            coupon_discount=entry.purchase.coupon_discount,
            payable=entry.purchase.payable,
            purchase_time=entry.purchase.purchase_time,
            refund_time=entry.purchase.refund_time,
            refunded=entry.purchase.refunded_time is not None,
            lines=[
                PurchaseLineResponse(
                    line_item_key=line.line_item_key,
                    product_key=line.product_key,
                    unit_price=line.unit_price,
                    tax_rate=line.tax_rate,
                    quantity=line.quantity,
                    address_key=line.address_key,
                    shipping_status=line.shipping_status.value,
                    shipped_time=line.shipped_time,
                )
                for line in entry.lines
            ],
        )
        for entry in history
    ]
    return PurchaseListResponse(items=items, total=len(items))


@router.post("/{purchase_key}/cancel", response_model=CancelResponse)
async def cancel_purchase(
    purchase_key: int,
    customer_key: int = Depends(require_customer),
    env: Environment = Depends(get_environment),
) -> CancelResponse:
    """Cancel a settled purchase and refund what was charged."""
    result = await cancel(env, purchase_key, customer_key)
    return CancelResponse(
        status=result.status,
        purchase_key=result.purchase_key,
        refunded=result.refunded,
        erp_synced=result.erp_synced,
    )
