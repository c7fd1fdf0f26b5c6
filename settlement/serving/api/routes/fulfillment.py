"""
Fulfillment Callback Endpoint

Called by the ERP when items leave the warehouse. Authenticated with the
shared callback key instead of customer credentials.
"""

from typing import List, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from settlement.checkout.fulfillment import apply_fulfillment
from settlement.environment import Environment
from settlement.serving.api.dependencies import get_environment, require_erp_callback

router = APIRouter()


class FulfillmentCallback(BaseModel):
    """Order number (or purchase key) and the line items that shipped"""
    purchase_reference: Union[int, str]
    shipped_line_refs: List[int]
    other_line_refs: List[int] = Field(default_factory=list)


class FulfillmentResponse(BaseModel):
    status: str
    purchase_key: int
    shipped: int
    fulfillment_ack: Optional[str] = None


@router.post(
    "/callback",
    response_model=FulfillmentResponse,
    dependencies=[Depends(require_erp_callback)],
)
async def fulfillment_callback(
    body: FulfillmentCallback,
    env: Environment = Depends(get_environment),
) -> FulfillmentResponse:
    result = await apply_fulfillment(
        env, body.purchase_reference, body.shipped_line_refs, body.other_line_refs
    )
    return FulfillmentResponse(
        status=result.status,
        purchase_key=result.purchase_key,
        shipped=result.shipped,
        fulfillment_ack=result.fulfillment_ack,
    )
