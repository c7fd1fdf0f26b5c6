"""
Checkout API Endpoints

Intent creation, coupon application and finalization. Guest checkout is
allowed when no credentials are sent; the intent id is the capability for the
update and finalize calls.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from settlement.checkout.addresses import AddressFields
from settlement.checkout.finalization import finalize
from settlement.checkout.intents import (
    AddressAssignment,
    Destination,
    GuestLine,
    create_intent,
    update_intent,
)
from settlement.environment import Environment
from settlement.serving.api.dependencies import get_environment, optional_customer

router = APIRouter()


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class AddressIn(BaseModel):
    """New destination address"""
    first_name: str
    last_name: str
    postal_code: str
    city: str
    pref_code: Optional[int] = None
    pref: Optional[str] = None
    ward: Optional[str] = None
    address2: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None


class DestinationIn(BaseModel):
    """Part of a line's quantity shipped to one address"""
    quantity: int
    address_key: Optional[int] = None
    address: Optional[AddressIn] = None

    def to_destination(self) -> Destination:
        return Destination(
            quantity=self.quantity,
            address_key=self.address_key,
            address=AddressFields(**self.address.model_dump()) if self.address else None,
        )


class AssignmentIn(BaseModel):
    line_item_key: int
    destinations: List[DestinationIn]

    def to_assignment(self) -> AddressAssignment:
        return AddressAssignment(
            line_item_key=self.line_item_key,
            destinations=tuple(d.to_destination() for d in self.destinations),
        )


class GuestLineIn(BaseModel):
    product_key: int
    quantity: int
    destinations: List[DestinationIn] = Field(default_factory=list)


class CreateIntentRequest(BaseModel):
    """Authenticated carts send line_item_keys; guests send guest_lines"""
    line_item_keys: List[int] = Field(default_factory=list)
    assignments: List[AssignmentIn] = Field(default_factory=list)
    guest_lines: List[GuestLineIn] = Field(default_factory=list)


class IntentResponse(BaseModel):
    intent_id: str
    client_secret: Optional[str]
    purchase_key: int
    amount: int
    payable: int


class UpdateIntentRequest(BaseModel):
    coupon_code: Optional[str] = None


class IntentUpdateResponse(BaseModel):
    intent_id: str
    total: int
    discount: int
    payable: int


class FinalizeRequest(BaseModel):
    email: Optional[str] = None
    billing_address_key: Optional[int] = None


class FinalizeResponse(BaseModel):
    status: str
    purchase_key: int
    payable: int
    transitioned: bool
    erp_synced: Optional[bool] = None


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/intents", response_model=IntentResponse, status_code=201)
async def open_intent(
    body: CreateIntentRequest,
    customer_key: Optional[int] = Depends(optional_customer),
    env: Environment = Depends(get_environment),
) -> IntentResponse:
    """
    Price the cart and open a payment intent.

    Each assignment spreads one cart line over several addresses; the
    destination quantities must add up to the line's quantity.
    """
    result = await create_intent(
        env,
        customer_key,
        line_item_keys=body.line_item_keys,
        guest_lines=[
            GuestLine(
                product_key=line.product_key,
                quantity=line.quantity,
                destinations=tuple(d.to_destination() for d in line.destinations),
            )
            for line in body.guest_lines
        ],
        assignments=[assignment.to_assignment() for assignment in body.assignments],
    )
    return IntentResponse(
        intent_id=result.intent_id,
        client_secret=result.client_secret,
        purchase_key=result.purchase_key,
        amount=result.amount,
        payable=result.payable,
    )


@router.patch("/intents/{intent_id}", response_model=IntentUpdateResponse)
async def apply_coupon(
    intent_id: str,
    body: UpdateIntentRequest,
    env: Environment = Depends(get_environment),
) -> IntentUpdateResponse:
    """Apply a coupon code, or clear it with an empty code."""
    update = await update_intent(env, intent_id, body.coupon_code)
    return IntentUpdateResponse(
        intent_id=update.intent_id,
        total=update.total,
        discount=update.discount,
        payable=update.payable,
    )


@router.post("/intents/{intent_id}/finalize", response_model=FinalizeResponse)
async def finalize_intent(
    intent_id: str,
    body: FinalizeRequest,
    customer_key: Optional[int] = Depends(optional_customer),
    env: Environment = Depends(get_environment),
) -> FinalizeResponse:
    """Settle the purchase; repeated calls report the current status."""
    result = await finalize(env, intent_id, customer_key, body.email, body.billing_address_key)
    return FinalizeResponse(
        status=result.status,
        purchase_key=result.purchase_key,
        payable=result.payable,
        transitioned=result.transitioned,
        erp_synced=result.erp_synced,
    )
