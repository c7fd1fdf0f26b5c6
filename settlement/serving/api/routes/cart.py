"""
Cart API Endpoints

The authenticated customer's unpurchased line items.
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from settlement.checkout import cart
from settlement.environment import Environment
from settlement.pricing import compute_total
from settlement.serving.api.dependencies import get_environment, require_customer

router = APIRouter()


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CartLineResponse(BaseModel):
    """One in-cart line item"""
    model_config = ConfigDict(from_attributes=True)

    line_item_key: int
    product_key: int
    unit_price: Decimal
    tax_rate: Decimal
    quantity: int
    address_key: Optional[int] = None


class CartResponse(BaseModel):
    """Cart contents with the tax-inclusive total"""
    items: List[CartLineResponse]
    total: int


class AddToCartRequest(BaseModel):
    product_key: int
    quantity: int = 1


class UpdateQuantityRequest(BaseModel):
    quantity: int


def _cart_response(lines) -> CartResponse:
    return CartResponse(
        items=[CartLineResponse.model_validate(line) for line in lines],
        total=compute_total(lines).total,
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=CartResponse)
async def get_cart(
    customer_key: int = Depends(require_customer),
    env: Environment = Depends(get_environment),
) -> CartResponse:
    return _cart_response(await cart.list_cart(env.store, customer_key))


@router.post("", response_model=CartResponse, status_code=201)
async def add_item(
    body: AddToCartRequest,
    customer_key: int = Depends(require_customer),
    env: Environment = Depends(get_environment),
) -> CartResponse:
    """Add a product at its current catalog price."""
    lines = await cart.add_to_cart(env.store, customer_key, body.product_key, body.quantity)
    return _cart_response(lines)


@router.patch("/{line_item_key}", response_model=CartResponse)
async def change_quantity(
    line_item_key: int,
    body: UpdateQuantityRequest,
    customer_key: int = Depends(require_customer),
    env: Environment = Depends(get_environment),
) -> CartResponse:
    lines = await cart.update_cart_quantity(env.store, customer_key, line_item_key, body.quantity)
    return _cart_response(lines)


@router.delete("/{line_item_key}", response_model=CartResponse)
async def remove_item(
    line_item_key: int,
    customer_key: int = Depends(require_customer),
    env: Environment = Depends(get_environment),
) -> CartResponse:
    lines = await cart.remove_from_cart(env.store, customer_key, line_item_key)
    return _cart_response(lines)
