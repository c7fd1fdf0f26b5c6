"""
Settlement Payload

Typed model of the record handed to the ERP. The serialized text is stored
verbatim on the purchase; cancellation replays that text with the deletion
flag set instead of rebuilding it, since products and prices may have changed
in the meantime.
"""

import json
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from settlement.database.models import Address, LineItem, Product, Purchase
from settlement.errors import SettlementError
from settlement.pricing.engine import line_subtotal, line_total, unit_price_with_tax

SCHEMA_VERSION = 1


class SettlementLine(BaseModel):
    """Per-line detail"""
    line_item_key: int
    product_key: int
    product_code: Optional[str] = None
    product_name: Optional[str] = None
    quantity: int
    unit_price: float
    unit_price_with_tax: int
    tax_rate_percent: float
    line_total: int


class TaxSummary(BaseModel):
    """Amounts per tax rate"""
    tax_rate_percent: float
    taxable_amount: int
    tax_amount: int


class ShipmentItem(BaseModel):
    shipment_line_number: int
    line_item_key: int
    product_code: Optional[str] = None
    product_name: Optional[str] = None
    quantity: int


class ShipmentBlock(BaseModel):
    """One destination and the lines shipping to it"""
    shipment_number: int
    ship_date: str
    address_key: int
    recipient_name: str
    postal_code: str
    pref_code: Optional[int] = None
    pref: Optional[str] = None
    city: str
    address1: Optional[str] = None
    address2: Optional[str] = None
    phone_number: Optional[str] = None
    items: List[ShipmentItem] = Field(default_factory=list)


class SettlementPayload(BaseModel):
    """Order header plus per-line detail and per-destination shipping blocks"""
    schema_version: int = SCHEMA_VERSION
    order_number: str
    purchase_key: int
    payment_intent_id: str
    order_date: str
    customer_name: str
    email: Optional[str] = None
    currency: str
    total_amount: int
    discount: int
    payable: int
    shipping_fee: int = 0
    tax_summary: List[TaxSummary] = Field(default_factory=list)
    lines: List[SettlementLine] = Field(default_factory=list)
    shipments: List[ShipmentBlock] = Field(default_factory=list)
    deleted: bool = False


def _tax_percent(rate) -> float:
    return float((Decimal(str(rate)) * 100).normalize())


def build_settlement_payload(
    purchase: Purchase,
    order_number: str,
    customer_name: str,
    currency: str,
    lines: Sequence[LineItem],
    products: Mapping[int, Product],
    addresses: Mapping[int, Address],
    purchase_time: Optional[datetime] = None,
) -> SettlementPayload:
    """
    Build the settlement payload for a finalized purchase.

    Every line must already carry an address; one shipment block is emitted
    per distinct address, in the order the addresses first appear.
    """
    when = purchase_time or purchase.purchase_time or purchase.creation_time
    order_date = when.date().isoformat()

    settlement_lines: List[SettlementLine] = []
    tax_buckets: Dict[float, List[int]] = OrderedDict()
    by_address: Dict[int, List[LineItem]] = OrderedDict()

    for line in lines:
        if line.address_key is None:
            raise SettlementError(
                f"Line item {line.line_item_key} has no address",
                details={"line_item_key": line.line_item_key},
            )
        product = products.get(line.product_key)
        total = line_total(line)
        subtotal = line_subtotal(line)
        percent = _tax_percent(line.tax_rate)

        settlement_lines.append(SettlementLine(
            line_item_key=line.line_item_key,
            product_key=line.product_key,
            product_code=product.code if product else None,
            product_name=product.title if product else None,
            quantity=line.quantity,
            unit_price=float(line.unit_price),
            unit_price_with_tax=unit_price_with_tax(line),
            tax_rate_percent=percent,
            line_total=total,
        ))

        bucket = tax_buckets.setdefault(percent, [0, 0])
        bucket[0] += subtotal
        bucket[1] += total - subtotal

        by_address.setdefault(line.address_key, []).append(line)

    shipments: List[ShipmentBlock] = []
    for number, (address_key, address_lines) in enumerate(by_address.items(), start=1):
        address = addresses.get(address_key)
        if address is None:
            raise SettlementError(f"Address {address_key} not loaded", details={"address_key": address_key})
        items = []
        for line_number, line in enumerate(address_lines, start=1):
            product = products.get(line.product_key)
            items.append(ShipmentItem(
                shipment_line_number=line_number,
                line_item_key=line.line_item_key,
                product_code=product.code if product else None,
                product_name=product.title if product else None,
                quantity=line.quantity,
            ))
        shipments.append(ShipmentBlock(
            shipment_number=number,
            ship_date=order_date,
            address_key=address_key,
            recipient_name=address.full_name,
            postal_code=address.postal_code,
            pref_code=address.pref_code,
            pref=address.pref,
            city=address.city,
            address1=address.ward,
            address2=address.address2,
            phone_number=address.phone_number,
            items=items,
        ))

    return SettlementPayload(
        order_number=order_number,
        purchase_key=purchase.purchase_key,
        payment_intent_id=purchase.payment_intent_id,
        order_date=order_date,
        customer_name=customer_name,
        email=purchase.email,
        currency=currency,
        total_amount=purchase.amount,
        discount=purchase.coupon_discount,
        payable=purchase.payable,
        tax_summary=[
            TaxSummary(tax_rate_percent=percent, taxable_amount=taxable, tax_amount=tax)
            for percent, (taxable, tax) in tax_buckets.items()
        ],
        lines=settlement_lines,
        shipments=shipments,
    )


def serialize_payload(payload: SettlementPayload) -> str:
    """Exact JSON text pushed to the ERP and stored as the snapshot."""
    return payload.model_dump_json()


def mark_deleted(snapshot: str) -> str:
    """Flip the deletion flag on a stored snapshot without touching anything else."""
    data = json.loads(snapshot)
    data["deleted"] = True
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))
