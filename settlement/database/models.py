"""
Database Models - Order Store

This module defines the persisted state of the settlement pipeline:

Reference Data (owned by external collaborators, read here):
- Customer: identity anchor with hashed session token
- Address: postal/contact records, one flagged default per customer
- Product: catalog entry with current price and tax rate
- Coupon: discount rule, code stored hashed

Settlement Data (mutated by the pipeline):
- LineItem: cart line, frozen price, later bound to a purchase
- Purchase: payment-intent-bound order with its settlement snapshot
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# ENUMERATIONS
# =============================================================================

class PurchaseStatus(str, Enum):
    """Purchase status; canceled is terminal"""
    CREATED = "created"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"


class ShippingStatus(str, Enum):
    """Line item shipping status"""
    NONE = "none"
    SHIPPED = "shipped"
    CANCELED = "canceled"


class CouponType(str, Enum):
    """Coupon rule types"""
    THRESHOLD_FLAT = "threshold_flat"
    THRESHOLD_PERCENT = "threshold_percent"
    PRODUCT_QUANTITY_FLAT = "product_quantity_flat"
    PRODUCT_QUANTITY_PERCENT = "product_quantity_percent"

    @property
    def is_product_scoped(self) -> bool:
        return self in (CouponType.PRODUCT_QUANTITY_FLAT, CouponType.PRODUCT_QUANTITY_PERCENT)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# =============================================================================
# REFERENCE TABLES
# =============================================================================

class Customer(Base):
    """
    Customer Table

    Identity anchor. Not mutated by the settlement pipeline beyond lookup.
    """
    __tablename__ = "customer"

    customer_key: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    token_hash: Mapped[Optional[str]] = mapped_column(String(64), unique=True)  # SHA256 hash

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    addresses: Mapped[List["Address"]] = relationship(back_populates="customer")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.last_name, self.first_name) if part)


class Address(Base):
    """
    Address Table

    Postal/contact record referenced by key from line items and purchases.
    Guest destinations are stored with no customer.
    """
    __tablename__ = "address"

    address_key: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    customer_key: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("customer.customer_key")
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    postal_code: Mapped[str] = mapped_column(String(20), nullable=False)
    pref_code: Mapped[Optional[int]] = mapped_column(Integer)
    pref: Mapped[Optional[str]] = mapped_column(String(50))
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    ward: Mapped[Optional[str]] = mapped_column(String(200))
    address2: Mapped[Optional[str]] = mapped_column(String(200))
    phone_number: Mapped[Optional[str]] = mapped_column(String(30))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    default_address: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    customer: Mapped[Optional["Customer"]] = relationship(back_populates="addresses")

    @property
    def full_name(self) -> str:
        return f"{self.last_name} {self.first_name}"

    __table_args__ = (
        Index("ix_address_customer", "customer_key"),
    )


class Product(Base):
    """
    Product Table

    Catalog entry. Prices are copied onto line items at add-to-cart time,
    so later changes here never alter pending or settled lines.
    """
    __tablename__ = "product"

    product_key: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)  # ERP product code
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False, default=Decimal("0.1"))
    stock: Mapped[int] = mapped_column(Integer, default=0)
    available: Mapped[bool] = mapped_column(Boolean, default=True)


class Coupon(Base):
    """
    Coupon Table

    Discount rules evaluated (never mutated) at checkout. The secret code
    is stored as a SHA256 hash.
    """
    __tablename__ = "coupon"

    coupon_key: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    coupon_type: Mapped[CouponType] = mapped_column(
        SQLEnum(CouponType, values_callable=_enum_values, native_enum=False, length=32),
        nullable=False,
    )
    product_key: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("product.product_key")
    )
    target: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 0 = unlimited


# =============================================================================
# SETTLEMENT TABLES
# =============================================================================

class Purchase(Base):
    """
    Purchase Table

    One row per payment intent. Status only moves forward; the finalize
    transition is guarded by a conditional update on the current status.
    """
    __tablename__ = "purchase"

    purchase_key: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    customer_key: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("customer.customer_key")
    )
    payment_intent_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    # Measures (smallest currency unit)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    coupon_discount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    coupon_key: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("coupon.coupon_key")
    )

    status: Mapped[PurchaseStatus] = mapped_column(
        SQLEnum(PurchaseStatus, values_callable=_enum_values, native_enum=False, length=16),
        nullable=False,
        default=PurchaseStatus.CREATED,
    )
    email: Mapped[Optional[str]] = mapped_column(String(255))
    address_key: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("address.address_key")
    )

    # Timestamps
    creation_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    purchase_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    refund_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    # Set in every environment once the gateway accepted the refund
    refunded_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Exact JSON text pushed to the ERP
    settlement_snapshot: Mapped[Optional[str]] = mapped_column(Text)
    settlement_synced_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    line_items: Mapped[List["LineItem"]] = relationship(
        back_populates="purchase", order_by="LineItem.line_item_key"
    )

    @property
    def payable(self) -> int:
        return max(self.amount - self.coupon_discount, 0)

    __table_args__ = (
        Index("ix_purchase_customer", "customer_key"),
        Index("ix_purchase_status", "status"),
    )


class LineItem(Base):
    """
    Line Item Table

    In cart while unbound or bound to a purchase still in `created`.
    unit_price and tax_rate are frozen when the line is created.
    """
    __tablename__ = "line_item"

    line_item_key: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    customer_key: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("customer.customer_key")
    )
    product_key: Mapped[int] = mapped_column(
        Integer, ForeignKey("product.product_key"), nullable=False
    )
    purchase_key: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("purchase.purchase_key")
    )

    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    address_key: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("address.address_key")
    )

    shipping_status: Mapped[ShippingStatus] = mapped_column(
        SQLEnum(ShippingStatus, values_callable=_enum_values, native_enum=False, length=16),
        nullable=False,
        default=ShippingStatus.NONE,
    )
    shipped_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    purchase: Mapped[Optional["Purchase"]] = relationship(back_populates="line_items")

    __table_args__ = (
        Index("ix_line_item_customer", "customer_key"),
        Index("ix_line_item_purchase", "purchase_key"),
    )
