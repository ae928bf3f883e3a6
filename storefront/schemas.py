"""Pydantic schemas for the storefront API.

Request schemas validate and normalize incoming payloads before they are
mapped to domain dataclasses; read schemas render domain objects as JSON.
"""

import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .checkout import EMAIL_RE
from .config import BankAccount
from .domain import CartView, ContactInfo, DashboardStats, Order, OrderPage, PaymentProof

PRODUCT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class AddItemIn(BaseModel):
    """Input schema for adding a product to the cart.

    Attributes:
        product_id: Catalog product id (letters, digits, '_' and '-').
        quantity: Positive number of units to add.
    """

    product_id: str = Field(min_length=1, max_length=64)
    quantity: int = Field(default=1, gt=0)

    @field_validator("product_id")
    @classmethod
    def validate_product_id(cls, v: str) -> str:
        if not PRODUCT_ID_RE.match(v):
            raise ValueError("Invalid product id format")
        return v


class SetQuantityIn(BaseModel):
    """Quantity replacement; zero or less removes the line."""

    quantity: int


class CheckoutIn(BaseModel):
    """Schema for compiling the cart into an order.

    Attributes:
        customer_name: Full name of the recipient.
        customer_email: Contact email, lower-cased.
        customer_phone: Contact phone.
        shipping_address: Delivery address.
        bank_name: Settlement bank code (validated by the compiler against
            the configured banks).
    """

    customer_name: str = Field(min_length=1, max_length=255)
    customer_email: str = Field(min_length=3, max_length=255)
    customer_phone: str = Field(min_length=3, max_length=64)
    shipping_address: str = Field(min_length=1, max_length=2000)
    bank_name: str = Field(min_length=1, max_length=64)

    @field_validator("customer_name", "customer_phone", "shipping_address", "bank_name")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("Field is required")
        return v2

    @field_validator("customer_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Validate and normalize the email to lower case.

        Raises:
            ValueError: When the value does not look like an email address.
        """
        v2 = v.strip().lower()
        if not EMAIL_RE.match(v2):
            raise ValueError("Invalid email")
        return v2

    def contact(self) -> ContactInfo:
        return ContactInfo(
            name=self.customer_name,
            email=self.customer_email,
            phone=self.customer_phone,
            shipping_address=self.shipping_address,
        )


class DecisionIn(BaseModel):
    """Administrative decision payload.

    ``decrement_stock`` overrides the approval stock policy and is reserved
    to super-admins.
    """

    notes: Optional[str] = Field(default=None, max_length=2000)
    decrement_stock: Optional[bool] = None


class NotesIn(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=2000)


# ---- Read schemas ----
class CartLineOut(BaseModel):
    product_id: str
    product_name: str
    unit_price_cents: int
    quantity: int
    subtotal_cents: int


class CartOut(BaseModel):
    user_id: str
    items: List[CartLineOut]
    item_count: int
    subtotal_cents: int
    currency: str

    @classmethod
    def from_domain(cls, cart: CartView) -> "CartOut":
        return cls(
            user_id=cart.user_id,
            items=[
                CartLineOut(
                    product_id=l.product_id,
                    product_name=l.product_name,
                    unit_price_cents=l.unit_price_cents,
                    quantity=l.quantity,
                    subtotal_cents=l.subtotal_cents,
                )
                for l in cart.lines
            ],
            item_count=cart.totals.item_count,
            subtotal_cents=cart.totals.subtotal_cents,
            currency=cart.totals.currency,
        )


class OrderItemOut(BaseModel):
    product_id: str
    product_name: str
    product_price_cents: int
    quantity: int
    subtotal_cents: int


class OrderReadDTO(BaseModel):
    id: str
    order_number: str
    user_id: str
    status: str
    total_cents: int
    currency: str
    items: List[OrderItemOut]
    customer_name: str
    customer_email: str
    customer_phone: str
    shipping_address: str
    payment_method: str
    bank_name: str
    admin_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, o: Order) -> "OrderReadDTO":
        return cls(
            id=o.id,
            order_number=o.order_number,
            user_id=o.user_id,
            status=o.status.value,
            total_cents=o.total_cents,
            currency=o.currency,
            items=[
                OrderItemOut(
                    product_id=i.product_id,
                    product_name=i.product_name,
                    product_price_cents=i.product_price_cents,
                    quantity=i.quantity,
                    subtotal_cents=i.subtotal_cents,
                )
                for i in o.items
            ],
            customer_name=o.contact.name,
            customer_email=o.contact.email,
            customer_phone=o.contact.phone,
            shipping_address=o.contact.shipping_address,
            payment_method=o.payment_method,
            bank_name=o.bank_name,
            admin_notes=o.admin_notes,
            created_at=o.created_at,
            updated_at=o.updated_at,
        )


class OrderPageOut(BaseModel):
    count: int
    page: int
    page_size: int
    results: List[OrderReadDTO]

    @classmethod
    def from_domain(cls, p: OrderPage) -> "OrderPageOut":
        return cls(
            count=p.count,
            page=p.page,
            page_size=p.page_size,
            results=[OrderReadDTO.from_domain(o) for o in p.results],
        )


class ProofOut(BaseModel):
    id: str
    order_id: str
    file_url: str
    file_name: str
    file_size: int
    content_type: str
    status: str
    upload_date: Optional[datetime] = None
    admin_notes: Optional[str] = None

    @classmethod
    def from_domain(cls, p: PaymentProof) -> "ProofOut":
        return cls(
            id=p.id,
            order_id=p.order_id,
            file_url=p.file_url,
            file_name=p.file_name,
            file_size=p.file_size,
            content_type=p.content_type,
            status=p.status.value,
            upload_date=p.upload_date,
            admin_notes=p.admin_notes,
        )


class BankOut(BaseModel):
    code: str
    name: str
    account: str
    iban: str
    holder: str

    @classmethod
    def from_domain(cls, b: BankAccount) -> "BankOut":
        return cls(code=b.code, name=b.name, account=b.account, iban=b.iban, holder=b.holder)


class DashboardOut(BaseModel):
    total_orders: int
    orders_by_status: dict
    total_revenue_cents: int
    total_products: int
    low_stock_products: int
    currency: str

    @classmethod
    def from_domain(cls, d: DashboardStats) -> "DashboardOut":
        return cls(
            total_orders=d.total_orders,
            orders_by_status=dict(d.orders_by_status),
            total_revenue_cents=d.total_revenue_cents,
            total_products=d.total_products,
            low_stock_products=d.low_stock_products,
            currency=d.currency,
        )
