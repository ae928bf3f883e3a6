"""Domain models, ports and the order status machine.

This module contains simple dataclasses used as DTOs for products, carts,
orders and payment proofs, the closed ``OrderStatus`` enumeration with its
allowed-transition table, and protocol definitions (ports) for the external
collaborators the core consumes: the catalog reader and artifact storage.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional, Protocol, Tuple

from .errors import InvalidTransition


# ---- Enums ----
class OrderStatus(str, Enum):
    """Enumeration of the possible order statuses.

    ``pending`` and ``paid`` are the only statuses an administrative decision
    may fire from; shipping and delivery are downstream fulfillment steps.
    """

    PENDING = "pending"
    PAID = "paid"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    SHIPPED = "shipped"
    DELIVERED = "delivered"

    def can_transition(self, target: "OrderStatus") -> bool:
        return target in ALLOWED_TRANSITIONS.get(self, frozenset())

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS.get(self)


ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.APPROVED, OrderStatus.REJECTED}),
    OrderStatus.APPROVED: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
}


def ensure_transition(current: OrderStatus, target: OrderStatus) -> None:
    """Raise ``InvalidTransition`` unless ``current -> target`` is allowed."""
    if not current.can_transition(target):
        raise InvalidTransition(current.value, target.value)


class ProofStatus(str, Enum):
    """Review status of a payment proof; mirrors the order decision."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


PAYMENT_METHOD_BANK_TRANSFER = "bank_transfer"


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class Product:
    """Catalog view of a product at lookup time.

    Attributes:
        id: Product identifier.
        name: Display name, copied into order lines at checkout.
        price_cents: Current unit price in minor units.
        stock_quantity: Units currently available.
        is_active: Inactive products cannot be added to a cart.
    """

    id: str
    name: str
    price_cents: int
    stock_quantity: int
    is_active: bool = True

    @property
    def available(self) -> int:
        """Units a cart may take right now (zero for inactive products)."""
        return self.stock_quantity if self.is_active else 0


@dataclass(frozen=True)
class CartLine:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class CartLineView:
    """A cart line priced at the product's current price."""

    product_id: str
    product_name: str
    unit_price_cents: int
    quantity: int

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class CartTotals:
    item_count: int
    subtotal_cents: int
    currency: str


@dataclass(frozen=True)
class CartView:
    """Snapshot of a customer's cart returned by every ledger mutation."""

    user_id: str
    lines: Tuple[CartLineView, ...]
    totals: CartTotals

    @property
    def is_empty(self) -> bool:
        return not self.lines


@dataclass(frozen=True)
class ContactInfo:
    """Customer contact and shipping fields captured at checkout."""

    name: str
    email: str
    phone: str
    shipping_address: str


@dataclass(frozen=True)
class OrderItem:
    """A frozen order line.

    Price, name and quantity are copied from the catalog when the order is
    created and never re-derived afterwards.
    """

    product_id: str
    product_name: str
    product_price_cents: int
    quantity: int

    @property
    def subtotal_cents(self) -> int:
        return self.product_price_cents * self.quantity


@dataclass(frozen=True)
class Order:
    """Immutable snapshot of an order as read from the store.

    Attributes:
        id: Order identifier (UUID string).
        user_id: Owning customer.
        items: Frozen line items.
        total_cents: Sum of line subtotals, computed once at creation.
        status: Current ``OrderStatus``.
        contact: Customer contact and shipping details.
        bank_name: Code of the settlement bank chosen by the customer.
        currency: ISO code the amounts are expressed in.
        payment_method: Always ``bank_transfer``.
        admin_notes: Rationale recorded with the last administrative action.
        created_at: Creation timestamp.
        updated_at: Last status change timestamp.
    """

    id: str
    user_id: str
    items: Tuple[OrderItem, ...]
    total_cents: int
    status: OrderStatus
    contact: ContactInfo
    bank_name: str
    currency: str = "AOA"
    payment_method: str = PAYMENT_METHOD_BANK_TRANSFER
    admin_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def order_number(self) -> str:
        """Short human-facing reference: last 8 characters of the id."""
        return self.id.replace("-", "")[-8:].upper()

    @property
    def item_count(self) -> int:
        return sum(i.quantity for i in self.items)


def total_of(items) -> int:
    """Sum of ``price * quantity`` over frozen order lines."""
    return sum(i.subtotal_cents for i in items)


@dataclass(frozen=True)
class Artifact:
    """Payment-proof file as handed over by the presentation layer."""

    file_name: str
    content_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        _, dot, ext = self.file_name.rpartition(".")
        return ext.lower() if dot else ""


@dataclass(frozen=True)
class PaymentProof:
    id: str
    order_id: str
    file_url: str
    file_name: str
    file_size: int
    content_type: str
    status: ProofStatus
    upload_date: Optional[datetime] = None
    admin_notes: Optional[str] = None


@dataclass(frozen=True)
class CheckoutResult:
    """Outcome of a checkout compilation.

    ``replayed`` is True when an earlier compilation of the same cart
    snapshot (or the same idempotency key) already produced the order.
    """

    order: Order
    replayed: bool = False

    @property
    def order_id(self) -> str:
        return self.order.id


@dataclass(frozen=True)
class OrderPage:
    count: int
    page: int
    page_size: int
    results: Tuple[Order, ...]


@dataclass(frozen=True)
class DashboardStats:
    total_orders: int
    orders_by_status: Dict[str, int]
    total_revenue_cents: int
    total_products: int
    low_stock_products: int
    currency: str


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Read-only product lookup used by the cart and the checkout."""

    def get_product(self, product_id: str) -> Product:
        """Return the current view of a product.

        Raises:
            NotFound: If the product does not exist.
            TemporaryFailure: If the catalog is unreachable.
        """
        raise NotImplementedError()


class StoragePort(Protocol):
    """Opaque artifact storage used by the payment-proof intake."""

    def store(self, data: bytes, key: str, content_type: str) -> str:
        """Persist ``data`` under ``key`` and return a reference (URL).

        Raises:
            TemporaryFailure: If the storage backend is unavailable.
        """
        raise NotImplementedError()
