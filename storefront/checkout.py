"""Checkout compilation: the one-shot conversion of a cart into an order.

The compiler re-validates every cart line against live stock, freezes name,
price and quantity into order lines, and writes the order, its lines, the
idempotency record and the cart clear in a single transaction. It never
touches product stock; a ``pending`` order is not yet a sale.
"""

import logging
import re
from typing import Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError

from .config import BankAccount, DEFAULT_BANKS
from .domain import (
    CatalogPort,
    CheckoutResult,
    ContactInfo,
    Order,
    OrderItem,
    OrderStatus,
    total_of,
)
from .errors import (
    IdempotencyConflict,
    InsufficientStock,
    NotFound,
    StockShortfall,
    TemporaryFailure,
    ValidationError,
)
from .idempotency import request_hash, scoped_client_key, snapshot_key
from .identity import Principal, require_customer
from .repo import UnitOfWork, new_id, utcnow

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_contact(contact: ContactInfo) -> ContactInfo:
    """Return a whitespace-trimmed copy of ``contact`` or raise ``ValidationError``."""
    cleaned = ContactInfo(
        name=(contact.name or "").strip(),
        email=(contact.email or "").strip(),
        phone=(contact.phone or "").strip(),
        shipping_address=(contact.shipping_address or "").strip(),
    )
    for field in ("name", "email", "phone", "shipping_address"):
        if not getattr(cleaned, field):
            raise ValidationError(f"{field} is required", field=field)
    if not EMAIL_RE.match(cleaned.email):
        raise ValidationError("Invalid email", field="email")
    return cleaned


class CheckoutCompiler:
    """Domain service that turns a cart snapshot into a pending order.

    Args:
        catalog: ``CatalogPort`` used for the final stock re-validation and
            to read the prices that get frozen.
        uow_factory: Callable returning a fresh ``UnitOfWork``.
        banks: Settlement banks a customer may choose from, by code.
        currency: Currency of the order amounts.
    """

    def __init__(
        self,
        catalog: CatalogPort,
        uow_factory: Callable[[], UnitOfWork],
        banks: Optional[Dict[str, BankAccount]] = None,
        currency: str = "AOA",
    ):
        self.catalog = catalog
        self.uow_factory = uow_factory
        self.banks = banks if banks is not None else dict(DEFAULT_BANKS)
        self.currency = currency

    def compile(
        self,
        principal: Optional[Principal],
        contact: ContactInfo,
        bank_name: str,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutResult:
        """Compile the customer's cart into a new ``pending`` order.

        Args:
            principal: Calling customer.
            contact: Contact and shipping details.
            bank_name: Code of the settlement bank.
            idempotency_key: Optional client key; when absent a key is derived
                from the cart snapshot.

        Returns:
            CheckoutResult: The created order, or the order an earlier
            compilation of the same request produced (``replayed=True``).

        Raises:
            ValidationError: Missing/invalid contact fields, unknown bank or
                empty cart.
            InsufficientStock: At least one line exceeds current stock.
            IdempotencyConflict: The key was used for a different request.
            NotFound: A cart line references a product that no longer exists.
        """
        customer = require_customer(principal)
        contact = validate_contact(contact)
        if bank_name not in self.banks:
            raise ValidationError(f"Unknown bank: {bank_name}", field="bank_name")

        req_hash = request_hash(customer.id, contact, bank_name)
        client_key = scoped_client_key(customer.id, idempotency_key) if idempotency_key else None

        if client_key:
            replay = self._replay(client_key, req_hash)
            if replay is not None:
                return replay

        with self.uow_factory() as uow:
            lines = uow.carts.lines(customer.id)
            version = uow.carts.version(customer.id)
        if not lines:
            raise ValidationError("Cart is empty", field="cart")

        key = client_key or snapshot_key(customer.id, version, lines)
        if not client_key:
            replay = self._replay(key, req_hash)
            if replay is not None:
                return replay

        # final, authoritative re-validation before anything is written
        items = []
        shortfalls = []
        for line in lines:
            product = self.catalog.get_product(line.product_id)
            if line.quantity > product.available:
                shortfalls.append(StockShortfall(product.id, line.quantity, product.available))
                continue
            items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    product_price_cents=product.price_cents,
                    quantity=line.quantity,
                )
            )
        if shortfalls:
            logger.info(
                "checkout rejected",
                extra={"user_id": customer.id, "products": [s.as_dict() for s in shortfalls]},
            )
            raise InsufficientStock(shortfalls)

        now = utcnow()
        order = Order(
            id=new_id(),
            user_id=customer.id,
            items=tuple(items),
            total_cents=total_of(items),
            status=OrderStatus.PENDING,
            contact=contact,
            bank_name=bank_name,
            currency=self.currency,
            created_at=now,
            updated_at=now,
        )

        changed = False
        try:
            with self.uow_factory() as uow:
                # the cart must still be the snapshot we priced
                if uow.carts.version(customer.id) != version:
                    changed = True
                else:
                    uow.idempotency.add(key, req_hash, order.id)
                    uow.orders.add(order)
                    uow.carts.clear(customer.id)
                    uow.commit()
        except IntegrityError:
            # a concurrent compilation claimed the same key first
            changed = True
        if changed:
            replay = self._replay(key, req_hash)
            if replay is None:
                raise TemporaryFailure("CART_CHANGED")
            return replay

        logger.info(
            "order created",
            extra={
                "order_id": order.id,
                "user_id": customer.id,
                "total_cents": order.total_cents,
                "lines": len(order.items),
            },
        )
        return CheckoutResult(order=order, replayed=False)

    def _replay(self, key: str, req_hash: str) -> Optional[CheckoutResult]:
        with self.uow_factory() as uow:
            rec = uow.idempotency.get(key)
            if rec is None:
                return None
            if rec.request_hash != req_hash:
                raise IdempotencyConflict(key)
            order = uow.orders.get(rec.order_id)
        if order is None:
            raise NotFound("order", rec.order_id)
        logger.info("checkout replayed", extra={"order_id": order.id, "user_id": order.user_id})
        return CheckoutResult(order=order, replayed=True)
