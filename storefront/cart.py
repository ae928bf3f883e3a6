"""Cart ledger: the per-customer mutable collection of (product, quantity).

Every mutation re-checks the requested quantity against the product's
currently available stock. The check is advisory: nothing is reserved or
decremented here, so a line that fit when it was written may no longer fit
by checkout time. Checkout re-validates and approval commits stock
atomically.
"""

import logging
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError

from .domain import CartLineView, CartTotals, CartView, CatalogPort, Product
from .errors import NotFound, OutOfStock, TemporaryFailure, ValidationError
from .identity import Principal, require_customer
from .repo import UnitOfWork

logger = logging.getLogger(__name__)


class CartLedger:
    """Domain service for cart mutations and totals.

    Args:
        catalog: ``CatalogPort`` used to read price and availability.
        uow_factory: Callable returning a fresh ``UnitOfWork``.
        currency: Currency the totals are expressed in.
    """

    def __init__(self, catalog: CatalogPort, uow_factory: Callable[[], UnitOfWork], currency: str = "AOA"):
        self.catalog = catalog
        self.uow_factory = uow_factory
        self.currency = currency

    def add_item(self, principal: Optional[Principal], product_id: str, quantity: int = 1) -> CartView:
        """Add ``quantity`` units of a product to the customer's cart.

        Args:
            principal: Calling customer.
            product_id: Product to add.
            quantity: Units to add on top of any existing line (>= 1).

        Returns:
            CartView: The cart after the mutation.

        Raises:
            Unauthenticated: No principal.
            Unauthorized: Principal is not a customer.
            ValidationError: ``quantity`` < 1.
            NotFound: Unknown product.
            OutOfStock: Inactive/zero-stock product or the cumulative
                quantity exceeds availability.
        """
        customer = require_customer(principal)
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field="quantity")

        product = self.catalog.get_product(product_id)
        with self.uow_factory() as uow:
            existing = uow.carts.quantity_of(customer.id, product_id)
            wanted = existing + quantity
            self._check_stock(product, wanted)
            self._write(uow, customer.id, product_id, wanted)
        logger.info(
            "cart item added",
            extra={"user_id": customer.id, "product_id": product_id, "quantity": wanted},
        )
        return self.view(customer)

    def set_quantity(self, principal: Optional[Principal], product_id: str, quantity: int) -> CartView:
        """Replace the quantity of a line; ``quantity <= 0`` removes it."""
        customer = require_customer(principal)
        if quantity <= 0:
            return self.remove_item(customer, product_id)

        product = self.catalog.get_product(product_id)
        self._check_stock(product, quantity)
        with self.uow_factory() as uow:
            self._write(uow, customer.id, product_id, quantity)
        logger.info(
            "cart quantity set",
            extra={"user_id": customer.id, "product_id": product_id, "quantity": quantity},
        )
        return self.view(customer)

    def remove_item(self, principal: Optional[Principal], product_id: str) -> CartView:
        """Remove a line. Removing an absent line is a no-op."""
        customer = require_customer(principal)
        with self.uow_factory() as uow:
            removed = uow.carts.remove(customer.id, product_id)
            uow.commit()
        if removed:
            logger.info("cart item removed", extra={"user_id": customer.id, "product_id": product_id})
        return self.view(customer)

    def clear(self, principal: Optional[Principal]) -> CartView:
        customer = require_customer(principal)
        with self.uow_factory() as uow:
            uow.carts.clear(customer.id)
            uow.commit()
        logger.info("cart cleared", extra={"user_id": customer.id})
        return self.view(customer)

    def view(self, principal: Optional[Principal]) -> CartView:
        """Return the cart lines priced at current catalog prices.

        Lines whose product has since disappeared from the catalog are left
        out of the view (they still fail checkout re-validation).
        """
        customer = require_customer(principal)
        with self.uow_factory() as uow:
            lines = uow.carts.lines(customer.id)

        views = []
        for line in lines:
            try:
                product = self.catalog.get_product(line.product_id)
            except NotFound:
                logger.warning(
                    "cart references missing product",
                    extra={"user_id": customer.id, "product_id": line.product_id},
                )
                continue
            views.append(
                CartLineView(
                    product_id=product.id,
                    product_name=product.name,
                    unit_price_cents=product.price_cents,
                    quantity=line.quantity,
                )
            )
        totals = CartTotals(
            item_count=sum(v.quantity for v in views),
            subtotal_cents=sum(v.subtotal_cents for v in views),
            currency=self.currency,
        )
        return CartView(user_id=customer.id, lines=tuple(views), totals=totals)

    def totals(self, principal: Optional[Principal]) -> CartTotals:
        return self.view(principal).totals

    # ---- helpers ----
    @staticmethod
    def _check_stock(product: Product, wanted: int) -> None:
        if wanted > product.available:
            logger.info(
                "cart mutation rejected",
                extra={"product_id": product.id, "requested": wanted, "remaining": product.available},
            )
            raise OutOfStock(product.id, requested=wanted, remaining=product.available)

    @staticmethod
    def _write(uow: UnitOfWork, user_id: str, product_id: str, quantity: int) -> None:
        try:
            uow.carts.put(user_id, product_id, quantity)
            uow.commit()
        except IntegrityError as e:
            # two concurrent first-adds of the same product
            raise TemporaryFailure("CART_WRITE_CONFLICT", cause=e) from e
