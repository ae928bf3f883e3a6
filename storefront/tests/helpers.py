"""Shared test data and direct-table helpers."""

from sqlalchemy import update

from storefront.domain import Product
from storefront.repo import ProductRow

PRODUCTS = [
    Product("SKU1", "Cafe Ginga 250g", 1500, 10),
    Product("SKU2", "Oleo de Palma 1L", 2500, 3),
    Product("SKU3", "Farinha Musseque 1kg", 800, 0),
    Product("SKU4", "Sabao Azul", 300, 50, is_active=False),
]


def seed(uow_factory, products=PRODUCTS):
    with uow_factory() as uow:
        for p in products:
            uow.products.add(p)
        uow.commit()


def set_product(uow_factory, product_id, **values):
    """Overwrite product columns directly, as the catalog owner would."""
    with uow_factory() as uow:
        uow.session.execute(update(ProductRow).where(ProductRow.id == product_id).values(**values))
        uow.commit()


def stock_of(uow_factory, product_id):
    with uow_factory() as uow:
        return uow.products.stock_of(product_id)
