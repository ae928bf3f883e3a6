"""In-process stub adapters for the storefront ports.

These stubs implement ``CatalogPort`` and ``StoragePort`` without any network
calls. They are intended for unit tests and local development where
deterministic behavior is useful and external services are not required.
"""

import threading
from dataclasses import replace
from typing import Dict, Iterable, Optional

from .domain import CatalogPort, Product, StoragePort
from .errors import NotFound


class InMemoryCatalog(CatalogPort):
    """Stub implementation of ``CatalogPort`` over a dict of products."""

    def __init__(self, products: Optional[Iterable[Product]] = None):
        self._lock = threading.Lock()
        self._products: Dict[str, Product] = {p.id: p for p in (products or [])}

    def get_product(self, product_id: str) -> Product:
        """Return the product or raise ``NotFound``."""
        with self._lock:
            product = self._products.get(product_id)
        if product is None:
            raise NotFound("product", product_id)
        return product

    def put(self, product: Product) -> None:
        with self._lock:
            self._products[product.id] = product

    def set_stock(self, product_id: str, quantity: int) -> None:
        with self._lock:
            self._products[product_id] = replace(self._products[product_id], stock_quantity=quantity)

    def set_price(self, product_id: str, price_cents: int) -> None:
        with self._lock:
            self._products[product_id] = replace(self._products[product_id], price_cents=price_cents)

    def discard(self, product_id: str) -> None:
        with self._lock:
            self._products.pop(product_id, None)


class InMemoryStorage(StoragePort):
    """Stub implementation of ``StoragePort``.

    Keeps artifacts in a dict and returns ``memory://`` references.
    """

    def __init__(self, base_url: str = "memory://uploads"):
        self.base_url = base_url.rstrip("/")
        self.objects: Dict[str, bytes] = {}

    def store(self, data: bytes, key: str, content_type: str) -> str:
        self.objects[key] = data
        return f"{self.base_url}/{key}"
