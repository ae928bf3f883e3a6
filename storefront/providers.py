"""Service provider helpers for wiring the domain services with their ports.

``build_services`` returns a ``Services`` container with every domain
service sharing one database engine. By default the catalog reads the
products table and artifacts go to the in-process storage stub; with
``settings.use_http_adapters`` the HTTP storage client is used instead.
Tests pass their own engine, catalog or storage to swap implementations
without changing the services.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from .adapters import InMemoryStorage
from .cart import CartLedger
from .checkout import CheckoutCompiler
from .config import Settings, get_settings
from .domain import CatalogPort, StoragePort
from .http_adapters import HttpStorageClient
from .orders import OrderDesk
from .payments import PaymentProofIntake
from .repo import SqlCatalog, init_db, make_engine, make_session_factory, unit_of_work_factory
from .review import OrderFulfillment, OrderReviewAuthority


@dataclass
class Services:
    settings: Settings
    engine: Engine
    catalog: CatalogPort
    storage: StoragePort
    cart: CartLedger
    checkout: CheckoutCompiler
    payments: PaymentProofIntake
    review: OrderReviewAuthority
    fulfillment: OrderFulfillment
    orders: OrderDesk

    @property
    def uow_factory(self):
        return self.checkout.uow_factory


def build_storage(settings: Settings) -> StoragePort:
    if settings.use_http_adapters:
        return HttpStorageClient(settings=settings)
    return InMemoryStorage()


def build_services(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    catalog: Optional[CatalogPort] = None,
    storage: Optional[StoragePort] = None,
    create_schema: bool = True,
) -> Services:
    """Return a fully wired ``Services`` container.

    Args:
        settings: Settings to use; defaults to ``get_settings()``.
        engine: Existing engine; one is created from ``database_url`` when
            omitted.
        catalog: Catalog port; defaults to the products table.
        storage: Storage port; defaults to ``build_storage(settings)``.
        create_schema: Create missing tables on the engine.
    """
    settings = settings or get_settings()
    engine = engine or make_engine(settings.database_url)
    if create_schema:
        init_db(engine)
    session_factory = make_session_factory(engine)
    uow_factory = unit_of_work_factory(session_factory)
    catalog = catalog or SqlCatalog(session_factory)
    storage = storage or build_storage(settings)

    return Services(
        settings=settings,
        engine=engine,
        catalog=catalog,
        storage=storage,
        cart=CartLedger(catalog, uow_factory, currency=settings.currency),
        checkout=CheckoutCompiler(catalog, uow_factory, banks=settings.banks, currency=settings.currency),
        payments=PaymentProofIntake(uow_factory, storage, max_bytes=settings.proof_max_bytes),
        review=OrderReviewAuthority(
            uow_factory,
            decrement_stock_on_approve=settings.decrement_stock_on_approve,
            low_stock_threshold=settings.low_stock_threshold,
            currency=settings.currency,
        ),
        fulfillment=OrderFulfillment(uow_factory),
        orders=OrderDesk(uow_factory),
    )
