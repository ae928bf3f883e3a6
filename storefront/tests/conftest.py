import pytest

from storefront.adapters import InMemoryStorage
from storefront.config import Settings
from storefront.domain import Artifact, ContactInfo
from storefront.identity import Principal
from storefront.providers import build_services
from storefront.repo import init_db, make_engine, make_session_factory, unit_of_work_factory

from .helpers import seed


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", log_level="WARNING")


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def services(settings, storage):
    """Services over a fresh in-memory database seeded with ``PRODUCTS``."""
    svc = build_services(settings, engine=make_engine(settings.database_url), storage=storage)
    seed(svc.uow_factory)
    return svc


@pytest.fixture
def file_services(tmp_path, storage):
    """Services over a file database, for tests that need real concurrency."""
    settings = Settings(database_url=f"sqlite+pysqlite:///{tmp_path / 'store.db'}", log_level="WARNING")
    svc = build_services(settings, storage=storage)
    seed(svc.uow_factory)
    return svc


@pytest.fixture
def uow_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    return unit_of_work_factory(make_session_factory(engine))


@pytest.fixture
def alice():
    return Principal.customer("alice")


@pytest.fixture
def bob():
    return Principal.customer("bob")


@pytest.fixture
def admin():
    return Principal.admin("admin-1")


@pytest.fixture
def root():
    return Principal.admin("root", super_admin=True)


@pytest.fixture
def contact():
    return ContactInfo(
        name="Alice Domingos",
        email="alice@example.ao",
        phone="+244 923 000 000",
        shipping_address="Rua da Missao 12, Luanda",
    )


@pytest.fixture
def place_order(services, contact):
    """Fill the customer's cart with ``lines`` and compile it."""

    def _place(principal, lines, bank="BAI"):
        for product_id, qty in lines:
            services.cart.add_item(principal, product_id, qty)
        return services.checkout.compile(principal, contact, bank).order

    return _place


@pytest.fixture
def pdf():
    return Artifact("comprovativo.pdf", "application/pdf", b"%PDF-1.4 transfer receipt")
