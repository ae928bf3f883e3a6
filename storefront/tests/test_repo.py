import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from storefront.domain import Product
from storefront.errors import NotFound, TemporaryFailure
from storefront.repo import SqlCatalog, init_db, make_engine, make_session_factory, unit_of_work_factory

from .helpers import seed, stock_of


def test_decrement_is_conditional(uow_factory):
    seed(uow_factory, [Product("A", "Alpha", 100, 3)])
    with uow_factory() as uow:
        assert uow.products.decrement("A", 2) is True
        assert uow.products.decrement("A", 2) is False
        assert uow.products.decrement("missing", 1) is False
        uow.commit()
    assert stock_of(uow_factory, "A") == 1


def test_uncommitted_work_is_rolled_back(uow_factory):
    seed(uow_factory, [Product("A", "Alpha", 100, 3)])
    with uow_factory() as uow:
        uow.products.decrement("A", 3)
    assert stock_of(uow_factory, "A") == 3


def test_cart_version_changes_on_every_mutation(uow_factory):
    with uow_factory() as uow:
        assert uow.carts.version("u") == 0
        uow.carts.put("u", "A", 1)
        uow.carts.put("u", "A", 2)
        assert uow.carts.remove("u", "B") is False
        uow.carts.remove("u", "A")
        uow.commit()
    with uow_factory() as uow:
        assert uow.carts.version("u") == 3


def test_idempotency_key_is_unique(uow_factory):
    with uow_factory() as uow:
        uow.idempotency.add("k", "h", "o1")
        uow.commit()
    with pytest.raises(IntegrityError):
        with uow_factory() as uow:
            uow.idempotency.add("k", "h", "o2")


def test_database_faults_become_temporary_failures(uow_factory):
    with pytest.raises(TemporaryFailure) as e:
        with uow_factory() as uow:
            uow.session.execute(text("select * from no_such_table"))
    assert e.value.message == "PERSISTENCE_UNAVAILABLE"


def test_sql_catalog():
    engine = make_engine("sqlite://")
    init_db(engine)
    session_factory = make_session_factory(engine)
    seed(unit_of_work_factory(session_factory), [Product("A", "Alpha", 100, 3)])

    catalog = SqlCatalog(session_factory)
    assert catalog.get_product("A").stock_quantity == 3
    with pytest.raises(NotFound):
        catalog.get_product("B")


def test_sql_catalog_without_schema_is_unavailable():
    catalog = SqlCatalog(make_session_factory(make_engine("sqlite://")))
    with pytest.raises(TemporaryFailure):
        catalog.get_product("A")
