from storefront.adapters import InMemoryStorage
from storefront.config import Settings
from storefront.http_adapters import HttpStorageClient
from storefront.providers import build_services, build_storage


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("DECREMENT_STOCK_ON_APPROVE", "false")
    monkeypatch.setenv("PROOF_MAX_BYTES", "1024")
    monkeypatch.setenv("USE_HTTP_ADAPTERS", "no")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    s = Settings.from_env()

    assert s.database_url == "sqlite://"
    assert s.decrement_stock_on_approve is False
    assert s.proof_max_bytes == 1024
    assert s.use_http_adapters is False
    assert s.log_level == "DEBUG"
    assert s.currency == "AOA"
    assert set(s.banks) == {"BAI", "Atlantico"}


def test_storage_wiring():
    assert isinstance(build_storage(Settings()), HttpStorageClient)
    assert isinstance(build_storage(Settings(use_http_adapters=False)), InMemoryStorage)


def test_injected_storage_wins_over_default():
    storage = InMemoryStorage()
    svc = build_services(Settings(database_url="sqlite://"), storage=storage)
    assert svc.storage is storage
    assert svc.payments.storage is storage


def test_build_services_honours_policy():
    svc = build_services(
        Settings(database_url="sqlite://", decrement_stock_on_approve=False, low_stock_threshold=3, use_http_adapters=False)
    )
    assert svc.review.decrement_stock_on_approve is False
    assert svc.review.low_stock_threshold == 3
    assert svc.payments.max_bytes == 5 * 1024 * 1024
