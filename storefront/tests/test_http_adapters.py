"""Unit tests for the HTTP storage client and its circuit breaker.

These tests monkeypatch ``httpx.Client.put`` and assert the adapter maps
success, refusals, server errors and network errors correctly.
"""

import httpx
import pytest

from storefront.config import Settings
from storefront.errors import TemporaryFailure, ValidationError
from storefront.http_adapters import CircuitBreaker, CircuitOpen, HttpStorageClient
from storefront.middleware import REQUEST_ID_CTX


class DummyResp:
    """Minimal httpx-like response stub.

    Args:
        status_code (int): HTTP status code to simulate.
        json_data (dict | None): JSON body to return from ``json()``.
    """

    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data or {}

    def json(self):
        return self._json


@pytest.fixture
def fast_settings():
    return Settings(http_retry_max=3, http_retry_backoff_base=0.0, http_circuit_fail_threshold=2)


def make_client(settings, breaker=None, sleeps=None):
    breaker = breaker or CircuitBreaker("storage", settings.http_circuit_fail_threshold, 30)
    sleep = sleeps.append if sleeps is not None else (lambda s: None)
    return HttpStorageClient(base_url="http://storage:9002", settings=settings, breaker=breaker, sleep=sleep)


def test_store_ok_propagates_request_id(monkeypatch, fast_settings):
    seen = {}

    def fake_put(self, url, content=None, headers=None, **kw):
        seen.update(url=url, content=content, headers=headers)
        return DummyResp(201, {"url": "http://storage:9002/objects/k.pdf"})

    monkeypatch.setattr(httpx.Client, "put", fake_put, raising=True)
    token = REQUEST_ID_CTX.set("rid-123")
    try:
        url = make_client(fast_settings).store(b"abc", "payment-proofs/k.pdf", "application/pdf")
    finally:
        REQUEST_ID_CTX.reset(token)

    assert url == "http://storage:9002/objects/k.pdf"
    assert seen["url"] == "http://storage:9002/objects/payment-proofs/k.pdf"
    assert seen["content"] == b"abc"
    assert seen["headers"]["X-Request-ID"] == "rid-123"
    assert seen["headers"]["Content-Type"] == "application/pdf"


def test_store_retries_on_5xx(monkeypatch):
    settings = Settings(http_retry_max=3, http_retry_backoff_base=0.1, http_retry_max_sleep=0.15)
    calls = {"n": 0}

    def fake_put(self, url, content=None, headers=None, **kw):
        calls["n"] += 1
        if calls["n"] < 3:
            return DummyResp(503)
        assert headers["X-Retry-Count"] == "2"
        return DummyResp(200, {"url": "u"})

    monkeypatch.setattr(httpx.Client, "put", fake_put, raising=True)
    sleeps = []
    assert make_client(settings, sleeps=sleeps).store(b"x", "k", "image/png") == "u"
    assert calls["n"] == 3
    # exponential backoff, capped
    assert sleeps == [0.1, 0.15]


def test_store_gives_up_after_retries(monkeypatch, fast_settings):
    def fake_put(self, url, content=None, headers=None, **kw):
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(httpx.Client, "put", fake_put, raising=True)
    with pytest.raises(TemporaryFailure) as e:
        make_client(fast_settings).store(b"x", "k", "image/png")
    assert e.value.message == "STORAGE_UNAVAILABLE"


def test_store_refusal_is_a_validation_error(monkeypatch, fast_settings):
    calls = {"n": 0}

    def fake_put(self, url, content=None, headers=None, **kw):
        calls["n"] += 1
        return DummyResp(413)

    monkeypatch.setattr(httpx.Client, "put", fake_put, raising=True)
    breaker = CircuitBreaker("storage", 1, 30)
    with pytest.raises(ValidationError):
        make_client(fast_settings, breaker=breaker).store(b"x", "k", "image/png")
    assert calls["n"] == 1
    assert breaker.state == "CLOSED"


def test_unexpected_4xx_is_not_retried(monkeypatch, fast_settings):
    calls = {"n": 0}

    def fake_put(self, url, content=None, headers=None, **kw):
        calls["n"] += 1
        return DummyResp(403)

    monkeypatch.setattr(httpx.Client, "put", fake_put, raising=True)
    with pytest.raises(TemporaryFailure) as e:
        make_client(fast_settings).store(b"x", "k", "image/png")
    assert e.value.message == "STORAGE_HTTP_403"
    assert calls["n"] == 1


def test_open_circuit_short_circuits(monkeypatch, fast_settings):
    def fake_put(self, url, content=None, headers=None, **kw):
        raise AssertionError("no call expected while the circuit is open")

    monkeypatch.setattr(httpx.Client, "put", fake_put, raising=True)
    breaker = CircuitBreaker("storage", 1, 30)
    breaker.on_failure()
    with pytest.raises(TemporaryFailure):
        make_client(fast_settings, breaker=breaker).store(b"x", "k", "image/png")


def test_breaker_half_open_probe():
    now = {"t": 0.0}
    cb = CircuitBreaker("storage", fail_threshold=2, reset_timeout=10, clock=lambda: now["t"])

    cb.on_failure()
    assert cb.state == "CLOSED"
    cb.on_failure()
    assert cb.state == "OPEN"
    with pytest.raises(CircuitOpen):
        cb.before_call()

    now["t"] = 10.0
    assert cb.before_call() == "HALF_OPEN"
    with pytest.raises(CircuitOpen):
        cb.before_call()  # one probe at a time
    cb.on_failure()
    assert cb.state == "OPEN"

    now["t"] = 25.0
    assert cb.before_call() == "HALF_OPEN"
    cb.on_success()
    assert cb.state == "CLOSED"


class NotJsonResp(DummyResp):
    def json(self):
        raise ValueError("Expecting value: line 1 column 1 (char 0)")


@pytest.mark.parametrize("resp", [NotJsonResp(200), DummyResp(201, ["not", "a", "dict"]), DummyResp(200, {"url": ""})])
def test_malformed_success_body_is_temporary_failure(monkeypatch, fast_settings, resp):
    def fake_put(self, url, content=None, headers=None, **kw):
        return resp

    monkeypatch.setattr(httpx.Client, "put", fake_put, raising=True)
    breaker = CircuitBreaker("storage", 1, 30)
    with pytest.raises(TemporaryFailure) as e:
        make_client(fast_settings, breaker=breaker).store(b"x", "k", "image/png")
    assert e.value.message == "STORAGE_BAD_RESPONSE"
    assert breaker.state == "OPEN"
