"""HTTP adapter clients with retries, circuit breakers, and context headers.

This module implements the artifact storage port over HTTP using ``httpx``.
It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set by
    the API middleware.
- A circuit breaker per downstream service to avoid hammering unhealthy
    dependencies, with HALF_OPEN probing after a timeout.
- A simple retry policy with exponential backoff for transport errors and 5xx.

Every unavailability (transport error after retries, 5xx after retries, open
circuit) is surfaced as ``TemporaryFailure`` so callers may retry.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional

import httpx

from .config import Settings, get_settings
from .domain import StoragePort
from .errors import TemporaryFailure, ValidationError
from .middleware import REQUEST_ID_CTX

logger = logging.getLogger(__name__)


# ---------------- Circuit Breaker ---------------- #

class CircuitOpen(RuntimeError):
    pass


class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe; only one probe may be in
      flight; a failed probe opens the circuit again.

    This implementation is thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float, clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_probe_in_flight = False

    @property
    def state(self) -> str:
        """Current breaker state with time-based transition handling."""
        with self._lock:
            if self._state == "OPEN" and (self._clock() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check and update state before a protected call.

        Returns:
            str: The state at call time.

        Raises:
            CircuitOpen: If the circuit is OPEN or a HALF_OPEN probe is busy.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise CircuitOpen("CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                if self._half_open_probe_in_flight:
                    raise CircuitOpen("CIRCUIT_HALF_OPEN_BUSY")
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        """Record a successful call and close/reset the breaker."""
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        """Record a failed call and open the breaker if threshold exceeded."""
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (self._failures >= self.fail_threshold and self._state != "OPEN"):
                self._state = "OPEN"
                self._opened_at = self._clock()
                self._half_open_probe_in_flight = False

    def on_finish(self):
        """Release any HALF_OPEN probe flag after a call finishes."""
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False


_breakers: Dict[str, CircuitBreaker] = {}
_breakers_lock = threading.Lock()


def breaker_for(name: str, settings: Settings) -> CircuitBreaker:
    """Return the process-wide breaker of a downstream service."""
    with _breakers_lock:
        cb = _breakers.get(name)
        if cb is None:
            cb = CircuitBreaker(name, settings.http_circuit_fail_threshold, settings.http_circuit_reset_timeout)
            _breakers[name] = cb
        return cb


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport errors or 5xx."""
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


# ---------------- Storage Adapter ---------------- #

class HttpStorageClient(StoragePort):
    """HTTP client for the artifact storage service with retry and circuit breaker.

    The service contract is ``PUT {base_url}/objects/{key}`` with the raw
    bytes as body; a 200/201 response carries ``{"url": ...}``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        settings: Settings | None = None,
        breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or get_settings()
        self.base_url = (base_url or self.settings.storage_base_url).rstrip("/")
        self.timeout = timeout or self.settings.http_timeout_secs
        self.breaker = breaker or breaker_for("storage", self.settings)
        self._sleep = sleep

    @staticmethod
    def _url_from(resp) -> Optional[str]:
        """Return the ``url`` field of a success body, or None if malformed."""
        try:
            body = resp.json()
        except ValueError:
            return None
        if not isinstance(body, dict):
            return None
        url = body.get("url")
        return url if isinstance(url, str) and url else None

    def store(self, data: bytes, key: str, content_type: str) -> str:
        """Upload an artifact and return its URL.

        Business mappings:
        - 200/201 → returns the ``url`` field of the body
        - 413/415 → ``ValidationError`` (artifact refused), not a circuit failure

        Raises:
            ValidationError: Storage refused the artifact.
            TemporaryFailure: Circuit open, or transport errors/5xx after
                retries, or any other unexpected response.
        """
        max_retries = max(1, self.settings.http_retry_max)
        backoff = self.settings.http_retry_backoff_base
        tries = 0

        try:
            state = self.breaker.before_call()
        except CircuitOpen as e:
            logger.warning("storage circuit open", extra={"state": str(e)})
            raise TemporaryFailure("STORAGE_UNAVAILABLE", cause=e) from e
        headers = _request_headers(
            {"Content-Type": content_type, "X-Circuit-State": state, "X-Retry-Count": "0"}
        )

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.put(f"{self.base_url}/objects/{key}", content=data, headers=headers)
                        if resp.status_code in (200, 201):
                            url = self._url_from(resp)
                            if not url:
                                self.breaker.on_failure()
                                logger.error("storage bad response", extra={"key": key, "status": resp.status_code})
                                raise TemporaryFailure("STORAGE_BAD_RESPONSE")
                            self.breaker.on_success()
                            return url
                        if resp.status_code in (413, 415):
                            self.breaker.on_success()  # business outcome, not a circuit failure
                            raise ValidationError("Artifact refused by storage", field="file")
                        if not _should_retry(resp, None):
                            self.breaker.on_failure()
                            raise TemporaryFailure(f"STORAGE_HTTP_{resp.status_code}")
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)

                    if tries >= max_retries:
                        self.breaker.on_failure()
                        logger.error(
                            "storage upload failed",
                            extra={"key": key, "tries": tries, "status": getattr(resp, "status_code", None)},
                        )
                        raise TemporaryFailure("STORAGE_UNAVAILABLE", cause=exc) from exc

                    sleep_s = backoff * (2 ** (tries - 1))  # exponential backoff
                    if sleep_s > 0:
                        self._sleep(min(sleep_s, self.settings.http_retry_max_sleep))
        finally:
            self.breaker.on_finish()
