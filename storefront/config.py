"""Runtime configuration read from environment variables.

Settings are read once per process by ``get_settings()``. Tests build a
``Settings`` directly (or with ``dataclasses.replace``) instead of touching
the environment.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict


@dataclass(frozen=True)
class BankAccount:
    """Settlement account a customer transfers money to."""

    code: str
    name: str
    account: str
    iban: str
    holder: str


DEFAULT_BANKS: Dict[str, BankAccount] = {
    "BAI": BankAccount(
        code="BAI",
        name="Banco BAI",
        account="237770124.10.001",
        iban="AO06 0040.0000.3777.0124.1012.6",
        holder="LojaAngola, Lda",
    ),
    "Atlantico": BankAccount(
        code="Atlantico",
        name="Banco Atlântico",
        account="31390641610001",
        iban="AO06 0055.0000.1390.6416.1610.113",
        holder="LojaAngola, Lda",
    ),
}

PROOF_EXTENSIONS: Dict[str, tuple] = {
    "pdf": ("application/pdf",),
    "jpg": ("image/jpeg",),
    "jpeg": ("image/jpeg",),
    "png": ("image/png",),
}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Process-wide settings.

    Attributes:
        database_url: SQLAlchemy URL of the order store.
        currency: ISO code all amounts are expressed in (minor units).
        decrement_stock_on_approve: Stock policy applied by ``approve`` when
            the caller does not override it.
        proof_max_bytes: Largest accepted payment-proof artifact.
        low_stock_threshold: Products below this stock count as low stock
            on the dashboard.
        use_http_adapters: Wire the HTTP storage client (default); set to
            false to fall back to the in-memory stub.
        storage_base_url: Base URL of the artifact storage service.
        http_timeout_secs: Timeout for outbound HTTP calls.
        http_retry_max: Attempts before giving up on a retryable failure.
        http_retry_backoff_base: Base of the exponential backoff, seconds.
        http_retry_max_sleep: Cap for a single backoff sleep, seconds.
        http_circuit_fail_threshold: Failures that open the circuit.
        http_circuit_reset_timeout: Seconds before an open circuit probes.
        api_max_bytes: Largest request body accepted by the API.
        log_level: Root level for the JSON logger.
    """

    database_url: str = "sqlite+pysqlite:///./storefront.db"
    currency: str = "AOA"
    decrement_stock_on_approve: bool = True
    proof_max_bytes: int = 5 * 1024 * 1024
    low_stock_threshold: int = 10
    use_http_adapters: bool = True
    storage_base_url: str = "http://storage:9002"
    http_timeout_secs: float = 5.0
    http_retry_max: int = 3
    http_retry_backoff_base: float = 0.15
    http_retry_max_sleep: float = 0.5
    http_circuit_fail_threshold: int = 5
    http_circuit_reset_timeout: float = 30.0
    api_max_bytes: int = 6 * 1024 * 1024
    log_level: str = "INFO"
    banks: Dict[str, BankAccount] = field(default_factory=lambda: dict(DEFAULT_BANKS))

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        d = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL", d.database_url),
            currency=os.getenv("CURRENCY", d.currency).upper(),
            decrement_stock_on_approve=_env_bool("DECREMENT_STOCK_ON_APPROVE", d.decrement_stock_on_approve),
            proof_max_bytes=int(os.getenv("PROOF_MAX_BYTES", str(d.proof_max_bytes))),
            low_stock_threshold=int(os.getenv("LOW_STOCK_THRESHOLD", str(d.low_stock_threshold))),
            use_http_adapters=_env_bool("USE_HTTP_ADAPTERS", d.use_http_adapters),
            storage_base_url=os.getenv("STORAGE_BASE_URL", d.storage_base_url),
            http_timeout_secs=float(os.getenv("HTTP_TIMEOUT_SECS", str(d.http_timeout_secs))),
            http_retry_max=int(os.getenv("HTTP_RETRY_MAX", str(d.http_retry_max))),
            http_retry_backoff_base=float(os.getenv("HTTP_RETRY_BACKOFF_BASE", str(d.http_retry_backoff_base))),
            http_retry_max_sleep=float(os.getenv("HTTP_RETRY_MAX_SLEEP", str(d.http_retry_max_sleep))),
            http_circuit_fail_threshold=int(os.getenv("HTTP_CIRCUIT_FAIL_THRESHOLD", str(d.http_circuit_fail_threshold))),
            http_circuit_reset_timeout=float(os.getenv("HTTP_CIRCUIT_RESET_TIMEOUT", str(d.http_circuit_reset_timeout))),
            api_max_bytes=int(os.getenv("API_MAX_BYTES", str(d.api_max_bytes))),
            log_level=os.getenv("LOG_LEVEL", d.log_level).upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached process settings."""
    return Settings.from_env()
