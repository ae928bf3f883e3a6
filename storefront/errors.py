"""Error taxonomy for the storefront core.

Every business failure is raised as a subclass of ``StorefrontError``. Each
class carries a short, stable ``code`` (the string clients see in the
``detail`` field of an error response) and the ``http_status`` the API layer
maps it to. Structured fields such as offending product ids travel in
``extra`` so callers can render a specific message.
"""

from dataclasses import dataclass
from typing import Any, List, Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    code = "STOREFRONT_ERROR"
    http_status = 400

    def __init__(self, message: str | None = None, **extra: Any):
        self.message = message or self.code
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Return a JSON-serializable body for API responses."""
        body = {"detail": self.code, "message": self.message}
        body.update(self.extra)
        return body


class Unauthenticated(StorefrontError):
    """Raised when an operation is called without a resolved principal."""

    code = "UNAUTHENTICATED"
    http_status = 401


class Unauthorized(StorefrontError):
    """Raised when the principal lacks the capability for an operation."""

    code = "UNAUTHORIZED"
    http_status = 403


class NotFound(StorefrontError):
    """Raised when a product, order or cart line does not exist."""

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, kind: str, ref: Any):
        self.kind = kind
        self.ref = ref
        super().__init__(f"{kind} not found: {ref}", kind=kind, ref=str(ref))


class ValidationError(StorefrontError):
    """Raised for malformed input (bad quantity, missing checkout fields...)."""

    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        if field:
            super().__init__(message, field=field)
        else:
            super().__init__(message)


class OutOfStock(StorefrontError):
    """Raised by the cart when a requested quantity exceeds availability."""

    code = "OUT_OF_STOCK"
    http_status = 422

    def __init__(self, product_id: str, requested: int, remaining: int):
        self.product_id = product_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Requested {requested} of product {product_id}, {remaining} available",
            product_id=product_id,
            requested=requested,
            remaining=remaining,
        )


@dataclass(frozen=True)
class StockShortfall:
    """One product that cannot cover a requested quantity."""

    product_id: str
    requested: int
    remaining: int

    def as_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "requested": self.requested,
            "remaining": self.remaining,
        }


class InsufficientStock(StorefrontError):
    """Raised at checkout when one or more cart lines no longer fit in stock."""

    code = "INSUFFICIENT_STOCK"
    http_status = 422

    def __init__(self, shortfalls: List[StockShortfall]):
        self.shortfalls = list(shortfalls)
        ids = ", ".join(s.product_id for s in self.shortfalls)
        super().__init__(
            f"Insufficient stock for: {ids}",
            products=[s.as_dict() for s in self.shortfalls],
        )

    @property
    def product_ids(self) -> List[str]:
        return [s.product_id for s in self.shortfalls]


class InvalidState(StorefrontError):
    """Raised when the order's status forbids the requested operation."""

    code = "INVALID_STATE"
    http_status = 409

    def __init__(self, message: str, status: Optional[str] = None):
        self.status = status
        if status is not None:
            super().__init__(message, status=status)
        else:
            super().__init__(message)


class InvalidTransition(InvalidState):
    """Raised when a status transition is not in the allowed table."""

    code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from {current} to {target}", status=current)
        self.extra["target"] = target


class StockConflict(StorefrontError):
    """Raised when the approval-time stock decrement would go negative."""

    code = "STOCK_CONFLICT"
    http_status = 409

    def __init__(self, order_id: str, shortfalls: List[StockShortfall]):
        self.order_id = order_id
        self.shortfalls = list(shortfalls)
        super().__init__(
            f"Stock conflict approving order {order_id}",
            order_id=order_id,
            products=[s.as_dict() for s in self.shortfalls],
        )


class IdempotencyConflict(StorefrontError):
    """Raised when an idempotency key is reused with a different payload."""

    code = "IDEMPOTENCY_CONFLICT"
    http_status = 409

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Idempotency key reused with a different payload: {key}")


class TemporaryFailure(StorefrontError):
    """Raised when a collaborator is unavailable; safe to retry."""

    code = "UPSTREAM_UNAVAILABLE"
    http_status = 503

    def __init__(self, message: str = "UPSTREAM_UNAVAILABLE", cause: BaseException | None = None):
        self.cause = cause
        super().__init__(message)
