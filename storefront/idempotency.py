"""Idempotency utilities for checkout compilation.

A checkout is identified either by the client's ``Idempotency-Key`` or, when
the client sends none, by a key derived from the customer, the cart version
and the cart contents. The first compilation stores the key with a hash of
the request; a retry with the same key and the same hash replays the stored
order, a retry with the same key and a different hash is a conflict.
"""

import hashlib
import json
from typing import Iterable

from .domain import CartLine, ContactInfo

DERIVED_PREFIX = "cart:"


def _hash(payload: dict) -> str:
    """Compute a stable SHA-256 hash for a JSON-serializable payload.

    The payload is serialized with sorted keys and compact separators to
    ensure a deterministic representation before hashing.

    Args:
        payload: A JSON-serializable dictionary.

    Returns:
        str: Hex-encoded SHA-256 digest of the normalized payload.
    """
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def cart_content(lines: Iterable[CartLine]) -> list:
    return sorted([[l.product_id, l.quantity] for l in lines])


def request_hash(user_id: str, contact: ContactInfo, bank_name: str) -> str:
    """Hash of the checkout request body (the cart is not part of it)."""
    return _hash(
        {
            "user_id": user_id,
            "contact": {
                "name": contact.name,
                "email": contact.email,
                "phone": contact.phone,
                "shipping_address": contact.shipping_address,
            },
            "bank_name": bank_name,
        }
    )


def snapshot_key(user_id: str, cart_version: int, lines: Iterable[CartLine]) -> str:
    """Key identifying one cart snapshot of one customer.

    Two compilations of the same snapshot collide on this key; a later cart
    with identical contents has a different version and therefore a
    different key.
    """
    digest = _hash({"user_id": user_id, "version": cart_version, "cart": cart_content(lines)})
    return f"{DERIVED_PREFIX}{digest}"


def scoped_client_key(user_id: str, key: str) -> str:
    """Namespace a client-provided key per customer."""
    return f"client:{user_id}:{key}"[:200]
