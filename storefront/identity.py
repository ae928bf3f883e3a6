"""Principals and capability checks.

The identity collaborator resolves who is calling; the core only checks the
capabilities of the principal it is handed. Nothing here verifies
credentials. Every operation receives its principal explicitly.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from .errors import Unauthenticated, Unauthorized


class PrincipalKind(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    """An already-authenticated caller.

    Attributes:
        id: Customer id or administrative principal id.
        kind: Whether the caller is a customer or an administrator.
        is_super_admin: Extra capability flag for administrators.
    """

    id: str
    kind: PrincipalKind
    is_super_admin: bool = False

    @classmethod
    def customer(cls, user_id: str) -> "Principal":
        return cls(id=user_id, kind=PrincipalKind.CUSTOMER)

    @classmethod
    def admin(cls, admin_id: str, super_admin: bool = False) -> "Principal":
        return cls(id=admin_id, kind=PrincipalKind.ADMIN, is_super_admin=super_admin)

    @property
    def is_admin(self) -> bool:
        return self.kind is PrincipalKind.ADMIN


def require_principal(principal: Optional[Principal]) -> Principal:
    if principal is None or not principal.id:
        raise Unauthenticated("Authentication required")
    return principal


def require_customer(principal: Optional[Principal]) -> Principal:
    """Return the principal if it is a customer.

    Raises:
        Unauthenticated: When no principal was resolved.
        Unauthorized: When the principal is not a customer.
    """
    p = require_principal(principal)
    if p.kind is not PrincipalKind.CUSTOMER:
        raise Unauthorized("Customer account required")
    return p


def require_admin(principal: Optional[Principal]) -> Principal:
    p = require_principal(principal)
    if not p.is_admin:
        raise Unauthorized("Administrative capability required")
    return p


def require_super_admin(principal: Optional[Principal]) -> Principal:
    p = require_admin(principal)
    if not p.is_super_admin:
        raise Unauthorized("Super-admin capability required")
    return p


# Headers set by the upstream gateway once it has authenticated the caller.
CUSTOMER_HEADER = "X-Customer-Id"
ADMIN_HEADER = "X-Admin-Id"
SUPER_ADMIN_HEADER = "X-Admin-Super"


def principal_from_headers(headers: Mapping[str, str]) -> Optional[Principal]:
    """Resolve a principal from gateway-supplied headers.

    An admin header wins over a customer header. Returns None when neither
    is present so the operation itself raises ``Unauthenticated``.

    Args:
        headers: Case-insensitive mapping of request headers.

    Returns:
        The resolved ``Principal`` or None.
    """
    admin_id = (headers.get(ADMIN_HEADER) or "").strip()
    if admin_id:
        flag = (headers.get(SUPER_ADMIN_HEADER) or "").strip().lower()
        return Principal.admin(admin_id, super_admin=flag in ("1", "true", "yes"))
    user_id = (headers.get(CUSTOMER_HEADER) or "").strip()
    if user_id:
        return Principal.customer(user_id)
    return None
