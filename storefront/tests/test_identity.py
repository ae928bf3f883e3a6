import pytest

from storefront.errors import Unauthenticated, Unauthorized
from storefront.identity import (
    Principal,
    PrincipalKind,
    principal_from_headers,
    require_admin,
    require_customer,
    require_super_admin,
)


def test_headers_resolve_customer():
    p = principal_from_headers({"X-Customer-Id": " alice "})
    assert p == Principal.customer("alice")


def test_admin_header_wins():
    p = principal_from_headers({"X-Customer-Id": "alice", "X-Admin-Id": "ops", "X-Admin-Super": "true"})
    assert p.kind is PrincipalKind.ADMIN
    assert p.id == "ops" and p.is_super_admin


def test_no_headers_no_principal():
    assert principal_from_headers({}) is None
    with pytest.raises(Unauthenticated):
        require_customer(None)


def test_capabilities():
    customer, admin, root = Principal.customer("c"), Principal.admin("a"), Principal.admin("r", super_admin=True)
    with pytest.raises(Unauthorized):
        require_customer(admin)
    with pytest.raises(Unauthorized):
        require_admin(customer)
    with pytest.raises(Unauthorized):
        require_super_admin(admin)
    assert require_super_admin(root) is root
