"""Checkout compilation tests.

Checkout is all-or-nothing: either a pending order with frozen lines exists
and the cart is empty, or nothing changed and the cart is intact.
"""

from dataclasses import replace

import pytest

from storefront.domain import CartLine, OrderStatus
from storefront.errors import (
    IdempotencyConflict,
    InsufficientStock,
    NotFound,
    Unauthorized,
    ValidationError,
)
from storefront.idempotency import request_hash, snapshot_key

from .helpers import set_product, stock_of


def test_compile_freezes_lines_and_clears_cart(services, alice, contact):
    services.cart.add_item(alice, "SKU1", 2)
    services.cart.add_item(alice, "SKU2", 1)

    result = services.checkout.compile(alice, contact, "BAI")
    order = result.order

    assert result.replayed is False
    assert order.status is OrderStatus.PENDING
    assert order.total_cents == 2 * 1500 + 2500
    assert [(i.product_id, i.product_name, i.product_price_cents, i.quantity) for i in order.items] == [
        ("SKU1", "Cafe Ginga 250g", 1500, 2),
        ("SKU2", "Oleo de Palma 1L", 2500, 1),
    ]
    assert order.bank_name == "BAI"
    assert order.payment_method == "bank_transfer"
    assert services.cart.view(alice).is_empty
    # a pending order is not a sale
    assert stock_of(services.uow_factory, "SKU1") == 10


def test_frozen_lines_ignore_later_price_changes(services, alice, contact):
    services.cart.add_item(alice, "SKU1", 1)
    order = services.checkout.compile(alice, contact, "Atlantico").order

    set_product(services.uow_factory, "SKU1", price_cents=9999, name="Renamed")

    stored = services.orders.get_order(alice, order.id)
    assert stored.items[0].product_price_cents == 1500
    assert stored.items[0].product_name == "Cafe Ginga 250g"
    assert stored.total_cents == 1500


def test_empty_cart_is_rejected(services, alice, contact):
    with pytest.raises(ValidationError) as e:
        services.checkout.compile(alice, contact, "BAI")
    assert e.value.field == "cart"


@pytest.mark.parametrize(
    "changes, field",
    [
        ({"name": "  "}, "name"),
        ({"email": ""}, "email"),
        ({"email": "not-an-email"}, "email"),
        ({"phone": ""}, "phone"),
        ({"shipping_address": "\n"}, "shipping_address"),
    ],
)
def test_contact_fields_are_required(services, alice, contact, changes, field):
    services.cart.add_item(alice, "SKU1", 1)
    with pytest.raises(ValidationError) as e:
        services.checkout.compile(alice, replace(contact, **changes), "BAI")
    assert e.value.field == field
    assert services.cart.totals(alice).item_count == 1


def test_unknown_bank_is_rejected(services, alice, contact):
    services.cart.add_item(alice, "SKU1", 1)
    with pytest.raises(ValidationError) as e:
        services.checkout.compile(alice, contact, "Millennium")
    assert e.value.field == "bank_name"


def test_admin_cannot_check_out(services, admin, contact):
    with pytest.raises(Unauthorized):
        services.checkout.compile(admin, contact, "BAI")


def test_insufficient_stock_reports_every_line_and_writes_nothing(services, alice, contact):
    services.cart.add_item(alice, "SKU1", 5)
    services.cart.add_item(alice, "SKU2", 3)
    set_product(services.uow_factory, "SKU1", stock_quantity=4)
    set_product(services.uow_factory, "SKU2", stock_quantity=1)

    with pytest.raises(InsufficientStock) as e:
        services.checkout.compile(alice, contact, "BAI")

    assert e.value.product_ids == ["SKU1", "SKU2"]
    assert [s.remaining for s in e.value.shortfalls] == [4, 1]
    assert services.cart.totals(alice).item_count == 8
    assert services.orders.list_orders(alice).count == 0


def test_deactivated_product_fails_checkout(services, alice, contact):
    services.cart.add_item(alice, "SKU1", 1)
    set_product(services.uow_factory, "SKU1", is_active=False)
    with pytest.raises(InsufficientStock) as e:
        services.checkout.compile(alice, contact, "BAI")
    assert e.value.shortfalls[0].remaining == 0


def test_deleted_product_fails_checkout(uow_factory, alice, contact):
    from storefront.adapters import InMemoryCatalog
    from storefront.cart import CartLedger
    from storefront.checkout import CheckoutCompiler
    from storefront.domain import Product

    catalog = InMemoryCatalog([Product("A", "Alpha", 100, 5)])
    CartLedger(catalog, uow_factory).add_item(alice, "A", 1)
    catalog.discard("A")
    with pytest.raises(NotFound):
        CheckoutCompiler(catalog, uow_factory).compile(alice, contact, "BAI")


def test_client_key_replays_the_same_order(services, alice, contact):
    services.cart.add_item(alice, "SKU1", 1)
    first = services.checkout.compile(alice, contact, "BAI", idempotency_key="k-1")
    again = services.checkout.compile(alice, contact, "BAI", idempotency_key="k-1")

    assert again.replayed is True
    assert again.order_id == first.order_id
    assert services.orders.list_orders(alice).count == 1


def test_keyless_retry_after_success_finds_an_empty_cart(services, alice, contact):
    services.cart.add_item(alice, "SKU1", 1)
    services.checkout.compile(alice, contact, "BAI")

    with pytest.raises(ValidationError) as e:
        services.checkout.compile(alice, contact, "BAI")
    assert e.value.field == "cart"
    assert services.orders.list_orders(alice).count == 1


def test_client_key_with_different_payload_conflicts(services, alice, contact):
    services.cart.add_item(alice, "SKU1", 1)
    services.checkout.compile(alice, contact, "BAI", idempotency_key="k-2")
    with pytest.raises(IdempotencyConflict):
        services.checkout.compile(alice, contact, "Atlantico", idempotency_key="k-2")


def test_client_keys_are_scoped_per_customer(services, alice, bob, contact):
    services.cart.add_item(alice, "SKU1", 1)
    services.cart.add_item(bob, "SKU1", 2)
    a = services.checkout.compile(alice, contact, "BAI", idempotency_key="same")
    b = services.checkout.compile(bob, contact, "BAI", idempotency_key="same")
    assert a.order_id != b.order_id
    assert b.order.user_id == "bob"


def test_identical_later_cart_is_a_new_order(services, alice, contact):
    services.cart.add_item(alice, "SKU1", 1)
    first = services.checkout.compile(alice, contact, "BAI")
    services.cart.add_item(alice, "SKU1", 1)
    second = services.checkout.compile(alice, contact, "BAI")
    assert second.replayed is False
    assert second.order_id != first.order_id


def test_snapshot_key_tracks_cart_version():
    lines = [CartLine("A", 1), CartLine("B", 2)]
    assert snapshot_key("u", 3, lines) == snapshot_key("u", 3, list(reversed(lines)))
    assert snapshot_key("u", 3, lines) != snapshot_key("u", 4, lines)
    assert snapshot_key("u", 3, lines).startswith("cart:")


def test_request_hash_is_per_customer(contact):
    assert request_hash("u", contact, "BAI") == request_hash("u", contact, "BAI")
    assert request_hash("u", contact, "BAI") != request_hash("v", contact, "BAI")


def test_concurrent_compiles_of_one_cart_create_one_order(file_services, alice, contact):
    import threading

    svc = file_services
    svc.cart.add_item(alice, "SKU1", 2)
    results, errors = [], []
    barrier = threading.Barrier(2)

    def run():
        barrier.wait()
        try:
            results.append(svc.checkout.compile(alice, contact, "BAI"))
        except ValidationError as e:
            # the other compile already emptied the cart
            errors.append(e)

    threads = [threading.Thread(target=run) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) + len(errors) == 2
    assert len({r.order_id for r in results}) == 1
    assert all(e.field == "cart" for e in errors)
    assert svc.orders.list_orders(alice).count == 1
