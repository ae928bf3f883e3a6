import dataclasses

import pytest

from storefront.errors import (
    InsufficientStock,
    InvalidTransition,
    NotFound,
    OutOfStock,
    StockConflict,
    StockShortfall,
    StorefrontError,
    TemporaryFailure,
    ValidationError,
)


def test_error_bodies_carry_code_and_fields():
    body = OutOfStock("SKU1", requested=5, remaining=2).to_dict()
    assert body["detail"] == "OUT_OF_STOCK"
    assert body["product_id"] == "SKU1"
    assert body["requested"] == 5 and body["remaining"] == 2


def test_insufficient_stock_lists_every_product():
    err = InsufficientStock([StockShortfall("A", 3, 1), StockShortfall("B", 2, 0)])
    assert err.http_status == 422
    assert err.product_ids == ["A", "B"]
    assert err.to_dict()["products"][1] == {"product_id": "B", "requested": 2, "remaining": 0}


def test_invalid_transition_is_an_invalid_state():
    err = InvalidTransition("pending", "approved")
    assert err.http_status == 409
    assert err.to_dict() == {
        "detail": "INVALID_TRANSITION",
        "message": "Cannot move order from pending to approved",
        "status": "pending",
        "target": "approved",
    }


def test_status_codes():
    assert NotFound("order", "x").http_status == 404
    assert ValidationError("bad", field="quantity").to_dict()["field"] == "quantity"
    assert StockConflict("o1", [StockShortfall("A", 1, 0)]).http_status == 409
    assert TemporaryFailure().http_status == 503
    assert isinstance(TemporaryFailure("X"), StorefrontError)


def test_shortfall_is_an_immutable_value():
    shortfall = StockShortfall("A", 1, 0)
    assert shortfall == StockShortfall("A", 1, 0)
    assert shortfall != StockShortfall("A", 2, 0)
    assert hash(shortfall) == hash(StockShortfall("A", 1, 0))
    with pytest.raises(dataclasses.FrozenInstanceError):
        shortfall.remaining = 5
