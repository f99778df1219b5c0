"""Tests for the cart service: lazy creation, merging, quantity updates and totals."""

import pytest

import carts
from errors import InsufficientStock, NotFound, ProductNotFound, ValidationError

USER = "64b7f0c2a1b2c3d4e5f60001"


def test_cart_is_created_on_first_read(db):
    cart = carts.get_cart(db, USER)
    assert cart["items"] == []
    assert cart["total_amount"] == 0
    assert cart["total_items"] == 0
    assert db["cart"].count_documents({"user_id": USER}) == 1


def test_second_read_returns_same_cart(db):
    first = carts.get_cart(db, USER)
    second = carts.get_cart(db, USER)
    assert first["_id"] == second["_id"]
    assert db["cart"].count_documents({}) == 1


def test_add_snapshots_price_and_totals(db, make_product):
    product = make_product(price=250.0, stock=5)
    cart = carts.add_item(db, USER, str(product["_id"]), 2)
    assert len(cart["items"]) == 1
    assert cart["items"][0]["price"] == 250.0
    assert cart["total_items"] == 2
    assert cart["total_amount"] == 500.0

    db["product"].update_one({"_id": product["_id"]}, {"$set": {"price": 300.0}})
    stored = carts.get_cart(db, USER)
    assert stored["items"][0]["price"] == 250.0


def test_same_line_is_merged(db, make_product):
    product = make_product(stock=5)
    carts.add_item(db, USER, str(product["_id"]), 1)
    cart = carts.add_item(db, USER, str(product["_id"]), 2)
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 3


def test_different_variants_are_separate_lines(db, earrings):
    carts.add_item(db, USER, str(earrings["_id"]), 1, color="White")
    cart = carts.add_item(db, USER, str(earrings["_id"]), 1, color="Gold")
    assert [item["selected_color"] for item in cart["items"]] == ["White", "Gold"]


def test_merge_beyond_stock_is_rejected(db, make_product):
    product = make_product(stock=3)
    carts.add_item(db, USER, str(product["_id"]), 2)
    with pytest.raises(InsufficientStock) as exc_info:
        carts.add_item(db, USER, str(product["_id"]), 2)
    assert exc_info.value.requested == 4
    assert exc_info.value.available == 3
    assert carts.get_cart(db, USER)["items"][0]["quantity"] == 2


def test_sold_out_size_is_insufficient_stock(db, bangle):
    with pytest.raises(InsufficientStock) as exc_info:
        carts.add_item(db, USER, str(bangle["_id"]), 1, size="M")
    assert exc_info.value.available == 0


def test_in_stock_size_is_added(db, bangle):
    cart = carts.add_item(db, USER, str(bangle["_id"]), 1, size="S")
    assert cart["items"][0]["selected_size"] == "S"
    assert cart["items"][0]["selected_color"] is None


def test_unknown_size_is_not_selectable(db, bangle):
    with pytest.raises(ValidationError, match="Selected size is not available"):
        carts.add_item(db, USER, str(bangle["_id"]), 1, size="XL")


def test_unknown_product(db):
    with pytest.raises(ProductNotFound):
        carts.add_item(db, USER, "64b7f0c2a1b2c3d4e5f60718", 1)


def test_update_quantity_sets_without_stock_check(db, make_product):
    product = make_product(stock=2)
    cart = carts.add_item(db, USER, str(product["_id"]), 1)
    item_id = cart["items"][0]["id"]
    cart = carts.update_quantity(db, USER, item_id, 10)
    assert cart["items"][0]["quantity"] == 10
    assert cart["total_items"] == 10


def test_update_quantity_to_zero_removes(db, make_product):
    product = make_product()
    cart = carts.add_item(db, USER, str(product["_id"]), 1)
    cart = carts.update_quantity(db, USER, cart["items"][0]["id"], 0)
    assert cart["items"] == []
    assert cart["total_amount"] == 0


def test_update_unknown_item(db, make_product):
    carts.add_item(db, USER, str(make_product()["_id"]), 1)
    with pytest.raises(NotFound, match="Item not found in cart"):
        carts.update_quantity(db, USER, "missing", 2)


def test_update_without_cart(db):
    with pytest.raises(NotFound, match="Cart not found"):
        carts.update_quantity(db, USER, "missing", 2)


def test_remove_item(db, make_product, bangle):
    carts.add_item(db, USER, str(make_product()["_id"]), 1)
    cart = carts.add_item(db, USER, str(bangle["_id"]), 1, size="S")
    cart = carts.remove_item(db, USER, cart["items"][0]["id"])
    assert [item["product_id"] for item in cart["items"]] == [str(bangle["_id"])]
    assert cart["total_amount"] == 480.0


def test_clear(db, make_product):
    carts.add_item(db, USER, str(make_product()["_id"]), 2)
    cart = carts.clear(db, USER)
    assert cart["items"] == []
    assert db["cart"].find_one({"user_id": USER})["total_items"] == 0


def test_clear_without_cart(db):
    assert carts.clear(db, USER) is None
