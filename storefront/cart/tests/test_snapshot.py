from decimal import Decimal

import pytest

from storefront.cart.snapshot import CartSnapshotBuilder
from storefront.errors import EmptyCart, ProductInactive, ProductNotFound, ValidationFailed
from storefront.inventory.catalog import SqlCatalog


@pytest.fixture
def builder(db, carts):
    return CartSnapshotBuilder(SqlCatalog(db), carts)


def test_from_cart_prices_lines_with_current_catalog(builder, carts, make_product):
    mug = make_product(name="Mug", price="7.50")
    lamp = make_product(name="Lamp", price="19.99")
    carts.add_item(1, lamp, 1)
    carts.add_item(1, mug, 2)

    lines = builder.from_cart(1)

    assert [(line.product_id, line.quantity) for line in lines] == [(lamp, 1), (mug, 2)]
    assert lines[1].product_name == "Mug"
    assert lines[1].unit_price == Decimal("7.50")
    assert lines[1].subtotal == Decimal("15.00")


def test_add_item_grows_existing_line(carts, make_product):
    pid = make_product()
    carts.add_item(1, pid, 1)
    carts.add_item(1, pid, 2)
    assert carts.get_items(1) == [(pid, 3)]


def test_clear_empties_only_that_cart(carts, make_product):
    pid = make_product()
    carts.add_item(1, pid, 1)
    carts.add_item(2, pid, 1)
    carts.clear(1)
    assert carts.get_items(1) == []
    assert carts.get_items(2) == [(pid, 1)]


def test_from_items_merges_duplicates_keeping_first_seen_order(builder, make_product):
    a = make_product()
    b = make_product()
    lines = builder.from_items([(b, 1), (a, 1), (b, 2)])
    assert [(line.product_id, line.quantity) for line in lines] == [(b, 3), (a, 1)]


def test_empty_cart(builder):
    with pytest.raises(EmptyCart):
        builder.from_cart(42)
    with pytest.raises(EmptyCart):
        builder.from_items([])


def test_unknown_and_inactive_products(builder, make_product):
    known = make_product()
    inactive = make_product(active=False)
    with pytest.raises(ProductNotFound) as ei:
        builder.from_items([(known, 1), (555001, 1)])
    assert ei.value.extra() == {"product_ids": [555001]}
    with pytest.raises(ProductInactive):
        builder.from_items([(inactive, 1)])


def test_non_positive_quantity(builder, make_product):
    pid = make_product()
    with pytest.raises(ValidationFailed) as ei:
        builder.from_items([(pid, 0)])
    assert ei.value.errors[0]["field"] == "quantity"
