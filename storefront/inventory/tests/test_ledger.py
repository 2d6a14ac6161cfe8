from datetime import timedelta

import pytest

from storefront.db import utcnow
from storefront.errors import (
    InsufficientStock,
    ProductInactive,
    ProductNotFound,
    ReservationExpired,
    ReservationStateError,
    ValidationFailed,
)
from storefront.inventory.domain import ReservationStatus, StockRequest
from storefront.inventory.ledger import InventoryLedger


@pytest.fixture
def ledger(db):
    return InventoryLedger(db)


def test_reserve_decrements_stock_and_merges_duplicates(ledger, make_product):
    a = make_product(stock=10)
    b = make_product(stock=5)

    token = ledger.reserve([(b, 1), (a, 2), (b, 2)], order_ref="ref-1")

    assert [(line.product_id, line.quantity) for line in token.lines] == [(a, 2), (b, 3)]
    assert token.total_units == 5
    assert ledger.stock_of(a) == 8
    assert ledger.stock_of(b) == 2
    assert ledger.get_reservation(token.id).status == ReservationStatus.RESERVED


def test_reserve_is_all_or_nothing_and_lists_every_shortage(ledger, make_product):
    ok = make_product(name="Mug", stock=10)
    short1 = make_product(name="Lamp", stock=1)
    short2 = make_product(name="Desk", stock=0)

    with pytest.raises(InsufficientStock) as ei:
        ledger.reserve([StockRequest(ok, 3), StockRequest(short1, 2), StockRequest(short2, 1)])

    shortages = {s.product_id: s for s in ei.value.shortages}
    assert set(shortages) == {short1, short2}
    assert shortages[short1].requested == 2 and shortages[short1].available == 1
    assert "Lamp" in ei.value.message
    assert ledger.stock_of(ok) == 10
    assert ledger.stock_of(short1) == 1


def test_reserve_unknown_and_inactive_products(ledger, make_product):
    inactive = make_product(active=False)
    with pytest.raises(ProductNotFound) as ei:
        ledger.reserve([(123456, 1)])
    assert ei.value.product_ids == [123456]
    with pytest.raises(ProductInactive):
        ledger.reserve([(inactive, 1)])
    assert ledger.stock_of(inactive) == 10


@pytest.mark.parametrize("items", [[], [(1, 0)], [(1, -2)]])
def test_reserve_rejects_bad_quantities(ledger, make_product, items):
    make_product()
    with pytest.raises(ValidationFailed):
        ledger.reserve(items)


def test_release_restores_stock_once(ledger, make_product):
    pid = make_product(stock=4)
    token = ledger.reserve([(pid, 3)])

    assert ledger.release(token) is True
    assert ledger.stock_of(pid) == 4
    assert ledger.release(token.id) is False
    assert ledger.stock_of(pid) == 4
    assert ledger.get_reservation(token).status == ReservationStatus.RELEASED


def test_commit_keeps_stock_and_blocks_release(ledger, make_product):
    pid = make_product(stock=4)
    token = ledger.reserve([(pid, 1)])

    ledger.commit(token)
    ledger.commit(token)  # idempotent

    assert ledger.stock_of(pid) == 3
    with pytest.raises(ReservationStateError):
        ledger.release(token)


def test_commit_of_released_token_is_expired(ledger, make_product):
    pid = make_product(stock=4)
    token = ledger.reserve([(pid, 1)])
    ledger.release(token)

    with pytest.raises(ReservationExpired):
        ledger.commit(token)
    assert ledger.stock_of(pid) == 4


def test_increase_stock(ledger, make_product):
    pid = make_product(stock=1)
    ledger.increase_stock(pid, 4)
    assert ledger.stock_of(pid) == 5
    with pytest.raises(ValidationFailed):
        ledger.increase_stock(pid, 0)
    with pytest.raises(ProductNotFound):
        ledger.increase_stock(987654, 1)


def test_expired_reservations_lists_only_reserved_tokens_past_expiry(ledger, make_product):
    pid = make_product(stock=10)
    old = ledger.reserve([(pid, 1)], ttl=0)
    committed = ledger.reserve([(pid, 1)], ttl=0)
    ledger.commit(committed)
    fresh = ledger.reserve([(pid, 1)], ttl=600)

    expired = ledger.expired_reservations(now=utcnow() + timedelta(seconds=1))

    assert expired == [old.id]
    assert fresh.id not in expired
