"""Reservations racing on the same products from several threads."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from storefront.errors import InsufficientStock, StockBusy
from storefront.inventory.ledger import InventoryLedger
from storefront.inventory.locks import ProductLockRegistry


def _attempt(ledger, items):
    try:
        return ledger.reserve(items)
    except InsufficientStock as e:
        return e


def test_last_units_are_never_oversold(db, make_product):
    pid = make_product(stock=3)
    ledger = InventoryLedger(db)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: _attempt(ledger, [(pid, 1)]), range(10)))

    won = [r for r in results if not isinstance(r, Exception)]
    lost = [r for r in results if isinstance(r, InsufficientStock)]
    assert len(won) == 3
    assert len(lost) == 7
    assert ledger.stock_of(pid) == 0


def test_overlapping_batches_in_opposite_order_do_not_deadlock(db, make_product):
    a = make_product(stock=50)
    b = make_product(stock=50)
    ledger = InventoryLedger(db)
    batches = [[(a, 1), (b, 1)], [(b, 1), (a, 1)]] * 10

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(lambda items: _attempt(ledger, items), batches))

    assert all(not isinstance(r, Exception) for r in results)
    assert ledger.stock_of(a) == 30
    assert ledger.stock_of(b) == 30


def test_nowait_policy_fails_fast_with_stock_busy(db, make_product, settings):
    settings.STOCK_LOCK_WAIT = "nowait"
    pid = make_product(stock=5)
    locks = ProductLockRegistry()
    ledger = InventoryLedger(db, locks)

    with locks.hold([pid]):
        with pytest.raises(StockBusy) as ei:
            ledger.reserve([(pid, 1)])

    assert isinstance(ei.value, InsufficientStock)
    assert ei.value.product_ids == [pid]
    assert ledger.stock_of(pid) == 5


def test_wait_policy_gives_up_after_timeout(db, make_product, settings):
    settings.STOCK_LOCK_WAIT = "wait"
    settings.STOCK_LOCK_TIMEOUT_SECS = 0.05
    pid = make_product(stock=5)
    locks = ProductLockRegistry()
    ledger = InventoryLedger(db, locks)

    with locks.hold([pid]):
        with pytest.raises(StockBusy):
            ledger.reserve([(pid, 1)])
    # lock released: the next attempt goes through
    ledger.reserve([(pid, 1)])
    assert ledger.stock_of(pid) == 4


def test_locks_are_taken_in_ascending_order():
    locks = ProductLockRegistry()
    with locks.hold([5, 1, 3, 1]) as held:
        assert held == [1, 3, 5]
