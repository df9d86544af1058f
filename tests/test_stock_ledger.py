"""Tests for item stock movements and the item catalog."""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest
from pymongo.errors import PyMongoError

from errors import InsufficientStock, InvalidInput, InvalidQuantity, NotFound, PersistenceError
from schemas import Item


def test_debit_marks_low_stock_then_refuses_overdraw(ledger, item_id):
    """Debiting 6 of 10 leaves 4 (low stock); a further debit of 10 fails and changes nothing."""
    item = ledger.debit(item_id, 6)
    assert item["current_stock"] == 4
    assert item["is_low_stock"] is True

    with pytest.raises(InsufficientStock) as exc:
        ledger.debit(item_id, 10)
    assert exc.value.available == 4
    assert exc.value.requested == 10
    assert ledger.get_item(item_id)["current_stock"] == 4


def test_credit_increments_and_stamps_restock(ledger, item_id):
    item = ledger.credit(item_id, 5)
    assert item["current_stock"] == 15
    assert item["last_restocked"] is not None
    assert item["is_low_stock"] is False


def test_credit_unknown_item(ledger, missing_id):
    with pytest.raises(NotFound):
        ledger.credit(missing_id, 1)


def test_debit_unknown_item(ledger, missing_id):
    with pytest.raises(NotFound):
        ledger.debit(missing_id, 1)


@pytest.mark.parametrize("quantity", [0, -3, 2.5, True])
def test_movements_require_positive_whole_quantity(ledger, item_id, quantity):
    with pytest.raises(InvalidInput):
        ledger.credit(item_id, quantity)
    with pytest.raises(InvalidInput):
        ledger.debit(item_id, quantity)


def test_set_exact(ledger, item_id):
    assert ledger.set_exact(item_id, 0)["current_stock"] == 0
    assert ledger.set_exact(item_id, 42)["current_stock"] == 42


def test_set_exact_rejects_negative(ledger, item_id):
    with pytest.raises(InvalidQuantity):
        ledger.set_exact(item_id, -1)
    assert ledger.get_item(item_id)["current_stock"] == 10


def test_critical_stock_flag(ledger, item_id):
    item = ledger.set_exact(item_id, 2)
    assert item["is_critical_stock"] is True


def test_interleaved_movements_never_go_negative(ledger, item_id):
    """A burst of debits against 10 units: exactly ten succeed and stock ends at zero."""
    outcomes = []
    for _ in range(20):
        try:
            ledger.debit(item_id, 1)
            outcomes.append(True)
        except InsufficientStock:
            outcomes.append(False)
        assert ledger.get_item(item_id)["current_stock"] >= 0

    assert outcomes.count(True) == 10
    assert ledger.get_item(item_id)["current_stock"] == 0
    assert ledger.credit(item_id, 3)["current_stock"] == 3


def test_concurrent_movements_never_go_negative(ledger, item_id):
    """Threads race debits of 3 against credits of 1; every successful debit is covered by stock."""
    # mongomock finds then updates in two steps; a server applies each
    # find-and-modify atomically per document, so serialise the call here.
    collection = type(ledger.items)
    unguarded = collection.find_one_and_update
    lock = threading.Lock()

    def atomic(self, *args, **kwargs):
        with lock:
            return unguarded(self, *args, **kwargs)

    def debit():
        try:
            ledger.debit(item_id, 3)
            return -3
        except InsufficientStock:
            return 0

    def credit():
        ledger.credit(item_id, 1)
        return 1

    jobs = [debit, credit] * 25
    with patch.object(collection, "find_one_and_update", atomic):
        with ThreadPoolExecutor(max_workers=8) as pool:
            moves = list(pool.map(lambda job: job(), jobs))

    final = ledger.get_item(item_id)["current_stock"]
    assert final >= 0
    assert final == 10 + sum(moves)
    assert moves.count(-3) >= 3


def test_write_failure_is_persistence_error(ledger, item_id):
    with patch.object(type(ledger.items), "find_one_and_update", side_effect=PyMongoError("boom")):
        with pytest.raises(PersistenceError):
            ledger.credit(item_id, 1)


def test_catalog_create_update_deactivate(ledger):
    item = ledger.create_item(Item(name="Gaffer tape", category="Equipment", current_stock=3))
    assert item["category"] == "Equipment"
    assert item["is_low_stock"] is True

    updated = ledger.update_item(item["id"], {"low_stock_threshold": 1, "location": "Store B"})
    assert updated["low_stock_threshold"] == 1
    assert updated["is_low_stock"] is False

    ledger.deactivate_item(item["id"])
    assert item["id"] not in [i["id"] for i in ledger.list_items()]
    assert item["id"] in [i["id"] for i in ledger.list_items(active_only=False)]


def test_update_item_cannot_touch_stock(ledger, item_id):
    with pytest.raises(InvalidInput):
        ledger.update_item(item_id, {"current_stock": 500})


def test_update_item_validates_category(ledger, item_id):
    with pytest.raises(InvalidInput):
        ledger.update_item(item_id, {"category": "Spaceships"})


def test_low_stock_items(ledger, item_id):
    assert ledger.low_stock_items() == []
    ledger.debit(item_id, 5)
    assert [i["id"] for i in ledger.low_stock_items()] == [item_id]
