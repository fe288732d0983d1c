"""
Concurrent transitions against shared items.

Each worker thread drives the engine through its own Unit-of-Work and
session; the store serialises the writers.  Run against PostgreSQL with
DATABASE_URL to exercise real row locks.
"""

import threading
from decimal import Decimal

import pytest

from inventory_kernel.domain.types import TransactionKind, TransactionStatus
from inventory_services.results import TransactionResultStatus
from inventory_services.transaction_engine import LineSpec, TransactionSpec

pytestmark = pytest.mark.slow_locks

SALE = TransactionKind.SALE


def draft_sale(transactions, lines, party="CUST-1"):
    result = transactions.create_transaction(
        SALE,
        TransactionSpec(
            counterparty_id=party,
            lines=tuple(LineSpec(item_id, Decimal(qty), Decimal("5")) for item_id, qty in lines),
        ),
    )
    assert result.is_success, result.message
    return result.transaction.transaction_id


def confirm_all(transactions, transaction_ids):
    """Confirm every id from its own thread, released together."""
    barrier = threading.Barrier(len(transaction_ids))
    results = {}

    def worker(transaction_id):
        barrier.wait()
        results[transaction_id] = transactions.change_status(
            transaction_id, TransactionStatus.CONFIRMED,
        )

    threads = [threading.Thread(target=worker, args=(tid,)) for tid in transaction_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    assert all(not thread.is_alive() for thread in threads)
    return results


class TestConcurrentSales:

    def test_two_sales_cannot_oversell(self, transactions, items, make_item, confirmed):
        item = make_item()
        confirmed(TransactionKind.PURCHASE, [(item.item_id, "10", "1")])
        sales = [draft_sale(transactions, [(item.item_id, "6")]) for _ in range(2)]

        results = confirm_all(transactions, sales)

        outcomes = sorted(r.status.value for r in results.values())
        assert outcomes == sorted(
            [TransactionResultStatus.OK.value, TransactionResultStatus.INSUFFICIENT_STOCK.value]
        )
        assert items.get_item(item.item_id).on_hand == Decimal("4")

    def test_many_small_sales(self, transactions, items, make_item, confirmed):
        item = make_item()
        confirmed(TransactionKind.PURCHASE, [(item.item_id, "10", "1")])
        sales = [draft_sale(transactions, [(item.item_id, "3")]) for _ in range(5)]

        results = confirm_all(transactions, sales)

        succeeded = [r for r in results.values() if r.is_success]
        assert len(succeeded) == 3
        stored = items.get_item(item.item_id)
        assert stored.on_hand == Decimal("1")
        assert stored.on_hand == sum(l.remaining for l in stored.layers)

    def test_overlapping_item_sets(self, transactions, items, make_item, confirmed):
        first = make_item()
        second = make_item()
        confirmed(
            TransactionKind.PURCHASE,
            [(first.item_id, "20", "1"), (second.item_id, "20", "1")],
        )
        sales = [
            draft_sale(transactions, [(first.item_id, "2"), (second.item_id, "2")]),
            draft_sale(transactions, [(second.item_id, "3"), (first.item_id, "3")]),
            draft_sale(transactions, [(first.item_id, "1"), (second.item_id, "1")]),
        ]

        results = confirm_all(transactions, sales)

        assert all(r.is_success for r in results.values())
        assert items.get_item(first.item_id).on_hand == Decimal("14")
        assert items.get_item(second.item_id).on_hand == Decimal("14")


class TestLockOrder:

    def test_items_locked_in_ascending_id_order(self, transactions, items, make_item, captured_logs):
        ids = []
        for _ in range(3):
            item = make_item()
            items.add_inventory(item.item_id, Decimal("5"), Decimal("1"))
            ids.append(item.item_id)
        sale = draft_sale(transactions, [(item_id, "1") for item_id in reversed(ids)])

        transactions.change_status(sale, TransactionStatus.CONFIRMED)

        records = captured_logs()
        start = max(
            i for i, r in enumerate(records)
            if r["message"] == "uow_begin"
        )
        locked = [r["item_id"] for r in records[start:] if r["message"] == "item_lock_acquired"]
        assert locked == sorted(str(i) for i in ids)
