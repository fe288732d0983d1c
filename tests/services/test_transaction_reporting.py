"""Tests for the Transaction Engine's lookup and reporting queries."""

from datetime import date
from decimal import Decimal

import pytest

from inventory_kernel.domain.types import PaymentStatus, TransactionKind, TransactionStatus
from inventory_kernel.exceptions import ValidationError
from inventory_services.results import StatusGroup
from inventory_services.transaction_engine import LineSpec, TransactionSpec

PURCHASE = TransactionKind.PURCHASE
SALE = TransactionKind.SALE


@pytest.fixture
def book(transactions, make_item):
    """Three purchases over two days plus one sale; one purchase confirmed and part paid."""
    item = make_item()

    def create(kind, party, qty, on):
        return transactions.create_transaction(
            kind,
            TransactionSpec(
                counterparty_id=party,
                lines=(LineSpec(item.item_id, Decimal(qty), Decimal("10")),),
                date=on,
            ),
        ).transaction

    first = create(PURCHASE, "SUP-1", "1", date(2024, 1, 1))
    second = create(PURCHASE, "SUP-1", "2", date(2024, 1, 1))
    third = create(PURCHASE, "SUP-2", "3", date(2024, 1, 2))
    create(SALE, "SUP-1", "1", date(2024, 1, 3))

    transactions.change_status(second.transaction_id, TransactionStatus.CONFIRMED)
    transactions.record_payment(second.transaction_id, Decimal("5"), "cash")
    return {"first": first, "second": second, "third": third}


class TestLookups:

    def test_find_by_external_id(self, transactions, book):
        found = transactions.find_by_external_id(book["third"].external_id)
        assert found.transaction_id == book["third"].transaction_id
        assert transactions.find_by_external_id("missing") is None

    def test_find_by_party_newest_first(self, transactions, book):
        found = transactions.find_by_party("SUP-1")
        assert [t.date for t in found] == [date(2024, 1, 3), date(2024, 1, 1), date(2024, 1, 1)]

    def test_find_by_party_filters(self, transactions, book):
        purchases = transactions.find_by_party("SUP-1", kind=PURCHASE)
        assert len(purchases) == 2
        confirmed = transactions.find_by_party("SUP-1", status="CONFIRMED")
        assert [t.transaction_id for t in confirmed] == [book["second"].transaction_id]
        partly_paid = transactions.find_by_party("SUP-1", payment_status=PaymentStatus.PARTIAL)
        assert [t.transaction_id for t in partly_paid] == [book["second"].transaction_id]

    def test_find_by_party_unknown_payment_status(self, transactions, book):
        with pytest.raises(ValidationError) as exc_info:
            transactions.find_by_party("SUP-1", payment_status="BOGUS")
        assert exc_info.value.field == "payment_status"


class TestAggregates:

    def test_group_by_status(self, transactions, book):
        groups = transactions.group_by_status(PURCHASE)
        assert groups == {
            TransactionStatus.CONFIRMED: StatusGroup(count=1, total_amount=Decimal("20")),
            TransactionStatus.DRAFT: StatusGroup(count=2, total_amount=Decimal("40")),
        }

    def test_group_by_payment_status(self, transactions, book):
        groups = transactions.group_by_payment_status("PURCHASE")
        assert groups[PaymentStatus.UNPAID].count == 2
        assert groups[PaymentStatus.PARTIAL].total_amount == Decimal("20")

    def test_stats(self, transactions, book):
        stats = transactions.transaction_stats(PURCHASE)
        assert stats.count == 3
        assert stats.total_amount == Decimal("60")
        assert stats.amount_paid == Decimal("5")
        assert stats.outstanding == Decimal("55")
        assert stats.average_value == Decimal("20")

    def test_stats_date_window(self, transactions, book):
        stats = transactions.transaction_stats(PURCHASE, start=date(2024, 1, 2), end=date(2024, 1, 31))
        assert stats.count == 1
        assert stats.total_amount == Decimal("30")

    def test_stats_with_no_transactions(self, transactions):
        stats = transactions.transaction_stats(SALE)
        assert stats.count == 0
        assert stats.average_value == 0
        assert stats.by_status == {}

    def test_totals_by_date(self, transactions, book):
        daily = transactions.totals_by_date(PURCHASE)
        assert [(d.day, d.count, d.total) for d in daily] == [
            (date(2024, 1, 1), 2, Decimal("30")),
            (date(2024, 1, 2), 1, Decimal("30")),
        ]

    def test_stats_by_payment_status(self, transactions, book):
        stats = transactions.transaction_stats(PURCHASE)
        assert stats.by_payment_status == {
            PaymentStatus.PARTIAL: StatusGroup(count=1, total_amount=Decimal("20")),
            PaymentStatus.UNPAID: StatusGroup(count=2, total_amount=Decimal("40")),
        }

    def test_totals_by_week_start_on_sunday(self, transactions, book):
        weekly = transactions.totals_by_date(PURCHASE, group_by="week")
        assert [(w.day, w.count, w.total) for w in weekly] == [
            (date(2023, 12, 31), 3, Decimal("60")),
        ]

    def test_totals_by_month_and_year(self, transactions, make_item):
        item = make_item()
        for on in (date(2023, 12, 30), date(2024, 1, 5), date(2024, 1, 20), date(2024, 3, 1)):
            transactions.create_transaction(
                PURCHASE,
                TransactionSpec(
                    counterparty_id="SUP-1",
                    lines=(LineSpec(item.item_id, Decimal("1"), Decimal("10")),),
                    date=on,
                ),
            )

        monthly = transactions.totals_by_date(PURCHASE, group_by="month")
        assert [(m.day, m.count) for m in monthly] == [
            (date(2023, 12, 1), 1),
            (date(2024, 1, 1), 2),
            (date(2024, 3, 1), 1),
        ]
        yearly = transactions.totals_by_date(PURCHASE, group_by="year")
        assert [(y.day, y.count, y.total) for y in yearly] == [
            (date(2023, 1, 1), 1, Decimal("10")),
            (date(2024, 1, 1), 3, Decimal("30")),
        ]

    def test_totals_by_unknown_period(self, transactions):
        with pytest.raises(ValidationError) as exc_info:
            transactions.totals_by_date(PURCHASE, group_by="fortnight")
        assert exc_info.value.code == "VALIDATION_FIELD"
