"""
Tests for TransactionEngine record operations.

Tests cover:
- Creation, validation and generated external ids
- Header / line / detail edits and recomputed totals
- Payments and payment status
- Deletion with and without applied stock
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.domain.types import (
    PaymentMethod,
    PaymentStatus,
    TransactionKind,
    TransactionStatus,
)
from inventory_services.results import TransactionResultStatus
from inventory_services.transaction_engine import LineSpec, TransactionSpec

PURCHASE = TransactionKind.PURCHASE
SALE = TransactionKind.SALE


def spec(item_id, qty="10", price="2.00", **overrides) -> TransactionSpec:
    return TransactionSpec(
        counterparty_id=overrides.pop("counterparty_id", "SUP-1"),
        lines=overrides.pop("lines", (LineSpec(item_id, Decimal(qty), Decimal(price)),)),
        **overrides,
    )


@pytest.fixture
def item(make_item):
    return make_item("FIFO")


class TestCreateTransaction:

    def test_draft_with_totals(self, transactions, item):
        result = transactions.create_transaction(
            PURCHASE,
            spec(
                item.item_id,
                discount_percent=Decimal("10"),
                tax_rate_percent=Decimal("5"),
                shipping=Decimal("2"),
            ),
        )
        assert result.is_success
        txn = result.transaction
        assert txn.status is TransactionStatus.DRAFT
        assert txn.payment_status is PaymentStatus.UNPAID
        assert txn.subtotal == Decimal("20")
        assert txn.total == Decimal("20.9")
        assert txn.stock_applied is False
        assert txn.lines[0].line_total == Decimal("20")
        assert txn.lines[0].received_or_fulfilled == 0

    def test_external_ids_are_generated_per_kind(self, transactions, item):
        first = transactions.create_transaction(PURCHASE, spec(item.item_id))
        second = transactions.create_transaction(PURCHASE, spec(item.item_id))
        sale = transactions.create_transaction(SALE, spec(item.item_id, counterparty_id="CUST-1"))
        assert first.transaction.external_id == "PO2401010001"
        assert second.transaction.external_id == "PO2401010002"
        assert sale.transaction.external_id == "SO2401010001"

    def test_generated_id_follows_transaction_date(self, transactions, item):
        result = transactions.create_transaction(PURCHASE, spec(item.item_id, date=date(2024, 3, 9)))
        assert result.transaction.external_id == "PO2403090001"

    def test_duplicate_external_id(self, transactions, item):
        transactions.create_transaction(PURCHASE, spec(item.item_id, external_id="PO-X"))
        result = transactions.create_transaction(PURCHASE, spec(item.item_id, external_id="PO-X"))
        assert result.status is TransactionResultStatus.DUPLICATE
        assert result.error_code == "DUPLICATE_EXTERNAL_ID"

    def test_details_are_stored(self, transactions, item):
        result = transactions.create_transaction(
            SALE,
            spec(item.item_id, details={"shipping_address": "1 Main St", "shipped_date": "2024-01-05"}),
        )
        assert result.transaction.details["shipping_address"] == "1 Main St"
        assert result.transaction.details["shipped_date"] == date(2024, 1, 5)

    @pytest.mark.parametrize("overrides, field", [
        ({"lines": ()}, "lines"),
        ({"counterparty_id": " "}, "counterparty_id"),
        ({"discount_percent": Decimal("101")}, "discount_percent"),
        ({"shipping": Decimal("-1")}, "shipping"),
        ({"details": {"shipping_address": "x"}}, "details.shipping_address"),
    ])
    def test_header_validation(self, transactions, item, overrides, field):
        result = transactions.create_transaction(PURCHASE, spec(item.item_id, **overrides))
        assert result.status is TransactionResultStatus.VALIDATION_FAILED
        assert result.error_code == "VALIDATION_FIELD"
        assert result.details["field"] == field

    @pytest.mark.parametrize("line, field", [
        ({"quantity": "0", "unit_price": "1"}, "lines[0].quantity"),
        ({"quantity": "1", "unit_price": "-1"}, "lines[0].unit_price"),
        ({"quantity": "1", "unit_price": "1", "discount_percent": "150"}, "lines[0].discount_percent"),
        ({"quantity": "NaN", "unit_price": "1"}, "lines[0].quantity"),
        ({"quantity": "1", "unit_price": "Infinity"}, "lines[0].unit_price"),
        ({"quantity": "1", "unit_price": "1", "discount_percent": "NaN"}, "lines[0].discount_percent"),
    ])
    def test_line_validation(self, transactions, item, line, field):
        result = transactions.create_transaction(
            PURCHASE, spec(item.item_id, lines=({"item_id": item.item_id, **line},)),
        )
        assert result.status is TransactionResultStatus.VALIDATION_FAILED
        assert result.details["field"] == field

    def test_unknown_item(self, transactions, item):
        result = transactions.create_transaction(
            PURCHASE,
            spec(item.item_id, lines=(LineSpec(item.item_id, Decimal("1"), Decimal("1")),
                                      LineSpec(uuid4(), Decimal("1"), Decimal("1")))),
        )
        assert result.details["field"] == "lines[1].item_id"

    def test_unknown_kind(self, transactions, item):
        result = transactions.create_transaction("TRANSFER", spec(item.item_id))
        assert result.details["field"] == "kind"

    def test_failure_is_logged(self, transactions, item, captured_logs):
        transactions.create_transaction(PURCHASE, spec(item.item_id, lines=()))
        failed = [r for r in captured_logs() if r["message"] == "transaction_operation_failed"]
        assert failed[0]["error_code"] == "VALIDATION_FIELD"
        assert failed[0]["operation"] == "create_transaction"


class TestUpdateTransaction:

    def created(self, transactions, item_id):
        return transactions.create_transaction(PURCHASE, spec(item_id)).transaction

    def test_header_change_recomputes_total(self, transactions, item):
        txn = self.created(transactions, item.item_id)
        result = transactions.update_transaction(
            txn.transaction_id, {"shipping": "5", "notes": "rush", "date": "2024-02-01"},
        )
        assert result.transaction.total == Decimal("25")
        assert result.transaction.notes == "rush"
        assert result.transaction.date == date(2024, 2, 1)

    def test_lines_replaced_while_draft(self, transactions, item):
        txn = self.created(transactions, item.item_id)
        result = transactions.update_transaction(
            txn.transaction_id,
            {"lines": [{"item_id": str(item.item_id), "quantity": "3", "unit_price": "4"}]},
        )
        assert result.transaction.subtotal == Decimal("12")
        assert len(result.transaction.lines) == 1

    def test_lines_frozen_after_confirm(self, transactions, item, confirmed):
        result = confirmed(PURCHASE, [(item.item_id, "10", "2")])
        update = transactions.update_transaction(
            result.transaction.transaction_id,
            {"lines": [LineSpec(item.item_id, Decimal("1"), Decimal("1"))]},
        )
        assert update.status is TransactionResultStatus.VALIDATION_FAILED
        assert update.details["field"] == "lines"

    def test_status_cannot_be_patched(self, transactions, item):
        txn = self.created(transactions, item.item_id)
        result = transactions.update_transaction(txn.transaction_id, {"status": "CONFIRMED"})
        assert result.details["field"] == "status"
        assert transactions.get_transaction(txn.transaction_id).transaction.status is TransactionStatus.DRAFT

    def test_unknown_field(self, transactions, item):
        txn = self.created(transactions, item.item_id)
        result = transactions.update_transaction(txn.transaction_id, {"colour": "red"})
        assert result.details["field"] == "colour"

    def test_details_added_and_checked(self, transactions, item):
        txn = self.created(transactions, item.item_id)
        result = transactions.update_transaction(
            txn.transaction_id, {"details": {"supplier_reference": "INV-77"}},
        )
        assert result.transaction.details["supplier_reference"] == "INV-77"
        bad = transactions.update_transaction(txn.transaction_id, {"details": {"shipped_date": "2024-01-01"}})
        assert bad.details["field"] == "details.shipped_date"

    def test_external_id_conflict(self, transactions, item):
        first = self.created(transactions, item.item_id)
        second = self.created(transactions, item.item_id)
        result = transactions.update_transaction(
            second.transaction_id, {"external_id": first.external_id},
        )
        assert result.status is TransactionResultStatus.DUPLICATE
        assert result.error_code == "DUPLICATE_EXTERNAL_ID"
        stored = transactions.get_transaction(second.transaction_id).transaction
        assert stored.external_id == second.external_id

    def test_raising_total_reopens_payment(self, transactions, item):
        txn = self.created(transactions, item.item_id)
        transactions.record_payment(txn.transaction_id, Decimal("20"), PaymentMethod.CASH)
        result = transactions.update_transaction(txn.transaction_id, {"shipping": "10"})
        assert result.transaction.payment_status is PaymentStatus.PARTIAL

    def test_unknown_transaction(self, transactions):
        result = transactions.update_transaction(uuid4(), {"notes": "x"})
        assert result.status is TransactionResultStatus.NOT_FOUND


class TestPayments:

    def test_partial_then_paid(self, transactions, item, deterministic_clock):
        txn = transactions.create_transaction(PURCHASE, spec(item.item_id)).transaction
        partial = transactions.record_payment(txn.transaction_id, Decimal("5"), "cash")
        assert partial.transaction.payment_status is PaymentStatus.PARTIAL
        assert partial.transaction.payment_date is None

        paid = transactions.record_payment(
            txn.transaction_id, "15", PaymentMethod.BANK_TRANSFER, date(2024, 1, 20), reference="TX-9",
        )
        assert paid.transaction.payment_status is PaymentStatus.PAID
        assert paid.transaction.amount_paid == Decimal("20")
        assert paid.transaction.payment_date == date(2024, 1, 20)
        assert [p.method for p in paid.transaction.payments] == [
            PaymentMethod.CASH, PaymentMethod.BANK_TRANSFER,
        ]
        assert paid.transaction.balance_due == 0

    @pytest.mark.parametrize("amount, method, field", [
        (Decimal("0"), "cash", "amount"),
        (Decimal("1"), "barter", "method"),
        ("Infinity", "cash", "amount"),
        (Decimal("NaN"), "cash", "amount"),
    ])
    def test_invalid_payment(self, transactions, item, amount, method, field):
        txn = transactions.create_transaction(PURCHASE, spec(item.item_id)).transaction
        result = transactions.record_payment(txn.transaction_id, amount, method)
        assert result.status is TransactionResultStatus.VALIDATION_FAILED
        assert result.details["field"] == field


class TestDeleteTransaction:

    def test_draft_is_removed(self, transactions, item):
        txn = transactions.create_transaction(PURCHASE, spec(item.item_id)).transaction
        result = transactions.delete_transaction(txn.transaction_id)
        assert result.status is TransactionResultStatus.DELETED
        assert transactions.get_transaction(txn.transaction_id).status is TransactionResultStatus.NOT_FOUND
        assert transactions.find_by_external_id(txn.external_id) is None

    def test_applied_purchase_is_reversed_first(self, transactions, items, item, confirmed):
        result = confirmed(PURCHASE, [(item.item_id, "10", "2")])
        assert items.get_item(item.item_id).on_hand == Decimal("10")
        deleted = transactions.delete_transaction(result.transaction.transaction_id)
        assert deleted.is_success
        assert deleted.transaction.status is TransactionStatus.CANCELLED
        assert items.get_item(item.item_id).on_hand == 0

    def test_completed_sale_is_returned_first(self, transactions, items, item, confirmed):
        items.add_inventory(item.item_id, Decimal("5"), Decimal("2"))
        sale = confirmed(SALE, [(item.item_id, "5", "4")])
        transactions.change_status(sale.transaction.transaction_id, TransactionStatus.COMPLETED)
        deleted = transactions.delete_transaction(sale.transaction.transaction_id)
        assert deleted.transaction.status is TransactionStatus.RETURNED
        assert items.get_item(item.item_id).on_hand == Decimal("5")

    def test_unknown_transaction(self, transactions):
        assert transactions.delete_transaction(uuid4()).status is TransactionResultStatus.NOT_FOUND
