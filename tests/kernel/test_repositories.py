"""
Tests for the item and transaction repositories.

Tests cover:
- NOT_FOUND on get, None on find
- Unique-key violations surfacing as typed duplicate errors
- Patch updates and unknown fields
- Ordered row locks
- Category, tag and line-reference queries
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.domain.types import TransactionKind, TransactionStatus
from inventory_kernel.exceptions import (
    DuplicateExternalIdError,
    DuplicateSkuError,
    ItemNotFoundError,
    TransactionNotFoundError,
)
from inventory_kernel.models.item import ItemModel
from inventory_kernel.models.transaction import LineItemModel, TransactionModel
from inventory_kernel.repositories.item_repository import ItemRepository
from inventory_kernel.repositories.transaction_repository import TransactionRepository


def new_item(sku: str, **fields) -> ItemModel:
    return ItemModel(
        sku=sku, name=f"Item {sku}", kind="product", category=fields.pop("category", "tools"),
        measurement="quantity", **fields,
    )


def new_transaction(external_id: str, *, party="P-1", on=date(2024, 1, 1), status="DRAFT") -> TransactionModel:
    return TransactionModel(
        external_id=external_id,
        kind=TransactionKind.PURCHASE.value,
        counterparty_id=party,
        transaction_date=on,
        status=status,
    )


class TestItemRepository:

    def test_get_missing_raises_not_found(self, uow):
        with uow:
            with pytest.raises(ItemNotFoundError) as exc_info:
                ItemRepository(uow.session).get(uuid4())
        assert exc_info.value.code == "NOT_FOUND"

    def test_find_missing_returns_none(self, uow):
        with uow:
            assert ItemRepository(uow.session).find_by_sku("nope") is None

    def test_duplicate_sku(self, uow):
        with uow:
            ItemRepository(uow.session).create(new_item("0001"))
        with pytest.raises(DuplicateSkuError) as exc_info:
            with uow:
                ItemRepository(uow.session).create(new_item("0001"))
        assert exc_info.value.code == "DUPLICATE_SKU"

    def test_numeric_skus(self, uow):
        with uow:
            repo = ItemRepository(uow.session)
            repo.bulk_create([
                new_item("0007"), new_item("ABC-1"), new_item("12"),
                new_item("²"), new_item("١٢"),
            ])
            assert sorted(repo.numeric_skus()) == ["0007", "12"]

    def test_categories_and_tags(self, uow):
        with uow:
            repo = ItemRepository(uow.session)
            repo.bulk_create([
                new_item("1", category="paint", tags=["red", "outdoor"]),
                new_item("2", category="tools", tags=["outdoor", " "]),
                new_item("3", category="paint"),
            ])
            assert repo.categories() == ["paint", "tools"]
            assert repo.tags() == ["outdoor", "red"]

    def test_low_stock_and_category(self, uow):
        with uow:
            repo = ItemRepository(uow.session)
            repo.bulk_create([
                new_item("1", on_hand=Decimal("2"), reorder_point=Decimal("5")),
                new_item("2", on_hand=Decimal("9"), reorder_point=Decimal("5")),
                new_item("3", on_hand=Decimal("0"), reorder_point=Decimal("0"), category="paint"),
            ])
            assert [i.sku for i in repo.low_stock()] == ["1", "3"]
            assert [i.sku for i in repo.low_stock("tools")] == ["1"]
            assert [i.sku for i in repo.by_category("paint")] == ["3"]

    def test_update_applies_patch(self, uow):
        with uow:
            repo = ItemRepository(uow.session)
            item = repo.create(new_item("1"))
            repo.update(item.id, {"name": "Renamed", "location": "A-3"})
            assert repo.get(item.id).name == "Renamed"

    def test_update_unknown_field(self, uow):
        with uow:
            repo = ItemRepository(uow.session)
            item = repo.create(new_item("1"))
            with pytest.raises(AttributeError):
                repo.update(item.id, {"colour": "red"})

    def test_bulk_update_patches_in_id_order(self, uow):
        with uow:
            repo = ItemRepository(uow.session)
            first, second = repo.bulk_create([new_item("1"), new_item("2")])
            updated = repo.bulk_update({
                second.id: {"location": "B-1"},
                first.id: {"location": "A-1"},
            })
            assert [i.id for i in updated] == sorted((first.id, second.id), key=str)
            assert repo.get(first.id).location == "A-1"
            assert repo.get(second.id).location == "B-1"

    def test_bulk_update_duplicate_sku(self, uow):
        with uow:
            first, second = ItemRepository(uow.session).bulk_create([new_item("1"), new_item("2")])
        with pytest.raises(DuplicateSkuError):
            with uow:
                ItemRepository(uow.session).bulk_update({second.id: {"sku": "1"}})

    def test_lock_by_ids_orders_and_checks_existence(self, uow):
        with uow:
            repo = ItemRepository(uow.session)
            created = repo.bulk_create([new_item(str(n)) for n in range(3)])
            locked = repo.lock_by_ids([i.id for i in reversed(created)])
            assert [i.id for i in locked] == sorted((i.id for i in created), key=str)
            with pytest.raises(ItemNotFoundError):
                repo.lock_by_ids([uuid4()])

    def test_delete(self, uow):
        with uow:
            repo = ItemRepository(uow.session)
            item = repo.create(new_item("1"))
            repo.delete(item.id)
            assert repo.find_by_id(item.id) is None


class TestTransactionRepository:

    def test_duplicate_external_id(self, uow):
        with uow:
            TransactionRepository(uow.session).create(new_transaction("PO2401010001"))
        with pytest.raises(DuplicateExternalIdError):
            with uow:
                TransactionRepository(uow.session).create(new_transaction("PO2401010001"))

    def test_get_missing(self, uow):
        with uow:
            with pytest.raises(TransactionNotFoundError):
                TransactionRepository(uow.session).get(uuid4())

    def test_find_by_party_newest_first(self, uow):
        with uow:
            repo = TransactionRepository(uow.session)
            repo.bulk_create([
                new_transaction("A", on=date(2024, 1, 1)),
                new_transaction("B", on=date(2024, 2, 1), status="CONFIRMED"),
                new_transaction("C", party="P-2"),
            ])
            assert [t.external_id for t in repo.find_by_party("P-1")] == ["B", "A"]
            confirmed = repo.find_by_party("P-1", status=TransactionStatus.CONFIRMED)
            assert [t.external_id for t in confirmed] == ["B"]

    def test_for_kind_date_window(self, uow):
        with uow:
            repo = TransactionRepository(uow.session)
            repo.bulk_create([
                new_transaction("A", on=date(2024, 1, 1)),
                new_transaction("B", on=date(2024, 1, 15)),
                new_transaction("C", on=date(2024, 2, 1)),
            ])
            window = repo.for_kind(TransactionKind.PURCHASE, date(2024, 1, 10), date(2024, 1, 31))
            assert [t.external_id for t in window] == ["B"]
            assert repo.for_kind(TransactionKind.SALE) == []

    def test_references_item(self, uow):
        item_id = uuid4()
        with uow:
            repo = TransactionRepository(uow.session)
            txn = new_transaction("A")
            txn.lines = [
                LineItemModel(position=0, item_id=item_id, quantity=Decimal("1"), unit_price=Decimal("1")),
            ]
            repo.create(txn)
            assert repo.references_item(item_id) is True
            assert repo.references_item(uuid4()) is False
