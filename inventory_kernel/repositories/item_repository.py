"""ItemRepository -- item records, SKU lookups and stock-level queries."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from inventory_kernel.exceptions import DuplicateSkuError, InventoryKernelError, ItemNotFoundError
from inventory_kernel.models.item import ItemModel
from inventory_kernel.repositories.base import BaseRepository


class ItemRepository(BaseRepository[ItemModel]):
    model = ItemModel
    entity_name = "Item"

    def find_by_sku(self, sku: str) -> ItemModel | None:
        return self.session.execute(
            select(ItemModel).where(ItemModel.sku == sku)
        ).scalar_one_or_none()

    def numeric_skus(self) -> list[str]:
        """All SKUs made only of ASCII digits."""
        skus = self.session.execute(select(ItemModel.sku)).scalars().all()
        return [sku for sku in skus if sku.isascii() and sku.isdigit()]

    def low_stock(self, category: str | None = None) -> list[ItemModel]:
        """Items at or below their reorder point."""
        criteria = [ItemModel.on_hand <= ItemModel.reorder_point]
        if category is not None:
            criteria.append(ItemModel.category == category)
        return self.find_by_query(*criteria, order_by=(ItemModel.sku,))

    def by_category(self, category: str | None = None) -> list[ItemModel]:
        criteria = [] if category is None else [ItemModel.category == category]
        return self.find_by_query(*criteria, order_by=(ItemModel.category, ItemModel.sku))

    def categories(self) -> list[str]:
        """Distinct non-blank categories, sorted."""
        rows = self.session.execute(select(ItemModel.category).distinct()).scalars().all()
        return sorted({c.strip() for c in rows if c and c.strip()})

    def tags(self) -> list[str]:
        """Distinct non-blank tags across all items, sorted."""
        rows = self.session.execute(
            select(ItemModel.tags).where(ItemModel.tags.is_not(None))
        ).scalars().all()
        return sorted({
            tag.strip()
            for tags in rows
            for tag in tags or ()
            if isinstance(tag, str) and tag.strip()
        })

    def _integrity_error_for(
        self, record: ItemModel | None, exc: IntegrityError,
    ) -> InventoryKernelError | None:
        if "sku" not in str(exc.orig).lower():
            return None
        return DuplicateSkuError(record.sku if record is not None else "")

    def _not_found(self, record_id) -> ItemNotFoundError:
        return ItemNotFoundError(str(record_id))
