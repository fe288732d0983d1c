"""
ORM models for items and their cost-layer ledger.

Contract:
    ItemModel owns identity, measurement, stock state, thresholds and
    pricing.  CostLayerModel rows are exclusively owned by their item and
    mutated only by the Item Service.  ``to_dto()`` produces frozen
    snapshots for callers outside the Unit-of-Work.

Architecture: inventory_kernel/models.  Imports from inventory_kernel.db only
    (plus domain types for DTO conversion).

Invariants enforced:
    - ``sku`` is UNIQUE across all items.
    - ``on_hand`` equals the sum of ``remaining`` over the item's layers
      (maintained by the Item Service, asserted by tests).
    - Layers keep insertion order through ``sequence``; exhausted layers are
      retained.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import TrackedBase, UUIDString
from inventory_kernel.domain.types import (
    CostLayerSnapshot,
    ItemKind,
    ItemSnapshot,
    LayerSource,
    Measurement,
    PriceTier,
    ValuationMethod,
)


class ItemModel(TrackedBase):
    """Persistent item record with its stock state."""

    __tablename__ = "items"

    __table_args__ = (
        Index("ix_items_category", "category"),
        Index("ix_items_kind", "kind"),
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list | None] = mapped_column(JSON, nullable=True)

    measurement: Mapped[str] = mapped_column(String(20), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="")

    on_hand: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    average_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    valuation: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ValuationMethod.WEIGHTED_AVG.value,
    )
    next_layer_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    minimum_level: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    reorder_point: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    maximum_level: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    location: Mapped[str | None] = mapped_column(String(200), nullable=True)

    sale_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    margin_percent: Mapped[Decimal | None] = mapped_column(Numeric(9, 4), nullable=True)
    markup_percent: Mapped[Decimal | None] = mapped_column(Numeric(9, 4), nullable=True)

    last_updated: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    layers: Mapped[list["CostLayerModel"]] = relationship(
        "CostLayerModel",
        back_populates="item",
        order_by="CostLayerModel.sequence",
        cascade="all, delete-orphan",
    )
    price_tiers: Mapped[list["PriceTierModel"]] = relationship(
        "PriceTierModel",
        back_populates="item",
        order_by="PriceTierModel.quantity_threshold",
        cascade="all, delete-orphan",
    )

    def to_dto(self) -> ItemSnapshot:
        return ItemSnapshot(
            item_id=self.id,
            sku=self.sku,
            name=self.name,
            kind=ItemKind(self.kind),
            category=self.category,
            measurement=Measurement(self.measurement),
            unit=self.unit or "",
            on_hand=self.on_hand,
            average_cost=self.average_cost,
            valuation=ValuationMethod(self.valuation),
            minimum_level=self.minimum_level,
            reorder_point=self.reorder_point,
            maximum_level=self.maximum_level,
            layers=tuple(layer.to_dto() for layer in self.layers),
            description=self.description,
            tags=tuple(self.tags or ()),
            location=self.location,
            sale_price=self.sale_price,
            margin_percent=self.margin_percent,
            markup_percent=self.markup_percent,
            price_tiers=tuple(tier.to_dto() for tier in self.price_tiers),
            last_updated=self.last_updated,
        )


class CostLayerModel(TrackedBase):
    """One inbound stock record in an item's ledger."""

    __tablename__ = "cost_layers"

    __table_args__ = (
        UniqueConstraint("item_id", "sequence", name="uq_cost_layers_item_sequence"),
        Index("ix_cost_layers_origin_line", "origin_line_id"),
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("items.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    layer_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    initial_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)
    remaining: Mapped[Decimal] = mapped_column(nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    # Transaction line whose confirmation created this layer, if any
    origin_line_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    item: Mapped[ItemModel] = relationship("ItemModel", back_populates="layers")

    def to_dto(self) -> CostLayerSnapshot:
        return CostLayerSnapshot(
            sequence=self.sequence,
            date=self.layer_date,
            initial_quantity=self.initial_quantity,
            unit_cost=self.unit_cost,
            remaining=self.remaining,
            source=LayerSource(self.source),
            origin_line_id=self.origin_line_id,
        )


class PriceTierModel(TrackedBase):
    """Quantity-break sale price for an item."""

    __tablename__ = "price_tiers"

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("items.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity_threshold: Mapped[Decimal] = mapped_column(nullable=False)
    price: Mapped[Decimal] = mapped_column(nullable=False)

    item: Mapped[ItemModel] = relationship("ItemModel", back_populates="price_tiers")

    def to_dto(self) -> PriceTier:
        return PriceTier(
            name=self.name,
            quantity_threshold=self.quantity_threshold,
            price=self.price,
        )
