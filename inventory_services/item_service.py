"""
inventory_services.item_service -- Item identity, stock ledger and settings.

Responsibility:
    Mediates every write to an item.  Builds the item's StockState from its
    persisted layers, lets the CostingEngine compute the new state, and
    writes the result back: layers, on-hand quantity, average cost and
    ``last_updated``.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Receives a UnitOfWork, a Clock and the core config by constructor
    injection.  Every operation runs through ``UnitOfWork.run`` and so joins
    the caller's open scope when there is one (the Transaction Engine),
    or opens, retries and commits its own otherwise.

Invariants enforced:
    - ``on_hand`` is written as the sum of the stored layer
      remainders, all of which are non-negative.
    - The average follows the costing engine; ``on_hand == 0`` stores
      a zero average.
    - Measurement is fixed at creation and units are validated there.
    - SKU uniqueness is enforced by the store and surfaced as
      DuplicateSkuError.
    - Item rows are locked (ascending id) before they are read for a write.

Failure modes:
    - ValidationError / InvalidUnitForMeasurementError on bad input.
    - NonPositiveQuantityError / NegativeCostError from costing.
    - InsufficientStockError when an outflow exceeds on hand.
    - ItemNotFoundError for unknown ids.
    - DuplicateSkuError on SKU conflicts.

Usage:
    uow = UnitOfWork(session_factory)
    items = ItemService(uow, clock=SystemClock())
    created = items.create_item(ItemSpec(name="Bolt", category="hardware"))
    items.add_inventory(created.item_id, Decimal("10"), Decimal("2.00"))
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from inventory_config.schema import InventoryCoreConfig
from inventory_engines.pricing import (
    price_for_quantity,
    sale_price_from_margin,
    sale_price_from_markup,
)
from inventory_engines.stock_levels import (
    below_minimum,
    clamp_thresholds,
    inventory_value,
    needs_reorder,
)
from inventory_engines.valuation import CostingEngine, CostLayer, StockLedger, StockState
from inventory_kernel.db.types import quantize_for_store
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.measurement import DEFAULT_MEASUREMENT, parse_measurement, validate_unit
from inventory_kernel.domain.types import (
    ItemKind,
    ItemSnapshot,
    LayerSource,
    PriceTier,
    StockWarning,
    ValuationMethod,
    WarningCode,
)
from inventory_kernel.exceptions import ValidationError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.item import CostLayerModel, ItemModel, PriceTierModel
from inventory_kernel.repositories.item_repository import ItemRepository
from inventory_kernel.repositories.transaction_repository import TransactionRepository
from inventory_kernel.services.unit_of_work import UnitOfWork
from inventory_services.results import (
    CategoryValuation,
    InflowReversal,
    InventoryAddition,
    InventoryRemoval,
    InventoryValuation,
    SettingsUpdate,
)

logger = get_logger("services.item")

ZERO = Decimal("0")

SETTINGS_FIELDS = frozenset(
    {"minimum_level", "reorder_point", "maximum_level", "valuation", "location"}
)
PRICING_FIELDS = frozenset({"sale_price", "margin_percent", "markup_percent", "price_tiers"})
ITEM_FIELDS = frozenset({"name", "category", "description", "tags"})


@dataclass(frozen=True)
class ItemSpec:
    """Input for ``create_item``.  A blank ``sku`` asks for the next numeric SKU."""

    name: str
    category: str
    kind: ItemKind | str = ItemKind.PRODUCT
    sku: str | None = None
    measurement: str | None = None
    unit: str | None = None
    valuation: ValuationMethod | str | None = None
    description: str | None = None
    tags: tuple[str, ...] = ()
    minimum_level: Decimal = ZERO
    reorder_point: Decimal = ZERO
    maximum_level: Decimal = ZERO
    location: str | None = None
    sale_price: Decimal | None = None
    price_tiers: tuple[PriceTier, ...] = ()


def to_decimal(value: Any, field: str) -> Decimal:
    """Coerce int / str / Decimal input; floats are rejected."""
    if isinstance(value, bool) or isinstance(value, float) or value is None:
        raise ValidationError(field, "must be a Decimal, int or numeric string", value)
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise ValidationError(field, "is not a number", value) from None
    if not result.is_finite():
        raise ValidationError(field, "must be a finite number", str(value))
    return result


def _parse_valuation(value: ValuationMethod | str) -> ValuationMethod:
    try:
        return ValuationMethod(value)
    except ValueError:
        raise ValidationError(
            "valuation", f"must be one of {[m.value for m in ValuationMethod]}", value,
        ) from None


def _parse_source(value: LayerSource | str) -> LayerSource:
    try:
        return LayerSource(value)
    except ValueError:
        raise ValidationError(
            "source", f"must be one of {[s.value for s in LayerSource]}", value,
        ) from None


def _aware(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class ItemService:
    """
    Item-level operations over the stock ledger.

    Contract:
        Every mutating operation accepts ``deadline`` (absolute
        ``time.monotonic()`` seconds) and runs in one Unit-of-Work scope.
        Reads return frozen ItemSnapshot values.

    Non-goals:
        - Not idempotent: callers dedupe inflows / outflows upstream.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        clock: Clock | None = None,
        config: InventoryCoreConfig | None = None,
        engine: CostingEngine | None = None,
    ):
        self._uow = uow
        self._clock = clock or SystemClock()
        self._config = config or InventoryCoreConfig()
        self._engine = engine or CostingEngine()

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    def create_item(self, spec: ItemSpec, *, deadline: float | None = None) -> ItemSnapshot:
        """
        Validate and persist a new item.

        Raises:
            ValidationError: blank name or category, unknown kind / valuation.
            InvalidUnitForMeasurementError: unit not allowed for measurement.
            DuplicateSkuError: SKU already in use (at flush).
        """
        if not spec.name or not spec.name.strip():
            raise ValidationError("name", "cannot be empty", spec.name)
        if not spec.category or not spec.category.strip():
            raise ValidationError("category", "cannot be empty", spec.category)
        try:
            kind = ItemKind(spec.kind)
        except ValueError:
            raise ValidationError(
                "kind", f"must be one of {[k.value for k in ItemKind]}", spec.kind,
            ) from None

        measurement = parse_measurement(spec.measurement or DEFAULT_MEASUREMENT[kind])
        unit = validate_unit(measurement, spec.unit)
        valuation = _parse_valuation(spec.valuation or self._config.default_valuation)
        thresholds = clamp_thresholds(
            to_decimal(spec.minimum_level, "minimum_level"),
            to_decimal(spec.reorder_point, "reorder_point"),
            to_decimal(spec.maximum_level, "maximum_level"),
        )
        sale_price = None if spec.sale_price is None else to_decimal(spec.sale_price, "sale_price")
        if sale_price is not None and sale_price < 0:
            raise ValidationError("sale_price", "cannot be negative", sale_price)
        tiers = self._parse_tiers(spec.price_tiers)

        def work(uow: UnitOfWork) -> ItemSnapshot:
            repo = ItemRepository(uow.session)
            sku = (spec.sku or "").strip() or self._next_sku(repo)
            item = ItemModel(
                sku=sku,
                name=spec.name.strip(),
                kind=kind.value,
                category=spec.category.strip(),
                description=spec.description,
                tags=sorted(set(spec.tags)),
                measurement=measurement.value,
                unit=unit,
                on_hand=ZERO,
                average_cost=ZERO,
                valuation=valuation.value,
                next_layer_sequence=0,
                minimum_level=thresholds.minimum_level,
                reorder_point=thresholds.reorder_point,
                maximum_level=thresholds.maximum_level,
                location=spec.location,
                sale_price=sale_price,
                last_updated=self._clock.now(),
            )
            item.price_tiers = [
                PriceTierModel(name=t.name, quantity_threshold=t.quantity_threshold, price=t.price)
                for t in tiers
            ]
            repo.create(item)
            logger.info(
                "item_created",
                extra={
                    "item_id": str(item.id),
                    "sku": item.sku,
                    "kind": item.kind,
                    "measurement": item.measurement,
                    "valuation": item.valuation,
                },
            )
            return item.to_dto()

        return self._uow.run(work, operation="create_item", deadline=deadline)

    def get_item(self, item_id: UUID) -> ItemSnapshot:
        """Snapshot of an item; raises ItemNotFoundError."""
        return self._uow.run(
            lambda uow: ItemRepository(uow.session).get(item_id).to_dto(),
            operation="get_item",
        )

    def find_item(self, item_id: UUID) -> ItemSnapshot | None:
        def work(uow: UnitOfWork) -> ItemSnapshot | None:
            item = ItemRepository(uow.session).find_by_id(item_id)
            return item.to_dto() if item is not None else None

        return self._uow.run(work, operation="find_item")

    def find_by_sku(self, sku: str) -> ItemSnapshot | None:
        def work(uow: UnitOfWork) -> ItemSnapshot | None:
            item = ItemRepository(uow.session).find_by_sku(sku)
            return item.to_dto() if item is not None else None

        return self._uow.run(work, operation="find_by_sku")

    def get_next_sku(self) -> str:
        """Largest purely numeric SKU + 1, zero-padded.  Gaps are not reused."""
        return self._uow.run(
            lambda uow: self._next_sku(ItemRepository(uow.session)),
            operation="get_next_sku",
        )

    def _next_sku(self, repo: ItemRepository) -> str:
        numeric = [int(sku) for sku in repo.numeric_skus()]
        next_value = max(numeric, default=0) + 1
        return str(next_value).zfill(self._config.sku_width)

    def update_item(
        self,
        item_id: UUID,
        patch: Mapping[str, Any],
        *,
        deadline: float | None = None,
    ) -> ItemSnapshot:
        """
        Patch the descriptive fields: name, category, description and tags.

        Measurement, unit and kind are fixed at creation; stock, settings
        and pricing have their own operations.

        Raises:
            ValidationError: field not editable here, or a blank name / category.
            ItemNotFoundError.
        """
        unknown = sorted(set(patch) - ITEM_FIELDS)
        if unknown:
            raise ValidationError(unknown[0], "is not an editable item field", patch[unknown[0]])
        changes: dict[str, Any] = {}
        for name in ("name", "category"):
            if name in patch:
                value = patch[name]
                if not isinstance(value, str) or not value.strip():
                    raise ValidationError(name, "cannot be empty", value)
                changes[name] = value.strip()
        if "description" in patch:
            changes["description"] = patch["description"]
        if "tags" in patch:
            tags = patch["tags"] or ()
            if isinstance(tags, str) or not all(isinstance(t, str) for t in tags):
                raise ValidationError("tags", "must be a list of strings", tags)
            changes["tags"] = sorted(set(tags))

        def work(uow: UnitOfWork) -> ItemSnapshot:
            uow.lock_items([item_id])
            item = ItemRepository(uow.session).update(
                item_id, {**changes, "last_updated": self._clock.now()},
            )
            logger.info(
                "item_updated",
                extra={"item_id": str(item_id), "fields": sorted(changes)},
            )
            return item.to_dto()

        with LogContext.bind(item_id=item_id):
            return self._uow.run(work, operation="update_item", deadline=deadline)

    def delete_item(self, item_id: UUID, *, deadline: float | None = None) -> ItemSnapshot:
        """
        Remove an item together with its cost layers and price tiers.

        Raises:
            ValidationError: a transaction line still references the item.
            ItemNotFoundError.
        """

        def work(uow: UnitOfWork) -> ItemSnapshot:
            item = self._load_for_update(uow, item_id)
            if TransactionRepository(uow.session).references_item(item_id):
                raise ValidationError("item_id", "is referenced by transaction lines", str(item_id))
            snapshot = item.to_dto()
            ItemRepository(uow.session).delete(item_id)
            logger.info(
                "item_deleted",
                extra={"item_id": str(item_id), "sku": snapshot.sku, "on_hand": str(snapshot.on_hand)},
            )
            return snapshot

        with LogContext.bind(item_id=item_id):
            return self._uow.run(work, operation="delete_item", deadline=deadline)

    # ------------------------------------------------------------------
    # Stock movements
    # ------------------------------------------------------------------

    def add_inventory(
        self,
        item_id: UUID,
        qty: Decimal,
        unit_cost: Decimal,
        source: LayerSource = LayerSource.MANUAL,
        date: datetime | None = None,
        *,
        origin_line_id: UUID | None = None,
        deadline: float | None = None,
    ) -> InventoryAddition:
        """
        Receive ``qty`` at ``unit_cost`` as a new cost layer.

        Raises:
            NonPositiveQuantityError, NegativeCostError, ItemNotFoundError.
        """
        qty = to_decimal(qty, "quantity")
        unit_cost = to_decimal(unit_cost, "unit_cost")
        layer_source = _parse_source(source)

        def work(uow: UnitOfWork) -> InventoryAddition:
            item = self._load_for_update(uow, item_id)
            when = date or self._clock.now()
            sequence = item.next_layer_sequence
            result = self._engine.add_inflow(
                self._state_of(item),
                qty=qty,
                unit_cost=unit_cost,
                date=when,
                source=layer_source,
                sequence=sequence,
                origin_ref=origin_line_id,
            )
            if not result.success:
                raise result.to_error(item_id)
            self._write_state(uow, item, result.state)
            logger.info(
                "inventory_added",
                extra={
                    "item_id": str(item_id),
                    "quantity": str(qty),
                    "unit_cost": str(unit_cost),
                    "source": layer_source.value,
                    "on_hand": str(item.on_hand),
                    "average_cost": str(item.average_cost),
                },
            )
            return InventoryAddition(
                item_id=item_id,
                quantity=qty,
                unit_cost=unit_cost,
                new_on_hand=item.on_hand,
                new_average=item.average_cost,
                layer_sequence=sequence,
            )

        with LogContext.bind(item_id=item_id):
            return self._uow.run(work, operation="add_inventory", deadline=deadline)

    def remove_inventory(
        self,
        item_id: UUID,
        qty: Decimal,
        source: str = "manual",
        date: datetime | None = None,
        *,
        deadline: float | None = None,
    ) -> InventoryRemoval:
        """
        Take ``qty`` out of stock under the item's valuation policy.

        Raises:
            InsufficientStockError: ``qty`` exceeds on hand.
            NonPositiveQuantityError, ItemNotFoundError.
        """
        qty = to_decimal(qty, "quantity")

        def work(uow: UnitOfWork) -> InventoryRemoval:
            item = self._load_for_update(uow, item_id)
            policy = ValuationMethod(item.valuation)
            result = self._engine.consume(
                self._state_of(item),
                qty=qty,
                policy=policy,
                date=date or self._clock.now(),
                source=str(getattr(source, "value", source)),
            )
            if not result.success:
                logger.info(
                    "inventory_removal_rejected",
                    extra={
                        "item_id": str(item_id),
                        "quantity": str(qty),
                        "error_code": result.error_code,
                    },
                )
                raise result.to_error(item_id)
            self._write_state(uow, item, result.state)
            logger.info(
                "inventory_removed",
                extra={
                    "item_id": str(item_id),
                    "quantity": str(qty),
                    "policy": policy.value,
                    "cogs": str(result.cogs),
                    "on_hand": str(item.on_hand),
                },
            )
            return InventoryRemoval(
                item_id=item_id,
                quantity=qty,
                cogs=result.cogs,
                remaining_on_hand=item.on_hand,
                remaining_value=inventory_value(item.on_hand, item.average_cost),
            )

        with LogContext.bind(item_id=item_id):
            return self._uow.run(work, operation="remove_inventory", deadline=deadline)

    def reverse_inventory(
        self,
        item_id: UUID,
        qty: Decimal,
        previous_cogs: Decimal,
        date: datetime | None = None,
        *,
        deadline: float | None = None,
    ) -> InventoryAddition:
        """
        Undo an earlier outflow of ``qty`` that cost ``previous_cogs``.

        The quantity returns as a ``return`` layer at ``previous_cogs / qty``.
        """
        qty = to_decimal(qty, "quantity")
        previous_cogs = to_decimal(previous_cogs, "previous_cogs")

        def work(uow: UnitOfWork) -> InventoryAddition:
            item = self._load_for_update(uow, item_id)
            sequence = item.next_layer_sequence
            result = self._engine.reverse_outflow(
                self._state_of(item),
                qty=qty,
                previous_cogs=previous_cogs,
                policy=ValuationMethod(item.valuation),
                date=date or self._clock.now(),
                source=LayerSource.RETURN,
                sequence=sequence,
            )
            if not result.success:
                raise result.to_error(item_id)
            self._write_state(uow, item, result.state)
            logger.info(
                "inventory_outflow_reversed",
                extra={
                    "item_id": str(item_id),
                    "quantity": str(qty),
                    "previous_cogs": str(previous_cogs),
                    "on_hand": str(item.on_hand),
                    "average_cost": str(item.average_cost),
                },
            )
            return InventoryAddition(
                item_id=item_id,
                quantity=qty,
                unit_cost=previous_cogs / qty,
                new_on_hand=item.on_hand,
                new_average=item.average_cost,
                layer_sequence=sequence,
            )

        with LogContext.bind(item_id=item_id):
            return self._uow.run(work, operation="reverse_inventory", deadline=deadline)

    def reverse_inflow(
        self,
        item_id: UUID,
        qty: Decimal,
        unit_cost: Decimal | None = None,
        *,
        origin_line_id: UUID | None = None,
        deadline: float | None = None,
    ) -> InflowReversal:
        """
        Undo an earlier inflow of ``qty``.

        Stock already sold cannot come back: the missing part is reported as
        ``shortfall`` with a STOCK_ALREADY_CONSUMED warning and on hand stops
        at zero.
        """
        qty = to_decimal(qty, "quantity")
        if unit_cost is not None:
            unit_cost = to_decimal(unit_cost, "unit_cost")

        def work(uow: UnitOfWork) -> InflowReversal:
            item = self._load_for_update(uow, item_id)
            policy = ValuationMethod(item.valuation)
            result = self._engine.reverse_inflow(
                self._state_of(item),
                qty=qty,
                policy=policy,
                unit_cost=unit_cost,
                origin_ref=origin_line_id,
            )
            if not result.success:
                raise result.to_error(item_id)
            self._write_state(uow, item, result.state)

            warnings: tuple[StockWarning, ...] = ()
            if result.shortfall > 0:
                warnings = (
                    StockWarning(
                        code=WarningCode.STOCK_ALREADY_CONSUMED,
                        message=(
                            f"{result.shortfall} of {qty} received had already left "
                            "stock; on hand clamped to zero"
                        ),
                        item_id=item_id,
                        details={"requested": qty, "shortfall": result.shortfall},
                    ),
                )
                logger.warning(
                    "stock_already_consumed",
                    extra={
                        "item_id": str(item_id),
                        "requested": str(qty),
                        "shortfall": str(result.shortfall),
                        "policy": policy.value,
                    },
                )
            logger.info(
                "inventory_inflow_reversed",
                extra={
                    "item_id": str(item_id),
                    "quantity": str(qty),
                    "on_hand": str(item.on_hand),
                    "average_cost": str(item.average_cost),
                },
            )
            return InflowReversal(
                item_id=item_id,
                quantity=qty,
                reversed_quantity=qty - result.shortfall,
                shortfall=result.shortfall,
                new_on_hand=item.on_hand,
                new_average=item.average_cost,
                warnings=warnings,
            )

        with LogContext.bind(item_id=item_id):
            return self._uow.run(work, operation="reverse_inflow", deadline=deadline)

    # ------------------------------------------------------------------
    # Settings and pricing
    # ------------------------------------------------------------------

    def update_inventory_settings(
        self,
        item_id: UUID,
        patch: Mapping[str, Any],
        *,
        accept_valuation_switch: bool = False,
        deadline: float | None = None,
    ) -> SettingsUpdate:
        """
        Patch thresholds, location and valuation policy.

        Thresholds are clamped to ``0 <= minimum <= reorder <= maximum``
        (``maximum == 0`` disables the upper bound).  A valuation change
        with stock on hand needs ``accept_valuation_switch``; the layers are
        kept, the average is recomputed from them and the result carries a
        VALUATION_SWITCH_MIXED_LEDGER warning.

        Raises:
            ValidationError: unknown field, or an unaccepted valuation switch.
        """
        unknown = sorted(set(patch) - SETTINGS_FIELDS)
        if unknown:
            raise ValidationError(unknown[0], "is not an inventory setting", patch[unknown[0]])

        def work(uow: UnitOfWork) -> SettingsUpdate:
            item = self._load_for_update(uow, item_id)
            changed: list[str] = []
            warnings: list[StockWarning] = []

            if {"minimum_level", "reorder_point", "maximum_level"} & set(patch):
                thresholds = clamp_thresholds(
                    to_decimal(patch.get("minimum_level", item.minimum_level), "minimum_level"),
                    to_decimal(patch.get("reorder_point", item.reorder_point), "reorder_point"),
                    to_decimal(patch.get("maximum_level", item.maximum_level), "maximum_level"),
                )
                for name in ("minimum_level", "reorder_point", "maximum_level"):
                    value = getattr(thresholds, name)
                    if getattr(item, name) != value:
                        setattr(item, name, value)
                        changed.append(name)

            if "location" in patch and patch["location"] != item.location:
                item.location = patch["location"]
                changed.append("location")

            if "valuation" in patch:
                new_policy = _parse_valuation(patch["valuation"])
                if new_policy.value != item.valuation:
                    if item.on_hand > 0:
                        if not accept_valuation_switch:
                            raise ValidationError(
                                "valuation",
                                "stock is on hand; the switch must be accepted explicitly",
                                new_policy.value,
                            )
                        state = self._engine.recompute_average(self._state_of(item))
                        item.average_cost = quantize_for_store(state.average_cost)
                        warnings.append(
                            StockWarning(
                                code=WarningCode.VALUATION_SWITCH_MIXED_LEDGER,
                                message=(
                                    f"Valuation switched {item.valuation} -> {new_policy.value} "
                                    "with stock on hand; existing layers were kept"
                                ),
                                item_id=item_id,
                                details={"from": item.valuation, "to": new_policy.value},
                            )
                        )
                        logger.warning(
                            "valuation_switch_mixed_ledger",
                            extra={
                                "item_id": str(item_id),
                                "from_valuation": item.valuation,
                                "to_valuation": new_policy.value,
                                "on_hand": str(item.on_hand),
                            },
                        )
                    item.valuation = new_policy.value
                    changed.append("valuation")

            if changed:
                item.last_updated = self._clock.now()
            uow.session.flush()
            logger.info(
                "inventory_settings_updated",
                extra={"item_id": str(item_id), "changed_fields": changed},
            )
            return SettingsUpdate(
                item=item.to_dto(), changed_fields=tuple(changed), warnings=tuple(warnings),
            )

        with LogContext.bind(item_id=item_id):
            return self._uow.run(work, operation="update_inventory_settings", deadline=deadline)

    def update_pricing(
        self,
        item_id: UUID,
        patch: Mapping[str, Any],
        *,
        deadline: float | None = None,
    ) -> ItemSnapshot:
        """
        Patch sale price, margin / markup and price tiers.

        A margin or markup given without a sale price derives the sale price
        from the item's average cost.
        """
        unknown = sorted(set(patch) - PRICING_FIELDS)
        if unknown:
            raise ValidationError(unknown[0], "is not a pricing field", patch[unknown[0]])

        def work(uow: UnitOfWork) -> ItemSnapshot:
            item = self._load_for_update(uow, item_id)
            try:
                if "margin_percent" in patch:
                    margin = patch["margin_percent"]
                    item.margin_percent = None if margin is None else to_decimal(margin, "margin_percent")
                    if item.margin_percent is not None and "sale_price" not in patch:
                        item.sale_price = quantize_for_store(
                            sale_price_from_margin(item.average_cost, item.margin_percent)
                        )
                if "markup_percent" in patch:
                    markup = patch["markup_percent"]
                    item.markup_percent = None if markup is None else to_decimal(markup, "markup_percent")
                    if item.markup_percent is not None and "sale_price" not in patch:
                        item.sale_price = quantize_for_store(
                            sale_price_from_markup(item.average_cost, item.markup_percent)
                        )
            except ValueError as exc:
                raise ValidationError("pricing", str(exc)) from exc

            if "sale_price" in patch:
                price = patch["sale_price"]
                if price is not None and to_decimal(price, "sale_price") < 0:
                    raise ValidationError("sale_price", "cannot be negative", price)
                item.sale_price = None if price is None else to_decimal(price, "sale_price")

            if "price_tiers" in patch:
                item.price_tiers = [
                    PriceTierModel(
                        name=tier.name,
                        quantity_threshold=tier.quantity_threshold,
                        price=tier.price,
                    )
                    for tier in self._parse_tiers(patch["price_tiers"] or ())
                ]

            item.last_updated = self._clock.now()
            uow.session.flush()
            logger.info(
                "item_pricing_updated",
                extra={"item_id": str(item_id), "fields": sorted(patch)},
            )
            return item.to_dto()

        with LogContext.bind(item_id=item_id):
            return self._uow.run(work, operation="update_pricing", deadline=deadline)

    def price_for_quantity(self, item_id: UUID, qty: Decimal) -> Decimal | None:
        """Unit sale price for an order of ``qty`` after quantity breaks."""
        item = self.get_item(item_id)
        try:
            return price_for_quantity(item.sale_price, item.price_tiers, to_decimal(qty, "quantity"))
        except ValueError as exc:
            raise ValidationError("quantity", str(exc), qty) from exc

    @staticmethod
    def _parse_tiers(tiers: Iterable[PriceTier | Mapping[str, Any]]) -> list[PriceTier]:
        parsed = []
        for tier in tiers:
            if isinstance(tier, PriceTier):
                tier = {"name": tier.name, "quantity_threshold": tier.quantity_threshold, "price": tier.price}
            tier = PriceTier(
                name=str(tier["name"]),
                quantity_threshold=to_decimal(tier["quantity_threshold"], "quantity_threshold"),
                price=to_decimal(tier["price"], "price"),
            )
            if tier.quantity_threshold <= 0 or tier.price < 0:
                raise ValidationError("price_tiers", "thresholds must be positive and prices non-negative")
            parsed.append(tier)
        return parsed

    # ------------------------------------------------------------------
    # Stock-level queries
    # ------------------------------------------------------------------

    @staticmethod
    def needs_reorder(item: ItemSnapshot) -> bool:
        return needs_reorder(item.on_hand, item.reorder_point)

    @staticmethod
    def below_minimum(item: ItemSnapshot) -> bool:
        return below_minimum(item.on_hand, item.minimum_level)

    def list_low_stock(self, category: str | None = None) -> tuple[ItemSnapshot, ...]:
        """Items at or below their reorder point, by SKU."""
        return self._uow.run(
            lambda uow: tuple(
                item.to_dto() for item in ItemRepository(uow.session).low_stock(category)
            ),
            operation="list_low_stock",
        )

    def get_categories(self) -> tuple[str, ...]:
        """Distinct item categories, sorted."""
        return tuple(
            self._uow.run(
                lambda uow: ItemRepository(uow.session).categories(),
                operation="get_categories",
            )
        )

    def get_tags(self) -> tuple[str, ...]:
        """Distinct tags across all items, sorted."""
        return tuple(
            self._uow.run(lambda uow: ItemRepository(uow.session).tags(), operation="get_tags")
        )

    def inventory_valuation(self, category: str | None = None) -> InventoryValuation:
        """Total on-hand value (on_hand * average_cost) with per-category subtotals."""
        started = time.monotonic()

        def work(uow: UnitOfWork) -> InventoryValuation:
            items = ItemRepository(uow.session).by_category(category)
            by_category: dict[str, list[ItemModel]] = {}
            for item in items:
                by_category.setdefault(item.category, []).append(item)

            categories = tuple(
                CategoryValuation(
                    category=name,
                    item_count=len(members),
                    on_hand_value=sum(
                        (inventory_value(i.on_hand, i.average_cost) for i in members), ZERO,
                    ),
                )
                for name, members in sorted(by_category.items())
            )
            return InventoryValuation(
                item_count=len(items),
                total_value=sum((c.on_hand_value for c in categories), ZERO),
                categories=categories,
                below_minimum_count=sum(
                    1 for i in items if below_minimum(i.on_hand, i.minimum_level)
                ),
                needs_reorder_count=sum(
                    1 for i in items if needs_reorder(i.on_hand, i.reorder_point)
                ),
            )

        valuation = self._uow.run(work, operation="inventory_valuation")
        logger.info(
            "inventory_valuation_computed",
            extra={
                "category": category,
                "item_count": valuation.item_count,
                "total_value": str(valuation.total_value),
                "duration_ms": round((time.monotonic() - started) * 1000, 3),
            },
        )
        return valuation

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_for_update(self, uow: UnitOfWork, item_id: UUID) -> ItemModel:
        repo = ItemRepository(uow.session)
        uow.lock_items([item_id])
        return repo.get(item_id)

    @staticmethod
    def _state_of(item: ItemModel) -> StockState:
        ledger = StockLedger(
            tuple(
                CostLayer(
                    date=_aware(layer.layer_date),
                    initial_quantity=layer.initial_quantity,
                    unit_cost=layer.unit_cost,
                    remaining=layer.remaining,
                    source=LayerSource(layer.source),
                    sequence=layer.sequence,
                    origin_ref=layer.origin_line_id,
                )
                for layer in item.layers
            )
        )
        return StockState(on_hand=item.on_hand, average_cost=item.average_cost, ledger=ledger)

    def _write_state(self, uow: UnitOfWork, item: ItemModel, state: StockState) -> None:
        """Persist a costing result: sync layers by sequence, then derive on hand."""
        existing = {layer.sequence: layer for layer in item.layers}
        kept: set[int] = set()
        for layer in state.ledger.layers:
            kept.add(layer.sequence)
            stored = existing.get(layer.sequence)
            if stored is None:
                item.layers.append(
                    CostLayerModel(
                        sequence=layer.sequence,
                        layer_date=layer.date,
                        initial_quantity=quantize_for_store(layer.initial_quantity),
                        unit_cost=quantize_for_store(layer.unit_cost),
                        remaining=quantize_for_store(layer.remaining),
                        source=layer.source.value,
                        origin_line_id=layer.origin_ref,
                    )
                )
            else:
                stored.remaining = quantize_for_store(layer.remaining)

        for sequence, stored in existing.items():
            if sequence not in kept:
                item.layers.remove(stored)

        item.on_hand = sum((layer.remaining for layer in item.layers), ZERO)
        item.average_cost = quantize_for_store(state.average_cost) if item.on_hand > 0 else ZERO
        if state.ledger.layers:
            item.next_layer_sequence = max(
                item.next_layer_sequence, state.ledger.next_sequence,
            )
        item.last_updated = self._clock.now()
        uow.session.flush()
