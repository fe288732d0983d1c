"""
inventory_engines.valuation.stock_ledger -- Per-item cost-layer ledger.

Responsibility:
    Immutable value objects for one item's cost layers: the ordered layer
    sequence, pure aggregate queries (total remaining, weighted average,
    total value) and the three ways an outflow can debit layers (FIFO,
    LIFO, proportional).

Architecture position:
    Engines -- pure calculation layer, zero I/O.  May only import
    inventory_kernel.domain and inventory_kernel.exceptions.  The stateful
    Item Service lives in inventory_services/.

Invariants enforced:
    - Layer bounds: ``0 <= remaining <= initial_quantity``,
      ``initial_quantity > 0``, ``unit_cost >= 0`` (CostLayer.__post_init__).
    - Append precondition: a new layer is untouched
      (``remaining == initial_quantity``).
    - Ordering: layers keep insertion order.  Time ordering sorts by
      ``date`` and breaks ties by insertion position, oldest first for FIFO
      and newest first for LIFO.
    - Retention: exhausted layers stay in the ledger; it is never compacted.
    - Every operation returns a new StockLedger; inputs are never mutated.

Failure modes:
    - ValueError from CostLayer.__post_init__ / append on bad layers.
    - InsufficientStockError from consume_* when total remaining < q.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from inventory_kernel.domain.types import LayerSource
from inventory_kernel.exceptions import InsufficientStockError
from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.valuation.stock_ledger")

ZERO = Decimal("0")

# Non-negativity tolerance for values produced by division
EPSILON = Decimal("1e-9")


@dataclass(frozen=True)
class CostLayer:
    """A single inbound stock record."""

    date: datetime
    initial_quantity: Decimal
    unit_cost: Decimal
    remaining: Decimal
    source: LayerSource
    sequence: int = 0
    origin_ref: UUID | None = None

    def __post_init__(self) -> None:
        if self.initial_quantity <= 0:
            logger.error(
                "cost_layer_invalid_quantity",
                extra={"initial_quantity": str(self.initial_quantity)},
            )
            raise ValueError(
                f"Layer initial quantity must be positive, got {self.initial_quantity}"
            )
        if self.unit_cost < 0:
            logger.error(
                "cost_layer_negative_cost",
                extra={"unit_cost": str(self.unit_cost)},
            )
            raise ValueError(f"Layer unit cost cannot be negative, got {self.unit_cost}")
        if self.remaining < 0 or self.remaining > self.initial_quantity:
            raise ValueError(
                f"Layer remaining {self.remaining} outside [0, {self.initial_quantity}]"
            )

    @classmethod
    def create(
        cls,
        date: datetime,
        quantity: Decimal,
        unit_cost: Decimal,
        source: LayerSource,
        sequence: int = 0,
        origin_ref: UUID | None = None,
    ) -> CostLayer:
        """A fresh, untouched layer."""
        return cls(
            date=date,
            initial_quantity=quantity,
            unit_cost=unit_cost,
            remaining=quantity,
            source=source,
            sequence=sequence,
            origin_ref=origin_ref,
        )

    @property
    def is_exhausted(self) -> bool:
        return self.remaining == 0

    @property
    def is_untouched(self) -> bool:
        return self.remaining == self.initial_quantity

    @property
    def remaining_value(self) -> Decimal:
        return self.remaining * self.unit_cost

    def with_remaining(self, remaining: Decimal) -> CostLayer:
        return replace(self, remaining=remaining)


@dataclass(frozen=True)
class LayerConsumption:
    """Quantity taken from (or returned to) one layer."""

    layer_index: int
    sequence: int
    quantity: Decimal
    unit_cost: Decimal

    @property
    def cost(self) -> Decimal:
        return self.quantity * self.unit_cost


@dataclass(frozen=True)
class LedgerConsumption:
    """Outcome of debiting a ledger: cost, new ledger, and per-layer detail."""

    cogs: Decimal
    ledger: StockLedger
    consumptions: tuple[LayerConsumption, ...]

    @property
    def quantity(self) -> Decimal:
        return sum((c.quantity for c in self.consumptions), ZERO)


@dataclass(frozen=True)
class StockLedger:
    """Append-only ordered sequence of cost layers for one item."""

    layers: tuple[CostLayer, ...] = ()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def total_remaining(self) -> Decimal:
        return sum((layer.remaining for layer in self.layers), ZERO)

    def total_value(self) -> Decimal:
        return sum((layer.remaining_value for layer in self.layers), ZERO)

    def weighted_average(self) -> Decimal:
        """Quantity-weighted mean unit cost of non-exhausted layers (0 if none)."""
        remaining = self.total_remaining
        if remaining == 0:
            return ZERO
        return self.total_value() / remaining

    @property
    def next_sequence(self) -> int:
        if not self.layers:
            return 0
        return max(layer.sequence for layer in self.layers) + 1

    def layers_ordered_by_time(self, newest_first: bool = False) -> tuple[tuple[int, CostLayer], ...]:
        """(index, layer) pairs by date; ties keep insertion order in the same direction."""
        return tuple(
            sorted(
                enumerate(self.layers),
                key=lambda pair: (pair[1].date, pair[0]),
                reverse=newest_first,
            )
        )

    # ------------------------------------------------------------------
    # Mutations (return new ledgers)
    # ------------------------------------------------------------------

    def append(self, layer: CostLayer) -> StockLedger:
        if not layer.is_untouched:
            raise ValueError("Appended layer must be untouched (remaining == initial_quantity)")
        return StockLedger(self.layers + (layer,))

    def replace_layer(self, index: int, layer: CostLayer) -> StockLedger:
        layers = list(self.layers)
        layers[index] = layer
        return StockLedger(tuple(layers))

    def without_layer(self, index: int) -> StockLedger:
        return StockLedger(self.layers[:index] + self.layers[index + 1:])

    def consume_fifo(self, quantity: Decimal) -> LedgerConsumption:
        """Debit earliest non-exhausted layers first."""
        return self._consume_in_order(quantity, self.layers_ordered_by_time())

    def consume_lifo(self, quantity: Decimal) -> LedgerConsumption:
        """Debit latest non-exhausted layers first."""
        return self._consume_in_order(quantity, self.layers_ordered_by_time(newest_first=True))

    def consume_proportional(self, quantity: Decimal) -> LedgerConsumption:
        """
        Debit every active layer in proportion to its remaining quantity.

        Preserves the layers' weighted-average cost.  Division residue is
        settled against the oldest layers so that exactly ``quantity``
        leaves the ledger.
        """
        available = self.total_remaining
        self._require(quantity, available)
        if quantity == available:
            return self._consume_in_order(quantity, self.layers_ordered_by_time())

        ordered = [
            (index, layer)
            for index, layer in self.layers_ordered_by_time()
            if not layer.is_exhausted
        ]
        takes: dict[int, Decimal] = {}
        for index, layer in ordered:
            takes[index] = min(layer.remaining, layer.remaining * quantity / available)

        residue = quantity - sum(takes.values(), ZERO)
        for index, layer in ordered:
            if residue == 0:
                break
            if residue > 0:
                extra = min(residue, layer.remaining - takes[index])
            else:
                extra = max(residue, -takes[index])
            takes[index] += extra
            residue -= extra

        ledger = self
        consumptions = []
        for index, layer in ordered:
            take = takes[index]
            if take == 0:
                continue
            ledger = ledger.replace_layer(index, layer.with_remaining(layer.remaining - take))
            consumptions.append(
                LayerConsumption(index, layer.sequence, take, layer.unit_cost)
            )
        cogs = sum((c.cost for c in consumptions), ZERO)
        return LedgerConsumption(cogs=cogs, ledger=ledger, consumptions=tuple(consumptions))

    def restore(self, consumptions: Iterable[LayerConsumption]) -> StockLedger:
        """Put previously consumed quantities back into the layers they came from."""
        ledger = self
        by_sequence = {layer.sequence: index for index, layer in enumerate(self.layers)}
        for consumption in consumptions:
            index = by_sequence.get(consumption.sequence)
            if index is None:
                raise ValueError(f"No layer with sequence {consumption.sequence}")
            layer = ledger.layers[index]
            ledger = ledger.replace_layer(
                index, layer.with_remaining(layer.remaining + consumption.quantity)
            )
        return ledger

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _consume_in_order(
        self,
        quantity: Decimal,
        ordered: tuple[tuple[int, CostLayer], ...],
    ) -> LedgerConsumption:
        self._require(quantity, self.total_remaining)

        ledger = self
        consumptions = []
        outstanding = quantity
        for index, layer in ordered:
            if outstanding <= 0:
                break
            if layer.is_exhausted:
                continue
            take = min(layer.remaining, outstanding)
            ledger = ledger.replace_layer(index, layer.with_remaining(layer.remaining - take))
            consumptions.append(LayerConsumption(index, layer.sequence, take, layer.unit_cost))
            outstanding -= take

        cogs = sum((c.cost for c in consumptions), ZERO)
        return LedgerConsumption(cogs=cogs, ledger=ledger, consumptions=tuple(consumptions))

    @staticmethod
    def _require(quantity: Decimal, available: Decimal) -> None:
        if quantity > available:
            raise InsufficientStockError(requested=quantity, available=available)
