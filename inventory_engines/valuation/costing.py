"""
inventory_engines.valuation.costing -- Valuation policy over a stock ledger.

Responsibility:
    Apply FIFO, LIFO or weighted-average costing to one item's stock state:
    inflows append layers and move the average, outflows produce a cost of
    goods and a debited ledger, and reversals undo either direction.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The Item Service feeds a
    StockState built from the persisted item, and writes the returned state
    back inside its Unit-of-Work.

Invariants enforced:
    - Every operation is total: failures come back as ``CostingResult.fail``
      with a machine-readable code, never as exceptions.
    - ``on_hand == ledger.total_remaining`` in every returned state.
    - ``on_hand == 0`` implies ``average_cost == 0``.
    - No rounding.  Callers quantize at the persistence boundary.

Failure codes:
    - NON_POSITIVE_QUANTITY: qty <= 0.
    - NEGATIVE_COST: unit cost or previous COGS < 0.
    - INSUFFICIENT_STOCK: outflow larger than on hand.
    - VALIDATION_FIELD: a consumption record does not match the ledger.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from inventory_engines.tracer import traced_engine
from inventory_engines.valuation.stock_ledger import (
    EPSILON,
    ZERO,
    CostLayer,
    LayerConsumption,
    StockLedger,
)
from inventory_kernel.domain.types import LayerSource, ValuationMethod
from inventory_kernel.exceptions import (
    InsufficientStockError,
    InventoryKernelError,
    NegativeCostError,
    NonPositiveQuantityError,
    ValidationError,
)
from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.valuation.costing")


@dataclass(frozen=True)
class StockState:
    """On-hand quantity, average unit cost and cost layers of one item."""

    on_hand: Decimal
    average_cost: Decimal
    ledger: StockLedger

    def __post_init__(self) -> None:
        if self.on_hand < 0:
            raise ValueError(f"on_hand cannot be negative, got {self.on_hand}")
        if self.average_cost < 0:
            raise ValueError(f"average_cost cannot be negative, got {self.average_cost}")

    @classmethod
    def empty(cls) -> StockState:
        return cls(on_hand=ZERO, average_cost=ZERO, ledger=StockLedger())

    @classmethod
    def from_ledger(cls, ledger: StockLedger) -> StockState:
        """State whose on-hand and average are derived from the layers."""
        return cls(
            on_hand=ledger.total_remaining,
            average_cost=ledger.weighted_average(),
            ledger=ledger,
        )

    @property
    def value(self) -> Decimal:
        return self.on_hand * self.average_cost


@dataclass(frozen=True)
class CostingResult:
    """
    Discriminated outcome of a costing operation.

    On success ``state`` is the new stock state, ``cogs`` the cost moved by
    the operation, ``consumptions`` the per-layer detail and ``shortfall``
    the part of a reversal that could not be taken back.
    """

    success: bool
    state: StockState | None = None
    cogs: Decimal = ZERO
    consumptions: tuple[LayerConsumption, ...] = ()
    shortfall: Decimal = ZERO
    error_code: str | None = None
    error_message: str | None = None
    value: Decimal | None = None
    available: Decimal | None = None

    @classmethod
    def ok(
        cls,
        state: StockState,
        cogs: Decimal = ZERO,
        consumptions: tuple[LayerConsumption, ...] = (),
        shortfall: Decimal = ZERO,
    ) -> CostingResult:
        return cls(
            success=True,
            state=state,
            cogs=cogs,
            consumptions=consumptions,
            shortfall=shortfall,
        )

    @classmethod
    def fail(
        cls,
        error_code: str,
        error_message: str,
        value: Decimal | None = None,
        available: Decimal | None = None,
    ) -> CostingResult:
        return cls(
            success=False,
            error_code=error_code,
            error_message=error_message,
            value=value,
            available=available,
        )

    def to_error(self, item_id: object | None = None) -> InventoryKernelError:
        """The typed exception matching a failed result."""
        if self.success:
            raise ValueError("to_error() called on a successful CostingResult")
        if self.error_code == NonPositiveQuantityError.code:
            return NonPositiveQuantityError(self.value)
        if self.error_code == NegativeCostError.code:
            return NegativeCostError(self.value)
        if self.error_code == InsufficientStockError.code:
            return InsufficientStockError(
                requested=self.value,
                available=self.available,
                item_id=str(item_id) if item_id is not None else None,
            )
        return ValidationError("stock", self.error_message or "costing failed", self.value)


def _non_positive(qty: Decimal) -> CostingResult:
    return CostingResult.fail(
        NonPositiveQuantityError.code, f"Quantity must be positive, got {qty}", value=qty,
    )


def _negative_cost(cost: Decimal) -> CostingResult:
    return CostingResult.fail(
        NegativeCostError.code, f"Unit cost must be non-negative, got {cost}", value=cost,
    )


def _insufficient(qty: Decimal, available: Decimal) -> CostingResult:
    return CostingResult.fail(
        InsufficientStockError.code,
        f"Requested {qty}, available {available}",
        value=qty,
        available=available,
    )


class CostingEngine:
    """
    Stateless valuation policy engine.

    All methods take the current StockState and return a CostingResult;
    the input state is never modified.
    """

    @traced_engine("costing", "1.0", fingerprint_fields=("qty", "unit_cost", "source"))
    def add_inflow(
        self,
        state: StockState,
        *,
        qty: Decimal,
        unit_cost: Decimal,
        date: datetime,
        source: LayerSource,
        sequence: int | None = None,
        origin_ref: UUID | None = None,
    ) -> CostingResult:
        """
        Append a layer of ``qty`` at ``unit_cost`` and move the average.

        The new average is ``(on_hand * avg + qty * unit_cost) / (on_hand + qty)``
        when stock was on hand, else ``unit_cost``.
        """
        if qty <= 0:
            return _non_positive(qty)
        if unit_cost < 0:
            return _negative_cost(unit_cost)

        layer = CostLayer.create(
            date=date,
            quantity=qty,
            unit_cost=unit_cost,
            source=source,
            sequence=state.ledger.next_sequence if sequence is None else sequence,
            origin_ref=origin_ref,
        )
        ledger = state.ledger.append(layer)

        new_on_hand = state.on_hand + qty
        if state.on_hand > 0:
            new_average = (state.on_hand * state.average_cost + qty * unit_cost) / new_on_hand
        else:
            new_average = unit_cost

        logger.debug(
            "costing_inflow_applied",
            extra={
                "qty": str(qty),
                "unit_cost": str(unit_cost),
                "source": source.value,
                "layer_sequence": layer.sequence,
            },
        )
        return CostingResult.ok(
            StockState(on_hand=new_on_hand, average_cost=new_average, ledger=ledger),
            cogs=qty * unit_cost,
        )

    @traced_engine("costing", "1.0", fingerprint_fields=("qty", "policy", "source"))
    def consume(
        self,
        state: StockState,
        *,
        qty: Decimal,
        policy: ValuationMethod,
        date: datetime,
        source: str,
    ) -> CostingResult:
        """
        Take ``qty`` out of stock under ``policy``.

        WEIGHTED_AVG costs the outflow at the current average and debits the
        layers proportionally, which leaves their weighted mean unchanged.
        FIFO and LIFO cost the outflow from the layers they debit and
        recompute the average from what survives.
        ``source`` names the reason for the outflow and is only logged.
        """
        if qty <= 0:
            return _non_positive(qty)
        if qty > state.on_hand:
            return _insufficient(qty, state.on_hand)

        try:
            if policy is ValuationMethod.FIFO:
                taken = state.ledger.consume_fifo(qty)
            elif policy is ValuationMethod.LIFO:
                taken = state.ledger.consume_lifo(qty)
            else:
                taken = state.ledger.consume_proportional(qty)
        except InsufficientStockError as exc:
            # Ledger disagrees with on_hand; report what the layers hold
            return _insufficient(qty, exc.available)

        new_on_hand = taken.ledger.total_remaining
        if policy is ValuationMethod.WEIGHTED_AVG:
            cogs = qty * state.average_cost
            new_average = state.average_cost if new_on_hand > 0 else ZERO
        else:
            cogs = taken.cogs
            new_average = taken.ledger.weighted_average()

        logger.debug(
            "costing_outflow_applied",
            extra={
                "qty": str(qty),
                "policy": policy.value,
                "source": source,
                "cogs": str(cogs),
                "layers_touched": len(taken.consumptions),
                "date": date,
            },
        )
        return CostingResult.ok(
            StockState(on_hand=new_on_hand, average_cost=new_average, ledger=taken.ledger),
            cogs=cogs,
            consumptions=taken.consumptions,
        )

    @traced_engine("costing", "1.0", fingerprint_fields=("qty", "previous_cogs", "policy"))
    def reverse_outflow(
        self,
        state: StockState,
        *,
        qty: Decimal,
        previous_cogs: Decimal,
        policy: ValuationMethod,
        date: datetime,
        source: LayerSource = LayerSource.RETURN,
        consumptions: Sequence[LayerConsumption] | None = None,
        sequence: int | None = None,
    ) -> CostingResult:
        """
        Undo an earlier outflow of ``qty`` that cost ``previous_cogs``.

        Under FIFO / LIFO with the original consumption record the quantities
        go back into the layers they were taken from.  Otherwise a
        reconstructive layer is appended at ``previous_cogs / qty``.
        """
        if qty <= 0:
            return _non_positive(qty)
        if previous_cogs < 0:
            return _negative_cost(previous_cogs)

        if consumptions and policy in (ValuationMethod.FIFO, ValuationMethod.LIFO):
            restored = sum((c.quantity for c in consumptions), ZERO)
            if restored != qty:
                return CostingResult.fail(
                    ValidationError.code,
                    f"Consumption record covers {restored}, reversal asks for {qty}",
                    value=qty,
                )
            try:
                ledger = state.ledger.restore(consumptions)
            except ValueError as exc:
                return CostingResult.fail(ValidationError.code, str(exc), value=qty)
            logger.debug(
                "costing_outflow_restored",
                extra={"qty": str(qty), "layers_touched": len(consumptions)},
            )
            return CostingResult.ok(
                StockState.from_ledger(ledger),
                cogs=sum((c.cost for c in consumptions), ZERO),
                consumptions=tuple(consumptions),
            )

        return self.add_inflow(
            state,
            qty=qty,
            unit_cost=previous_cogs / qty,
            date=date,
            source=source,
            sequence=sequence,
        )

    @traced_engine("costing", "1.0", fingerprint_fields=("qty", "unit_cost", "policy"))
    def reverse_inflow(
        self,
        state: StockState,
        *,
        qty: Decimal,
        policy: ValuationMethod,
        unit_cost: Decimal | None = None,
        origin_ref: UUID | None = None,
    ) -> CostingResult:
        """
        Undo an earlier inflow of ``qty``.

        Quantity is taken back from the layers the inflow created first
        (matched by ``origin_ref``, or by ``unit_cost`` when no reference is
        given), newest first, then from the remaining layers newest first.
        Whatever cannot be taken because it has already left stock is
        reported as ``shortfall`` and ``on_hand`` stops at zero.  A matched
        layer that is taken back in full before any of it was consumed is
        dropped from the ledger.  ``policy`` is logged only; every policy
        recomputes the average from the surviving layers.
        """
        if qty <= 0:
            return _non_positive(qty)
        if unit_cost is not None and unit_cost < 0:
            return _negative_cost(unit_cost)

        def matches(layer: CostLayer) -> bool:
            if origin_ref is not None:
                return layer.origin_ref == origin_ref
            if unit_cost is not None:
                return layer.unit_cost == unit_cost and layer.source is LayerSource.PURCHASE
            return False

        newest_first = state.ledger.layers_ordered_by_time(newest_first=True)
        ordered = [pair for pair in newest_first if matches(pair[1])]
        ordered += [pair for pair in newest_first if not matches(pair[1])]

        ledger = state.ledger
        outstanding = qty
        taken_back: list[LayerConsumption] = []
        drop: list[int] = []
        for index, layer in ordered:
            if outstanding <= 0:
                break
            if layer.is_exhausted:
                continue
            take = min(layer.remaining, outstanding)
            if matches(layer) and layer.is_untouched and take == layer.initial_quantity:
                drop.append(index)
            ledger = ledger.replace_layer(index, layer.with_remaining(layer.remaining - take))
            taken_back.append(LayerConsumption(index, layer.sequence, take, layer.unit_cost))
            outstanding -= take

        for index in sorted(drop, reverse=True):
            ledger = ledger.without_layer(index)

        shortfall = outstanding if outstanding > EPSILON else ZERO
        new_state = StockState.from_ledger(ledger)
        logger.debug(
            "costing_inflow_reversed",
            extra={
                "qty": str(qty),
                "policy": policy.value,
                "shortfall": str(shortfall),
                "layers_dropped": len(drop),
            },
        )
        return CostingResult.ok(
            new_state,
            cogs=sum((c.cost for c in taken_back), ZERO),
            consumptions=tuple(taken_back),
            shortfall=shortfall,
        )

    def recompute_average(self, state: StockState) -> StockState:
        """Average cost recomputed from the surviving layers."""
        return StockState(
            on_hand=state.on_hand,
            average_cost=state.ledger.weighted_average() if state.on_hand > 0 else ZERO,
            ledger=state.ledger,
        )
