"""
Tests for CostingEngine - FIFO, LIFO and weighted-average costing.

Tests cover:
- Inflow average formula
- Outflow COGS per policy (the FIFO / LIFO purchase-then-sale values)
- Failure results instead of exceptions
- Outflow and inflow reversals, including stock already consumed
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_engines.valuation import CostingEngine, StockState
from inventory_kernel.domain.types import LayerSource, ValuationMethod
from inventory_kernel.exceptions import InsufficientStockError, NonPositiveQuantityError

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine() -> CostingEngine:
    return CostingEngine()


def receive(engine, state, qty, cost, *, at=T0, origin_ref=None) -> StockState:
    result = engine.add_inflow(
        state,
        qty=Decimal(qty),
        unit_cost=Decimal(cost),
        date=at,
        source=LayerSource.PURCHASE,
        origin_ref=origin_ref,
    )
    assert result.success, result.error_message
    return result.state


def two_purchases(engine) -> StockState:
    state = receive(engine, StockState.empty(), "10", "2.00")
    return receive(engine, state, "5", "3.00")


class TestAddInflow:

    def test_first_inflow_sets_average_to_cost(self, engine):
        state = receive(engine, StockState.empty(), "10", "2.00")
        assert state.on_hand == Decimal("10")
        assert state.average_cost == Decimal("2.00")
        assert len(state.ledger.layers) == 1

    def test_average_is_quantity_weighted(self, engine):
        state = two_purchases(engine)
        assert state.on_hand == Decimal("15")
        assert state.average_cost == Decimal("35") / Decimal("15")

    def test_layers_keep_insertion_order(self, engine):
        state = two_purchases(engine)
        assert [l.unit_cost for l in state.ledger.layers] == [Decimal("2.00"), Decimal("3.00")]
        assert [l.sequence for l in state.ledger.layers] == [0, 1]

    def test_non_positive_quantity_fails(self, engine):
        result = engine.add_inflow(
            StockState.empty(), qty=Decimal("0"), unit_cost=Decimal("1"),
            date=T0, source=LayerSource.MANUAL,
        )
        assert not result.success
        assert result.error_code == "NON_POSITIVE_QUANTITY"
        assert isinstance(result.to_error(), NonPositiveQuantityError)

    def test_negative_cost_fails(self, engine):
        result = engine.add_inflow(
            StockState.empty(), qty=Decimal("1"), unit_cost=Decimal("-1"),
            date=T0, source=LayerSource.MANUAL,
        )
        assert result.error_code == "NEGATIVE_COST"

    def test_zero_cost_inflow_allowed(self, engine):
        state = receive(engine, StockState.empty(), "3", "0")
        assert state.average_cost == 0


class TestConsume:

    def test_fifo_purchase_then_sale(self, engine):
        result = engine.consume(
            two_purchases(engine), qty=Decimal("12"), policy=ValuationMethod.FIFO,
            date=T0, source="sale",
        )
        assert result.cogs == Decimal("26.00")
        assert result.state.on_hand == Decimal("3")
        assert [l.remaining for l in result.state.ledger.layers] == [Decimal("0"), Decimal("3")]
        assert result.state.average_cost == Decimal("3.00")

    def test_lifo_purchase_then_sale(self, engine):
        result = engine.consume(
            two_purchases(engine), qty=Decimal("12"), policy=ValuationMethod.LIFO,
            date=T0, source="sale",
        )
        assert result.cogs == Decimal("29.00")
        assert [l.remaining for l in result.state.ledger.layers] == [Decimal("3"), Decimal("0")]
        assert result.state.average_cost == Decimal("2.00")

    def test_weighted_average_costs_at_average(self, engine):
        state = two_purchases(engine)
        result = engine.consume(
            state, qty=Decimal("6"), policy=ValuationMethod.WEIGHTED_AVG, date=T0, source="sale",
        )
        assert result.cogs == Decimal("6") * state.average_cost
        assert result.state.average_cost == state.average_cost
        assert result.state.on_hand == Decimal("9")

    def test_weighted_average_to_zero_resets_average(self, engine):
        result = engine.consume(
            two_purchases(engine), qty=Decimal("15"), policy=ValuationMethod.WEIGHTED_AVG,
            date=T0, source="sale",
        )
        assert result.state.on_hand == 0
        assert result.state.average_cost == 0

    def test_insufficient_stock_is_a_result(self, engine):
        state = two_purchases(engine)
        result = engine.consume(
            state, qty=Decimal("16"), policy=ValuationMethod.FIFO, date=T0, source="sale",
        )
        assert not result.success
        error = result.to_error("item-1")
        assert isinstance(error, InsufficientStockError)
        assert error.requested == Decimal("16")
        assert error.available == Decimal("15")

    def test_input_state_untouched_on_failure(self, engine):
        state = two_purchases(engine)
        engine.consume(state, qty=Decimal("99"), policy=ValuationMethod.LIFO, date=T0, source="sale")
        assert state.on_hand == Decimal("15")


class TestReverseOutflow:

    def test_reconstructive_layer_at_previous_unit_cost(self, engine):
        sold = engine.consume(
            two_purchases(engine), qty=Decimal("12"), policy=ValuationMethod.FIFO,
            date=T0, source="sale",
        )
        result = engine.reverse_outflow(
            sold.state, qty=Decimal("12"), previous_cogs=sold.cogs,
            policy=ValuationMethod.FIFO, date=T0,
        )
        assert result.state.on_hand == Decimal("15")
        restored = result.state.ledger.layers[-1]
        assert restored.source is LayerSource.RETURN
        assert restored.unit_cost == Decimal("26.00") / Decimal("12")
        assert abs(result.state.average_cost - Decimal("35") / Decimal("15")) < Decimal("1e-20")

    def test_restore_into_original_layers_with_consumptions(self, engine):
        sold = engine.consume(
            two_purchases(engine), qty=Decimal("12"), policy=ValuationMethod.LIFO,
            date=T0, source="sale",
        )
        result = engine.reverse_outflow(
            sold.state, qty=Decimal("12"), previous_cogs=sold.cogs,
            policy=ValuationMethod.LIFO, date=T0, consumptions=sold.consumptions,
        )
        assert len(result.state.ledger.layers) == 2
        assert [l.remaining for l in result.state.ledger.layers] == [Decimal("10"), Decimal("5")]

    def test_consumption_record_must_cover_quantity(self, engine):
        sold = engine.consume(
            two_purchases(engine), qty=Decimal("12"), policy=ValuationMethod.FIFO,
            date=T0, source="sale",
        )
        result = engine.reverse_outflow(
            sold.state, qty=Decimal("5"), previous_cogs=Decimal("10"),
            policy=ValuationMethod.FIFO, date=T0, consumptions=sold.consumptions,
        )
        assert result.error_code == "VALIDATION_FIELD"

    def test_negative_previous_cogs_fails(self, engine):
        result = engine.reverse_outflow(
            StockState.empty(), qty=Decimal("1"), previous_cogs=Decimal("-1"),
            policy=ValuationMethod.FIFO, date=T0,
        )
        assert result.error_code == "NEGATIVE_COST"


class TestReverseInflow:

    def test_untouched_origin_layer_is_dropped(self, engine):
        line = uuid4()
        state = receive(engine, StockState.empty(), "10", "2.00")
        state = receive(engine, state, "5", "3.00", origin_ref=line)
        result = engine.reverse_inflow(
            state, qty=Decimal("5"), policy=ValuationMethod.FIFO, origin_ref=line,
        )
        assert result.shortfall == 0
        assert len(result.state.ledger.layers) == 1
        assert result.state.on_hand == Decimal("10")
        assert result.state.average_cost == Decimal("2.00")

    def test_matches_by_unit_cost_without_reference(self, engine):
        state = receive(engine, StockState.empty(), "10", "2.00")
        state = receive(engine, state, "5", "3.00", at=T0 - timedelta(days=1))
        result = engine.reverse_inflow(
            state, qty=Decimal("5"), policy=ValuationMethod.FIFO, unit_cost=Decimal("3.00"),
        )
        assert [l.unit_cost for l in result.state.ledger.layers] == [Decimal("2.00")]

    def test_consumed_stock_reported_as_shortfall(self, engine):
        line = uuid4()
        state = receive(engine, StockState.empty(), "10", "2.00", origin_ref=line)
        sold = engine.consume(
            state, qty=Decimal("8"), policy=ValuationMethod.FIFO, date=T0, source="sale",
        )
        result = engine.reverse_inflow(
            sold.state, qty=Decimal("10"), policy=ValuationMethod.FIFO, origin_ref=line,
        )
        assert result.success
        assert result.shortfall == Decimal("8")
        assert result.state.on_hand == 0
        assert result.state.average_cost == 0

    def test_takes_other_layers_after_origin_exhausted(self, engine):
        line = uuid4()
        state = receive(engine, StockState.empty(), "10", "2.00")
        state = receive(engine, state, "5", "3.00", origin_ref=line)
        sold = engine.consume(
            state, qty=Decimal("5"), policy=ValuationMethod.LIFO, date=T0, source="sale",
        )
        result = engine.reverse_inflow(
            sold.state, qty=Decimal("5"), policy=ValuationMethod.LIFO, origin_ref=line,
        )
        assert result.shortfall == 0
        assert result.state.on_hand == Decimal("5")


class TestRecomputeAverage:

    def test_average_follows_layers(self, engine):
        state = two_purchases(engine)
        skewed = StockState(on_hand=state.on_hand, average_cost=Decimal("9"), ledger=state.ledger)
        assert engine.recompute_average(skewed).average_cost == Decimal("35") / Decimal("15")
