"""
Module: inventory_engines
Responsibility:
    Pure calculation engines: the cost-layer ledger and costing policy,
    transaction totals, pricing, and stock-level checks.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import inventory_kernel.domain, inventory_kernel.exceptions and
    inventory_kernel.logging_config.  MUST NOT import inventory_services.

Invariants enforced:
    - Purity: engines never read the clock.  Dates are passed in.
    - Decimal-only arithmetic; no rounding inside an engine.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from inventory_engines.valuation import CostingEngine, StockState
    from inventory_engines.totals import compute_totals
    from inventory_engines.pricing import price_for_quantity
"""

from inventory_engines.pricing import (
    margin_of,
    markup_of,
    price_for_quantity,
    sale_price_from_margin,
    sale_price_from_markup,
)
from inventory_engines.stock_levels import (
    Thresholds,
    below_minimum,
    clamp_thresholds,
    inventory_value,
    needs_reorder,
)
from inventory_engines.totals import (
    LineAmounts,
    Totals,
    compute_totals,
    line_total,
    net_unit_cost,
    payment_status_for,
)
from inventory_engines.valuation import (
    CostingEngine,
    CostingResult,
    CostLayer,
    StockLedger,
    StockState,
)

__all__ = [
    "CostLayer",
    "CostingEngine",
    "CostingResult",
    "LineAmounts",
    "StockLedger",
    "StockState",
    "Thresholds",
    "Totals",
    "below_minimum",
    "clamp_thresholds",
    "compute_totals",
    "inventory_value",
    "line_total",
    "margin_of",
    "markup_of",
    "needs_reorder",
    "net_unit_cost",
    "payment_status_for",
    "price_for_quantity",
    "sale_price_from_margin",
    "sale_price_from_markup",
]
