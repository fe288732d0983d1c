"""
Valuation - Pure cost-layer ledger and costing policy engine.

The stateful Item Service that persists these states lives in
inventory_services.item_service.
"""

from inventory_engines.valuation.costing import (
    CostingEngine,
    CostingResult,
    StockState,
)
from inventory_engines.valuation.stock_ledger import (
    EPSILON,
    CostLayer,
    LayerConsumption,
    LedgerConsumption,
    StockLedger,
)

__all__ = [
    "CostLayer",
    "CostingEngine",
    "CostingResult",
    "EPSILON",
    "LayerConsumption",
    "LedgerConsumption",
    "StockLedger",
    "StockState",
]
