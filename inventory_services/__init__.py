"""
inventory_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure engines
    (inventory_engines/) with Units-of-Work, repositories and the clock.
    This is the only layer that opens store transactions or reads time.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

        inventory_services/ -> inventory_engines/  (allowed)
        inventory_services/ -> inventory_kernel/   (allowed)
        inventory_engines/  -> inventory_services/ (FORBIDDEN)
        inventory_kernel/   -> inventory_services/ (FORBIDDEN)

Invariants enforced:
    - DI transparency: sessions, clocks and config arrive through
      constructors; no service reaches for a process-wide engine.
"""

from inventory_kernel.logging_config import get_logger

logger = get_logger("services")

from inventory_services.item_service import ItemService, ItemSpec
from inventory_services.results import (
    CategoryValuation,
    DailyTotal,
    InflowReversal,
    InventoryAddition,
    InventoryRemoval,
    InventoryValuation,
    SettingsUpdate,
    StatusGroup,
    TransactionResult,
    TransactionResultStatus,
    TransactionStats,
)
from inventory_services.transaction_engine import LineSpec, TransactionEngine, TransactionSpec
from inventory_services.workflows import TRANSACTION_WORKFLOW

__all__ = [
    "CategoryValuation",
    "DailyTotal",
    "InflowReversal",
    "InventoryAddition",
    "InventoryRemoval",
    "InventoryValuation",
    "ItemService",
    "ItemSpec",
    "LineSpec",
    "SettingsUpdate",
    "StatusGroup",
    "TRANSACTION_WORKFLOW",
    "TransactionEngine",
    "TransactionResult",
    "TransactionResultStatus",
    "TransactionSpec",
    "TransactionStats",
]
