"""
inventory_services.results -- Frozen outcome types returned by the services.

Item Service operations return one of the outcome dataclasses below and
raise typed kernel exceptions on failure.  Transaction Engine port
operations never raise for domain failures: they return a
``TransactionResult`` whose status names what happened.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from inventory_kernel.domain.types import (
    ItemSnapshot,
    PaymentStatus,
    StockWarning,
    TransactionSnapshot,
    TransactionStatus,
)
from inventory_kernel.exceptions import (
    ConcurrencyError,
    DuplicateError,
    IllegalTransitionError,
    InsufficientStockError,
    InventoryKernelError,
    NotFoundError,
    OperationTimeoutError,
    ValidationError,
)


# =============================================================================
# Item Service outcomes
# =============================================================================


@dataclass(frozen=True)
class InventoryAddition:
    """Stock after an inflow (or an undone outflow)."""

    item_id: UUID
    quantity: Decimal
    unit_cost: Decimal
    new_on_hand: Decimal
    new_average: Decimal
    layer_sequence: int | None = None
    warnings: tuple[StockWarning, ...] = ()


@dataclass(frozen=True)
class InventoryRemoval:
    """Cost and remaining stock after an outflow."""

    item_id: UUID
    quantity: Decimal
    cogs: Decimal
    remaining_on_hand: Decimal
    remaining_value: Decimal
    warnings: tuple[StockWarning, ...] = ()

    @property
    def unit_cost(self) -> Decimal:
        return self.cogs / self.quantity if self.quantity else Decimal("0")


@dataclass(frozen=True)
class InflowReversal:
    """Stock after an inflow was taken back; ``shortfall`` had already left."""

    item_id: UUID
    quantity: Decimal
    reversed_quantity: Decimal
    shortfall: Decimal
    new_on_hand: Decimal
    new_average: Decimal
    warnings: tuple[StockWarning, ...] = ()


@dataclass(frozen=True)
class SettingsUpdate:
    item: ItemSnapshot
    changed_fields: tuple[str, ...] = ()
    warnings: tuple[StockWarning, ...] = ()


@dataclass(frozen=True)
class CategoryValuation:
    category: str
    item_count: int
    on_hand_value: Decimal


@dataclass(frozen=True)
class InventoryValuation:
    """On-hand value across items, with per-category subtotals."""

    item_count: int
    total_value: Decimal
    categories: tuple[CategoryValuation, ...] = ()
    below_minimum_count: int = 0
    needs_reorder_count: int = 0


# =============================================================================
# Transaction Engine outcomes
# =============================================================================


class TransactionResultStatus(str, Enum):
    """Status of a Transaction Engine operation."""

    OK = "ok"
    DELETED = "deleted"
    VALIDATION_FAILED = "validation_failed"
    DUPLICATE = "duplicate"
    INSUFFICIENT_STOCK = "insufficient_stock"
    ILLEGAL_TRANSITION = "illegal_transition"
    NOT_FOUND = "not_found"
    STORE_CONTENTION = "store_contention"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass(frozen=True)
class TransactionResult:
    """Result of a Transaction Engine operation."""

    status: TransactionResultStatus
    transaction: TransactionSnapshot | None = None
    warnings: tuple[StockWarning, ...] = ()
    error_code: str | None = None
    message: str | None = None
    details: dict = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status in (TransactionResultStatus.OK, TransactionResultStatus.DELETED)

    @property
    def warning_codes(self) -> tuple[str, ...]:
        return tuple(w.code.value for w in self.warnings)

    @classmethod
    def ok(
        cls,
        transaction: TransactionSnapshot,
        warnings: tuple[StockWarning, ...] = (),
    ) -> TransactionResult:
        return cls(status=TransactionResultStatus.OK, transaction=transaction, warnings=warnings)

    @classmethod
    def deleted(
        cls,
        transaction: TransactionSnapshot,
        warnings: tuple[StockWarning, ...] = (),
    ) -> TransactionResult:
        return cls(
            status=TransactionResultStatus.DELETED, transaction=transaction, warnings=warnings,
        )

    @classmethod
    def from_error(cls, exc: InventoryKernelError) -> TransactionResult:
        """Map a typed kernel error to a failed result carrying its code."""
        details = {
            key: value
            for key, value in vars(exc).items()
            if not key.startswith("_") and isinstance(value, (str, int, Decimal, type(None)))
        }
        return cls(
            status=_status_for(exc),
            error_code=exc.code,
            message=str(exc),
            details=details,
        )


def _status_for(exc: InventoryKernelError) -> TransactionResultStatus:
    if isinstance(exc, InsufficientStockError):
        return TransactionResultStatus.INSUFFICIENT_STOCK
    if isinstance(exc, IllegalTransitionError):
        return TransactionResultStatus.ILLEGAL_TRANSITION
    if isinstance(exc, DuplicateError):
        return TransactionResultStatus.DUPLICATE
    if isinstance(exc, ValidationError):
        return TransactionResultStatus.VALIDATION_FAILED
    if isinstance(exc, NotFoundError):
        return TransactionResultStatus.NOT_FOUND
    if isinstance(exc, ConcurrencyError):
        return TransactionResultStatus.STORE_CONTENTION
    if isinstance(exc, OperationTimeoutError):
        return TransactionResultStatus.TIMED_OUT
    return TransactionResultStatus.FAILED


# =============================================================================
# Transaction reporting
# =============================================================================


@dataclass(frozen=True)
class StatusGroup:
    """Count and summed total of the transactions sharing one status."""

    count: int
    total_amount: Decimal


@dataclass(frozen=True)
class TransactionStats:
    count: int
    total_amount: Decimal
    amount_paid: Decimal
    outstanding: Decimal
    by_status: dict[TransactionStatus, StatusGroup] = field(default_factory=dict)
    by_payment_status: dict[PaymentStatus, StatusGroup] = field(default_factory=dict)

    @property
    def average_value(self) -> Decimal:
        return self.total_amount / self.count if self.count else Decimal("0")


@dataclass(frozen=True)
class DailyTotal:
    """Count and summed total of one period; ``day`` is the first day of the period."""

    day: date
    count: int
    total: Decimal
