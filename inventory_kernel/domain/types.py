"""
inventory_kernel.domain.types -- Enums and frozen snapshots for the inventory core.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.  ORM models convert to these via ``to_dto()`` so
callers never hold live session state after a Unit-of-Work closes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Item enums
# =============================================================================


class ItemKind(str, Enum):
    """Catalogue classification of an item."""

    MATERIAL = "material"  # Consumed in production
    PRODUCT = "product"  # Sold to customers
    DUAL = "dual"  # Both


class Measurement(str, Enum):
    """Dimension an item is counted in."""

    QUANTITY = "quantity"
    WEIGHT = "weight"
    LENGTH = "length"
    AREA = "area"
    VOLUME = "volume"


class ValuationMethod(str, Enum):
    """Rule selecting which cost layers an outflow debits."""

    FIFO = "FIFO"
    LIFO = "LIFO"
    WEIGHTED_AVG = "WEIGHTED_AVG"


class LayerSource(str, Enum):
    """Provenance of a cost layer."""

    PURCHASE = "purchase"
    ADJUSTMENT = "adjustment"
    MANUAL = "manual"
    RETURN = "return"


# =============================================================================
# Transaction enums
# =============================================================================


class TransactionKind(str, Enum):
    PURCHASE = "PURCHASE"
    SALE = "SALE"


class TransactionStatus(str, Enum):
    """Lifecycle status of a purchase or sale."""

    DRAFT = "DRAFT"
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PARTIAL = "PARTIAL"  # Some lines partly received / fulfilled
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    RETURNED = "RETURNED"


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    REFUNDED = "REFUNDED"
    VOIDED = "VOIDED"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    ONLINE_PAYMENT = "online_payment"
    STORE_CREDIT = "store_credit"
    OTHER = "other"


# =============================================================================
# Warnings
# =============================================================================


class WarningCode(str, Enum):
    """Soft conditions reported alongside a successful result."""

    STOCK_ALREADY_CONSUMED = "STOCK_ALREADY_CONSUMED"
    VALUATION_SWITCH_MIXED_LEDGER = "VALUATION_SWITCH_MIXED_LEDGER"


@dataclass(frozen=True)
class StockWarning:
    """A warning carried alongside a success result; never raised."""

    code: WarningCode
    message: str
    item_id: UUID | None = None
    details: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Snapshots
# =============================================================================


@dataclass(frozen=True)
class PriceTier:
    """Quantity break: orders of at least ``quantity_threshold`` pay ``price``."""

    name: str
    quantity_threshold: Decimal
    price: Decimal


@dataclass(frozen=True)
class CostLayerSnapshot:
    sequence: int
    date: datetime
    initial_quantity: Decimal
    unit_cost: Decimal
    remaining: Decimal
    source: LayerSource
    origin_line_id: UUID | None = None

    @property
    def is_exhausted(self) -> bool:
        return self.remaining == 0


@dataclass(frozen=True)
class ItemSnapshot:
    """Immutable view of an item and its stock ledger."""

    item_id: UUID
    sku: str
    name: str
    kind: ItemKind
    category: str
    measurement: Measurement
    unit: str
    on_hand: Decimal
    average_cost: Decimal
    valuation: ValuationMethod
    minimum_level: Decimal
    reorder_point: Decimal
    maximum_level: Decimal
    layers: tuple[CostLayerSnapshot, ...] = ()
    description: str | None = None
    tags: tuple[str, ...] = ()
    location: str | None = None
    sale_price: Decimal | None = None
    margin_percent: Decimal | None = None
    markup_percent: Decimal | None = None
    price_tiers: tuple[PriceTier, ...] = ()
    last_updated: datetime | None = None

    @property
    def inventory_value(self) -> Decimal:
        return self.on_hand * self.average_cost


@dataclass(frozen=True)
class LineItemSnapshot:
    line_id: UUID
    position: int
    item_id: UUID
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal
    received_or_fulfilled: Decimal
    line_cogs: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class PaymentSnapshot:
    payment_id: UUID
    amount: Decimal
    method: PaymentMethod
    date: date
    reference: str | None = None


@dataclass(frozen=True)
class TransactionSnapshot:
    """Immutable view of a purchase or sale with its lines and payments."""

    transaction_id: UUID
    external_id: str
    kind: TransactionKind
    counterparty_id: str
    date: date
    status: TransactionStatus
    payment_status: PaymentStatus
    subtotal: Decimal
    discount_percent: Decimal
    tax_rate_percent: Decimal
    shipping: Decimal
    total: Decimal
    amount_paid: Decimal
    lines: tuple[LineItemSnapshot, ...] = ()
    payments: tuple[PaymentSnapshot, ...] = ()
    counterparty_name: str | None = None
    notes: str | None = None
    payment_due_date: date | None = None
    payment_date: date | None = None
    stock_applied: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def balance_due(self) -> Decimal:
        return max(self.total - self.amount_paid, Decimal("0"))
