"""
Transaction totals (``inventory_engines.totals``).

Responsibility
--------------
Line totals, the header subtotal / discount / tax / shipping roll-up, and
the payment status that follows from the amount paid.

Architecture
------------
Layer: **Engines** -- pure functions.  The Transaction Engine calls them on
every line or header write so stored totals always match their inputs.

Invariants
----------
- ``line_total = quantity * unit_price * (1 - discount / 100)``.
- ``total = discounted + tax + shipping`` where the discount applies to
  the subtotal and the tax to the discounted subtotal.
- No rounding inside; the store quantizes.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from collections.abc import Iterable

from inventory_kernel.domain.types import PaymentStatus

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LineAmounts:
    """The priced inputs of one line."""

    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal = ZERO


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    shipping: Decimal
    total: Decimal


def _check_percent(name: str, value: Decimal) -> None:
    if value < 0 or value > HUNDRED:
        raise ValueError(f"{name} must be within [0, 100], got {value}")


def line_total(quantity: Decimal, unit_price: Decimal, discount_percent: Decimal = ZERO) -> Decimal:
    _check_percent("discount_percent", discount_percent)
    return quantity * unit_price * (1 - discount_percent / HUNDRED)


def net_unit_cost(unit_price: Decimal, discount_percent: Decimal = ZERO) -> Decimal:
    """Unit price after the line discount; the cost basis of a received unit."""
    _check_percent("discount_percent", discount_percent)
    return unit_price * (1 - discount_percent / HUNDRED)


def compute_totals(
    lines: Iterable[LineAmounts],
    discount_percent: Decimal = ZERO,
    tax_rate_percent: Decimal = ZERO,
    shipping: Decimal = ZERO,
) -> Totals:
    """
    Roll line amounts up into header totals.

    Raises:
        ValueError: If a percentage is outside [0, 100] or shipping < 0.
    """
    _check_percent("discount_percent", discount_percent)
    if tax_rate_percent < 0:
        raise ValueError(f"tax_rate_percent cannot be negative, got {tax_rate_percent}")
    if shipping < 0:
        raise ValueError(f"shipping cannot be negative, got {shipping}")

    subtotal = sum(
        (line_total(line.quantity, line.unit_price, line.discount_percent) for line in lines),
        ZERO,
    )
    discount_amount = subtotal * discount_percent / HUNDRED
    discounted = subtotal - discount_amount
    tax_amount = discounted * tax_rate_percent / HUNDRED
    return Totals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        tax_amount=tax_amount,
        shipping=shipping,
        total=discounted + tax_amount + shipping,
    )


def payment_status_for(amount_paid: Decimal, total: Decimal) -> PaymentStatus:
    """UNPAID when nothing is paid, PAID once the total is covered, else PARTIAL."""
    if amount_paid <= 0:
        return PaymentStatus.UNPAID
    if amount_paid >= total:
        return PaymentStatus.PAID
    return PaymentStatus.PARTIAL
