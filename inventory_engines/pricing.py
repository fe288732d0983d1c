"""
Pricing Pure Functions (``inventory_engines.pricing``).

Responsibility
--------------
Sale price from cost and margin or markup, the inverse calculations, and
quantity-break tier selection.

Architecture
------------
Layer: **Engines** -- pure helper functions.  No I/O, no session, no clock.

Invariants
----------
- ``Decimal`` in, ``Decimal`` out.  No rounding.
- Each function validates its own preconditions and raises ``ValueError``.

Failure Modes
-------------
- ``sale_price_from_margin``: margin outside ``[0, 100)`` or negative cost.
- ``sale_price_from_markup``: negative markup or cost.
- ``margin_of``: non-positive price.
- ``markup_of``: non-positive cost.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from inventory_kernel.domain.types import PriceTier

HUNDRED = Decimal("100")


def sale_price_from_margin(cost: Decimal, margin_percent: Decimal) -> Decimal:
    """
    Price at which ``margin_percent`` of the price is profit.

    ``price = cost / (1 - margin / 100)``.

    Raises:
        ValueError: If cost < 0 or margin is not in [0, 100).
    """
    if cost < 0:
        raise ValueError(f"Cost cannot be negative, got {cost}")
    if margin_percent < 0 or margin_percent >= HUNDRED:
        raise ValueError(f"Margin must be in [0, 100), got {margin_percent}")
    return cost / (1 - margin_percent / HUNDRED)


def sale_price_from_markup(cost: Decimal, markup_percent: Decimal) -> Decimal:
    """``price = cost * (1 + markup / 100)``."""
    if cost < 0:
        raise ValueError(f"Cost cannot be negative, got {cost}")
    if markup_percent < 0:
        raise ValueError(f"Markup cannot be negative, got {markup_percent}")
    return cost * (1 + markup_percent / HUNDRED)


def margin_of(cost: Decimal, price: Decimal) -> Decimal:
    """Profit as a percentage of price."""
    if price <= 0:
        raise ValueError(f"Price must be positive, got {price}")
    return (price - cost) / price * HUNDRED


def markup_of(cost: Decimal, price: Decimal) -> Decimal:
    """Profit as a percentage of cost."""
    if cost <= 0:
        raise ValueError(f"Cost must be positive, got {cost}")
    return (price - cost) / cost * HUNDRED


def price_for_quantity(
    base_price: Decimal | None,
    tiers: Sequence[PriceTier],
    quantity: Decimal,
) -> Decimal | None:
    """
    Unit price for an order of ``quantity``.

    The tier with the highest ``quantity_threshold`` not above ``quantity``
    wins.  With no qualifying tier the base price applies (None if unset).
    """
    if quantity <= 0:
        raise ValueError(f"Quantity must be positive, got {quantity}")
    best: PriceTier | None = None
    for tier in tiers:
        if tier.quantity_threshold <= quantity and (
            best is None or tier.quantity_threshold > best.quantity_threshold
        ):
            best = tier
    return best.price if best is not None else base_price
