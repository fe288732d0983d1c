"""
Stock-level helpers (``inventory_engines.stock_levels``).

Reorder and minimum-level checks, threshold clamping and inventory value.
Pure functions; ``Decimal`` only.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

ZERO = Decimal("0")


@dataclass(frozen=True)
class Thresholds:
    minimum_level: Decimal
    reorder_point: Decimal
    maximum_level: Decimal


def needs_reorder(on_hand: Decimal, reorder_point: Decimal) -> bool:
    return on_hand <= reorder_point


def below_minimum(on_hand: Decimal, minimum_level: Decimal) -> bool:
    return on_hand < minimum_level


def clamp_thresholds(
    minimum_level: Decimal,
    reorder_point: Decimal,
    maximum_level: Decimal,
) -> Thresholds:
    """
    Force ``0 <= minimum <= reorder <= maximum``.

    Negative values become zero.  The reorder point is raised to the
    minimum.  ``maximum == 0`` means no upper bound; otherwise the maximum
    is raised to the reorder point.
    """
    minimum = max(minimum_level, ZERO)
    reorder = max(reorder_point, minimum)
    maximum = max(maximum_level, ZERO)
    if maximum != 0:
        maximum = max(maximum, reorder)
    return Thresholds(minimum_level=minimum, reorder_point=reorder, maximum_level=maximum)


def inventory_value(on_hand: Decimal, average_cost: Decimal) -> Decimal:
    return on_hand * average_cost
