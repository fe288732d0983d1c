"""Tests for reorder / minimum checks and threshold clamping."""

from decimal import Decimal

from inventory_engines.stock_levels import (
    below_minimum,
    clamp_thresholds,
    inventory_value,
    needs_reorder,
)


class TestLevelChecks:

    def test_reorder_at_or_below_point(self):
        assert needs_reorder(Decimal("5"), Decimal("5"))
        assert not needs_reorder(Decimal("6"), Decimal("5"))

    def test_below_minimum_is_strict(self):
        assert below_minimum(Decimal("1"), Decimal("2"))
        assert not below_minimum(Decimal("2"), Decimal("2"))

    def test_inventory_value(self):
        assert inventory_value(Decimal("3"), Decimal("2.50")) == Decimal("7.50")


class TestClampThresholds:

    def test_negatives_become_zero(self):
        t = clamp_thresholds(Decimal("-1"), Decimal("-2"), Decimal("-3"))
        assert (t.minimum_level, t.reorder_point, t.maximum_level) == (0, 0, 0)

    def test_reorder_raised_to_minimum(self):
        t = clamp_thresholds(Decimal("10"), Decimal("5"), Decimal("50"))
        assert t.reorder_point == Decimal("10")

    def test_maximum_raised_to_reorder(self):
        t = clamp_thresholds(Decimal("2"), Decimal("20"), Decimal("10"))
        assert t.maximum_level == Decimal("20")

    def test_zero_maximum_means_unbounded(self):
        t = clamp_thresholds(Decimal("2"), Decimal("20"), Decimal("0"))
        assert t.maximum_level == 0
