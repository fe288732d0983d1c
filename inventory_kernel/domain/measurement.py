"""
Measurement catalogue (``inventory_kernel.domain.measurement``).

Closed set of unit tokens permitted for each measurement type.  Units are
validated on ingress; an item's measurement never changes afterwards.
"""

from __future__ import annotations

from inventory_kernel.domain.types import ItemKind, Measurement
from inventory_kernel.exceptions import InvalidUnitForMeasurementError, ValidationError

MEASUREMENT_UNITS: dict[Measurement, tuple[str, ...]] = {
    Measurement.QUANTITY: ("ea", "dozen", "case", "pallet", "box"),
    Measurement.WEIGHT: ("mg", "g", "kg", "oz", "lb", "ton"),
    Measurement.LENGTH: ("mm", "cm", "m", "in", "ft", "yd"),
    Measurement.AREA: ("sq.mm", "sq.cm", "sq.m", "sq.in", "sq.ft", "acre", "hectare"),
    Measurement.VOLUME: ("ml", "l", "gal", "fl.oz", "cu.in", "cu.ft", "cu.m"),
}

# Materials are usually bought by weight, products sold by count
DEFAULT_MEASUREMENT: dict[ItemKind, Measurement] = {
    ItemKind.MATERIAL: Measurement.WEIGHT,
    ItemKind.PRODUCT: Measurement.QUANTITY,
    ItemKind.DUAL: Measurement.QUANTITY,
}


def parse_measurement(value: str | Measurement) -> Measurement:
    """Coerce a measurement token, raising VALIDATION_FIELD when unknown."""
    try:
        return Measurement(value)
    except ValueError:
        raise ValidationError(
            "measurement",
            f"must be one of {[m.value for m in Measurement]}",
            value,
        ) from None


def validate_unit(measurement: str | Measurement, unit: str | None) -> str:
    """
    Check that ``unit`` belongs to the set permitted for ``measurement``.

    An empty unit is allowed only for ``quantity``.

    Returns:
        The unit token (``""`` for an empty quantity unit).

    Raises:
        InvalidUnitForMeasurementError: unit is not in the measurement's set.
    """
    kind = parse_measurement(measurement)
    allowed = MEASUREMENT_UNITS[kind]
    if not unit:
        if kind is Measurement.QUANTITY:
            return ""
        raise InvalidUnitForMeasurementError(kind.value, "", allowed)
    if unit not in allowed:
        raise InvalidUnitForMeasurementError(kind.value, unit, allowed)
    return unit
