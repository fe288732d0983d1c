"""
Module: inventory_kernel.db.types
Responsibility: Storage precision for quantities, unit costs and money.
Architecture position: Kernel > DB.  May be imported by models/, services/,
    and repositories/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats.  Quantities, unit costs and money are Decimal stored as
      Numeric(38, 9) (see ``Base.type_annotation_map``).
    - STORE_QUANTUM is the precision of the store.  Values leaving the pure
      engines are quantized with quantize_for_store() exactly once, at the
      persistence boundary, so that what a caller holds in memory equals
      what a fresh read returns.
"""

from decimal import ROUND_HALF_EVEN, Decimal

STORE_DECIMAL_PLACES = 9
STORE_QUANTUM = Decimal(1).scaleb(-STORE_DECIMAL_PLACES)


def quantize_for_store(value: Decimal) -> Decimal:
    """Round a Decimal to store precision (banker's rounding)."""
    return Decimal(value).quantize(STORE_QUANTUM, rounding=ROUND_HALF_EVEN)
