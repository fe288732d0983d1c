"""
Typed Exception Hierarchy for the Inventory Kernel.

Every error raised by the core is a subclass of ``InventoryKernelError`` and
carries:
  1. A machine-readable ``code`` class attribute (catch by type, report by code).
  2. Structured attributes describing the failure (never only a message).
  3. A ``retryable`` flag consulted by the Unit-of-Work retry loop.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryKernelError (base)
    |
    +-- ValidationError                    VALIDATION_FIELD
    |   +-- InvalidUnitForMeasurementError INVALID_UNIT_FOR_MEASUREMENT
    |   +-- NonPositiveQuantityError       NON_POSITIVE_QUANTITY
    |   +-- NegativeCostError              NEGATIVE_COST
    |
    +-- DuplicateError
    |   +-- DuplicateSkuError              DUPLICATE_SKU
    |   +-- DuplicateExternalIdError       DUPLICATE_EXTERNAL_ID
    |
    +-- InsufficientStockError             INSUFFICIENT_STOCK
    |
    +-- IllegalTransitionError             ILLEGAL_TRANSITION
    |
    +-- NotFoundError                      NOT_FOUND
    |   +-- ItemNotFoundError
    |   +-- TransactionNotFoundError
    |
    +-- ConcurrencyError                   (retryable)
    |   +-- ConflictError                  CONFLICT
    |   +-- DeadlockError                  DEADLOCK
    |
    +-- UnitOfWorkError
        +-- UnitOfWorkAbortedError         UOW_ABORT_ONLY
        +-- OperationTimeoutError          TIMEOUT

===============================================================================
RECOVERY POLICY
===============================================================================

Code                         | Recovery
-----------------------------|-----------------------------------------------
VALIDATION_*                 | Surfaced to caller; no state change
INVALID_UNIT_FOR_MEASUREMENT | Surfaced; no state change
DUPLICATE_SKU / _EXTERNAL_ID | Surfaced; full rollback
INSUFFICIENT_STOCK           | Surfaced; full rollback of the transition
ILLEGAL_TRANSITION           | Surfaced; no state change
NOT_FOUND                    | Surfaced (find_* variants return None instead)
CONFLICT / DEADLOCK          | Retried by the Unit-of-Work; surfaced on exhaustion
TIMEOUT                      | Surfaced; rolled back if before commit

Warnings (``STOCK_ALREADY_CONSUMED``, ``VALUATION_SWITCH_MIXED_LEDGER``) are
not exceptions.  They travel alongside success results as ``StockWarning``
values (see ``inventory_kernel.domain.types``).
"""

from decimal import Decimal


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses must set a ``code`` class attribute.
    """

    code: str = "INVENTORY_KERNEL_ERROR"
    retryable: bool = False


# Validation


class ValidationError(InventoryKernelError):
    """An input field failed validation."""

    code: str = "VALIDATION_FIELD"

    def __init__(self, field: str, reason: str, value: object = None):
        self.field = field
        self.reason = reason
        self.value = value
        super().__init__(f"Invalid value for '{field}': {reason}")


class InvalidUnitForMeasurementError(ValidationError):
    """Unit token is not permitted for the item's measurement type."""

    code: str = "INVALID_UNIT_FOR_MEASUREMENT"

    def __init__(self, measurement: str, unit: str, allowed: tuple[str, ...]):
        self.measurement = measurement
        self.unit = unit
        self.allowed = allowed
        super().__init__(
            "unit",
            f"unit '{unit}' is not valid for measurement '{measurement}' "
            f"(allowed: {', '.join(allowed) or 'none'})",
            unit,
        )


class NonPositiveQuantityError(ValidationError):
    """Quantity must be strictly positive."""

    code: str = "NON_POSITIVE_QUANTITY"

    def __init__(self, quantity: Decimal):
        self.quantity = quantity
        super().__init__("quantity", f"must be positive, got {quantity}", quantity)


class NegativeCostError(ValidationError):
    """Unit cost must not be negative."""

    code: str = "NEGATIVE_COST"

    def __init__(self, unit_cost: Decimal):
        self.unit_cost = unit_cost
        super().__init__("unit_cost", f"must be non-negative, got {unit_cost}", unit_cost)


# Uniqueness


class DuplicateError(InventoryKernelError):
    """Base exception for unique-key conflicts detected by the store."""

    code: str = "DUPLICATE"


class DuplicateSkuError(DuplicateError):
    """Another item already uses this SKU."""

    code: str = "DUPLICATE_SKU"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"SKU '{sku}' is already in use")


class DuplicateExternalIdError(DuplicateError):
    """Another transaction already uses this external id."""

    code: str = "DUPLICATE_EXTERNAL_ID"

    def __init__(self, external_id: str):
        self.external_id = external_id
        super().__init__(f"External id '{external_id}' is already in use")


# Stock


class InsufficientStockError(InventoryKernelError):
    """Requested outflow exceeds the stock on hand."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        requested: Decimal,
        available: Decimal,
        item_id: str | None = None,
    ):
        self.item_id = item_id
        self.requested = requested
        self.available = available
        target = f" for item {item_id}" if item_id else ""
        super().__init__(
            f"Insufficient stock{target}: requested {requested}, available {available}"
        )


# Lifecycle


class IllegalTransitionError(InventoryKernelError):
    """Status change is not permitted by the transaction state machine."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(
        self,
        from_status: str,
        to_status: str,
        transaction_id: str | None = None,
        reason: str | None = None,
    ):
        self.transaction_id = transaction_id
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        message = f"Illegal transition {from_status} -> {to_status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# Lookup


class NotFoundError(InventoryKernelError):
    """A record with the given id does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class ItemNotFoundError(NotFoundError):
    def __init__(self, item_id: str):
        super().__init__("Item", str(item_id))


class TransactionNotFoundError(NotFoundError):
    def __init__(self, transaction_id: str):
        super().__init__("Transaction", str(transaction_id))


# Concurrency


class ConcurrencyError(InventoryKernelError):
    """Base exception for store-level contention. Always retryable."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True

    def __init__(self, message: str, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class ConflictError(ConcurrencyError):
    """Serialization failure or lock timeout reported by the store."""

    code: str = "CONFLICT"


class DeadlockError(ConcurrencyError):
    """The store aborted the transaction to break a deadlock."""

    code: str = "DEADLOCK"


# Unit-of-Work


class UnitOfWorkError(InventoryKernelError):
    """Base exception for Unit-of-Work misuse or aborted scopes."""

    code: str = "UOW_ERROR"


class UnitOfWorkAbortedError(UnitOfWorkError):
    """An inner scope failed, so the outer scope cannot commit."""

    code: str = "UOW_ABORT_ONLY"

    def __init__(self) -> None:
        super().__init__(
            "Unit-of-Work is marked abort-only by a failed inner scope; rolled back"
        )


class OperationTimeoutError(UnitOfWorkError):
    """The caller's deadline expired before the work was committed."""

    code: str = "TIMEOUT"

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"Deadline exceeded for {operation} after {attempts} attempt(s)"
        )
