"""
Inventory Core Configuration Schema.

Defines the structure and defaults for the settings the Item Service,
Transaction Engine and Unit-of-Work are constructed with.  Values are
loaded from YAML by ``inventory_config.loader``.
"""

from dataclasses import dataclass, field
from typing import Any, Self

from inventory_kernel.domain.types import ValuationMethod
from inventory_kernel.logging_config import get_logger
from inventory_kernel.services.unit_of_work import RetryPolicy

logger = get_logger("config.schema")

VALID_VALUATIONS = {m.value for m in ValuationMethod}
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class RetrySettings:
    """Backoff for store contention (CONFLICT / DEADLOCK)."""
    initial_delay_ms: int = 10
    backoff_factor: int = 2
    max_attempts: int = 5
    max_delay_ms: int = 1000

    def __post_init__(self):
        if self.initial_delay_ms < 0:
            raise ValueError("initial_delay_ms cannot be negative")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be at least 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms cannot be below initial_delay_ms")

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            initial_delay_ms=self.initial_delay_ms,
            backoff_factor=self.backoff_factor,
            max_attempts=self.max_attempts,
            max_delay_ms=self.max_delay_ms,
        )


@dataclass
class InventoryCoreConfig:
    """
    Configuration schema for the inventory core.

    Override at instantiation or load from YAML:

        config = InventoryCoreConfig(default_valuation="FIFO", sale_prefix="SL")
        config = load_config("inventory.yaml")
    """

    database_url: str = "sqlite:///inventory.db"
    log_level: str = "INFO"

    # Items
    default_valuation: str = ValuationMethod.WEIGHTED_AVG.value
    sku_width: int = 10

    # Transaction ids: {prefix}{YYMMDD}{NNNN}
    purchase_prefix: str = "PO"
    sale_prefix: str = "SO"
    sequence_width: int = 4

    retry: RetrySettings = field(default_factory=RetrySettings)

    def __post_init__(self):
        if isinstance(self.retry, dict):
            self.retry = RetrySettings(**self.retry)

        if self.default_valuation not in VALID_VALUATIONS:
            raise ValueError(
                f"default_valuation must be one of {sorted(VALID_VALUATIONS)}, "
                f"got '{self.default_valuation}'"
            )
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(VALID_LOG_LEVELS)}")
        if self.sku_width <= 0:
            raise ValueError("sku_width must be positive")
        if self.sequence_width <= 0:
            raise ValueError("sequence_width must be positive")
        if not self.purchase_prefix or not self.sale_prefix:
            raise ValueError("transaction id prefixes cannot be empty")
        if self.purchase_prefix == self.sale_prefix:
            raise ValueError("purchase_prefix and sale_prefix must differ")

        logger.info(
            "inventory_config_initialized",
            extra={
                "default_valuation": self.default_valuation,
                "sku_width": self.sku_width,
                "purchase_prefix": self.purchase_prefix,
                "sale_prefix": self.sale_prefix,
                "sequence_width": self.sequence_width,
                "retry_max_attempts": self.retry.max_attempts,
            },
        )

    @property
    def valuation(self) -> ValuationMethod:
        return ValuationMethod(self.default_valuation)

    @property
    def retry_policy(self) -> RetryPolicy:
        return self.retry.to_policy()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from a dictionary (e.g., parsed YAML)."""
        logger.info(
            "inventory_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
