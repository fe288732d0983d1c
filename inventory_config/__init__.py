"""
inventory_config -- settings for the inventory core.

    from inventory_config import load_config
    config = load_config()               # packaged defaults
    config = load_config("site.yaml")    # defaults overridden by a site file
"""

from inventory_config.loader import load_config
from inventory_config.schema import InventoryCoreConfig, RetrySettings

__all__ = ["InventoryCoreConfig", "RetrySettings", "load_config"]
