"""Repository surface: persistence-neutral record operations, flush-only."""

from inventory_kernel.repositories.base import BaseRepository
from inventory_kernel.repositories.item_repository import ItemRepository
from inventory_kernel.repositories.transaction_repository import TransactionRepository

__all__ = ["BaseRepository", "ItemRepository", "TransactionRepository"]
