"""
Inventory Kernel

Infrastructure for the inventory costing core:
- Structured logging and typed errors
- ORM models for items, cost layers and transactions
- Unit-of-Work with retry on store contention
- Repositories and sequence allocation
"""

__version__ = "0.1.0"
