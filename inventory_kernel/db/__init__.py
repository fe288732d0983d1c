"""Database layer - engine, base classes and storage precision."""

from inventory_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from inventory_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
)
from inventory_kernel.db.types import STORE_QUANTUM, quantize_for_store

__all__ = [
    "build_engine",
    "get_engine",
    "get_session",
    "get_session_factory",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "STORE_QUANTUM",
    "quantize_for_store",
]
