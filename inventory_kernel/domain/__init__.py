"""Pure domain types for the inventory kernel. ZERO I/O."""
