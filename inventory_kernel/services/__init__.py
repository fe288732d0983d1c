"""Kernel services: Unit-of-Work and sequence allocation."""
