"""Kernel services: flush-only units of work over a caller-owned session."""
