"""Database layer - engine, base classes and immutability listeners."""

from settlement_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from settlement_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    session_scope,
)

__all__ = [
    "build_engine",
    "session_scope",
    "create_tables",
    "drop_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
]
