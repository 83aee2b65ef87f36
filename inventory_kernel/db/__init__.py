"""Database layer - engine construction, base classes and immutability."""

from inventory_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from inventory_kernel.db.engine import (
    create_db_engine,
    create_session_factory,
    create_tables,
    drop_tables,
    session_scope,
)

__all__ = [
    "create_db_engine",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "session_scope",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
]
