"""Database layer - engine, base classes and column types."""

from gl_kernel.db.base import Base, ExactNumeric, TrackedBase, UUIDString
from gl_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "Base",
    "ExactNumeric",
    "TrackedBase",
    "UUIDString",
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "drop_tables",
]
