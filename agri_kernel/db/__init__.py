"""Database infrastructure: declarative base, engine/session helpers, append-only guards."""

from agri_kernel.db.base import Base, SYSTEM_ACTOR_ID, TrackedBase, UUIDString
from agri_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)

__all__ = [
    "Base",
    "SYSTEM_ACTOR_ID",
    "TrackedBase",
    "UUIDString",
    "build_engine",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]
