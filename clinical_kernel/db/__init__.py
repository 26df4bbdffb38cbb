"""Database layer - engine, base classes and immutability enforcement."""

from clinical_kernel.db.base import UUID, Base, UTCDateTime, UUIDString
from clinical_kernel.db.engine import (
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
    "UUIDString",
    "UTCDateTime",
    "UUID",
    "build_engine",
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "reset_engine",
]
