"""Database layer - engine, declarative base and column types."""

from workflow_kernel.db.base import Base
from workflow_kernel.db.engine import (
    create_session_factory,
    create_tables,
    create_workflow_engine,
    drop_tables,
    session_scope,
)
from workflow_kernel.db.types import DecimalString, UTCDateTime

__all__ = [
    "Base",
    "DecimalString",
    "UTCDateTime",
    "create_session_factory",
    "create_tables",
    "create_workflow_engine",
    "drop_tables",
    "session_scope",
]
