"""
Module: workflow_kernel.db.types
Responsibility: Portable column types for workflow persistence.
Architecture position: Kernel > DB.  Imported by db/base.py and models/.
    MUST NOT import from models/, services/ or outer layers.

Invariants enforced:
    - Timestamps round-trip as timezone-aware UTC datetimes on every
      backend (SQLite drops tzinfo on storage; it is re-attached on load).
    - Money round-trips as an exact Decimal.  Values are stored as their
      canonical string so no backend coerces through float.

Failure modes:
    - ValueError when binding a naive datetime (ambiguous wall-clock time).
    - decimal.InvalidOperation when a stored amount is not a number.
"""

from datetime import timezone
from decimal import Decimal

from sqlalchemy import DateTime, String
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime normalized to UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime cannot be stored: {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class DecimalString(TypeDecorator):
    """Decimal stored as its string form for exact round-trips."""

    impl = String(64)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(Decimal(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)

