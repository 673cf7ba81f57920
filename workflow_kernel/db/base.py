"""
Module: workflow_kernel.db.base
Responsibility: Declarative base class for all SQLAlchemy ORM models, with
    a type annotation map so every model gets the same column types.
Architecture position: Kernel > DB.  ALL model files import from here.
    This module MUST NOT import from models/, services/, domain/ or outer
    layers.

Invariants enforced:
    - Decimal maps to DecimalString (exact, never float).
    - datetime maps to UTCDateTime (always timezone-aware UTC).
    - Plain ``str`` columns default to String(255).

Identifiers are produced by the domain's ``IdGenerator`` rather than by
the database, so each model declares its own primary key.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar

from sqlalchemy import String
from sqlalchemy.orm import DeclarativeBase

from workflow_kernel.db.types import DecimalString, UTCDateTime


class Base(DeclarativeBase):
    """Declarative base for all workflow models."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: DecimalString(),
        datetime: UTCDateTime(),
        str: String(255),
    }
