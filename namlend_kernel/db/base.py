"""
Module: namlend_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.
    UUID primary keys, a type annotation map for consistent column types,
    and the TrackedBase mixin for row timestamps.
Architecture position: Kernel > DB. Lowest-level import target for models.
    MUST NOT import from models/, services/ or domain/.

Invariants enforced:
    - UUID primary keys stored as String(36) for PostgreSQL/SQLite portability.
    - Decimal maps to Numeric(38, 9). Money is never a float.
    - datetimes are always returned timezone-aware (UTC), including from
      SQLite, which drops tzinfo on storage.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as its 36-character string form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime; naive values read back are assumed UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            raise ValueError(f"naive datetime not allowed: {value!r}")
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    """Declarative base for all NamLend models."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrackedBase(Base):
    """
    Abstract base with creation/update timestamps.

    Procedures pass ``created_at``/``updated_at`` explicitly from the
    injected clock; the Python-side defaults only cover direct inserts
    (fixtures, seed scripts).
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=_utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=_utcnow,
        nullable=False,
    )
