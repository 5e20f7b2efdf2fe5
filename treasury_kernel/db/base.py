"""
Module: treasury_kernel.db.base
Responsibility: Declarative base classes for every ORM model in the ledger.
    Fixes the primary key convention, the column type for each Python type,
    and the audit columns shared by all tracked rows.
Architecture position: Kernel > DB.  Lowest-level import target inside the
    kernel.  MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - UUID primary keys generated client-side (uuid4), stored as String(36)
      so the same schema runs on PostgreSQL and SQLite.
    - Money precision: Decimal maps to Numeric(38, 9).  Floats never reach
      a monetary column.
    - Audit columns: created_at is distinct from any business date and is
      set by the database on insert.

Audit relevance:
    created_by_id / updated_by_id record the actor behind every row.  The
    write guards in db/immutability.py always let these two audit columns
    change.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID stored as its 36-character string form.

    Guarantees:
        - UUID -> str on bind, str -> UUID on load.
        - Plain strings are accepted on bind so ids coming from request
          payloads can be passed straight through.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return PyUUID(value)


class Base(DeclarativeBase):
    """
    Declarative base for all ledger models.

    Guarantees:
        - id is a uuid4 UUID.
        - Decimal -> Numeric(38, 9); datetime -> DateTime(timezone=True);
          date -> Date; int -> BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        date: Date,
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamps and actor tracking.

    Contract:
        created_at is the commit-side timestamp of the row and never changes.
        It is NOT the business date of a posting (see LedgerEvent.event_date).
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )


UUID = PyUUID
