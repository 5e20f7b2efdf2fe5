"""Database layer - engine, base classes, types, and write guards."""

from treasury_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from treasury_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from treasury_kernel.db.types import Currency, Money, round_money

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Currency",
    "round_money",
]
