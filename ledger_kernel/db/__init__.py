"""Database layer - engine, base classes and column types."""

from ledger_kernel.db.base import UUID, Base, UUIDString
from ledger_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session_factory,
    session_scope,
)
from ledger_kernel.db.types import ZERO, round_money, to_decimal

__all__ = [
    "get_engine",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "UUIDString",
    "UUID",
    "ZERO",
    "round_money",
    "to_decimal",
]
