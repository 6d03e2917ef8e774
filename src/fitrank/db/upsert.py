"""Dialect-aware INSERT ... ON CONFLICT DO UPDATE."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def insert_for(db: AsyncSession, model: type) -> Any:
    """Return the ``insert()`` construct matching the session's dialect.

    Both PostgreSQL and SQLite support ``on_conflict_do_update`` with the
    same signature, so callers can build one statement for either.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    msg = f"Upsert not supported for dialect {dialect!r}"
    raise RuntimeError(msg)
