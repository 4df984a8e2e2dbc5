"""Dialect-aware ``INSERT ... ON CONFLICT`` support."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

_UPSERT_INSERTS: dict[str, Callable[..., Any]] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert_insert_for(session: AsyncSession) -> Callable[..., Any] | None:
    """Return the dialect ``insert`` construct supporting ON CONFLICT, if any."""
    return _UPSERT_INSERTS.get(session.get_bind().dialect.name)
