from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from referral_market.db.session import get_session_factory

__all__ = ["get_db_session", "get_db_session_factory"]


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory for work that opens its own transactions, such as the sweeper."""

    return get_session_factory()


async def get_db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
) -> AsyncIterator[AsyncSession]:
    """Request-scoped session; handlers commit explicitly, anything left open is rolled back."""

    async with session_factory() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()
