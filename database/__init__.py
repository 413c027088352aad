"""Database engine/session bootstrap for AdHarvest.

The engine is owned by an explicit ``Database`` object built once at process
start (FastAPI lifespan, scheduler runner, tests) and handed to every
component that persists something.
"""

import os
from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from database.models import Ad, Advertiser, Base, ScrapeJob

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///adharvest.db"

__all__ = [
    "Ad",
    "Advertiser",
    "Base",
    "Database",
    "ScrapeJob",
    "get_db",
    "init_db",
]


class Database:
    """Async engine + session factory pair."""

    def __init__(self, url: str | None = None, echo: bool = False):
        self.url = url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
        connect_args = {"timeout": 30} if self.url.startswith("sqlite") else {}
        self.engine: AsyncEngine = create_async_engine(
            self.url,
            echo=echo,
            connect_args=connect_args,
        )
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False,
        )

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def dispose(self):
        await self.engine.dispose()


async def init_db(db: Database):
    """Create tables (idempotent)."""
    async with db.engine.begin() as conn:
        if db.url.startswith("sqlite"):
            # SQLite concurrency pragmas
            await conn.exec_driver_sql("PRAGMA journal_mode=WAL")
            await conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
        await conn.run_sync(Base.metadata.create_all)


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Provide DB session dependency for FastAPI."""
    db: Database = request.app.state.db
    async with db.session() as session:
        yield session
