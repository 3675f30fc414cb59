"""Async SQLAlchemy engine for the notification store."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from prism.db.models import Base


def sqlite_url(path: Path) -> str:
    return f"sqlite+aiosqlite:///{path}"


class Database:
    """Owns the engine and hands out one session per unit of work.

    A single instance is shared by the process. Sessions are never shared
    between concurrent callers.
    """

    def __init__(
        self, database_url: str | None = None, database_path: Path | None = None
    ):
        """
        Args:
            database_url: SQLAlchemy async URL; wins over `database_path`.
            database_path: SQLite file, created along with its directory.
        """
        if not (database_url or database_path):
            raise ValueError("Either database_url or database_path must be provided")
        if not database_url:
            database_path.parent.mkdir(parents=True, exist_ok=True)
            database_url = sqlite_url(database_path)

        self._url = database_url
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._engine

    async def connect(self) -> None:
        """Create the engine. No connection is opened until first use."""
        self._engine = create_async_engine(self._url, pool_pre_ping=True)
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)

    async def create_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        """True when `SELECT 1` round-trips."""
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception:
            return False
        return True

    async def disconnect(self) -> None:
        engine, self._engine, self._sessions = self._engine, None, None
        if engine is not None:
            await engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Unit of work: commits on success, rolls back on error.

        Usage:
            async with db.session() as session:
                await session.execute(...)
        """
        if self._sessions is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
