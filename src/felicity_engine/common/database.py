"""Async engine and unit-of-work sessions for Felicity-Engine."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from felicity_engine.common.config import FelicitySettings, get_settings
from felicity_engine.common.models import Base

# Every table must be registered on Base.metadata before create_all().
import felicity_engine.events.models  # noqa: F401
import felicity_engine.inventory.models  # noqa: F401
import felicity_engine.registrations.models  # noqa: F401
import felicity_engine.attendance.models  # noqa: F401
import felicity_engine.webhooks.models  # noqa: F401


class DatabaseManager:
    """Owns the async engine; hands out commit-or-rollback sessions."""

    def __init__(self, settings: FelicitySettings | None = None):
        self._settings = settings or get_settings()
        self.engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    def _require_engine(self) -> AsyncEngine:
        if self.engine is None:
            raise RuntimeError("DatabaseManager.init() has not been awaited")
        return self.engine

    async def init(self) -> None:
        connect_args = {}
        if self._settings.is_sqlite:
            # Writers queue on the file lock for up to this long.
            connect_args["timeout"] = self._settings.db_busy_timeout
        self.engine = create_async_engine(
            self._settings.db_url, connect_args=connect_args,
        )
        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """One unit of work: commit when the block exits cleanly, else roll back."""
        self._require_engine()
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        async with self._require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
        self.engine = None
        self._sessions = None
