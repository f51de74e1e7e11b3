"""Async database engine and session management."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from ..config import get_settings

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Owns the process-wide engine and session factory."""

    def __init__(self):
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None

    def initialize(self, database_url: Optional[str] = None):
        settings = get_settings()
        url = database_url or settings.database_url

        kwargs = {"echo": settings.debug}
        if url.startswith("sqlite") and ":memory:" in url:
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        elif not url.startswith("sqlite"):
            kwargs["pool_pre_ping"] = True

        self.engine = create_async_engine(url, **kwargs)
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )
        logger.info("Database engine initialized (%s)", self.engine.url.get_backend_name())

    async def close(self):
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None

    def session(self) -> AsyncSession:
        if self.session_factory is None:
            self.initialize()
        return self.session_factory()


db_manager = DatabaseManager()


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Session context manager for use outside request handlers."""
    async with db_manager.session() as session:
        yield session
