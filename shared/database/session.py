"""Async engine and session factory."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shared.database.models import Base
from shared.helper.HelperConfig import HelperConfig

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./rag_pipeline.db"


def _is_in_memory_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite") and (database_url.endswith("://") or ":memory:" in database_url)


def create_engine(database_url: str) -> AsyncEngine:
    """Create the async engine for a database URL.

    In-memory SQLite shares one connection across the pool, otherwise every
    new connection would see an empty database.
    """
    if _is_in_memory_sqlite(database_url):
        return create_async_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=False)
    return create_async_engine(database_url, echo=False, pool_pre_ping=True)


class Database:
    """Owns the engine and hands out sessions."""

    def __init__(self, helper_config: HelperConfig, database_url: str | None = None) -> None:
        self.logging = helper_config.get_logger()
        self.database_url = database_url or helper_config.get_string_val("DATABASE_URL", default=DEFAULT_DATABASE_URL)
        self.engine = create_engine(self.database_url)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    async def init_database(self) -> None:
        """Create all tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.logging.debug("Database tables ensured for %s", self.engine.url.render_as_string(hide_password=True))

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Create a new database session with proper cleanup.

        Rolls back on errors and always closes the session.
        """
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self) -> None:
        await self.engine.dispose()
