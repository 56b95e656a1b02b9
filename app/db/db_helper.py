from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from loguru import logger
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import settings
from app.db.models.event import BaseORM
from app.db.models import projects  # noqa: F401  registers tenant tables


class DataBaseHelper:

    def __init__(self, url: Optional[str] = None):
        url = url or str(settings.db.url)
        engine_kwargs = dict(echo=settings.db.echo, echo_pool=settings.db.echo_pool)
        # SQLite engines (tests, local runs) do not accept queue pool sizing
        if make_url(url).get_backend_name() != "sqlite":
            engine_kwargs.update(
                pool_size=settings.db.pool_size,
                max_overflow=settings.db.max_overflow,
            )

        self.url = url
        self.engine: AsyncEngine = create_async_engine(url=url, **engine_kwargs)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
        )
        logger.info(f"DataBaseHelper initialized for {make_url(url).render_as_string(hide_password=True)}")

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    async def create_tables(self):
        """Create all known tables if they do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(BaseORM.metadata.create_all)
        logger.info("Database tables ensured.")

    async def dispose(self):
        await self.engine.dispose()
        logger.info("Disposed default engine.")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session, rolling back any open transaction on error."""
        async with self.session_factory() as session:
            try:
                yield session
            except Exception as e:
                if session.in_transaction():
                    await session.rollback()
                logger.error(f"Error in database session: {e}")
                raise


# Global helper
db_helper = DataBaseHelper()
