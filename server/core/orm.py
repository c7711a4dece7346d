import logging

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from core.logging_setup import log_step

logger = logging.getLogger(__name__)

LOG_STEP = "DATABASE"


class Base(DeclarativeBase):
    pass


def _to_sqlalchemy_database_url(database_url: str) -> str:
    if database_url.startswith("postgresql+asyncpg://"):
        return database_url
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite://") and "+aiosqlite" not in database_url:
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """
    Owns the async engine and session factory for one database.

    Constructed once at startup and passed to the components that need it;
    `init()` verifies the schema and `close()` releases the pool.
    """

    def __init__(self, database_url: str, **engine_kwargs):
        self.url = _to_sqlalchemy_database_url(database_url)
        if self.url.startswith("postgresql"):
            engine_kwargs.setdefault("pool_pre_ping", True)

        self.engine: AsyncEngine = create_async_engine(self.url, **engine_kwargs)

        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def init(self) -> None:
        import models  # noqa: F401  registers the tables on Base.metadata

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            with log_step(LOG_STEP):
                logger.info("ORM initialized successfully and schema verified.")
        except Exception as e:
            with log_step(LOG_STEP):
                logger.error(f"Failed to initialize ORM: {e}", exc_info=True)
            raise

    async def close(self) -> None:
        await self.engine.dispose()
        with log_step(LOG_STEP):
            logger.info("Database engine disposed.")

    async def ping(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            with log_step(LOG_STEP):
                logger.warning(f"Database ping failed: {e}")
            return False
