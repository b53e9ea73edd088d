"""Database connection and session management for Toolgate.

The registry owns an async engine and session factory built from settings.
SQLite (via aiosqlite) is the default store; any SQLAlchemy async URL works.
"""

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .config import Settings
from .exceptions import InternalError
from .logging import get_logger

logger = get_logger(__name__)

# Create declarative base
Base = declarative_base()


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    """Take the SQLite write lock when a transaction begins.

    With deferred transactions two writers that both read first deadlock and
    one fails with "database is locked" instead of waiting on the busy timeout.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):  # noqa: ARG001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for the configured database URL."""
    database_url = settings.database_url
    try:
        if _is_sqlite(database_url):
            engine = create_async_engine(database_url, echo=settings.database_echo, connect_args={"timeout": 30})
            _use_immediate_transactions(engine)
        else:
            engine = create_async_engine(
                database_url,
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_pre_ping=True,
                echo=settings.database_echo,
            )
    except Exception as e:
        logger.error(f"Failed to create async database engine: {e}")
        raise InternalError("Database engine creation failed") from e

    logger.debug("Database engine created", extra={"dialect": engine.dialect.name})
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to ``engine``."""
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all registry tables that do not exist yet."""
    # Import models so they are registered on Base.metadata
    from ..models import plugin_registry  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")


async def check_db(engine: AsyncEngine) -> bool:
    """Return True when the database answers a trivial query."""
    try:
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            return result.scalar() == 1
    except SQLAlchemyError as e:
        logger.warning(f"Database readiness check failed: {e}")
        return False


async def close_db(engine: AsyncEngine) -> None:
    """Dispose of the engine's connection pool."""
    await engine.dispose()
    logger.info("Database connections closed")
