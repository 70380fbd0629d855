import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"

# Range of an SQLite INTEGER column
SQLITE_MIN_INTEGER = -(2**63)
SQLITE_MAX_INTEGER = 2**63 - 1


def create_engine(
    database_path: str,
    *,
    journal_mode: str = "WAL",
    cache_size_kb: int = 64000,
) -> AsyncEngine:
    """
    Create an async SQLite engine with the cache's connection pragmas.

    An in-memory database lives on a single shared connection; a file
    database gets its parent directory created.
    """
    if database_path == MEMORY_PATH:
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        Path(database_path).parent.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{database_path}",
            echo=False,
            pool_pre_ping=True,
            connect_args={"timeout": 30, "check_same_thread": False},
        )

    def configure_sqlite(dbapi_conn, _):
        """Configure SQLite connection parameters"""
        cursor = dbapi_conn.cursor()
        # WAL keeps readers on a consistent snapshot while a replace transaction runs
        cursor.execute(f"PRAGMA journal_mode = {journal_mode}")
        cursor.execute(f"PRAGMA cache_size = -{cache_size_kb}")
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    event.listen(engine.sync_engine, "connect", configure_sqlite)

    logger.debug("Created SQLite engine for %s (journal_mode=%s)", database_path, journal_mode)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory from engine"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    begin: bool = True,
) -> AsyncIterator[AsyncSession]:
    """
    Provide an async session context manager with optional automatic transaction handling.

    Args:
        session_factory: Factory bound to the owning store's engine
        begin: When True (default), wrap the session in `session.begin()` for auto commit/rollback.
               When False, the session is only used for reads and is closed on exit.
    """
    async with session_factory() as session:
        if begin:
            async with session.begin():
                yield session
        else:
            yield session
