"""
Async database setup with SQLAlchemy and aiosqlite.

Every SQLite connection runs in WAL mode with a busy timeout, so the
background driver and polling requests can write while the other reads.
"""
from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from voicedesc.config import DATABASE_URL, ensure_directories
from voicedesc.models import Base

SQLITE_BUSY_TIMEOUT_MS = 5000


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA journal_mode=WAL')
    cursor.execute('PRAGMA synchronous=NORMAL')
    cursor.execute(f'PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}')
    cursor.close()


def create_engine(url: str = DATABASE_URL) -> AsyncEngine:
    """Create an async engine; SQLite connections get WAL and a busy timeout."""
    db_engine = create_async_engine(url, echo=False)
    if db_engine.dialect.name == 'sqlite':
        event.listen(db_engine.sync_engine, 'connect', _set_sqlite_pragmas)
    return db_engine


def create_session_factory(db_engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


# Application engine and session factory
engine = create_engine()
async_session_factory = create_session_factory(engine)


async def init_db(db_engine: Optional[AsyncEngine] = None):
    """Create tables if they don't exist (on the application engine by default)."""
    if db_engine is None:
        ensure_directories()
        db_engine = engine

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections."""
    await engine.dispose()
