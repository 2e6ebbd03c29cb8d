from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from notesearch.config import get_settings

settings = get_settings()


def configure_sqlite(engine: AsyncEngine, busy_timeout_ms: int = 5000) -> AsyncEngine:
    """Apply per-connection SQLite pragmas to *engine*.

    WAL lets searches read while an embedding write is in progress, and the
    busy timeout makes a writer wait for the lock instead of failing at once.
    In-memory databases ignore ``journal_mode=WAL``.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.close()

    return engine


engine = configure_sqlite(
    create_async_engine(
        settings.async_database_url,
        echo=False,
    ),
    busy_timeout_ms=settings.SQLITE_BUSY_TIMEOUT_MS,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async database session.

    Usage::

        @router.get("/notes")
        async def list_notes(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
