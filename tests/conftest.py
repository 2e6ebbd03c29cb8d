"""Shared pytest fixtures for notesearch tests.

Provides a deterministic fake embedding model (no ML model loading) and an
in-memory SQLite database per test, plus a file-backed one for tests that
depend on real SQLite locking.
"""

import asyncio
import hashlib
import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing notesearch modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("EMBEDDING_PRELOAD", "false")

FAKE_DIMENSION = 64


class FakeEmbeddingModel:
    """Deterministic bag-of-words embedding model.

    Each lowercase word is hashed into one of ``FAKE_DIMENSION`` buckets, so
    texts sharing words point in similar directions.
    """

    def __init__(self, dimension: int = FAKE_DIMENSION):
        self.dimension = dimension
        self.calls: list[str] = []

    async def encode(self, text: str) -> list[float]:
        self.calls.append(text)
        vector = [0.0] * self.dimension
        for word in text.lower().split():
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        return vector


class GatedEmbeddingModel(FakeEmbeddingModel):
    """Fake model that blocks on texts starting with *gate_prefix*.

    ``entered`` is set once a gated call is waiting; the call proceeds when
    ``release`` is set. Lets a test act while a model call is in flight.
    """

    def __init__(self, gate_prefix: str):
        super().__init__()
        self.gate_prefix = gate_prefix
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def encode(self, text: str) -> list[float]:
        if text.startswith(self.gate_prefix):
            self.entered.set()
            await self.release.wait()
        return await super().encode(text)


class FakeModelLoader:
    """Loader returning a :class:`FakeEmbeddingModel` and counting loads."""

    def __init__(self, model: FakeEmbeddingModel | None = None, error: Exception | None = None):
        self.model = model or FakeEmbeddingModel()
        self.error = error
        self.load_count = 0

    async def __call__(self) -> FakeEmbeddingModel:
        self.load_count += 1
        if self.error is not None:
            raise self.error
        return self.model


@pytest.fixture
def fake_loader() -> FakeModelLoader:
    return FakeModelLoader()


@pytest.fixture
def embedding_service(fake_loader: FakeModelLoader):
    """EmbeddingService backed by the fake model."""
    from notesearch.search.embeddings import EmbeddingService

    return EmbeddingService(fake_loader)


def _sessionmaker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def _create_tables(engine) -> None:
    import notesearch.models  # noqa: F401 - Import to register models with Base
    from notesearch.database import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over a fresh in-memory database with all tables created.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await _create_tables(engine)

    yield _sessionmaker(engine)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over a file-backed database, configured like production.

    Each session gets its own connection, so SQLite locking behaves as it
    does in the running application.
    """
    from notesearch.database import configure_sqlite

    engine = configure_sqlite(create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'notes.db'}", echo=False))
    await _create_tables(engine)

    yield _sessionmaker(engine)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide an async database session for testing."""
    async with session_factory() as session:
        yield session
        await session.rollback()


def wire_app(app, session_factory, embedding_service) -> None:
    """Point *app* at *session_factory* and *embedding_service*."""
    from notesearch.api.deps import IndexRuntime, get_session_factory
    from notesearch.database import get_db

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.state.embedding_service = embedding_service
    app.state.index_runtime = IndexRuntime()


@pytest_asyncio.fixture(scope="function")
async def test_app(session_factory, embedding_service):
    """Provide the FastAPI app wired to the test database and fake model."""
    from notesearch.main import app

    wire_app(app, session_factory, embedding_service)
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Provide an async HTTP client for testing with test database."""
    from httpx import ASGITransport, AsyncClient

    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
