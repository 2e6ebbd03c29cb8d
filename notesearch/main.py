import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from notesearch.api.deps import IndexRuntime
from notesearch.config import get_settings
from notesearch.database import async_session_factory, engine
from notesearch.search.backends import build_model_loader
from notesearch.search.embeddings import EmbeddingService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan: startup and shutdown events."""
    from notesearch import models  # noqa: F401 - Import models to register them with Base
    from notesearch.api.search import run_index_background
    from notesearch.database import Base

    settings = get_settings()

    # Startup: create all database tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    embedding_service = EmbeddingService(
        build_model_loader(settings),
        max_chars=settings.EMBEDDING_MAX_CHARS,
        timeout=settings.EMBEDDING_TIMEOUT,
    )
    runtime = IndexRuntime()
    app.state.embedding_service = embedding_service
    app.state.index_runtime = runtime

    if settings.EMBEDDING_PRELOAD:
        embedding_service.preload()

    startup_index: asyncio.Task | None = None
    if settings.INDEX_ON_STARTUP:
        logger.info("Backfilling missing embeddings at startup")
        runtime.state.is_indexing = True
        startup_index = asyncio.create_task(
            run_index_background(runtime, async_session_factory, embedding_service)
        )

    yield

    # Shutdown: stop a running backfill and dispose the engine
    if startup_index is not None and not startup_index.done():
        startup_index.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await startup_index
    await engine.dispose()


app = FastAPI(
    title="notesearch",
    description="Hybrid semantic and keyword search over local notes",
    version="0.1.0",
    lifespan=lifespan,
)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Router includes ---
from notesearch.api.notes import router as notes_router  # noqa: E402
from notesearch.api.search import router as search_router  # noqa: E402

app.include_router(notes_router, prefix="/api")
app.include_router(search_router, prefix="/api")


@app.get("/api/health", tags=["health"])
async def health_check(request: Request) -> dict[str, str]:
    """Health check endpoint.

    Reports the embedding model state alongside the API status.
    """
    service: EmbeddingService | None = getattr(request.app.state, "embedding_service", None)
    return {
        "status": "ok",
        "embedding_model": service.state.value if service is not None else "uninitialized",
    }
