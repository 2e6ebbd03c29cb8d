from functools import lru_cache
from typing import Any, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# Model used when EMBEDDING_MODEL is left empty, per backend
DEFAULT_EMBEDDING_MODELS: dict[str, str] = {
    "local": "sentence-transformers/all-MiniLM-L6-v2",
    "openai": "text-embedding-3-small",
    "http": "",
}


class Settings(BaseSettings):
    """notesearch application settings.

    All values are loaded from environment variables.
    A .env file in the working directory is also supported.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Database ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./notes.db"
    SQLITE_BUSY_TIMEOUT_MS: int = 5000

    # --- Embeddings ---
    EMBEDDING_BACKEND: Literal["local", "openai", "http"] = "local"
    EMBEDDING_MODEL: str = ""  # Empty: backend default from DEFAULT_EMBEDDING_MODELS
    EMBEDDING_DIMENSION: int = 384
    EMBEDDING_SERVICE_URL: str = ""  # Only used by the "http" backend
    OPENAI_API_KEY: str = ""
    EMBEDDING_MAX_CHARS: int = 2000
    EMBEDDING_TIMEOUT: float | None = None  # Seconds; unset means no timeout

    # --- Indexing lifecycle ---
    EMBEDDING_PRELOAD: bool = True
    INDEX_ON_STARTUP: bool = False

    # --- Ranking overrides (see notesearch.search.params) ---
    SEARCH_PARAMS: dict[str, Any] = {}

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses the aiosqlite driver."""
        url = self.DATABASE_URL
        if url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    @property
    def embedding_model_name(self) -> str:
        """The configured model, or the default for the selected backend."""
        return self.EMBEDDING_MODEL or DEFAULT_EMBEDDING_MODELS[self.EMBEDDING_BACKEND]


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings singleton."""
    return Settings()
