"""
DocVault Configuration

Centralized settings management using Pydantic BaseSettings.
All values are loaded from environment variables or a .env file.

Required env vars (no defaults):
    POSTGRES_USER, POSTGRES_PASSWORD, POSTGRES_DB

Everything else has a default tuned for local development.
"""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable binding.

    Groups:
        Database: PostgreSQL + pgvector connection and pooling.
        Embeddings / LLM: provider selection, models and credentials.
        Chunking / crawling / retrieval: pipeline tuning knobs.
        Identity: header forwarded by the upstream identity provider.
    """

    PROJECT_NAME: str = "DocVault"
    ENVIRONMENT: str = "local"

    # Database
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str
    DATABASE_POOL_SIZE: int = 5

    # Comma-separated filter fields the vector store reports as indexed.
    # Empty means "ask the database" (pg_indexes) at runtime.
    VECTOR_INDEXED_FIELDS: str = ""

    # Embeddings
    OPENAI_API_KEY: str | None = None
    EMBEDDING_PROVIDER: Literal["openai", "local"] = "openai"
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIMENSION: int = 1536
    EMBEDDING_BATCH_SIZE: int = 100
    # sentence-transformers model for EMBEDDING_PROVIDER=local (384 dims)
    LOCAL_EMBEDDING_MODEL: str = "all-MiniLM-L6-v2"

    # Generation
    LLM_PROVIDER: Literal["openai", "ollama"] = "openai"
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TEMPERATURE: float = 0.2
    LLM_TIMEOUT: float = 60.0
    OLLAMA_BASE_URL: str = "http://host.docker.internal:11434"

    # Chunking
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 100

    # Crawling
    CRAWL_USER_AGENT: str = "DocVaultBot/1.0"
    CRAWL_MAX_CONCURRENCY: int = 5

    # Retrieval
    RAG_MAX_RESULTS: int = 5
    RAG_SCORE_THRESHOLD: float = 0.7

    # Identity
    AUTH_USER_HEADER: str = "X-User-Id"

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    @property
    def indexed_fields_override(self) -> frozenset[str] | None:
        """Parsed VECTOR_INDEXED_FIELDS, or None when the store should be asked."""
        fields = {f.strip() for f in self.VECTOR_INDEXED_FIELDS.split(",") if f.strip()}
        return frozenset(fields) if fields else None

    @property
    def DATABASE_URL(self) -> str:
        """Async PostgreSQL connection string using the asyncpg driver."""
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()  # type: ignore[call-arg]
