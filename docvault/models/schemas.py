"""
DocVault Domain Schemas

Pydantic models for the ingestion and retrieval pipeline.
Defines the core data structures for documents, chunks and query
results flowing through the system.

Wire format:
    Every model derives from CamelModel, so Python attributes stay
    snake_case while JSON payloads use camelCase (``documentId``,
    ``chunkIndex``). Dump with ``by_alias=True`` for the wire.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, JsonValue
from pydantic.alias_generators import to_camel

from docvault.core.config import settings


def utc_now() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(UTC)


class CamelModel(BaseModel):
    """Base model with camelCase aliases that still accepts field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ContentType(StrEnum):
    """Origin of a document."""

    NOTE = "note"
    DOCUMENT = "document"
    URL = "url"


# ---------------------------------------------------------------------------
# Documents and chunks
# ---------------------------------------------------------------------------


class DocumentMetadata(CamelModel):
    """Document-level metadata shared by every content type."""

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    file_name: str | None = Field(default=None, description="Original filename")
    file_type: str | None = Field(
        default=None,
        description="Format identifier: 'pdf', 'docx', 'txt', 'md'",
    )
    file_size: int | None = Field(default=None, ge=0, description="Size in bytes")
    url: str | None = Field(default=None, description="Source URL (websites)")
    tags: list[str] = Field(default_factory=list)

    # Website documents
    hostname: str | None = None
    total_pages: int | None = Field(default=None, ge=0)
    total_chunks: int | None = Field(default=None, ge=0)
    crawl_depth: int | None = Field(default=None, ge=0)
    crawled_urls: list[str] | None = None


class ChunkMetadata(CamelModel):
    """
    Metadata stored alongside every chunk.

    Typed fields cover everything the pipeline reads back; the ``extra``
    map carries per-content-type details (``fileName``, ``hostname``,
    ``baseUrl``...) that are stored and returned but never interpreted.

    Attributes:
        document_id: Parent document reference.
        chunk_index: Global zero-based position within the document.
        owner_id: Owning user, stamped by the ingestion orchestrator.
        start_index: Character offset of the chunk in the text of its
            page (websites) or document.
        overlap: Characters shared with the preceding chunk of that text.
    """

    document_id: UUID
    chunk_index: int = Field(ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    owner_id: str | None = None
    content_type: ContentType | None = None
    title: str | None = None
    tags: list[str] = Field(default_factory=list)
    start_index: int | None = Field(default=None, ge=0)
    overlap: int = Field(default=0, ge=0)

    # Website documents
    page_index: int | None = Field(default=None, ge=0)
    page_chunk_index: int | None = Field(default=None, ge=0)
    page_url: str | None = None
    page_title: str | None = None

    extra: dict[str, JsonValue] = Field(default_factory=dict)

    def flat(self) -> dict[str, Any]:
        """camelCase view with ``extra`` merged in, used for payload filters."""
        data = self.model_dump(mode="json", by_alias=True, exclude={"extra"})
        return {**self.extra, **data}


class Chunk(CamelModel):
    """
    A segment of a document for embedding and vector retrieval.

    Embedding vectors never live on the chunk; the vector store gateway
    attaches them at write time.
    """

    id: UUID = Field(default_factory=uuid4)
    content: str = Field(min_length=1, description="Chunk text content")
    metadata: ChunkMetadata


class ProcessedDocument(CamelModel):
    """
    Normalized document ready for ingestion.

    Produced by the normalizers; carries its complete chunk set so that
    the orchestrator can store it atomically.
    """

    id: UUID = Field(default_factory=uuid4)
    title: str
    content_type: ContentType
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    chunks: list[Chunk] = Field(default_factory=list)


class ScoredChunk(CamelModel):
    """Chunk returned by a similarity search."""

    chunk: Chunk
    score: float = Field(description="Cosine similarity (higher = more relevant)")


class DocumentSummary(CamelModel):
    """Per-document view rebuilt from the flat chunk store."""

    id: UUID
    title: str
    content_type: ContentType
    metadata: DocumentMetadata
    chunks_count: int = Field(ge=0)
    url: str | None = None


class DocumentDetail(DocumentSummary):
    """Document view including its chunks ordered by chunk_index."""

    chunks: list[Chunk] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


class CrawlOptions(CamelModel):
    """Bounds for a website crawl."""

    max_depth: int = Field(default=2, ge=0, le=5)
    max_pages: int = Field(default=50, ge=1, le=500)
    exclude_dirs: list[str] = Field(
        default_factory=lambda: ["/docs/api/", "/admin/", "/login/", "/register/"],
    )
    same_domain_only: bool = True
    timeout: float = Field(default=10.0, gt=0, description="Per-page timeout (s)")
    max_concurrency: int = Field(
        default_factory=lambda: settings.CRAWL_MAX_CONCURRENCY, ge=1, le=20
    )


class QueryOptions(CamelModel):
    """Retrieval knobs for a question."""

    max_results: int = Field(default=5, ge=1, le=50)
    score_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    include_metadata: bool = True
    filter: dict[str, JsonValue] | None = Field(
        default=None,
        description="Extra metadata filter, e.g. {'contentType': 'note'}",
    )


# ---------------------------------------------------------------------------
# Answers
# ---------------------------------------------------------------------------


class Source(CamelModel):
    """Citation attached to a generated answer."""

    content: str = Field(description="First 200 chars of the chunk")
    metadata: dict[str, Any] = Field(default_factory=dict)
    score: float


class RAGAnswer(CamelModel):
    """Grounded answer plus the chunks it was generated from."""

    answer: str
    sources: list[Source] = Field(default_factory=list)
    query: str
    timestamp: datetime = Field(default_factory=utc_now)
