"""
DocVault API Schemas

Pydantic models for the /api/v1 request/response cycle. Payloads are
camelCase on the wire (``documentId``, ``maxResults``) through the
CamelModel alias generator; Python code uses the snake_case names.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field, JsonValue

from docvault.models.schemas import (
    CamelModel,
    ContentType,
    CrawlOptions,
    DocumentDetail,
    DocumentMetadata,
    DocumentSummary,
    Source,
    utc_now,
)

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class CredentialsMixin(CamelModel):
    """Optional per-request OpenAI key, sent as ``apiKey``."""

    api_key: str | None = Field(
        default=None,
        description="OpenAI API key for this request (overrides the server key)",
    )


class NoteRequest(CredentialsMixin):
    """Request body for storing a free-text note."""

    content: str = Field(..., description="Note text")
    title: str | None = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list)


class UrlRequest(CredentialsMixin):
    """Request body for crawling and storing a website."""

    url: str = Field(..., min_length=1, description="Seed URL (scheme optional)")
    title: str | None = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list)
    crawl_options: CrawlOptions | None = None


class TagsRequest(CamelModel):
    """Request body for replacing a document's tags."""

    tags: list[str]


class QueryRequest(CredentialsMixin):
    """Request body for a grounded question."""

    question: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="Natural language question to answer",
    )
    max_results: int | None = Field(default=None, ge=1, le=50)
    score_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    include_metadata: bool = True
    filter: dict[str, JsonValue] | None = Field(
        default=None,
        description="Extra metadata filter, e.g. {'contentType': 'note'}",
    )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class IngestResponse(CamelModel):
    """Response for the three ingestion endpoints."""

    success: bool = True
    document_id: UUID
    title: str
    content_type: ContentType
    chunks_count: int = Field(description="Number of chunks stored")
    metadata: DocumentMetadata
    url: str | None = Field(default=None, description="Seed URL (websites only)")


class DocumentListResponse(CamelModel):
    success: bool = True
    documents: list[DocumentSummary]
    total_count: int


class DocumentResponse(CamelModel):
    success: bool = True
    document: DocumentDetail


class DeleteDocumentResponse(CamelModel):
    success: bool = True
    deleted_document_id: UUID
    message: str


class DeleteAllResponse(CamelModel):
    success: bool = True
    deleted_chunks: int
    message: str


class TagsResponse(CamelModel):
    success: bool = True
    document_id: UUID
    tags: list[str]
    updated_chunks: int


class QueryResponse(CamelModel):
    """Grounded answer with its citations."""

    success: bool = True
    answer: str = Field(description="Generated answer text")
    sources: list[Source] = Field(default_factory=list)
    query: str = Field(description="Original question for reference")
    timestamp: datetime = Field(default_factory=utc_now)


class ErrorResponse(CamelModel):
    """Body of every non-2xx response."""

    error: str = Field(description="Short message")
    details: str | None = Field(default=None, description="Human-readable detail")
    code: str = Field(description="Machine-checkable category")
