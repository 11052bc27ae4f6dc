"""
RAG Pipeline Orchestrator

Coordinates the full document lifecycle for one user: normalization →
chunking → embedding → vector storage, the per-document views, and
grounded question answering.

This is the single entry point for the API layer. It composes the
individual services (normalizers, WebCrawler, IngestionOrchestrator,
VectorStoreGateway, QueryEngine) into cohesive workflows.

Credentials:
    The embedding and generation clients are resolved on first use from
    the request-supplied API key, falling back to OPENAI_API_KEY. Listing,
    reading and deleting documents never need a key.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from uuid import UUID

from docvault.core.config import Settings, settings
from docvault.core.errors import DocumentNotFoundError
from docvault.models.schemas import (
    ContentType,
    CrawlOptions,
    DocumentDetail,
    DocumentSummary,
    QueryOptions,
    RAGAnswer,
)
from docvault.services.chunking import TextChunker
from docvault.services.crawler import WebCrawler, validate_and_clean_url
from docvault.services.embeddings import build_embedder
from docvault.services.ingestion import IngestionOrchestrator, IngestResult
from docvault.services.llm import Generator, build_generator
from docvault.services.normalizers import (
    FileNormalizer,
    NoteNormalizer,
    WebsiteNormalizer,
)
from docvault.services.query_engine import QueryEngine
from docvault.services.vector_store import VectorStoreGateway, normalize_filter

logger = logging.getLogger(__name__)


class RAGPipeline:
    """
    Orchestrates the DocVault document lifecycle.

    **Ingestion** (``ingest_note``, ``ingest_file``, ``ingest_url``):
        raw input → Normalizer → TextChunker → IngestionOrchestrator →
        VectorStoreGateway

    **Query** (``answer``, ``answer_stream``):
        question → VectorStoreGateway → QueryEngine → Generator

    Every operation is scoped to the ``owner_id`` it is given.

    Usage::

        gateway = VectorStoreGateway(PgVectorChunkRepository(factory))
        pipeline = RAGPipeline(gateway, api_key="sk-...")
        result = await pipeline.ingest_note("user_1", "Groceries\\n- milk")
        answer = await pipeline.answer("user_1", "What do I need to buy?")
    """

    def __init__(
        self,
        gateway: VectorStoreGateway,
        *,
        config: Settings = settings,
        api_key: str | None = None,
        generator: Generator | None = None,
        crawler: WebCrawler | None = None,
        chunker: TextChunker | None = None,
    ) -> None:
        self._gateway = gateway
        self._config = config
        self._api_key = api_key
        self._generator = generator
        self._crawler = crawler or WebCrawler(user_agent=config.CRAWL_USER_AGENT)
        self._chunker = chunker or TextChunker(
            chunk_size=config.CHUNK_SIZE,
            chunk_overlap=config.CHUNK_OVERLAP,
        )
        self._orchestrator = IngestionOrchestrator(gateway)

    def use_api_key(self, api_key: str | None) -> None:
        """Prefer a key sent in the request body; blank keys are ignored."""
        if api_key and api_key.strip():
            self._api_key = api_key.strip()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest_note(
        self,
        owner_id: str,
        content: str,
        title: str | None = None,
        tags: list[str] | None = None,
    ) -> IngestResult:
        """
        Store a free-text note.

        Raises:
            EmptyInputError: The note is blank.
            MissingCredentialsError: No API key for the embedding provider.
        """
        self._ensure_embedder()
        document = NoteNormalizer(self._chunker).normalize(content, title)
        return await self._orchestrator.ingest(document, owner_id, tags)

    async def ingest_file(
        self,
        owner_id: str,
        data: bytes,
        mime_type: str | None,
        file_name: str,
        title: str | None = None,
        tags: list[str] | None = None,
    ) -> IngestResult:
        """
        Extract, chunk and store an uploaded file.

        Raises:
            UnsupportedFileTypeError: Not a PDF, DOCX, TXT or Markdown file.
            TextExtractionError / NoContentExtractedError: Unreadable file.
            MissingCredentialsError: No API key for the embedding provider.
        """
        self._ensure_embedder()
        document = await FileNormalizer(self._chunker).normalize(
            data, mime_type, file_name, title
        )
        return await self._orchestrator.ingest(document, owner_id, tags)

    async def ingest_url(
        self,
        owner_id: str,
        url: str,
        title: str | None = None,
        tags: list[str] | None = None,
        crawl_options: CrawlOptions | None = None,
    ) -> IngestResult:
        """
        Crawl a website and store it as a single ``url`` document.

        A ``maxDepth`` of 0 fetches the seed page only.

        Raises:
            InvalidURLError: The URL is malformed or not http(s).
            NoContentExtractedError: No page yielded text.
            MissingCredentialsError: No API key for the embedding provider.
        """
        options = crawl_options or CrawlOptions()
        seed = validate_and_clean_url(url)
        self._ensure_embedder()

        normalizer = WebsiteNormalizer(self._chunker, self._crawler)
        if options.max_depth == 0:
            document = await normalizer.normalize(seed, title, options.timeout)
        else:
            pages = await self._crawler.crawl(seed, options)
            document = normalizer.normalize_pages(
                seed, pages, title=title, crawl_depth=options.max_depth
            )
        return await self._orchestrator.ingest(document, owner_id, tags)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def list_documents(
        self,
        owner_id: str,
        content_type: ContentType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[DocumentSummary], int]:
        """Page of the owner's documents (newest first) and the total count."""
        return await self._gateway.list_documents(
            owner_id, content_type=content_type, limit=limit, offset=offset
        )

    async def get_document(self, owner_id: str, document_id: UUID) -> DocumentDetail:
        """
        One document with its chunks.

        Raises:
            DocumentNotFoundError: The owner has no such document.
        """
        document = await self._gateway.get_document(owner_id, document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return document

    async def delete_document(self, owner_id: str, document_id: UUID) -> int:
        """Delete a document; deleting a missing document is not an error."""
        return await self._gateway.delete_document(owner_id, document_id)

    async def delete_all_documents(self, owner_id: str) -> int:
        """Delete every chunk the owner has; returns the number removed."""
        return await self._gateway.delete_all_for_user(owner_id)

    async def update_tags(
        self,
        owner_id: str,
        document_id: UUID,
        tags: list[str],
    ) -> tuple[list[str], int]:
        """
        Replace a document's tags.

        Returns:
            Tuple of (cleaned tags, number of chunks updated).

        Raises:
            DocumentNotFoundError: The owner has no such document.
        """
        clean_tags = list(dict.fromkeys(t.strip() for t in tags if t.strip()))
        updated = await self._gateway.update_tags(owner_id, document_id, clean_tags)
        if updated == 0:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return clean_tags, updated

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def answer(
        self,
        owner_id: str,
        question: str,
        options: QueryOptions | None = None,
    ) -> RAGAnswer:
        """
        Grounded answer from the owner's documents.

        Raises:
            MissingCredentialsError: No API key for a selected OpenAI provider.
            InputValidationError: The metadata filter is malformed.
            RAGQueryFailedError: Retrieval or generation failed.
        """
        engine = self._query_engine()
        return await engine.answer(question, owner_id, options)

    def answer_stream(
        self,
        owner_id: str,
        question: str,
        options: QueryOptions | None = None,
    ) -> AsyncIterator[str]:
        """
        Streaming variant of :meth:`answer`.

        Credentials and the metadata filter are checked eagerly, so a
        missing key or a malformed filter raises here rather than inside
        the stream.
        """
        if options is not None:
            normalize_filter(options.filter)
        engine = self._query_engine()
        return engine.answer_stream(question, owner_id, options)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_embedder(self) -> None:
        if self._gateway.embedder is None:
            self._gateway.embedder = build_embedder(self._config, self._api_key)

    def _query_engine(self) -> QueryEngine:
        self._ensure_embedder()
        if self._generator is None:
            self._generator = build_generator(self._config, self._api_key)
        return QueryEngine(self._gateway, self._generator)
