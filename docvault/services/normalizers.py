"""
Content Normalizers

Turn raw user input (a note, an uploaded file, a website) into a
ProcessedDocument: a title, document metadata and a complete chunk set
stamped with document_id, chunk_index, content_type, title and
timestamps.

Document-level metadata is also copied (camelCase, scalar fields only)
into every chunk's ``extra`` map, because the chunk store is flat and
per-document views are rebuilt from chunks alone.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Final
from urllib.parse import urlsplit
from uuid import uuid4

from docvault.core.errors import EmptyInputError, NoContentExtractedError
from docvault.models.schemas import (
    Chunk,
    ContentType,
    DocumentMetadata,
    ProcessedDocument,
    utc_now,
)
from docvault.services.chunking import TextChunker
from docvault.services.crawler import CrawledPage, WebCrawler, validate_and_clean_url
from docvault.services.extractors import FileExtractor, resolve_file_type

logger = logging.getLogger(__name__)

MAX_NOTE_TITLE_LENGTH: Final[int] = 80

# Per-document fields that live on typed chunk metadata or are rebuilt
_NOT_COPIED_TO_CHUNKS: Final[set[str]] = {
    "created_at",
    "updated_at",
    "tags",
    "total_chunks",
    "crawled_urls",
}


def note_title(content: str) -> str:
    """First non-empty line of a note, cut to 80 characters with an ellipsis."""
    for line in content.splitlines():
        line = line.strip()
        if line:
            if len(line) > MAX_NOTE_TITLE_LENGTH:
                return line[: MAX_NOTE_TITLE_LENGTH - 3].rstrip() + "..."
            return line
    return "Untitled Note"


def _chunk_extra(metadata: DocumentMetadata) -> dict[str, Any]:
    """Document metadata as stored on every chunk."""
    return metadata.model_dump(
        mode="json",
        by_alias=True,
        exclude_none=True,
        exclude=_NOT_COPIED_TO_CHUNKS,
    )


class NoteNormalizer:
    """
    Normalizes free-text notes.

    Usage::

        doc = NoteNormalizer(TextChunker()).normalize("Groceries\\n- milk")
        doc.title  # "Groceries"
    """

    def __init__(self, chunker: TextChunker) -> None:
        self._chunker = chunker

    def normalize(self, content: str, title: str | None = None) -> ProcessedDocument:
        """
        Build a note document.

        Raises:
            EmptyInputError: If content is empty or whitespace-only.
        """
        if not content or not content.strip():
            raise EmptyInputError("Note content cannot be empty")

        now = utc_now()
        doc_title = (title or "").strip() or note_title(content)
        metadata = DocumentMetadata(created_at=now, updated_at=now)
        document_id = uuid4()

        chunks = self._chunker.split(
            content,
            document_id,
            {
                "content_type": ContentType.NOTE,
                "title": doc_title,
                "created_at": now,
                "updated_at": now,
                "source": "user_input",
            },
        )

        logger.info("Normalized note '%s' into %d chunks", doc_title, len(chunks))
        return ProcessedDocument(
            id=document_id,
            title=doc_title,
            content_type=ContentType.NOTE,
            metadata=metadata,
            chunks=chunks,
        )


class FileNormalizer:
    """
    Normalizes uploaded files (PDF, DOCX, TXT, Markdown).

    The extractor is chosen from the declared MIME type; see
    :func:`docvault.services.extractors.resolve_file_type`.
    """

    def __init__(
        self,
        chunker: TextChunker,
        extractor: FileExtractor | None = None,
    ) -> None:
        self._chunker = chunker
        self._extractor = extractor or FileExtractor()

    async def normalize(
        self,
        data: bytes,
        mime_type: str | None,
        file_name: str,
        title: str | None = None,
    ) -> ProcessedDocument:
        """
        Build a document from file bytes.

        Raises:
            UnsupportedFileTypeError: MIME type (and extension) not supported.
            EmptyInputError: The upload has no bytes.
            TextExtractionError: The file is corrupt or undecodable.
            NoContentExtractedError: The file holds no text.
        """
        file_type = resolve_file_type(mime_type, file_name)
        if not data:
            raise EmptyInputError(f"File '{file_name}' is empty")

        extracted = await self._extractor.extract(data, file_type)
        if not extracted.text.strip():
            raise NoContentExtractedError(
                f"No text could be extracted from '{file_name}'"
            )

        now = utc_now()
        doc_title = (title or "").strip() or file_name
        metadata = DocumentMetadata(
            created_at=now,
            updated_at=now,
            file_name=file_name,
            file_type=file_type,
            file_size=len(data),
            total_pages=extracted.page_count,
        )
        document_id = uuid4()

        chunks = self._chunker.split(
            extracted.text,
            document_id,
            {
                "content_type": ContentType.DOCUMENT,
                "title": doc_title,
                "created_at": now,
                "updated_at": now,
                **_chunk_extra(metadata),
            },
        )

        logger.info(
            "Normalized %s file '%s' (%d bytes) into %d chunks",
            file_type,
            file_name,
            len(data),
            len(chunks),
        )
        return ProcessedDocument(
            id=document_id,
            title=doc_title,
            content_type=ContentType.DOCUMENT,
            metadata=metadata,
            chunks=chunks,
        )


class WebsiteNormalizer:
    """
    Normalizes web content into a single ``url`` document.

    Each page is chunked on its own, so chunks never straddle pages;
    chunk indices are then renumbered globally while ``page_index`` and
    ``page_chunk_index`` keep the per-page position.
    """

    def __init__(self, chunker: TextChunker, crawler: WebCrawler | None = None) -> None:
        self._chunker = chunker
        self._crawler = crawler or WebCrawler()

    async def normalize(
        self,
        url: str,
        title: str | None = None,
        timeout: float = 10.0,
    ) -> ProcessedDocument:
        """
        Build a document from a single page (no link following).

        Raises:
            InvalidURLError: The URL is malformed.
            NoContentExtractedError: The page is unreachable or has no text.
        """
        page = await self._crawler.fetch_page(url, timeout=timeout)
        return self.normalize_pages(url, [page], title=title, crawl_depth=0)

    def normalize_pages(
        self,
        seed_url: str,
        pages: Sequence[CrawledPage],
        title: str | None = None,
        crawl_depth: int = 0,
    ) -> ProcessedDocument:
        """
        Build one document from crawled pages.

        Raises:
            InvalidURLError: The seed URL is malformed.
            NoContentExtractedError: No pages were given.
        """
        seed = validate_and_clean_url(seed_url)
        hostname = urlsplit(seed).hostname or ""
        if not pages:
            raise NoContentExtractedError(f"No content could be extracted from {seed}")

        now = utc_now()
        doc_title = (title or "").strip() or f"Website: {hostname}"
        document_id = uuid4()
        metadata = DocumentMetadata(
            created_at=now,
            updated_at=now,
            url=seed,
            hostname=hostname,
            total_pages=len(pages),
            crawl_depth=crawl_depth,
            crawled_urls=[page.url for page in pages],
        )
        extra = _chunk_extra(metadata)

        all_chunks: list[Chunk] = []
        for page_index, page in enumerate(pages):
            page_chunks = self._chunker.split(
                page.text,
                document_id,
                {
                    "content_type": ContentType.URL,
                    "title": doc_title,
                    "created_at": now,
                    "updated_at": now,
                    "page_index": page_index,
                    "page_url": page.url,
                    "page_title": page.title,
                    **extra,
                    "baseUrl": seed,
                    "path": urlsplit(page.url).path or "/",
                },
            )
            for chunk in page_chunks:
                chunk.metadata.page_chunk_index = chunk.metadata.chunk_index
                chunk.metadata.chunk_index = len(all_chunks)
                all_chunks.append(chunk)

        metadata.total_chunks = len(all_chunks)

        logger.info(
            "Normalized website %s: %d pages into %d chunks",
            seed,
            len(pages),
            len(all_chunks),
        )
        return ProcessedDocument(
            id=document_id,
            title=doc_title,
            content_type=ContentType.URL,
            metadata=metadata,
            chunks=all_chunks,
        )
