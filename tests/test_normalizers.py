"""
Content Normalizer Unit Tests

Verifies that notes, uploaded files and crawled websites become
ProcessedDocuments with the right titles, document metadata and chunk
metadata.
"""

from __future__ import annotations

import fitz
import pytest

from docvault.core.errors import (
    EmptyInputError,
    InvalidURLError,
    NoContentExtractedError,
    UnsupportedFileTypeError,
)
from docvault.models.schemas import ContentType
from docvault.services.chunking import TextChunker, reconstruct_text
from docvault.services.crawler import CrawledPage, WebCrawler
from docvault.services.normalizers import (
    FileNormalizer,
    NoteNormalizer,
    WebsiteNormalizer,
    note_title,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def chunker() -> TextChunker:
    return TextChunker(chunk_size=200, chunk_overlap=20)


@pytest.fixture
def blank_pdf() -> bytes:
    """PDF with one page and no text."""
    doc = fitz.open()
    doc.new_page()
    data = doc.tobytes()
    doc.close()
    return data


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


class TestNoteTitle:
    """Title derivation from note content."""

    def test_first_non_empty_line(self) -> None:
        assert note_title("\n\n  Groceries  \n- milk") == "Groceries"

    def test_long_line_truncated_to_80(self) -> None:
        title = note_title("word " * 40)

        assert len(title) <= 80
        assert title.endswith("...")

    def test_exactly_80_chars_kept(self) -> None:
        line = "a" * 80

        assert note_title(line) == line

    def test_blank_content(self) -> None:
        assert note_title("   \n  ") == "Untitled Note"


class TestNoteNormalizer:
    """Free-text notes."""

    def test_builds_note_document(self, chunker: TextChunker) -> None:
        doc = NoteNormalizer(chunker).normalize("Groceries\n- milk\n- eggs")

        assert doc.title == "Groceries"
        assert doc.content_type == ContentType.NOTE
        assert len(doc.chunks) == 1

        meta = doc.chunks[0].metadata
        assert meta.document_id == doc.id
        assert meta.content_type == ContentType.NOTE
        assert meta.title == "Groceries"
        assert meta.extra == {"source": "user_input"}

    def test_explicit_title_wins(self, chunker: TextChunker) -> None:
        doc = NoteNormalizer(chunker).normalize("body text", title="  My title ")

        assert doc.title == "My title"

    def test_long_note_is_split_losslessly(self, chunker: TextChunker) -> None:
        content = "\n\n".join(f"Point {i}: remember the details." for i in range(40))

        doc = NoteNormalizer(chunker).normalize(content)

        assert len(doc.chunks) > 1
        assert reconstruct_text(doc.chunks) == content

    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    def test_blank_note_rejected(self, chunker: TextChunker, content: str) -> None:
        with pytest.raises(EmptyInputError):
            NoteNormalizer(chunker).normalize(content)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


class TestFileNormalizer:
    """Uploaded files."""

    @pytest.mark.asyncio
    async def test_text_file(self, chunker: TextChunker) -> None:
        data = b"Meeting notes\n\nWe agreed on the roadmap."

        doc = await FileNormalizer(chunker).normalize(data, "text/plain", "notes.txt")

        assert doc.title == "notes.txt"
        assert doc.content_type == ContentType.DOCUMENT
        assert doc.metadata.file_name == "notes.txt"
        assert doc.metadata.file_type == "txt"
        assert doc.metadata.file_size == len(data)
        assert doc.chunks[0].metadata.extra == {
            "fileName": "notes.txt",
            "fileType": "txt",
            "fileSize": len(data),
        }

    @pytest.mark.asyncio
    async def test_markdown_as_octet_stream(self, chunker: TextChunker) -> None:
        doc = await FileNormalizer(chunker).normalize(
            b"# Title\n\nBody", "application/octet-stream", "README.md", title="Docs"
        )

        assert doc.title == "Docs"
        assert doc.metadata.file_type == "md"

    @pytest.mark.asyncio
    async def test_pdf_records_page_count(self, chunker: TextChunker) -> None:
        pdf = fitz.open()
        for i in range(2):
            pdf.new_page().insert_text((72, 72), f"Page {i + 1} text")
        data = pdf.tobytes()
        pdf.close()

        doc = await FileNormalizer(chunker).normalize(data, "application/pdf", "a.pdf")

        assert doc.metadata.total_pages == 2
        assert doc.chunks[0].metadata.extra["totalPages"] == 2

    @pytest.mark.asyncio
    async def test_unsupported_type(self, chunker: TextChunker) -> None:
        with pytest.raises(UnsupportedFileTypeError):
            await FileNormalizer(chunker).normalize(b"\x89PNG", "image/png", "x.png")

    @pytest.mark.asyncio
    async def test_empty_upload(self, chunker: TextChunker) -> None:
        with pytest.raises(EmptyInputError):
            await FileNormalizer(chunker).normalize(b"", "text/plain", "empty.txt")

    @pytest.mark.asyncio
    async def test_pdf_without_text(
        self, chunker: TextChunker, blank_pdf: bytes
    ) -> None:
        with pytest.raises(NoContentExtractedError):
            await FileNormalizer(chunker).normalize(
                blank_pdf, "application/pdf", "scan.pdf"
            )


# ---------------------------------------------------------------------------
# Websites
# ---------------------------------------------------------------------------


class TestWebsiteNormalizer:
    """Crawled websites."""

    def _pages(self) -> list[CrawledPage]:
        return [
            CrawledPage(
                "https://example.com/", "example.com - Home", "Welcome home.", 0
            ),
            CrawledPage(
                "https://example.com/guide/",
                "example.com - Guide",
                "\n\n".join(f"Step {i}: do the thing." for i in range(30)),
                1,
            ),
        ]

    def test_one_document_for_all_pages(
        self, chunker: TextChunker, crawler: WebCrawler
    ) -> None:
        doc = WebsiteNormalizer(chunker, crawler).normalize_pages(
            "example.com", self._pages(), crawl_depth=1
        )

        assert doc.title == "Website: example.com"
        assert doc.content_type == ContentType.URL
        assert doc.metadata.url == "https://example.com/"
        assert doc.metadata.hostname == "example.com"
        assert doc.metadata.total_pages == 2
        assert doc.metadata.total_chunks == len(doc.chunks)
        assert doc.metadata.crawled_urls == [
            "https://example.com/",
            "https://example.com/guide/",
        ]

    def test_chunk_indices_are_global(
        self, chunker: TextChunker, crawler: WebCrawler
    ) -> None:
        doc = WebsiteNormalizer(chunker, crawler).normalize_pages(
            "https://example.com/", self._pages()
        )

        assert [c.metadata.chunk_index for c in doc.chunks] == list(
            range(len(doc.chunks))
        )
        second_page = [c for c in doc.chunks if c.metadata.page_index == 1]
        assert [c.metadata.page_chunk_index for c in second_page] == list(
            range(len(second_page))
        )

    def test_chunks_never_straddle_pages(
        self, chunker: TextChunker, crawler: WebCrawler
    ) -> None:
        pages = self._pages()
        doc = WebsiteNormalizer(chunker, crawler).normalize_pages(
            "https://example.com/", pages
        )

        for page_index, page in enumerate(pages):
            page_chunks = [c for c in doc.chunks if c.metadata.page_index == page_index]
            assert all(c.metadata.page_url == page.url for c in page_chunks)
            rebuilt = "".join(
                c.content[c.metadata.overlap :]
                for c in sorted(page_chunks, key=lambda c: c.metadata.page_chunk_index)
            )
            assert rebuilt == page.text

    def test_chunk_extra_carries_site_details(
        self, chunker: TextChunker, crawler: WebCrawler
    ) -> None:
        doc = WebsiteNormalizer(chunker, crawler).normalize_pages(
            "https://example.com/", self._pages(), title="Example"
        )

        extra = doc.chunks[-1].metadata.extra
        assert extra["baseUrl"] == "https://example.com/"
        assert extra["path"] == "/guide/"
        assert extra["hostname"] == "example.com"
        assert doc.chunks[-1].metadata.title == "Example"

    def test_no_pages(self, chunker: TextChunker, crawler: WebCrawler) -> None:
        with pytest.raises(NoContentExtractedError):
            WebsiteNormalizer(chunker, crawler).normalize_pages("example.com", [])

    def test_invalid_seed(self, chunker: TextChunker, crawler: WebCrawler) -> None:
        with pytest.raises(InvalidURLError):
            WebsiteNormalizer(chunker, crawler).normalize_pages(
                "ftp://example.com", self._pages()
            )

    @pytest.mark.asyncio
    async def test_single_page_fetch(
        self, chunker: TextChunker, crawler: WebCrawler
    ) -> None:
        doc = await WebsiteNormalizer(chunker, crawler).normalize(
            "https://docs.example.com/"
        )

        assert doc.metadata.total_pages == 1
        assert doc.metadata.crawl_depth == 0
        assert "The sky is blue" in doc.chunks[0].content
