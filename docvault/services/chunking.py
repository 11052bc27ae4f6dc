"""
Chunking Service

Splits normalized text into overlapping Chunks suitable for embedding
and vector retrieval. Uses LangChain's RecursiveCharacterTextSplitter
for boundary detection.

Configuration tuned for text-embedding-3-small:
    - chunk_size=1000 chars: roughly 250 tokens, well inside the window
    - chunk_overlap=100 chars: preserves context across boundaries

The splitter runs with ``keep_separator=True`` and
``strip_whitespace=False`` so every chunk is an exact substring of the
source. Each chunk records where it starts and how many characters it
shares with its predecessor, which makes the split lossless
(see :func:`reconstruct_text`).
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from typing import Any, Final
from uuid import UUID

from langchain_text_splitters import RecursiveCharacterTextSplitter

from docvault.core.errors import EmptyInputError
from docvault.models.schemas import Chunk, ChunkMetadata, utc_now

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE: int = 1000
DEFAULT_CHUNK_OVERLAP: int = 100

# Paragraph > line > sentence > word > hard character cut
SEPARATORS: Final[list[str]] = ["\n\n", "\n", ". ", " ", ""]

# Positional fields are owned by the chunker, never by caller metadata
_POSITIONAL_FIELDS: Final[frozenset[str]] = frozenset(
    {"document_id", "chunk_index", "start_index", "overlap", "extra"}
)
_TYPED_FIELDS: Final[frozenset[str]] = (
    frozenset(ChunkMetadata.model_fields) - _POSITIONAL_FIELDS
)


class TextChunker:
    """
    Splits text into overlapping Chunks.

    Uses recursive character splitting with separators that prefer
    paragraph > line > sentence > word boundaries, falling back to a
    hard character cut so no chunk ever exceeds ``chunk_size``.

    Usage::

        chunker = TextChunker()
        chunks = chunker.split(text, document_id, {"title": "Notes"})
        assert reconstruct_text(chunks) == text

    Args:
        chunk_size: Maximum characters per chunk.
        chunk_overlap: Maximum characters shared between consecutive chunks.

    Raises:
        ValueError: If chunk_overlap >= chunk_size.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        if chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be less than "
                f"chunk_size ({chunk_size})"
            )
        if chunk_overlap < 0:
            raise ValueError(f"chunk_overlap ({chunk_overlap}) must be >= 0")

        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            length_function=len,
            separators=SEPARATORS,
            keep_separator=True,
            strip_whitespace=False,
        )
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap

    @property
    def chunk_size(self) -> int:
        """Maximum characters per chunk."""
        return self._chunk_size

    @property
    def chunk_overlap(self) -> int:
        """Maximum characters shared between consecutive chunks."""
        return self._chunk_overlap

    def split(
        self,
        text: str,
        document_id: UUID,
        base_metadata: Mapping[str, Any] | None = None,
    ) -> list[Chunk]:
        """
        Split text into Chunks belonging to ``document_id``.

        Args:
            text: Normalized source text.
            document_id: Parent document reference stamped on every chunk.
            base_metadata: Metadata copied onto every chunk. Keys naming a
                typed ChunkMetadata field populate it; any other key goes
                to the ``extra`` map.

        Returns:
            Chunks with sequential indices starting at 0. A text shorter
            than chunk_size yields a single chunk.

        Raises:
            EmptyInputError: If text is empty or whitespace-only.
        """
        if not text or not text.strip():
            raise EmptyInputError("Content cannot be empty")

        pieces = self._splitter.split_text(text)
        offsets = _resolve_offsets(text, pieces, self._chunk_overlap)

        base = dict(base_metadata or {})
        typed = {k: v for k, v in base.items() if k in _TYPED_FIELDS}
        extra = {k: v for k, v in base.items() if k not in _TYPED_FIELDS}
        typed.setdefault("created_at", utc_now())
        typed.setdefault("updated_at", typed["created_at"])

        chunks: list[Chunk] = []
        prev_end = 0
        for i, (piece, start) in enumerate(zip(pieces, offsets, strict=True)):
            chunks.append(
                Chunk(
                    content=piece,
                    metadata=ChunkMetadata(
                        document_id=document_id,
                        chunk_index=i,
                        start_index=start,
                        overlap=prev_end - start if i else 0,
                        extra=dict(extra),
                        **typed,
                    ),
                )
            )
            prev_end = start + len(piece)

        logger.debug(
            "Split %d chars into %d chunks (size=%d, overlap=%d)",
            len(text),
            len(chunks),
            self._chunk_size,
            self._chunk_overlap,
        )

        return chunks


def reconstruct_text(chunks: Sequence[Chunk]) -> str:
    """
    Rebuild the source text from the chunks of a single text.

    Chunks are ordered by ``chunk_index``; each chunk contributes its
    content minus the ``overlap`` prefix shared with its predecessor.
    """
    ordered = sorted(chunks, key=lambda c: c.metadata.chunk_index)
    return "".join(c.content[c.metadata.overlap :] for c in ordered)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _resolve_offsets(text: str, pieces: list[str], max_overlap: int) -> list[int]:
    """
    Find the start offset of every piece in ``text``.

    Each piece starts after its predecessor's start and at most
    ``max_overlap`` characters before its predecessor's end; the last one
    ends exactly at the end of the text. Repetitive text can admit several
    candidate offsets, so this is a depth-first search with memoized
    dead ends, kept iterative to stay clear of the recursion limit.

    Raises:
        ValueError: If the pieces do not tile the text.
    """
    if not pieces:
        return []

    failed: set[tuple[int, int]] = set()
    offsets: list[int] = []

    def candidates(i: int) -> Iterator[int]:
        if i == 0:
            lo, hi = 0, 0
        else:
            prev_start = offsets[-1]
            hi = prev_start + len(pieces[i - 1])
            lo = max(prev_start + 1, hi - max_overlap)
        piece = pieces[i]
        return (
            p
            for p in range(lo, hi + 1)
            if (i, p) not in failed and text.startswith(piece, p)
        )

    stack = [candidates(0)]
    while stack:
        pos = next(stack[-1], None)
        if pos is None:
            stack.pop()
            if offsets:
                failed.add((len(offsets) - 1, offsets.pop()))
            continue

        offsets.append(pos)
        if len(offsets) < len(pieces):
            stack.append(candidates(len(offsets)))
        elif pos + len(pieces[-1]) == len(text):
            return offsets
        else:
            offsets.pop()

    raise ValueError("Chunks do not tile the source text")
