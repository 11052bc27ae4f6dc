"""
Vector Store Gateway

Owner-scoped access to the chunk store: provisioning, embedding and
writing chunks, similarity search, and the per-document views the API
exposes (list, detail, tag update, delete).

Filter planning:
    Filters arrive as camelCase metadata keys (``contentType``,
    ``documentId``). A filter is pushed down to the repository only
    when its column is reported by ``indexed_fields()``; everything else
    is applied in memory after a pushed-down scan, and search then
    ranks the full scan before cutting to ``k``. The path is chosen from
    the capability answer alone and logged as degraded performance.

Isolation:
    Every chunk returned or mutated is re-checked to carry the
    requested ``owner_id``, whichever path produced it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Mapping, Sequence
from typing import Any, Final
from uuid import UUID

from docvault.core.errors import (
    EmbeddingError,
    InputValidationError,
    InvalidDocumentIdError,
)
from docvault.models.schemas import (
    Chunk,
    ContentType,
    DocumentDetail,
    DocumentMetadata,
    DocumentSummary,
    ScoredChunk,
    utc_now,
)
from docvault.repositories.chunks import FILTERABLE_COLUMNS, ChunkRepository
from docvault.services.embeddings import Embedder

logger = logging.getLogger(__name__)

# Wire (camelCase) filter keys for the identity columns
FILTER_COLUMNS: Final[dict[str, str]] = {
    "ownerId": "owner_id",
    "documentId": "document_id",
    "contentType": "content_type",
}
_COLUMN_KEYS: Final[dict[str, str]] = {v: k for k, v in FILTER_COLUMNS.items()}


class VectorStoreGateway:
    """
    Owner-scoped gateway over a ChunkRepository and an Embedder.

    Usage::

        gateway = VectorStoreGateway(PgVectorChunkRepository(factory), embedder)
        await gateway.ensure_schema()
        await gateway.upsert_chunks(document.chunks, owner_id="user_1")
        hits = await gateway.search("what colour is the sky?", "user_1", k=10)

    Args:
        repository: Storage backend.
        embedder: Embedding client for chunks and queries; only writes and
            searches need one, so read and delete paths may leave it unset.
        indexed_fields_override: Fixed capability answer (columns treated
            as indexed); None asks the repository once and caches it.
    """

    def __init__(
        self,
        repository: ChunkRepository,
        embedder: Embedder | None = None,
        indexed_fields_override: frozenset[str] | None = None,
    ) -> None:
        self._repository = repository
        self.embedder = embedder
        self._override = indexed_fields_override
        self._indexed = indexed_fields_override

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    async def ensure_schema(self) -> None:
        """Idempotently provision table, extension and indexes."""
        await self._repository.ensure_schema()
        if self._override is None:
            self._indexed = None

    async def indexed_fields(self) -> frozenset[str]:
        """Filter columns the store reports as indexed (cached)."""
        if self._indexed is None:
            self._indexed = await self._repository.indexed_fields()
            logger.info("Indexed filter fields: %s", sorted(self._indexed))
        return self._indexed

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_chunks(self, chunks: Sequence[Chunk], owner_id: str) -> int:
        """
        Embed and store chunks for ``owner_id``.

        Every chunk is embedded before anything is written, so an
        embedding failure leaves the store untouched; the write itself is
        a single transaction.

        Returns:
            Number of chunks written.

        Raises:
            EmbeddingError: If embedding fails.
            VectorStoreError: If the write fails (nothing is persisted).
        """
        if not chunks:
            return 0

        now = utc_now()
        stamped = [
            chunk.model_copy(
                update={
                    "metadata": chunk.metadata.model_copy(
                        update={"owner_id": owner_id, "updated_at": now}
                    )
                }
            )
            for chunk in chunks
        ]

        vectors = await self._require_embedder().embed_documents(
            [c.content for c in stamped]
        )
        if len(vectors) != len(stamped):
            raise EmbeddingError(
                f"expected {len(stamped)} embeddings, got {len(vectors)}"
            )

        await self._repository.add(list(zip(stamped, vectors, strict=True)))
        logger.info("Stored %d chunks for owner %s", len(stamped), owner_id)
        return len(stamped)

    async def delete_document(self, owner_id: str, document_id: UUID) -> int:
        """Remove every chunk of a document; 0 when nothing matched."""
        return await self._delete(owner_id, {"documentId": document_id})

    async def delete_all_for_user(self, owner_id: str) -> int:
        """Remove every chunk owned by ``owner_id``."""
        return await self._delete(owner_id, {})

    async def update_tags(
        self,
        owner_id: str,
        document_id: UUID,
        tags: list[str],
    ) -> int:
        """Replace the tags of a document; returns the updated chunk count."""
        now = utc_now()
        pushed, residual = await self._plan(owner_id, {"documentId": document_id})
        if residual:
            ids = [c.id for c in await self._scan_filtered(owner_id, pushed, residual)]
            if not ids:
                return 0
            pushed = {**pushed, "id": ids}
        updated = await self._repository.update_tags(pushed, tags, now)
        logger.info(
            "Updated tags on %d chunks of document %s (owner %s)",
            updated,
            document_id,
            owner_id,
        )
        return updated

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search(
        self,
        query_text: str,
        owner_id: str,
        k: int,
        extra_filter: Mapping[str, Any] | None = None,
    ) -> list[ScoredChunk]:
        """
        Cosine nearest-neighbour search within the owner's chunks.

        Returns:
            At most ``k`` ScoredChunks, highest score first.

        Raises:
            EmbeddingError: If the query cannot be embedded.
            VectorStoreError: If the store fails.
        """
        embedding = await self._require_embedder().embed_query(query_text)
        pushed, residual = await self._plan(owner_id, extra_filter or {})

        if not residual:
            hits = await self._repository.search(embedding, pushed, k)
        else:
            logger.warning(
                "Filters %s are not indexed; ranking a full scan in memory",
                sorted(residual),
            )
            ranked = await self._repository.search(embedding, pushed, None)
            hits = [h for h in ranked if _matches(h.chunk, residual)]

        hits = self._owned(owner_id, hits, key=lambda h: h.chunk)
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:k]

    async def list_documents(
        self,
        owner_id: str,
        content_type: ContentType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[DocumentSummary], int]:
        """
        Documents of ``owner_id``, newest first, paginated.

        Returns:
            Tuple of (page of summaries, total number of documents).
        """
        filters: dict[str, Any] = {}
        if content_type is not None:
            filters["contentType"] = ContentType(content_type).value

        pushed, residual = await self._plan(owner_id, filters)
        chunks = await self._scan_filtered(owner_id, pushed, residual)

        grouped: dict[UUID, list[Chunk]] = defaultdict(list)
        for chunk in chunks:
            grouped[chunk.metadata.document_id].append(chunk)

        summaries = [
            DocumentSummary.model_validate(
                summarize(document_id, doc_chunks).model_dump(exclude={"chunks"})
            )
            for document_id, doc_chunks in grouped.items()
        ]
        summaries.sort(key=lambda s: s.metadata.created_at, reverse=True)
        return summaries[offset : offset + limit], len(summaries)

    async def get_document(
        self,
        owner_id: str,
        document_id: UUID,
    ) -> DocumentDetail | None:
        """Full document view, or None if the owner has no such document."""
        pushed, residual = await self._plan(owner_id, {"documentId": document_id})
        chunks = await self._scan_filtered(owner_id, pushed, residual)
        if not chunks:
            return None
        return summarize(document_id, chunks)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_embedder(self) -> Embedder:
        if self.embedder is None:
            raise EmbeddingError("no embedding client configured")
        return self.embedder

    async def _plan(
        self,
        owner_id: str,
        filters: Mapping[str, Any],
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """
        Split owner + extra filters into pushed-down column filters and
        in-memory residual filters (camelCase keys, JSON-comparable values).
        """
        wanted: dict[str, Any] = {**normalize_filter(filters), "ownerId": owner_id}

        indexed = await self.indexed_fields()
        pushed: dict[str, Any] = {}
        residual: dict[str, Any] = {}
        for key, value in wanted.items():
            column = FILTER_COLUMNS.get(key)
            if column in FILTERABLE_COLUMNS and column in indexed:
                pushed[column] = UUID(value) if column == "document_id" else value
            else:
                residual[key] = value
        return pushed, residual

    async def _scan_filtered(
        self,
        owner_id: str,
        pushed: dict[str, Any],
        residual: dict[str, Any],
    ) -> list[Chunk]:
        if residual:
            logger.warning(
                "Filters %s are not indexed; filtering a scan in memory",
                sorted(residual),
            )
        chunks = await self._repository.scan(pushed)
        matching = [c for c in chunks if _matches(c, residual)]
        return self._owned(owner_id, matching, key=lambda c: c)

    async def _delete(self, owner_id: str, filters: Mapping[str, Any]) -> int:
        pushed, residual = await self._plan(owner_id, filters)
        if residual:
            ids = [c.id for c in await self._scan_filtered(owner_id, pushed, residual)]
            if not ids:
                return 0
            pushed = {**pushed, "id": ids}
        deleted = await self._repository.delete(pushed)
        logger.info(
            "Deleted %d chunks (owner %s, filter %s)",
            deleted,
            owner_id,
            dict(filters),
        )
        return deleted

    @staticmethod
    def _owned(owner_id: str, items: list[Any], key: Any) -> list[Any]:
        """Drop anything not owned by ``owner_id`` (logged: it should never happen)."""
        owned = [item for item in items if key(item).metadata.owner_id == owner_id]
        if len(owned) != len(items):
            logger.error(
                "Dropped %d chunks outside owner scope %s",
                len(items) - len(owned),
                owner_id,
            )
        return owned


# ---------------------------------------------------------------------------
# Module helpers
# ---------------------------------------------------------------------------


def normalize_filter(filters: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Caller-supplied metadata filter with camelCase keys and stored values.

    ``None`` values are dropped.

    Raises:
        InvalidDocumentIdError: ``documentId`` is not a UUID.
        InputValidationError: ``contentType`` is not a known content type.
    """
    normalized: dict[str, Any] = {}
    for key, value in (filters or {}).items():
        if value is None:
            continue
        wire_key = _COLUMN_KEYS.get(key, key)
        normalized[wire_key] = _normalize_filter_value(wire_key, value)
    return normalized


def _normalize_filter_value(key: str, value: Any) -> Any:
    """Coerce a filter value to the JSON form stored in chunk metadata."""
    if key == "documentId":
        try:
            return str(UUID(str(value)))
        except ValueError as exc:
            raise InvalidDocumentIdError(f"Invalid document ID: '{value}'") from exc
    if key == "contentType":
        try:
            return ContentType(value).value
        except ValueError as exc:
            raise InputValidationError(
                f"Invalid contentType: '{value}' (expected note, document or url)"
            ) from exc
    return value


def _matches(chunk: Chunk, residual: Mapping[str, Any]) -> bool:
    """True when every residual filter holds on the chunk's flat metadata."""
    if not residual:
        return True
    flat = chunk.metadata.flat()
    for key, expected in residual.items():
        actual = flat.get(key)
        if isinstance(actual, list) and not isinstance(expected, list):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


def summarize(document_id: UUID, chunks: Sequence[Chunk]) -> DocumentDetail:
    """Rebuild a document view from its chunks."""
    ordered = sorted(chunks, key=lambda c: c.metadata.chunk_index)
    first = ordered[0].metadata
    content_type = first.content_type or ContentType.DOCUMENT

    crawled_urls = list(
        dict.fromkeys(c.metadata.page_url for c in ordered if c.metadata.page_url)
    )
    metadata = DocumentMetadata.model_validate(
        {
            **first.extra,
            "createdAt": first.created_at,
            "updatedAt": max(c.metadata.updated_at for c in ordered),
            "tags": first.tags,
            "totalChunks": len(ordered) if content_type == ContentType.URL else None,
            "crawledUrls": crawled_urls or None,
        }
    )

    return DocumentDetail(
        id=document_id,
        title=first.title or "Untitled Document",
        content_type=content_type,
        metadata=metadata,
        chunks_count=len(ordered),
        url=metadata.url,
        chunks=ordered,
    )
