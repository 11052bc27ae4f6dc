"""
Ingestion Orchestrator

Stores a normalized document for its owner: applies tags, stamps the
owner on the document and every chunk, and hands the full chunk set to
the vector store gateway in one call (embed everything, then write
atomically).

Errors from the gateway propagate unchanged; there is no retry here.
"""

from __future__ import annotations

import logging
from typing import NamedTuple
from uuid import UUID

from docvault.models.schemas import ContentType, DocumentMetadata, ProcessedDocument
from docvault.services.vector_store import VectorStoreGateway

logger = logging.getLogger(__name__)


class IngestResult(NamedTuple):
    """Summary of an ingested document."""

    document_id: UUID
    title: str
    content_type: ContentType
    chunk_count: int
    metadata: DocumentMetadata


class IngestionOrchestrator:
    """
    Persists ProcessedDocuments through the vector store gateway.

    Usage::

        orchestrator = IngestionOrchestrator(gateway)
        result = await orchestrator.ingest(document, owner_id="user_1", tags=["work"])
        print(result.chunk_count)
    """

    def __init__(self, gateway: VectorStoreGateway) -> None:
        self._gateway = gateway

    async def ingest(
        self,
        document: ProcessedDocument,
        owner_id: str,
        tags: list[str] | None = None,
    ) -> IngestResult:
        """
        Store ``document`` for ``owner_id``.

        Steps:
            1. Normalize tags (trimmed, empty and duplicate entries dropped).
            2. Apply them to the document metadata and every chunk.
            3. Stamp the owner on every chunk.
            4. Embed and write all chunks via the gateway.

        Raises:
            EmbeddingError: Nothing was written.
            VectorStoreError: The write was rolled back.
        """
        clean_tags = list(dict.fromkeys(t.strip() for t in tags or [] if t.strip()))
        metadata = document.metadata.model_copy(update={"tags": clean_tags})

        chunks = [
            chunk.model_copy(
                update={
                    "metadata": chunk.metadata.model_copy(
                        update={"tags": list(clean_tags), "owner_id": owner_id}
                    )
                }
            )
            for chunk in document.chunks
        ]

        stored = await self._gateway.upsert_chunks(chunks, owner_id)

        logger.info(
            "Ingested %s '%s' as %s: %d chunks (owner %s)",
            document.content_type.value,
            document.title,
            document.id,
            stored,
            owner_id,
        )
        return IngestResult(
            document_id=document.id,
            title=document.title,
            content_type=document.content_type,
            chunk_count=stored,
            metadata=metadata,
        )
