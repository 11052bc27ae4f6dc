"""
DocVault Database Models

SQLAlchemy 2.0 ORM model for the flat chunk store.
Uses pgvector for vector similarity search on chunk embeddings.

Tables:
    document_chunks: One row per chunk. Owner and document identity are
                     denormalized on every row so filters never need joins;
                     documents are reconstructed by grouping on document_id.
"""

from __future__ import annotations

import uuid
from typing import Any

from pgvector.sqlalchemy import Vector
from sqlalchemy import Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from docvault.core.config import settings
from docvault.models.base import Base, TimestampMixin

EMBEDDING_DIMENSION: int = settings.EMBEDDING_DIMENSION


class ChunkRecord(TimestampMixin, Base):
    """
    Persistent storage for document chunks with vector embeddings.

    Attributes:
        id: Chunk UUID (generated by the chunker, never by the database).
        owner_id: Opaque user id from the identity provider.
        document_id: Logical document the chunk belongs to.
        content_type: ``note``, ``document`` or ``url``.
        title: Document title, repeated on every chunk.
        chunk_index: Global zero-based position within the document.
        content: Chunk text.
        embedding: Vector of EMBEDDING_DIMENSION floats.
        chunk_metadata: Full camelCase ChunkMetadata payload (JSONB).
    """

    __tablename__ = "document_chunks"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    document_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    content_type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float]] = mapped_column(
        Vector(EMBEDDING_DIMENSION),
        nullable=False,
    )
    chunk_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        default=dict,
    )

    def __repr__(self) -> str:
        return (
            f"<ChunkRecord(id={self.id!s:.8}, "
            f"doc={self.document_id!s:.8}, idx={self.chunk_index})>"
        )
