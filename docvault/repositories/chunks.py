"""
Chunk Repository

Data access layer for the flat ``document_chunks`` table.
Provides idempotent schema provisioning, atomic batch writes, equality
filters on the denormalized identity columns, and vector similarity
search via pgvector cosine distance.

The repository speaks domain objects (Chunk, ScoredChunk) and maps to
ChunkRecord rows internally, so the vector store gateway above it never
touches SQLAlchemy.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Final, Protocol

from sqlalchemy import ColumnElement, delete, literal, select, text, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docvault.core.errors import VectorStoreError
from docvault.models.base import Base
from docvault.models.orm import ChunkRecord
from docvault.models.schemas import Chunk, ChunkMetadata, ScoredChunk

logger = logging.getLogger(__name__)

TABLE_NAME: Final[str] = ChunkRecord.__tablename__

# Identity columns that can be pushed down as equality filters
FILTERABLE_COLUMNS: Final[frozenset[str]] = frozenset(
    {"owner_id", "document_id", "content_type"}
)

INDEX_DDL: Final[tuple[str, ...]] = (
    f"CREATE INDEX IF NOT EXISTS ix_{TABLE_NAME}_owner_id "
    f"ON {TABLE_NAME} USING btree (owner_id)",
    f"CREATE INDEX IF NOT EXISTS ix_{TABLE_NAME}_document_id "
    f"ON {TABLE_NAME} USING btree (document_id)",
    f"CREATE INDEX IF NOT EXISTS ix_{TABLE_NAME}_content_type "
    f"ON {TABLE_NAME} USING btree (content_type)",
    f"CREATE INDEX IF NOT EXISTS ix_{TABLE_NAME}_embedding_hnsw "
    f"ON {TABLE_NAME} USING hnsw (embedding vector_cosine_ops)",
)

# Leading column of a btree index definition, as reported by pg_indexes
_BTREE_COLUMN_RE: Final = re.compile(r"USING btree \(\s*\"?(\w+)\"?", re.IGNORECASE)


class ChunkRepository(Protocol):
    """
    Storage operations the vector store gateway relies on.

    ``filters`` map column names from FILTERABLE_COLUMNS to the value
    they must equal; the primary key ``id`` may also be given, as a list
    of chunk ids, and is always served by an index.
    """

    async def ensure_schema(self) -> None: ...

    async def indexed_fields(self) -> frozenset[str]: ...

    async def add(self, rows: Sequence[tuple[Chunk, list[float]]]) -> None: ...

    async def search(
        self,
        embedding: list[float],
        filters: Mapping[str, Any],
        limit: int | None,
    ) -> list[ScoredChunk]: ...

    async def scan(self, filters: Mapping[str, Any]) -> list[Chunk]: ...

    async def delete(self, filters: Mapping[str, Any]) -> int: ...

    async def update_tags(
        self,
        filters: Mapping[str, Any],
        tags: list[str],
        updated_at: datetime,
    ) -> int: ...


class PgVectorChunkRepository:
    """
    ChunkRepository backed by PostgreSQL + pgvector.

    Each operation opens its own session from the injected factory and
    commits (or rolls back) before returning.

    Key guarantees:
        - ``add``: atomic; either every row is persisted or none is.
        - ``search``: chunks with cosine similarity scores, ordered by
          relevance (highest score first).
        - Every SQLAlchemy failure surfaces as VectorStoreError.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def ensure_schema(self) -> None:
        """Create the extension, table and indexes if they do not exist."""
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
                conn = await session.connection()
                await conn.run_sync(Base.metadata.create_all)
                for ddl in INDEX_DDL:
                    await session.execute(text(ddl))
        except SQLAlchemyError as exc:
            raise VectorStoreError(f"schema provisioning failed: {exc}") from exc
        logger.info("Vector store schema ready (table=%s)", TABLE_NAME)

    async def indexed_fields(self) -> frozenset[str]:
        """Filterable columns that lead a btree index, read from pg_indexes."""
        stmt = text("SELECT indexdef FROM pg_indexes WHERE tablename = :table")
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt, {"table": TABLE_NAME})
                definitions = result.scalars().all()
        except SQLAlchemyError as exc:
            raise VectorStoreError(f"index inspection failed: {exc}") from exc

        columns = {
            match.group(1)
            for definition in definitions
            if (match := _BTREE_COLUMN_RE.search(definition))
        }
        return frozenset(columns & FILTERABLE_COLUMNS)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def add(self, rows: Sequence[tuple[Chunk, list[float]]]) -> None:
        """Persist chunks with their embeddings in a single transaction."""
        records = [self._to_record(chunk, embedding) for chunk, embedding in rows]
        try:
            async with self._session_factory() as session:
                session.add_all(records)
                await session.flush()
                await session.commit()
        except SQLAlchemyError as exc:
            raise VectorStoreError(f"write failed: {exc}") from exc

    async def delete(self, filters: Mapping[str, Any]) -> int:
        """Delete matching rows; returns how many were removed."""
        stmt = delete(ChunkRecord).where(*self._where(filters))
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise VectorStoreError(f"delete failed: {exc}") from exc
        return int(result.rowcount or 0)  # type: ignore[attr-defined]

    async def update_tags(
        self,
        filters: Mapping[str, Any],
        tags: list[str],
        updated_at: datetime,
    ) -> int:
        """Replace tags on matching rows, keeping the JSONB payload in sync."""
        patch = literal(
            {"tags": tags, "updatedAt": updated_at.isoformat()},
            type_=JSONB,
        )
        stmt = (
            update(ChunkRecord)
            .where(*self._where(filters))
            .values(
                chunk_metadata=ChunkRecord.chunk_metadata.op("||", return_type=JSONB)(
                    patch
                ),
                updated_at=updated_at,
            )
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise VectorStoreError(f"tag update failed: {exc}") from exc
        return int(result.rowcount or 0)  # type: ignore[attr-defined]

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def search(
        self,
        embedding: list[float],
        filters: Mapping[str, Any],
        limit: int | None,
    ) -> list[ScoredChunk]:
        """
        Rank matching chunks by cosine similarity against a query vector.

        Uses pgvector's ``cosine_distance`` operator, which the HNSW index
        on ``embedding`` serves for sub-linear lookup. The distance is
        converted to a similarity score: ``score = 1 - distance``.

        Args:
            embedding: Query vector.
            filters: Equality filters on identity columns.
            limit: Maximum number of results; None ranks every match.

        Returns:
            ScoredChunks ordered by similarity (highest first).
        """
        distance = ChunkRecord.embedding.cosine_distance(embedding).label("distance")
        stmt = (
            select(ChunkRecord, distance)
            .where(*self._where(filters))
            .order_by(distance)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except SQLAlchemyError as exc:
            raise VectorStoreError(f"search failed: {exc}") from exc

        # Convert cosine distance to similarity score
        return [
            ScoredChunk(
                chunk=self._to_chunk(row[0]),
                score=round(1.0 - float(row[1]), 4),
            )
            for row in rows
        ]

    async def scan(self, filters: Mapping[str, Any]) -> list[Chunk]:
        """All matching chunks, grouped by document and ordered by index."""
        stmt = (
            select(ChunkRecord)
            .where(*self._where(filters))
            .order_by(ChunkRecord.document_id, ChunkRecord.chunk_index)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                records = result.scalars().all()
        except SQLAlchemyError as exc:
            raise VectorStoreError(f"scan failed: {exc}") from exc
        return [self._to_chunk(record) for record in records]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _where(filters: Mapping[str, Any]) -> list[ColumnElement[bool]]:
        """Equality clauses; ``id`` takes a list of primary keys."""
        clauses: list[ColumnElement[bool]] = []
        for column, value in filters.items():
            if column == "id":
                clauses.append(ChunkRecord.id.in_(list(value)))
            elif column in FILTERABLE_COLUMNS:
                clauses.append(getattr(ChunkRecord, column) == value)
            else:
                raise ValueError(f"Cannot push down a filter on '{column}'")
        return clauses

    @staticmethod
    def _to_record(chunk: Chunk, embedding: list[float]) -> ChunkRecord:
        meta = chunk.metadata
        if not meta.owner_id or meta.content_type is None:
            raise ValueError(f"Chunk {chunk.id} is missing owner_id or content_type")
        return ChunkRecord(
            id=chunk.id,
            owner_id=meta.owner_id,
            document_id=meta.document_id,
            content_type=meta.content_type.value,
            title=meta.title or "",
            chunk_index=meta.chunk_index,
            content=chunk.content,
            embedding=embedding,
            chunk_metadata=meta.model_dump(mode="json", by_alias=True),
            created_at=meta.created_at,
            updated_at=meta.updated_at,
        )

    @staticmethod
    def _to_chunk(record: ChunkRecord) -> Chunk:
        return Chunk(
            id=record.id,
            content=record.content,
            metadata=ChunkMetadata.model_validate(record.chunk_metadata),
        )
