"""Models package: Pydantic schemas and SQLAlchemy ORM for the DocVault pipeline."""

from docvault.models.orm import EMBEDDING_DIMENSION, ChunkRecord
from docvault.models.schemas import (
    Chunk,
    ChunkMetadata,
    ContentType,
    DocumentDetail,
    DocumentMetadata,
    DocumentSummary,
    ProcessedDocument,
    ScoredChunk,
)

__all__ = [
    # Pydantic schemas (pipeline)
    "Chunk",
    "ChunkMetadata",
    "ContentType",
    "DocumentDetail",
    "DocumentMetadata",
    "DocumentSummary",
    "ProcessedDocument",
    "ScoredChunk",
    # SQLAlchemy ORM (persistence layer)
    "ChunkRecord",
    "EMBEDDING_DIMENSION",
]
