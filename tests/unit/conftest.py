"""
API test fixtures.

Route tests never enter the lifespan handler: ``get_pipeline`` is
overridden with a pipeline over the in-memory doubles, so no database
is needed.
"""

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from docvault.api.deps import get_pipeline
from docvault.main import app
from docvault.services.rag_pipeline import RAGPipeline


@pytest.fixture
def use_pipeline() -> Iterator:
    """Route every request to the given pipeline until the test ends."""

    def _use(pipeline: RAGPipeline) -> None:
        app.dependency_overrides[get_pipeline] = lambda: pipeline

    yield _use
    app.dependency_overrides.clear()


@pytest.fixture
def client(pipeline: RAGPipeline, use_pipeline) -> TestClient:
    """TestClient backed by the shared in-memory pipeline."""
    use_pipeline(pipeline)
    return TestClient(app)
