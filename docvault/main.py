"""
DocVault: Application Entry Point

FastAPI application for the DocVault personal knowledge base: per-user
document ingestion (files, notes, websites) and grounded question
answering over the user's own documents.

Start locally:
    uvicorn docvault.main:app --host 0.0.0.0 --port 8000 --reload

Identity:
    Every ``/api/v1`` route requires the header named by
    ``AUTH_USER_HEADER`` (default ``X-User-Id``), set by the upstream
    identity provider. Requests without it are rejected with 401 before
    routing or body parsing.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from docvault.api.v1.documents import router as documents_router
from docvault.api.v1.query import router as query_router
from docvault.core.config import settings
from docvault.core.database import create_engine, create_session_factory
from docvault.core.errors import DocVaultError
from docvault.core.logging import setup_logging
from docvault.repositories.chunks import PgVectorChunkRepository
from docvault.services.crawler import WebCrawler
from docvault.services.embeddings import LocalEmbedder
from docvault.services.vector_store import VectorStoreGateway

# Initialize logging before any log statements
setup_logging()
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


async def wait_for_db(engine: AsyncEngine, retries: int = 10, delay: int = 1) -> bool:
    """
    Wait for PostgreSQL to become available.

    Useful in containerized environments where the database may start
    after the application. Implements retry logic with linear delay.

    Returns:
        True if connection established, False if all retries exhausted.
    """
    for attempt in range(retries):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Postgres connection established")
            return True
        except Exception as exc:  # asyncpg/SQLAlchemy connection errors vary
            logger.warning(
                "Waiting for Postgres (%d/%d)... Error: %s", attempt + 1, retries, exc
            )
        await asyncio.sleep(delay)
    return False


async def provision_store(
    session_factory: async_sessionmaker[AsyncSession],
) -> frozenset[str]:
    """
    Create the chunk table, extension and indexes, and read back which
    filter fields the store has indexed (unless VECTOR_INDEXED_FIELDS
    pins them).
    """
    gateway = VectorStoreGateway(
        PgVectorChunkRepository(session_factory),
        indexed_fields_override=settings.indexed_fields_override,
    )
    await gateway.ensure_schema()
    return await gateway.indexed_fields()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
        1. Build the engine and session factory.
        2. Validate database connectivity (blocks startup on failure).
        3. Provision the vector store and cache its indexed fields.

    Shutdown:
        1. Dispose database engine.
        2. Release any local embedding model from memory.
    """
    logger.info("Starting %s (%s)...", settings.PROJECT_NAME, settings.ENVIRONMENT)

    engine = create_engine(settings)
    if not await wait_for_db(engine):
        await engine.dispose()
        raise RuntimeError("Database unavailable after retries")

    session_factory = create_session_factory(engine)
    app.state.session_factory = session_factory
    app.state.indexed_fields = await provision_store(session_factory)
    app.state.crawler = WebCrawler(user_agent=settings.CRAWL_USER_AGENT)

    yield

    # Shutdown
    LocalEmbedder.reset()
    await engine.dispose()
    logger.info("%s shutdown complete", settings.PROJECT_NAME)


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Per-user document ingestion and grounded question answering.",
    version="0.1.0",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@app.middleware("http")
async def require_identity(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Reject /api/v1 requests that carry no caller identity."""
    if request.url.path.startswith(API_PREFIX):
        owner_id = request.headers.get(settings.AUTH_USER_HEADER, "").strip()
        if not owner_id:
            return JSONResponse(
                status_code=401,
                content={
                    "error": "Unauthorized",
                    "details": f"Missing {settings.AUTH_USER_HEADER} header",
                    "code": "unauthorized",
                },
            )
        request.state.owner_id = owner_id
    return await call_next(request)


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------


@app.exception_handler(DocVaultError)
async def docvault_error_handler(request: Request, exc: DocVaultError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.title, "details": exc.message, "code": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid request",
            "details": details,
            "code": "invalid_input",
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "details": "An unexpected error occurred",
            "code": "internal_error",
        },
    )


app.include_router(documents_router, prefix=API_PREFIX, tags=["Documents"])
app.include_router(query_router, prefix=API_PREFIX, tags=["Query"])


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check for load balancers and orchestrators."""
    return {
        "status": "ok",
        "service": "docvault",
        "environment": settings.ENVIRONMENT,
    }
