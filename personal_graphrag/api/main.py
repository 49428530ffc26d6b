"""FastAPI application setup."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from personal_graphrag.api.middleware import RequestLoggingMiddleware
from personal_graphrag.clients import ClaudeClient, VoyageClient
from personal_graphrag.config import get_settings
from personal_graphrag.exceptions import (
    CypherParseError,
    DimensionMismatchError,
    IndexingStateError,
    NotInitializedError,
    PermissionDeniedError,
)
from personal_graphrag.graph_rag import GraphRAG, GraphRAGConfig
from personal_graphrag.utils import setup_logging

logger = logging.getLogger(__name__)

# Global instances
_graph_rag: GraphRAG | None = None
_claude_client: ClaudeClient | None = None
_voyage_client: VoyageClient | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global _graph_rag, _claude_client, _voyage_client

    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("Starting personal GraphRAG API")

    if settings.anthropic_api_key and settings.voyage_api_key:
        _claude_client = ClaudeClient(settings)
        _voyage_client = VoyageClient(settings)
        _graph_rag = GraphRAG(
            generate_function=_claude_client.generate,
            embed_function=_voyage_client.embed_text,
            stream_function=_claude_client.generate_stream,
            config=GraphRAGConfig.from_settings(settings),
        )
        await _graph_rag.initialize()
        logger.info("GraphRAG initialized")
    else:
        logger.warning("ANTHROPIC_API_KEY or VOYAGE_API_KEY missing; GraphRAG disabled")

    yield

    if _graph_rag:
        await _graph_rag.close()
    if _claude_client:
        await _claude_client.close()
    if _voyage_client:
        await _voyage_client.close()
    _graph_rag = _claude_client = _voyage_client = None
    logger.info("Clients closed")


app = FastAPI(
    title="Personal GraphRAG API",
    description="Knowledge-graph retrieval over personal data",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


# Dependency injection
def get_graph_rag() -> GraphRAG:
    """Get the GraphRAG instance."""
    if _graph_rag is None:
        raise NotInitializedError("GraphRAG not initialized")
    return _graph_rag


# Error mapping
@app.exception_handler(CypherParseError)
async def cypher_error_handler(request: Request, exc: CypherParseError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"detail": exc.message, "position": exc.position},
    )


@app.exception_handler(NotInitializedError)
async def not_initialized_handler(request: Request, exc: NotInitializedError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(IndexingStateError)
async def indexing_state_handler(request: Request, exc: IndexingStateError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(DimensionMismatchError)
async def dimension_mismatch_handler(
    request: Request, exc: DimensionMismatchError
) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(PermissionDeniedError)
async def permission_denied_handler(request: Request, exc: PermissionDeniedError) -> JSONResponse:
    return JSONResponse(status_code=403, content={"detail": str(exc)})


# Import routes after app creation to avoid circular imports
from personal_graphrag.api.routes import graph, health, indexing, query  # noqa: E402

app.include_router(health.router)
app.include_router(query.router)
app.include_router(indexing.router)
app.include_router(graph.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Personal GraphRAG API",
        "version": "0.1.0",
        "status": "running",
    }
