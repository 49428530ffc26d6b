"""Background indexing control endpoints."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from personal_graphrag.api.main import get_graph_rag
from personal_graphrag.graph_rag import GraphRAG
from personal_graphrag.ingestion.pipeline import IndexingProgress, IndexingStatus

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/indexing", tags=["indexing"])


class StartIndexingRequest(BaseModel):
    full_reindex: bool = Field(default=False, description="Reset sync state and refetch all data")


class IndexingProgressResponse(BaseModel):
    """Snapshot of the indexing run."""

    status: IndexingStatus
    status_text: str
    current_phase: str
    progress: float
    processed_items: int
    total_items: int
    extracted_entities: int
    extracted_relationships: int
    stored_entities: int
    stored_relationships: int
    detected_communities: int
    start_time: datetime | None = None
    end_time: datetime | None = None
    elapsed_seconds: float | None = None
    estimated_seconds_remaining: float | None = None
    error_message: str | None = None


def _progress_response(progress: IndexingProgress) -> IndexingProgressResponse:
    elapsed = progress.elapsed
    remaining = progress.estimated_time_remaining
    return IndexingProgressResponse(
        **progress.model_dump(),
        status_text=progress.status_text,
        progress=progress.progress,
        elapsed_seconds=elapsed.total_seconds() if elapsed is not None else None,
        estimated_seconds_remaining=remaining.total_seconds() if remaining is not None else None,
    )


@router.post("/start", response_model=IndexingProgressResponse)
async def start_indexing(
    request: StartIndexingRequest | None = None,
    graph_rag: GraphRAG = Depends(get_graph_rag),
) -> IndexingProgressResponse:
    """Start a background indexing run."""
    full_reindex = request.full_reindex if request else False
    logger.info(f"Indexing requested (full_reindex={full_reindex})")
    await graph_rag.start_indexing(full_reindex=full_reindex)
    return _progress_response(graph_rag.indexing_status)


@router.post("/pause", response_model=IndexingProgressResponse)
async def pause_indexing(graph_rag: GraphRAG = Depends(get_graph_rag)) -> IndexingProgressResponse:
    graph_rag.pause_indexing()
    return _progress_response(graph_rag.indexing_status)


@router.post("/resume", response_model=IndexingProgressResponse)
async def resume_indexing(graph_rag: GraphRAG = Depends(get_graph_rag)) -> IndexingProgressResponse:
    graph_rag.resume_indexing()
    return _progress_response(graph_rag.indexing_status)


@router.post("/cancel", response_model=IndexingProgressResponse)
async def cancel_indexing(graph_rag: GraphRAG = Depends(get_graph_rag)) -> IndexingProgressResponse:
    graph_rag.cancel_indexing()
    return _progress_response(graph_rag.indexing_status)


@router.get("/progress", response_model=IndexingProgressResponse)
async def indexing_progress(
    graph_rag: GraphRAG = Depends(get_graph_rag),
) -> IndexingProgressResponse:
    """Current indexing snapshot."""
    return _progress_response(graph_rag.indexing_status)
