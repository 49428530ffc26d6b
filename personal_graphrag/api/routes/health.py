"""Health check endpoint."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from personal_graphrag.api.main import get_graph_rag
from personal_graphrag.graph_rag import GraphRAG
from personal_graphrag.models import GraphStatistics

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    initialized: bool
    stats: GraphStatistics | None = None


@router.get("/health", response_model=HealthResponse)
async def health_check(
    graph_rag: GraphRAG = Depends(get_graph_rag),
) -> HealthResponse:
    """Health check endpoint.

    Returns:
        Health status including graph statistics
    """
    if not graph_rag.is_initialized:
        return HealthResponse(status="unhealthy", initialized=False)

    return HealthResponse(
        status="healthy",
        initialized=True,
        stats=await graph_rag.get_stats(),
    )
