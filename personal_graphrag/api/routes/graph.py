"""Graph inspection endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from personal_graphrag.api.main import get_graph_rag
from personal_graphrag.graph import Direction
from personal_graphrag.graph_rag import GraphRAG
from personal_graphrag.models import GraphEntity, GraphStatistics

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/graph", tags=["graph"])


@router.get("/stats", response_model=GraphStatistics)
async def graph_stats(graph_rag: GraphRAG = Depends(get_graph_rag)) -> GraphStatistics:
    return await graph_rag.get_stats()


@router.delete("")
async def clear_graph(graph_rag: GraphRAG = Depends(get_graph_rag)) -> dict[str, str]:
    """Remove every entity, relationship and community."""
    await graph_rag.clear_graph()
    logger.info("Graph cleared via API")
    return {"status": "cleared"}


@router.get(
    "/entities/{entity_id}",
    response_model=GraphEntity,
    response_model_exclude={"embedding"},
)
async def get_entity(
    entity_id: str,
    graph_rag: GraphRAG = Depends(get_graph_rag),
) -> GraphEntity:
    entity = await graph_rag.get_entity(entity_id)
    if entity is None:
        raise HTTPException(status_code=404, detail=f"Entity not found: {entity_id}")
    return entity


@router.get(
    "/entities/{entity_id}/neighbors",
    response_model=list[GraphEntity],
    response_model_exclude={"__all__": {"embedding"}},
)
async def get_neighbors(
    entity_id: str,
    depth: int = Query(default=1, ge=1, le=5),
    relationship_type: str | None = None,
    direction: Direction = Direction.BOTH,
    graph_rag: GraphRAG = Depends(get_graph_rag),
) -> list[GraphEntity]:
    """Entities reachable from ``entity_id`` within ``depth`` hops."""
    if await graph_rag.get_entity(entity_id) is None:
        raise HTTPException(status_code=404, detail=f"Entity not found: {entity_id}")
    return await graph_rag.get_neighbors(
        entity_id,
        depth=depth,
        relationship_type=relationship_type,
        direction=direction,
    )
