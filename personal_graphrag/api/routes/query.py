"""Query endpoints: hybrid, Cypher, global and similarity search."""

import json
import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from personal_graphrag.api.main import get_graph_rag
from personal_graphrag.graph_rag import GraphRAG
from personal_graphrag.models import GraphEntity, GraphCommunity
from personal_graphrag.retrieval import (
    CancellationToken,
    GlobalQueryProgress,
    GlobalQueryResult,
    HybridQueryResult,
)

logger = logging.getLogger(__name__)
router = APIRouter(tags=["query"])

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


class QueryRequest(BaseModel):
    """Hybrid query request."""

    query: str = Field(..., min_length=1, description="Natural-language question or Cypher")
    cypher_query: str | None = Field(default=None, description="Explicit Cypher to run")
    entity_types: list[str] | None = Field(default=None, description="Restrict entity search")


class EntityHit(BaseModel):
    """Scored entity in a query response."""

    id: str
    name: str
    type: str
    description: str | None
    score: float
    source: str


class CommunityHit(BaseModel):
    """Scored community in a query response."""

    id: str
    level: int
    summary: str
    entity_count: int
    score: float


class QueryResponse(BaseModel):
    """Hybrid query response."""

    query: str
    entities: list[EntityHit]
    communities: list[CommunityHit]
    context: str
    cypher_results: list[dict[str, Any]] | None = None
    answer: str | None = None
    metadata: dict[str, Any]


class CypherRequest(BaseModel):
    """Raw Cypher request."""

    cypher: str = Field(..., min_length=1)


class CypherResponse(BaseModel):
    rows: list[dict[str, Any]]
    count: int


class GlobalQueryRequest(BaseModel):
    """Global query request. Without a level the level is picked from the question."""

    query: str = Field(..., min_length=1)
    community_level: int | None = Field(default=None, ge=0)


class CommunityAnswerInfo(BaseModel):
    community_id: str
    level: int
    answer: str
    helpfulness_score: int


class GlobalQueryResponse(BaseModel):
    """Global query response."""

    query: str
    answer: str
    community_level: int
    total_communities_processed: int
    communities_filtered: int
    useful_answers: int
    community_answers: list[CommunityAnswerInfo]
    duration: float


class EntitySearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    top_k: int = Field(default=10, ge=1, le=100)
    entity_type: str | None = None


class CommunitySearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    top_k: int = Field(default=5, ge=1, le=100)
    level: int | None = Field(default=None, ge=0)


class ScoredEntityInfo(BaseModel):
    entity: GraphEntity
    score: float


class ScoredCommunityInfo(BaseModel):
    community: GraphCommunity
    score: float


class ContextRequest(BaseModel):
    query: str = Field(..., min_length=1)


class ContextResponse(BaseModel):
    query: str
    context: str


def _query_response(query: str, result: HybridQueryResult) -> QueryResponse:
    return QueryResponse(
        query=query,
        entities=[
            EntityHit(
                id=hit.entity.id,
                name=hit.entity.name,
                type=hit.entity.type,
                description=hit.entity.description,
                score=hit.score,
                source=hit.source,
            )
            for hit in result.entities
        ],
        communities=[
            CommunityHit(
                id=hit.community.id,
                level=hit.community.level,
                summary=hit.community.summary,
                entity_count=len(hit.community.entity_ids),
                score=hit.score,
            )
            for hit in result.communities
        ],
        context=result.context_string,
        cypher_results=result.cypher_results,
        answer=result.generated_answer,
        metadata=asdict(result.metadata),
    )


def _global_response(query: str, result: GlobalQueryResult) -> GlobalQueryResponse:
    return GlobalQueryResponse(
        query=query,
        answer=result.answer,
        community_level=result.metadata.community_level,
        total_communities_processed=result.total_communities_processed,
        communities_filtered=result.communities_filtered,
        useful_answers=result.useful_answers,
        community_answers=[
            CommunityAnswerInfo(
                community_id=answer.community_id,
                level=answer.level,
                answer=answer.answer,
                helpfulness_score=answer.helpfulness_score,
            )
            for answer in result.community_answers
        ],
        duration=result.metadata.total_duration,
    )


def _progress_event(query: str, event: GlobalQueryProgress) -> dict[str, Any]:
    data: dict[str, Any] = {
        "type": "progress",
        "phase": event.phase.value,
        "message": event.message,
    }
    for key in (
        "current_community",
        "total_communities",
        "token",
        "community_level",
        "useful_answers",
    ):
        value = getattr(event, key)
        if value is not None:
            data[key] = value
    if event.result is not None:
        data["result"] = _global_response(query, event.result).model_dump()
    return data


@router.post("/query", response_model=QueryResponse)
async def query(
    request: QueryRequest,
    graph_rag: GraphRAG = Depends(get_graph_rag),
) -> QueryResponse:
    """Hybrid retrieval: Cypher, entity embeddings and community summaries fused."""
    logger.info(f"Query: {request.query[:50]}...")
    result = await graph_rag.query(
        request.query,
        cypher_query=request.cypher_query,
        entity_types=request.entity_types,
    )
    return _query_response(request.query, result)


@router.post("/query/answer", response_model=QueryResponse)
async def query_with_answer(
    request: QueryRequest,
    graph_rag: GraphRAG = Depends(get_graph_rag),
) -> QueryResponse:
    """Hybrid retrieval followed by a generated answer."""
    result = await graph_rag.query_with_answer(
        request.query,
        cypher_query=request.cypher_query,
        entity_types=request.entity_types,
    )
    return _query_response(request.query, result)


@router.post("/query/answer/stream")
async def query_with_answer_stream(
    request: QueryRequest,
    graph_rag: GraphRAG = Depends(get_graph_rag),
):
    """Stream the generated answer as server-sent events."""

    async def event_generator():
        try:
            async for token in graph_rag.query_with_answer_streaming(
                request.query,
                cypher_query=request.cypher_query,
                entity_types=request.entity_types,
            ):
                yield f"data: {json.dumps({'type': 'token', 'content': token})}\n\n"
            yield f"data: {json.dumps({'type': 'done'})}\n\n"
        except Exception as e:
            logger.error(f"Streaming answer failed: {e}")
            yield f"data: {json.dumps({'type': 'error', 'message': str(e)})}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/query/cypher", response_model=CypherResponse)
async def cypher_query(
    request: CypherRequest,
    graph_rag: GraphRAG = Depends(get_graph_rag),
) -> CypherResponse:
    """Execute a Cypher query against the graph."""
    rows = await graph_rag.cypher_query(request.cypher)
    return CypherResponse(rows=rows, count=len(rows))


@router.post("/query/global", response_model=GlobalQueryResponse)
async def global_query(
    request: GlobalQueryRequest,
    graph_rag: GraphRAG = Depends(get_graph_rag),
) -> GlobalQueryResponse:
    """Map-reduce answer over community summaries."""
    if request.community_level is None:
        result = await graph_rag.global_query_auto(request.query)
    else:
        result = await graph_rag.global_query(
            request.query, community_level=request.community_level
        )
    return _global_response(request.query, result)


@router.post("/query/global/stream")
async def global_query_stream(
    request: GlobalQueryRequest,
    http_request: Request,
    graph_rag: GraphRAG = Depends(get_graph_rag),
):
    """Stream global query progress; a client disconnect cancels the query."""
    cancel_token = CancellationToken()

    if request.community_level is None:
        events = graph_rag.global_query_auto_streaming(request.query, cancel_token=cancel_token)
    else:
        events = graph_rag.global_query_streaming(
            request.query,
            community_level=request.community_level,
            cancel_token=cancel_token,
        )

    async def event_generator():
        try:
            async for event in events:
                if await http_request.is_disconnected():
                    logger.info("Client disconnected, cancelling global query")
                    cancel_token.cancel()
                yield f"data: {json.dumps(_progress_event(request.query, event))}\n\n"
        except Exception as e:
            logger.error(f"Streaming global query failed: {e}")
            yield f"data: {json.dumps({'type': 'error', 'message': str(e)})}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/search/entities", response_model=list[ScoredEntityInfo])
async def search_entities(
    request: EntitySearchRequest,
    graph_rag: GraphRAG = Depends(get_graph_rag),
) -> list[ScoredEntityInfo]:
    hits = await graph_rag.search_entities(
        request.query, top_k=request.top_k, entity_type=request.entity_type
    )
    return [ScoredEntityInfo(entity=hit.entity, score=hit.score) for hit in hits]


@router.post("/search/communities", response_model=list[ScoredCommunityInfo])
async def search_communities(
    request: CommunitySearchRequest,
    graph_rag: GraphRAG = Depends(get_graph_rag),
) -> list[ScoredCommunityInfo]:
    hits = await graph_rag.search_communities(
        request.query, top_k=request.top_k, level=request.level
    )
    return [ScoredCommunityInfo(community=hit.community, score=hit.score) for hit in hits]


@router.post("/context", response_model=ContextResponse)
async def get_context(
    request: ContextRequest,
    graph_rag: GraphRAG = Depends(get_graph_rag),
) -> ContextResponse:
    """Graph context for prompt augmentation."""
    return ContextResponse(query=request.query, context=await graph_rag.get_context(request.query))
