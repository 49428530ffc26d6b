"""Community summarization with leaf and hierarchical modes."""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable

from personal_graphrag.generation.prompts import (
    CommunitySummaryPrompt,
    HierarchicalSummaryPrompt,
)
from personal_graphrag.models import GraphEntity, GraphRelationship

from .community import DetectedCommunity

logger = logging.getLogger(__name__)

MAX_ENTITIES_IN_PROMPT = 15
MAX_RELATIONSHIPS_IN_PROMPT = 20
MAX_EMBEDDING_CHARS = 800

EMPTY_COMMUNITY_SUMMARY = "Empty community with no sub-communities."


@dataclass
class CommunitySummary:
    """Generated summary and its embedding."""

    community_id: str
    summary: str
    embedding: list[float]
    entity_count: int
    relationship_count: int


class CommunitySummarizer:
    """Generate summaries for detected communities."""

    def __init__(
        self,
        generate_function: Callable[[str], Awaitable[str]],
        embed_function: Callable[[str], Awaitable[list[float]]],
    ):
        """Initialize summarizer.

        Args:
            generate_function: Async function to generate text (LLM call)
            embed_function: Async function embedding a single text
        """
        self.generate_function = generate_function
        self.embed_function = embed_function
        self._leaf_prompt = CommunitySummaryPrompt()
        self._hierarchical_prompt = HierarchicalSummaryPrompt()

    async def _embed_summary(self, summary: str) -> list[float]:
        text = summary[:MAX_EMBEDDING_CHARS].strip() if len(summary) > MAX_EMBEDDING_CHARS else summary
        return await self.embed_function(text)

    async def summarize(
        self,
        community: DetectedCommunity,
        entities: list[GraphEntity],
        relationships: list[GraphRelationship],
    ) -> CommunitySummary:
        """Summarize a community from its member entities.

        Only relationships with both endpoints inside the community are used.
        Large communities are truncated to keep the prompt small.
        """
        members = [e for e in entities if e.id in community.entity_ids]
        internal = [
            r
            for r in relationships
            if r.source_id in community.entity_ids and r.target_id in community.entity_ids
        ]

        if len(members) > MAX_ENTITIES_IN_PROMPT:
            logger.debug(
                f"Truncating {len(members)} entities to {MAX_ENTITIES_IN_PROMPT} for {community.id}"
            )
            members = members[:MAX_ENTITIES_IN_PROMPT]
        if len(internal) > MAX_RELATIONSHIPS_IN_PROMPT:
            logger.debug(
                f"Truncating {len(internal)} relationships to "
                f"{MAX_RELATIONSHIPS_IN_PROMPT} for {community.id}"
            )
            internal = internal[:MAX_RELATIONSHIPS_IN_PROMPT]

        names = {e.id: e.name for e in entities if e.id in community.entity_ids}
        relationship_lines = [
            f"{names.get(r.source_id, r.source_id)} {r.type} {names.get(r.target_id, r.target_id)}"
            for r in internal
        ]

        prompt = self._leaf_prompt.format(entities=members, relationships=relationship_lines)
        summary = (await self.generate_function(prompt)).strip()
        embedding = await self._embed_summary(summary)

        return CommunitySummary(
            community_id=community.id,
            summary=summary,
            embedding=embedding,
            entity_count=len(members),
            relationship_count=len(internal),
        )

    async def summarize_hierarchical(
        self,
        community: DetectedCommunity,
        child_summaries: list[CommunitySummary],
    ) -> CommunitySummary:
        """Summarize a coarser community from its children's summaries."""
        if not child_summaries:
            return CommunitySummary(
                community_id=community.id,
                summary=EMPTY_COMMUNITY_SUMMARY,
                embedding=await self._embed_summary(EMPTY_COMMUNITY_SUMMARY),
                entity_count=len(community.entity_ids),
                relationship_count=0,
            )

        prompt = self._hierarchical_prompt.format(
            child_summaries=[s.summary for s in child_summaries],
            level=community.level,
        )
        summary = (await self.generate_function(prompt)).strip()
        embedding = await self._embed_summary(summary)

        return CommunitySummary(
            community_id=community.id,
            summary=summary,
            embedding=embedding,
            entity_count=sum(s.entity_count for s in child_summaries),
            relationship_count=sum(s.relationship_count for s in child_summaries),
        )

    async def summarize_all(
        self,
        communities: list[DetectedCommunity],
        entities: list[GraphEntity],
        relationships: list[GraphRelationship],
        on_progress: Callable[[int, int], None] | None = None,
    ) -> list[CommunitySummary]:
        """Summarize every community from its entities."""
        summaries = []
        for i, community in enumerate(communities):
            summaries.append(await self.summarize(community, entities, relationships))
            if on_progress:
                on_progress(i + 1, len(communities))
        return summaries

    async def summarize_all_hierarchical(
        self,
        communities: list[DetectedCommunity],
        entities: list[GraphEntity],
        relationships: list[GraphRelationship],
        on_progress: Callable[[int, int], None] | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> list[CommunitySummary]:
        """Summarize level by level, finest first.

        Level 0 communities are summarized from entities; coarser levels from
        their children's summaries, falling back to entities when no child
        summary exists.

        Args:
            communities: Communities of all levels
            entities: All entities
            relationships: All relationships
            on_progress: Called with ``(completed, total)`` after each summary
            should_stop: Checked before each community; stops early when True
        """
        by_level: dict[int, list[DetectedCommunity]] = defaultdict(list)
        for community in communities:
            by_level[community.level].append(community)

        summaries: list[CommunitySummary] = []
        summary_by_id: dict[str, CommunitySummary] = {}
        total = len(communities)

        for level in sorted(by_level):
            for community in by_level[level]:
                if should_stop and should_stop():
                    logger.info("Summarization stopped early")
                    return summaries

                child_summaries = [
                    summary_by_id[child_id]
                    for child_id in community.child_community_ids
                    if child_id in summary_by_id
                ]
                if level == 0 or not child_summaries:
                    summary = await self.summarize(community, entities, relationships)
                else:
                    summary = await self.summarize_hierarchical(community, child_summaries)

                summaries.append(summary)
                summary_by_id[community.id] = summary
                if on_progress:
                    on_progress(len(summaries), total)

        logger.info(f"Generated {len(summaries)} community summaries")
        return summaries
