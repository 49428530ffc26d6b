"""Map-reduce question answering over community summaries.

MAP asks every community at one level for a partial answer and a
helpfulness score, FILTER keeps the most helpful answers that fit the
context budget, REDUCE synthesizes them into the final answer.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable

from personal_graphrag.generation.prompts import (
    CommunityMapPrompt,
    GlobalReducePrompt,
    estimate_tokens,
)
from personal_graphrag.graph import GraphRepository
from personal_graphrag.models import GraphCommunity
from personal_graphrag.routing import QueryScopeClassifier, select_community_level

logger = logging.getLogger(__name__)

NOT_INDEXED_ANSWER = (
    "I don't have enough information to answer this question. "
    "The knowledge graph hasn't been indexed yet."
)
NOT_ENOUGH_INFORMATION_ANSWER = (
    "I don't have enough relevant information to answer this question "
    "based on the available data."
)

_SCORE_PATTERN = re.compile(r"SCORE:\s*(\d+)")


@dataclass
class GlobalQueryConfig:
    """Map-reduce settings."""

    community_level: int = 1
    max_community_answers: int = 10
    min_helpfulness_score: int = 20
    context_token_limit: int = 4000
    response_type: str = "multiple paragraphs"
    max_level_scan: int = 5


@dataclass
class CommunityAnswer:
    """Partial answer produced by one community in the MAP phase."""

    community_id: str
    summary: str
    answer: str
    helpfulness_score: int
    level: int

    @property
    def approximate_tokens(self) -> int:
        return estimate_tokens(self.answer)


@dataclass
class GlobalQueryMetadata:
    original_query: str
    community_level: int
    map_phase_duration: float = 0.0
    reduce_phase_duration: float = 0.0
    total_duration: float = 0.0


@dataclass
class GlobalQueryResult:
    answer: str
    community_answers: list[CommunityAnswer]
    total_communities_processed: int
    communities_filtered: int
    metadata: GlobalQueryMetadata

    @property
    def useful_answers(self) -> int:
        return len(self.community_answers)


class GlobalQueryPhase(str, Enum):
    STARTING = "starting"
    MAP_PHASE = "map_phase"
    FILTERING = "filtering"
    REDUCE_PHASE = "reduce_phase"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class GlobalQueryProgress:
    """One event of a streaming global query."""

    phase: GlobalQueryPhase
    message: str
    current_community: int | None = None
    total_communities: int | None = None
    token: str | None = None
    partial_response: str | None = None
    community_level: int | None = None
    useful_answers: int | None = None
    result: GlobalQueryResult | None = None  # set on COMPLETED

    @property
    def is_terminal(self) -> bool:
        return self.phase in (GlobalQueryPhase.COMPLETED, GlobalQueryPhase.CANCELLED)


class CancellationToken:
    """Cooperative cancellation flag for streaming queries."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled


def parse_community_response(response: str) -> tuple[int, str]:
    """Split a MAP response into ``(score, answer)``.

    The score is clamped to 0..100; a response without a score line scores 0
    and is kept whole as the answer.
    """
    match = _SCORE_PATTERN.search(response)
    if match is None:
        return 0, response.strip()
    score = min(100, max(0, int(match.group(1))))
    return score, response[match.end():].strip()


@dataclass
class _Stopwatch:
    started: float = field(default_factory=time.perf_counter)

    def elapsed(self) -> float:
        return time.perf_counter() - self.started


class GlobalQueryEngine:
    """Answer corpus-wide questions from community summaries.

    Collaborator failures propagate: a failing MAP or REDUCE call fails the
    whole query.
    """

    def __init__(
        self,
        repository: GraphRepository,
        generate_function: Callable[[str], Awaitable[str]],
        stream_function: Callable[[str], AsyncIterator[str]] | None = None,
        config: GlobalQueryConfig | None = None,
    ):
        self.repository = repository
        self.generate_function = generate_function
        self.stream_function = stream_function
        self.config = config or GlobalQueryConfig()
        self.classifier = QueryScopeClassifier()
        self._map_prompt = CommunityMapPrompt()
        self._reduce_prompt = GlobalReducePrompt()

    # Public API

    async def query(self, query: str, community_level: int | None = None) -> GlobalQueryResult:
        """Run map-reduce at ``community_level`` (config level when None)."""
        return await self._collect(self._run(query, community_level, None, stream=False))

    async def query_with_auto_level(self, query: str) -> GlobalQueryResult:
        """Run map-reduce at the level suited to the question's scope."""
        level = await self.select_level(query)
        return await self.query(query, community_level=level)

    async def query_streaming(
        self,
        query: str,
        community_level: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[GlobalQueryProgress]:
        """Run map-reduce, yielding progress events and answer tokens."""
        async for event in self._run(query, community_level, cancel_token, stream=True):
            yield event

    async def query_with_auto_level_streaming(
        self,
        query: str,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[GlobalQueryProgress]:
        level = await self.select_level(query)
        async for event in self._run(query, level, cancel_token, stream=True):
            yield event

    async def get_available_levels(self) -> list[int]:
        """Levels holding communities, probing upwards from 0.

        Probing stops at the first empty level after a non-empty one.
        """
        levels: list[int] = []
        for level in range(self.config.max_level_scan + 1):
            if await self.repository.get_communities_by_level(level):
                levels.append(level)
            elif levels:
                break
        return levels

    async def select_level(self, query: str) -> int | None:
        """Community level for a query, or None when nothing is indexed."""
        levels = await self.get_available_levels()
        if not levels:
            return None
        scope = self.classifier.classify(query).scope
        level = select_community_level(scope, levels)
        logger.info(f"Auto-selected community level {level} for {scope.value} query")
        return level

    # Pipeline

    async def _collect(self, events: AsyncIterator[GlobalQueryProgress]) -> GlobalQueryResult:
        result = None
        async for event in events:
            if event.result is not None:
                result = event.result
        if result is None:
            raise RuntimeError("Global query ended without a result")
        return result

    async def _resolve_communities(self, level: int) -> tuple[int, list[GraphCommunity]]:
        """Communities at ``level``, falling back to lower levels when empty."""
        for candidate in range(level, -1, -1):
            communities = await self.repository.get_communities_by_level(candidate)
            if communities:
                if candidate != level:
                    logger.info(f"Level {level} is empty, falling back to level {candidate}")
                return candidate, sorted(communities, key=lambda c: c.id)
        return level, []

    async def _map_community(self, query: str, community: GraphCommunity) -> CommunityAnswer:
        response = await self.generate_function(
            self._map_prompt.format(query=query, summary=community.summary)
        )
        score, answer = parse_community_response(response)
        return CommunityAnswer(
            community_id=community.id,
            summary=community.summary,
            answer=answer,
            helpfulness_score=score,
            level=community.level,
        )

    def _select_answers(
        self, answers: list[CommunityAnswer]
    ) -> tuple[list[CommunityAnswer], int]:
        """Helpful answers that fit the context budget, plus the filtered count."""
        cfg = self.config
        helpful = [a for a in answers if a.helpfulness_score >= cfg.min_helpfulness_score]
        helpful.sort(key=lambda a: (-a.helpfulness_score, a.community_id))

        selected: list[CommunityAnswer] = []
        total_tokens = 0
        for answer in helpful:
            if len(selected) >= cfg.max_community_answers:
                break
            if total_tokens + answer.approximate_tokens > cfg.context_token_limit:
                break
            selected.append(answer)
            total_tokens += answer.approximate_tokens

        return selected, len(answers) - len(helpful)

    async def _run(
        self,
        query: str,
        community_level: int | None,
        cancel_token: CancellationToken | None,
        stream: bool,
    ) -> AsyncIterator[GlobalQueryProgress]:
        total_timer = _Stopwatch()
        requested = self.config.community_level if community_level is None else community_level

        def cancelled() -> bool:
            return cancel_token is not None and cancel_token.is_cancelled

        yield GlobalQueryProgress(GlobalQueryPhase.STARTING, "Analyzing query...")

        level, communities = await self._resolve_communities(requested)
        metadata = GlobalQueryMetadata(original_query=query, community_level=level)

        if not communities:
            metadata.total_duration = total_timer.elapsed()
            yield GlobalQueryProgress(
                GlobalQueryPhase.COMPLETED,
                "No indexed data found",
                partial_response=NOT_INDEXED_ANSWER,
                community_level=level,
                useful_answers=0,
                result=GlobalQueryResult(NOT_INDEXED_ANSWER, [], 0, 0, metadata),
            )
            return

        yield GlobalQueryProgress(
            GlobalQueryPhase.STARTING, f"Using community level {level}", community_level=level
        )

        # MAP
        total = len(communities)
        yield GlobalQueryProgress(
            GlobalQueryPhase.MAP_PHASE,
            f"Processing {total} communities...",
            current_community=0,
            total_communities=total,
            community_level=level,
        )

        map_timer = _Stopwatch()
        answers: list[CommunityAnswer] = []
        for i, community in enumerate(communities):
            if cancelled():
                yield self._cancelled_event(level)
                return
            yield GlobalQueryProgress(
                GlobalQueryPhase.MAP_PHASE,
                f"Analyzing community {i + 1}/{total}...",
                current_community=i + 1,
                total_communities=total,
                community_level=level,
            )
            if not community.summary:
                logger.debug(f"Skipping {community.id}: no summary")
                continue
            answers.append(await self._map_community(query, community))
        metadata.map_phase_duration = map_timer.elapsed()

        # FILTER
        yield GlobalQueryProgress(
            GlobalQueryPhase.FILTERING,
            f"Found {len(answers)} relevant communities",
            useful_answers=len(answers),
            community_level=level,
        )
        selected, filtered = self._select_answers(answers)
        yield GlobalQueryProgress(
            GlobalQueryPhase.FILTERING,
            f"Using {len(selected)} community answers",
            useful_answers=len(selected),
            community_level=level,
        )
        logger.info(
            f"Global query map phase: {len(answers)} answers, {filtered} filtered, "
            f"{len(selected)} selected at level {level}"
        )

        def result(answer: str) -> GlobalQueryResult:
            metadata.total_duration = total_timer.elapsed()
            return GlobalQueryResult(
                answer=answer,
                community_answers=selected,
                total_communities_processed=total,
                communities_filtered=filtered,
                metadata=metadata,
            )

        if not selected:
            yield GlobalQueryProgress(
                GlobalQueryPhase.COMPLETED,
                "Query completed",
                partial_response=NOT_ENOUGH_INFORMATION_ANSWER,
                community_level=level,
                useful_answers=0,
                result=result(NOT_ENOUGH_INFORMATION_ANSWER),
            )
            return

        if cancelled():
            yield self._cancelled_event(level)
            return

        # REDUCE
        yield GlobalQueryProgress(
            GlobalQueryPhase.REDUCE_PHASE,
            "Synthesizing final answer...",
            useful_answers=len(selected),
            community_level=level,
        )
        reduce_timer = _Stopwatch()
        prompt = self._reduce_prompt.format(
            query=query,
            answers=[(a.helpfulness_score, a.answer) for a in selected],
            response_type=self.config.response_type,
        )

        if stream and self.stream_function is not None:
            parts: list[str] = []
            async for token in self.stream_function(prompt):
                parts.append(token)
                yield GlobalQueryProgress(
                    GlobalQueryPhase.STREAMING,
                    "Generating response...",
                    token=token,
                    partial_response="".join(parts),
                    useful_answers=len(selected),
                    community_level=level,
                )
                if cancelled():
                    yield self._cancelled_event(level)
                    return
            answer = "".join(parts)
        else:
            answer = await self.generate_function(prompt)
        metadata.reduce_phase_duration = reduce_timer.elapsed()

        yield GlobalQueryProgress(
            GlobalQueryPhase.COMPLETED,
            "Query completed",
            partial_response=answer,
            useful_answers=len(selected),
            community_level=level,
            result=result(answer),
        )

    def _cancelled_event(self, level: int) -> GlobalQueryProgress:
        logger.info("Global query cancelled")
        return GlobalQueryProgress(
            GlobalQueryPhase.CANCELLED, "Query cancelled", community_level=level
        )
