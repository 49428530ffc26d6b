"""Background indexing: connectors -> extraction -> graph -> communities."""

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, AsyncIterator

from pydantic import BaseModel, ConfigDict, Field

from personal_graphrag.connectors import ConnectorManager
from personal_graphrag.exceptions import IndexingStateError
from personal_graphrag.graph import GraphRepository
from personal_graphrag.models import GraphCommunity, GraphEntity, GraphRelationship

from .graphrag import (
    CommunityDetectionConfig,
    CommunitySummarizer,
    EntityExtractor,
    EntityMerger,
    ExtractionResult,
    LinkPredictor,
    LouvainCommunityDetector,
    entity_id_for,
)

logger = logging.getLogger(__name__)


class IndexingStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (IndexingStatus.RUNNING, IndexingStatus.PAUSED)
TERMINAL_STATUSES = (IndexingStatus.COMPLETED, IndexingStatus.FAILED, IndexingStatus.CANCELLED)


class IndexingProgress(BaseModel):
    """Immutable snapshot of an indexing run."""

    model_config = ConfigDict(frozen=True)

    status: IndexingStatus = Field(default=IndexingStatus.IDLE)
    current_phase: str = Field(default="Idle")
    processed_items: int = Field(default=0, ge=0)
    total_items: int = Field(default=0, ge=0)
    extracted_entities: int = Field(default=0, description="Entities returned by extraction")
    extracted_relationships: int = Field(default=0)
    stored_entities: int = Field(default=0, description="Entities added or updated in the graph")
    stored_relationships: int = Field(default=0)
    detected_communities: int = Field(default=0)
    start_time: datetime | None = None
    end_time: datetime | None = None
    error_message: str | None = None

    @property
    def progress(self) -> float:
        return self.processed_items / self.total_items if self.total_items > 0 else 0.0

    @property
    def elapsed(self) -> timedelta | None:
        if self.start_time is None:
            return None
        return (self.end_time or datetime.now(timezone.utc)) - self.start_time

    @property
    def status_text(self) -> str:
        if self.status == IndexingStatus.IDLE:
            return "Ready to index"
        if self.status == IndexingStatus.RUNNING:
            return f"{self.current_phase} ({self.progress * 100:.1f}%)"
        if self.status == IndexingStatus.PAUSED:
            return "Paused"
        if self.status == IndexingStatus.COMPLETED:
            return (
                f"Completed ({self.stored_entities} entities, "
                f"{self.detected_communities} communities)"
            )
        if self.status == IndexingStatus.FAILED:
            return f"Failed: {self.error_message}"
        return "Cancelled"

    @property
    def estimated_time_remaining(self) -> timedelta | None:
        """Linear extrapolation from the current rate, only while running."""
        elapsed = self.elapsed
        if self.status != IndexingStatus.RUNNING or elapsed is None or self.progress <= 0:
            return None
        seconds = elapsed.total_seconds()
        if seconds <= 0:
            return None
        rate = self.progress / seconds
        return timedelta(seconds=(1 - self.progress) / rate)


@dataclass
class IndexingConfig:
    """Background indexing settings."""

    batch_size: int = 10
    batch_delay: float = 0.1  # seconds between batches
    detect_communities: bool = True
    max_community_depth: int = 2
    generate_summaries: bool = True
    incremental_indexing: bool = True
    reindex_interval: float | None = None  # seconds


def item_to_dict(item: Any) -> dict[str, Any]:
    if isinstance(item, dict):
        return item
    if hasattr(item, "to_dict"):
        return item.to_dict()
    return {"_raw": str(item)}


class _RunState:
    """Cancel flag, name registry and dedup keys for one indexing run."""

    def __init__(self, full_reindex: bool) -> None:
        self.full_reindex = full_reindex
        self.cancelled = False
        self.names: dict[str, str] = {}  # lowercase entity name -> entity id
        self.relationship_ids: set[str] = set()


class BackgroundIndexingService:
    """Index connector data into the graph as a background task.

    States: idle -> running <-> paused -> completed | failed | cancelled.
    Pause and cancel take effect between batches and before community
    detection; cancel is also honoured between items. Progress is published
    as immutable snapshots.

    Each run owns its cancel flag. A cancelled run may still be finishing
    an in-flight item; it publishes nothing further, and a new run waits for
    it before starting. Connector sync times are only recorded once a run
    completes, so a cancelled or failed run is fetched again next time.
    """

    def __init__(
        self,
        repository: GraphRepository,
        extractor: EntityExtractor,
        connector_manager: ConnectorManager,
        summarizer: CommunitySummarizer | None = None,
        config: IndexingConfig | None = None,
        community_config: CommunityDetectionConfig | None = None,
        link_predictor: LinkPredictor | None = None,
    ):
        self.repository = repository
        self.extractor = extractor
        self.connector_manager = connector_manager
        self.summarizer = summarizer
        self.link_predictor = link_predictor
        self.config = config or IndexingConfig()
        self.detector = LouvainCommunityDetector(
            community_config or CommunityDetectionConfig(max_depth=self.config.max_community_depth)
        )

        self._progress = IndexingProgress()
        self._subscribers: list[asyncio.Queue] = []
        self._task: asyncio.Task | None = None
        self._run_state: _RunState | None = None
        self._periodic_task: asyncio.Task | None = None
        self._resume_event = asyncio.Event()
        self._resume_event.set()

    @property
    def progress(self) -> IndexingProgress:
        return self._progress

    @property
    def is_running(self) -> bool:
        return self._progress.status == IndexingStatus.RUNNING

    def _update(self, **changes: Any) -> None:
        self._progress = self._progress.model_copy(update=changes)
        for queue in self._subscribers:
            queue.put_nowait(self._progress)

    def _publish(self, run: _RunState, **changes: Any) -> None:
        """Update progress unless ``run`` was cancelled or superseded."""
        if run.cancelled or run is not self._run_state:
            return
        self._update(**changes)

    async def subscribe(self) -> AsyncIterator[IndexingProgress]:
        """Yield the current snapshot, then every change until the run ends."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            snapshot = self._progress
            yield snapshot
            if snapshot.status not in ACTIVE_STATUSES:
                return
            while True:
                snapshot = await queue.get()
                yield snapshot
                if snapshot.status in TERMINAL_STATUSES:
                    return
        finally:
            self._subscribers.remove(queue)

    # State transitions

    async def start_indexing(self, full_reindex: bool = False) -> None:
        """Schedule an indexing run.

        A previous cancelled run still finishing its in-flight item is
        awaited first.

        Args:
            full_reindex: Reset connector sync state and fetch everything

        Raises:
            IndexingStateError: A run is already running or paused
        """
        if self._progress.status in ACTIVE_STATUSES:
            raise IndexingStateError(f"Indexing is already {self._progress.status.value}")

        if self._task is not None and not self._task.done():
            logger.debug("Waiting for the cancelled run to stop")
            await self._task
            if self._progress.status in ACTIVE_STATUSES:
                raise IndexingStateError(f"Indexing is already {self._progress.status.value}")

        run = _RunState(full_reindex)
        self._run_state = run
        self._resume_event.set()
        self._update(
            status=IndexingStatus.RUNNING,
            current_phase="Starting",
            processed_items=0,
            total_items=0,
            extracted_entities=0,
            extracted_relationships=0,
            stored_entities=0,
            stored_relationships=0,
            detected_communities=0,
            start_time=datetime.now(timezone.utc),
            end_time=None,
            error_message=None,
        )
        logger.info(f"Indexing started (full_reindex={full_reindex})")
        self._task = asyncio.create_task(self._run(run))

    def pause_indexing(self) -> None:
        if self._progress.status != IndexingStatus.RUNNING:
            raise IndexingStateError(f"Cannot pause indexing while {self._progress.status.value}")
        self._resume_event.clear()
        self._update(status=IndexingStatus.PAUSED, current_phase="Paused")
        logger.info("Indexing paused")

    def resume_indexing(self) -> None:
        if self._progress.status != IndexingStatus.PAUSED:
            raise IndexingStateError(f"Cannot resume indexing while {self._progress.status.value}")
        self._update(status=IndexingStatus.RUNNING, current_phase="Resuming")
        self._resume_event.set()
        logger.info("Indexing resumed")

    def cancel_indexing(self) -> None:
        """Cancel the run; work already stored stays in the graph."""
        if self._progress.status not in ACTIVE_STATUSES:
            raise IndexingStateError(f"Cannot cancel indexing while {self._progress.status.value}")
        if self._run_state is not None:
            self._run_state.cancelled = True
        self._update(
            status=IndexingStatus.CANCELLED,
            current_phase="Cancelled",
            end_time=datetime.now(timezone.utc),
        )
        self._resume_event.set()
        logger.info("Indexing cancelled")

    async def wait_for_completion(self) -> None:
        if self._task is not None:
            await self._task

    # Periodic re-indexing

    def start_periodic(self, interval: float | None = None) -> None:
        interval = interval or self.config.reindex_interval
        if not interval:
            raise ValueError("A positive re-index interval is required")
        self.stop_periodic()
        self._periodic_task = asyncio.create_task(self._periodic(interval))
        logger.info(f"Periodic re-indexing every {interval}s")

    def stop_periodic(self) -> None:
        if self._periodic_task is not None:
            self._periodic_task.cancel()
            self._periodic_task = None

    async def _periodic(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if self._progress.status in ACTIVE_STATUSES:
                logger.debug("Skipping periodic re-index: run in progress")
                continue
            await self.start_indexing()
            await self.wait_for_completion()

    async def close(self) -> None:
        """Stop periodic re-indexing and cancel the current run."""
        self.stop_periodic()
        if self._progress.status in ACTIVE_STATUSES:
            self.cancel_indexing()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None

    # Pipeline

    async def _checkpoint(self, run: _RunState) -> bool:
        """Wait while paused; False once the run is cancelled."""
        await self._resume_event.wait()
        return not run.cancelled

    async def _run(self, run: _RunState) -> None:
        try:
            await self._index_connectors(run)
            if not await self._checkpoint(run):
                self.connector_manager.discard_pending_sync()
                return

            if self.link_predictor is not None:
                await self._link_colleagues(run)

            if self.config.detect_communities:
                await self._detect_and_summarize(run)
                if run.cancelled:
                    self.connector_manager.discard_pending_sync()
                    return

            self.connector_manager.commit_sync()
            self._publish(
                run,
                status=IndexingStatus.COMPLETED,
                current_phase="Completed",
                end_time=datetime.now(timezone.utc),
            )
            logger.info(
                f"Indexing completed: {self._progress.processed_items} items, "
                f"{self._progress.stored_entities} entities, "
                f"{self._progress.detected_communities} communities"
            )
        except asyncio.CancelledError:
            self.connector_manager.discard_pending_sync()
            raise
        except Exception as e:
            logger.exception(f"Indexing failed: {e}")
            self.connector_manager.discard_pending_sync()
            self._publish(
                run,
                status=IndexingStatus.FAILED,
                current_phase="Failed",
                error_message=str(e),
                end_time=datetime.now(timezone.utc),
            )

    async def _index_connectors(self, run: _RunState) -> None:
        self._publish(run, current_phase="Fetching data")
        if run.full_reindex:
            self.connector_manager.reset_sync_state()

        incremental = not run.full_reindex and self.config.incremental_indexing
        data = await self.connector_manager.fetch_all_available(
            incremental_sync=incremental, defer_sync=True
        )
        self._publish(run, total_items=sum(len(items) for items in data.values()))

        batch_size = max(1, self.config.batch_size)
        for data_type, items in data.items():
            self._publish(run, current_phase=f"Processing {data_type}")
            for start in range(0, len(items), batch_size):
                if not await self._checkpoint(run):
                    return

                batch = items[start : start + batch_size]
                extractions = []
                for item in batch:
                    if run.cancelled:
                        return
                    extraction = await self._index_item(item, data_type, run)
                    if extraction is not None:
                        extractions.append(extraction)

                if self.link_predictor is not None and not run.cancelled:
                    await self._predict_links(batch, data_type, extractions, run)

                self._publish(run, processed_items=self._progress.processed_items + len(batch))
                await asyncio.sleep(self.config.batch_delay)

    async def _index_item(
        self, item: Any, data_type: str, run: _RunState
    ) -> ExtractionResult | None:
        """Extract one record and upsert it; failures skip the item and return None."""
        data = item_to_dict(item)
        source_id = str(data.get("id") or uuid.uuid4().hex)
        try:
            extraction = await self.extractor.extract_from_structured(data, source_id, data_type)

            merged = EntityMerger.deduplicate_entities(extraction.entities)
            mapping = EntityMerger.build_name_mapping(extraction.entities, merged)
            relationships = EntityMerger.remap_relationships(extraction.relationships, mapping)

            stored_entities = 0
            for extracted in merged:
                embedding = await self.extractor.generate_embedding(
                    f"{extracted.name} {extracted.description or ''}"
                )
                entity = GraphEntity(
                    id=entity_id_for(extracted.name, extracted.type),
                    name=extracted.name,
                    type=extracted.type,
                    embedding=embedding,
                    description=extracted.description,
                    metadata=extracted.attributes,
                )
                if await self._upsert_entity(entity):
                    stored_entities += 1
                run.names[extracted.name.lower()] = entity.id

            stored_relationships = 0
            for extracted in relationships:
                source = run.names.get(extracted.source_entity.lower())
                target = run.names.get(extracted.target_entity.lower())
                if source is None or target is None:
                    logger.debug(
                        f"Skipping relationship {extracted.source_entity} -> "
                        f"{extracted.target_entity}: unresolved endpoint"
                    )
                    continue
                relationship_id = f"{source}_{extracted.type}_{target}"
                if relationship_id in run.relationship_ids:
                    continue
                run.relationship_ids.add(relationship_id)
                await self.repository.add_relationship(
                    GraphRelationship(
                        id=relationship_id,
                        source_id=source,
                        target_id=target,
                        type=extracted.type,
                        weight=extracted.weight,
                        metadata={"description": extracted.description}
                        if extracted.description
                        else None,
                    )
                )
                stored_relationships += 1
        except Exception as e:
            logger.warning(f"Failed to index {data_type} item {source_id}: {e}")
            return None

        self._publish(
            run,
            extracted_entities=self._progress.extracted_entities + len(extraction.entities),
            extracted_relationships=(
                self._progress.extracted_relationships + len(extraction.relationships)
            ),
            stored_entities=self._progress.stored_entities + stored_entities,
            stored_relationships=self._progress.stored_relationships + stored_relationships,
        )
        return extraction

    async def _predict_links(
        self,
        batch: list[Any],
        data_type: str,
        extractions: list[ExtractionResult],
        run: _RunState,
    ) -> None:
        """Store links predicted for one batch; a failure skips the batch."""
        try:
            links = await self.link_predictor.process_batch(
                [item_to_dict(item) for item in batch], data_type, extractions
            )
            stored = await self.link_predictor.store_predicted_links(links)
        except Exception as e:
            logger.warning(f"Link prediction failed for a {data_type} batch: {e}")
            return
        self._publish(run, stored_relationships=self._progress.stored_relationships + stored)

    async def _link_colleagues(self, run: _RunState) -> None:
        self._publish(run, current_phase="Inferring colleagues")
        links = await self.link_predictor.infer_colleague_relationships()
        stored = await self.link_predictor.store_predicted_links(links)
        self._publish(run, stored_relationships=self._progress.stored_relationships + stored)

    async def _upsert_entity(self, entity: GraphEntity) -> bool:
        """Add or update with timestamp-wins; True when the graph changed."""
        existing = await self.repository.get_entity(entity.id)
        if existing is None:
            await self.repository.add_entity(entity)
            return True
        if entity.last_modified > existing.last_modified:
            await self.repository.update_entity(
                entity.id,
                name=entity.name,
                type=entity.type,
                embedding=entity.embedding,
                description=entity.description,
                metadata=entity.metadata,
                last_modified=entity.last_modified,
            )
            return True
        return False

    async def _detect_and_summarize(self, run: _RunState) -> None:
        self._publish(run, current_phase="Detecting communities")
        entities = await self.repository.get_all_entities()
        relationships = await self.repository.get_all_relationships()

        result = self.detector.detect_communities(entities, relationships)

        await self.repository.clear_communities()
        for community in result.communities:
            await self.repository.add_community(
                GraphCommunity(
                    id=community.id,
                    level=community.level,
                    entity_ids=sorted(community.entity_ids),
                    parent_community_id=community.parent_community_id,
                    child_community_ids=list(community.child_community_ids),
                    metadata={"modularity": community.modularity},
                )
            )
        self._publish(run, detected_communities=len(result.communities))

        if not (self.config.generate_summaries and self.summarizer and result.communities):
            return

        self._publish(run, current_phase="Generating community summaries")
        summaries = await self.summarizer.summarize_all_hierarchical(
            result.communities,
            entities,
            relationships,
            should_stop=lambda: run.cancelled,
        )
        for summary in summaries:
            await self.repository.update_community_summary(
                summary.community_id, summary.summary, summary.embedding
            )
        logger.info(f"Stored {len(summaries)} community summaries")
