"""Link prediction: relationships inferred from record structure, co-mentions,
timing and embedding similarity rather than stated by extraction."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

import numpy as np

from personal_graphrag.graph import GraphRepository
from personal_graphrag.models import GraphEntity, GraphRelationship

from .entity_extractor import ExtractionResult, RelationshipTypes, entity_id_for

logger = logging.getLogger(__name__)

GenerateFn = Callable[[str], Awaitable[str]]
EmbedFn = Callable[[str], Awaitable[list[float]]]

YOU_ENTITY_ID = "you_central_node"
YOU_ENTITY_NAME = "You"
YOU_ENTITY_TYPE = "SELF"

DATA_SOURCE_TYPES = ["CONTACT", "CALENDAR", "DOCUMENT", "PHOTO", "PHONE_CALL", "NOTE"]

_TIMESTAMP_FIELDS = (
    "timestamp",
    "date",
    "start_date",
    "startDate",
    "started_at",
    "taken_at",
    "dateTaken",
    "createdAt",
)
_NUMBER = re.compile(r"\d+\.?\d*")


def _source_family(data_source_type: str) -> str | None:
    """Canonical data family for a connector or record type name."""
    key = data_source_type.upper()
    if key in ("CONTACT", "CONTACTS"):
        return "CONTACT"
    if key in ("CALENDAR", "CALENDAR_EVENT", "EVENT"):
        return "CALENDAR"
    if key in ("DOCUMENT", "DOCUMENTS", "DRIVE"):
        return "DOCUMENT"
    if key in ("PHOTO", "PHOTOS"):
        return "PHOTO"
    if key in ("PHONE_CALL", "PHONE_CALLS", "CALL", "CALLS"):
        return "PHONE_CALL"
    if key in ("NOTE", "NOTES"):
        return "NOTE"
    return None


# Entity type the extractor gives the record itself
_RECORD_ENTITY_TYPES = {
    "CONTACT": "PERSON",
    "CALENDAR": "EVENT",
    "DOCUMENT": "DOCUMENT",
    "PHOTO": "PHOTO",
    "PHONE_CALL": "PHONE_CALL",
    "NOTE": "NOTE",
}

_YOU_RELATIONSHIPS = {
    "CONTACT": "KNOWS",
    "CALENDAR": "HAS_EVENT",
    "DOCUMENT": "OWNS_DOCUMENT",
    "PHOTO": "HAS_PHOTO",
    "PHONE_CALL": "MADE_CALL",
    "NOTE": "WROTE_NOTE",
}


def you_relationship_type(data_source_type: str) -> str:
    """Relationship from the central "You" node to an item of this source."""
    return _YOU_RELATIONSHIPS.get(_source_family(data_source_type), "OWNS")


def you_entity(embedding: list[float] | None = None) -> GraphEntity:
    return GraphEntity(
        id=YOU_ENTITY_ID,
        name=YOU_ENTITY_NAME,
        type=YOU_ENTITY_TYPE,
        embedding=embedding or [],
        description="The central node representing you, connected to all of your personal data",
        metadata={"is_global_node": True, "data_families": list(DATA_SOURCE_TYPES)},
    )


def parse_timestamp(value: Any) -> datetime | None:
    """Datetime from a datetime, epoch milliseconds or ISO-8601 string.

    Naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def item_timestamp(item: dict[str, Any]) -> datetime | None:
    """First parseable timestamp among the usual record fields."""
    for name in _TIMESTAMP_FIELDS:
        parsed = parse_timestamp(item.get(name))
        if parsed is not None:
            return parsed
    return None


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _as_list(value: Any) -> list[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


@dataclass
class LinkPredictionConfig:
    """Thresholds and switches for every prediction method."""

    temporal_window: timedelta = timedelta(hours=2)
    min_co_occurrence_count: int = 2
    co_occurrence_weight: float = 0.7
    template_weight: float = 1.0
    enable_temporal_links: bool = True
    enable_co_mention_links: bool = True
    enable_template_links: bool = True
    enable_embedding_similarity_links: bool = True
    embedding_similarity_threshold: float = 0.75
    same_type_similarity_threshold: float = 0.55
    same_type_auto_approve_threshold: float = 0.70
    max_embedding_candidates: int = 100
    max_llm_validations: int = 20
    min_validation_confidence: float = 0.4
    # same-type pairs of these types embed alike without being related
    skip_same_type: frozenset[str] = frozenset({"EVENT", "DATE", "CALENDAR"})


@dataclass
class PredictedLink:
    """A relationship proposed by one of the prediction methods."""

    source_entity_id: str
    target_entity_id: str
    relationship_type: str
    confidence: float
    prediction_method: str
    evidence: dict[str, Any] | None = None

    def to_relationship(self) -> GraphRelationship:
        metadata: dict[str, Any] = {"prediction_method": self.prediction_method}
        if self.evidence is not None:
            metadata["evidence"] = self.evidence
        return GraphRelationship(
            id=f"{self.source_entity_id}_{self.relationship_type}_{self.target_entity_id}",
            source_id=self.source_entity_id,
            target_id=self.target_entity_id,
            type=self.relationship_type,
            weight=max(0.0, self.confidence),
            metadata=metadata,
        )


class LinkPredictor:
    """Predict links from structured records and extraction results.

    Template rules map record fields to relationships (a contact's
    organization becomes WORKS_AT, a photo's location TAKEN_AT, ...).
    Entities named by the same records are linked MENTIONED_WITH, and
    records close in time TEMPORALLY_PROXIMATE. Predicted endpoints use the
    same ids as extracted entities, so a link is only stored once both ends
    exist in the graph.
    """

    def __init__(
        self,
        repository: GraphRepository,
        config: LinkPredictionConfig | None = None,
        embed_function: EmbedFn | None = None,
    ):
        """Initialize predictor.

        Args:
            repository: Graph the links are read from and written to
            config: Prediction thresholds
            embed_function: Embeds the "You" node; needed once the graph
                has an embedding dimension
        """
        self.repository = repository
        self.config = config or LinkPredictionConfig()
        self.embed_function = embed_function

    def _link(
        self, source: str, target: str, rel_type: str, method: str, **evidence: Any
    ) -> PredictedLink:
        return PredictedLink(
            source_entity_id=source,
            target_entity_id=target,
            relationship_type=rel_type,
            confidence=self.config.template_weight,
            prediction_method=method,
            evidence=evidence,
        )

    # Central "You" node

    async def ensure_you_entity(self) -> GraphEntity:
        existing = await self.repository.get_entity(YOU_ENTITY_ID)
        if existing is not None:
            return existing
        embedding = None
        if self.embed_function is not None:
            embedding = await self.embed_function(
                "Central user node representing the owner of this personal data"
            )
        entity = you_entity(embedding)
        await self.repository.add_entity(entity)
        logger.info('Created the central "You" entity')
        return entity

    async def link_to_you(self, entity_id: str, data_source_type: str) -> PredictedLink | None:
        entity = await self.repository.get_entity(entity_id)
        if entity is None:
            return None
        return self._link(
            YOU_ENTITY_ID,
            entity_id,
            you_relationship_type(data_source_type),
            "template_you_link",
            data_source_type=data_source_type,
            entity_type=entity.type,
        )

    # Template rules

    def infer_from_contact(self, contact: dict[str, Any]) -> list[PredictedLink]:
        person = entity_id_for(_text(_first(contact, "full_name", "fullName", "name")), "PERSON")
        organization = _text(
            _first(contact, "organization", "organizationName", "organization_name")
        )
        if not organization:
            return []
        return [
            self._link(
                person,
                entity_id_for(organization, "ORGANIZATION"),
                RelationshipTypes.WORKS_AT,
                "template_contact_org",
                organization=organization,
            )
        ]

    def infer_from_calendar_event(self, event: dict[str, Any]) -> list[PredictedLink]:
        event_id = entity_id_for(_text(_first(event, "title", "summary")), "EVENT")
        links = []
        location = _text(event.get("location"))
        if location:
            links.append(
                self._link(
                    event_id,
                    entity_id_for(location, "LOCATION"),
                    RelationshipTypes.LOCATED_IN,
                    "template_event_location",
                    location=location,
                )
            )
        for attendee in _as_list(event.get("attendees")):
            name = _text(attendee)
            if name:
                links.append(
                    self._link(
                        entity_id_for(name, "PERSON"),
                        event_id,
                        RelationshipTypes.ATTENDED_BY,
                        "template_event_attendee",
                        attendee=name,
                    )
                )
        return links

    def infer_from_phone_call(self, call: dict[str, Any]) -> list[PredictedLink]:
        contact = _text(_first(call, "contactName", "contact_name", "name"))
        if not contact:
            return []
        call_type = _first(call, "direction", "callType", "call_type", "type")
        evidence: dict[str, Any] = {"call_id": call.get("id"), "call_type": call_type}
        number = _first(call, "phoneNumber", "phone_number", "number")
        if number is not None:
            evidence["phone_number"] = number
        rel_type = "RECEIVED_CALL_FROM" if call_type == "incoming" else "CALLED"
        return [
            self._link(
                YOU_ENTITY_ID,
                entity_id_for(contact, "PERSON"),
                rel_type,
                "template_call_contact",
                **evidence,
            )
        ]

    def infer_from_photo(self, photo: dict[str, Any]) -> list[PredictedLink]:
        photo_id = entity_id_for(_text(_first(photo, "id", "name")), "PHOTO")
        links = []
        location = _text(_first(photo, "location", "gpsLocation"))
        if location:
            links.append(
                self._link(
                    photo_id,
                    entity_id_for(location, "LOCATION"),
                    "TAKEN_AT",
                    "template_photo_location",
                    location=location,
                )
            )
        for person in _as_list(_first(photo, "people", "faces")):
            name = _text(person)
            if name:
                links.append(
                    self._link(
                        entity_id_for(name, "PERSON"),
                        photo_id,
                        "PICTURED_IN",
                        "template_photo_person",
                        person=name,
                    )
                )
        taken = parse_timestamp(_first(photo, "taken_at", "dateTaken", "timestamp"))
        if taken is not None:
            day = taken.date().isoformat()
            links.append(
                self._link(
                    photo_id,
                    entity_id_for(day, "DATE"),
                    "TAKEN_ON",
                    "template_photo_date",
                    date=day,
                )
            )
        return links

    def infer_from_document(self, document: dict[str, Any]) -> list[PredictedLink]:
        doc_id = entity_id_for(_text(_first(document, "title", "name", "id")), "DOCUMENT")
        links = []
        owners = _as_list(document.get("owners")) or [
            _first(document, "owner", "author", "createdBy")
        ]
        for owner in owners:
            name = _text(owner)
            if name:
                links.append(
                    self._link(
                        doc_id,
                        entity_id_for(name, "PERSON"),
                        RelationshipTypes.CREATED_BY,
                        "template_doc_owner",
                        owner=name,
                    )
                )
        for person in _as_list(_first(document, "sharedWith", "collaborators")):
            name = _text(person)
            if name:
                links.append(
                    self._link(
                        doc_id,
                        entity_id_for(name, "PERSON"),
                        "SHARED_WITH",
                        "template_doc_shared",
                        shared_with=name,
                    )
                )
        folder = _text(_first(document, "folder", "parent"))
        if folder:
            links.append(
                self._link(
                    doc_id,
                    entity_id_for(folder, "PROJECT"),
                    RelationshipTypes.PART_OF,
                    "template_doc_folder",
                    folder=folder,
                )
            )
        return links

    def infer_from_note(self, note: dict[str, Any]) -> list[PredictedLink]:
        note_id = entity_id_for(_text(_first(note, "title", "id")), "NOTE")
        links = []
        folder = _text(_first(note, "folder", "notebook"))
        if folder:
            links.append(
                self._link(
                    note_id,
                    entity_id_for(folder, "PROJECT"),
                    RelationshipTypes.PART_OF,
                    "template_note_folder",
                    folder=folder,
                )
            )
        for tag in _as_list(note.get("tags")):
            name = _text(tag)
            if name:
                links.append(
                    self._link(
                        note_id,
                        entity_id_for(name, "TOPIC"),
                        "TAGGED_WITH",
                        "template_note_tag",
                        tag=name,
                    )
                )
        return links

    def infer_from_structured(
        self, data: dict[str, Any], data_source_type: str
    ) -> list[PredictedLink]:
        """Template links for one record, dispatched on its source type."""
        if not self.config.enable_template_links:
            return []
        rules = {
            "CONTACT": self.infer_from_contact,
            "CALENDAR": self.infer_from_calendar_event,
            "PHONE_CALL": self.infer_from_phone_call,
            "PHOTO": self.infer_from_photo,
            "DOCUMENT": self.infer_from_document,
            "NOTE": self.infer_from_note,
        }
        rule = rules.get(_source_family(data_source_type))
        return rule(data) if rule else []

    # Statistical rules

    def detect_co_mentions(
        self,
        extractions: list[ExtractionResult],
        min_occurrences: int | None = None,
    ) -> list[PredictedLink]:
        """Link entity pairs that appear together in enough source records.

        Confidence is the share of records mentioning the pair, scaled by
        ``co_occurrence_weight``.
        """
        if not self.config.enable_co_mention_links or not extractions:
            return []
        threshold = min_occurrences or self.config.min_co_occurrence_count

        sources: dict[tuple[str, str], list[str]] = {}
        for extraction in extractions:
            ids = sorted({entity_id_for(e.name, e.type) for e in extraction.entities})
            for i, first in enumerate(ids):
                for second in ids[i + 1 :]:
                    sources.setdefault((first, second), []).append(extraction.source_id)

        links = []
        for (first, second), source_ids in sources.items():
            if len(source_ids) < threshold:
                continue
            share = min(1.0, len(source_ids) / len(extractions))
            links.append(
                PredictedLink(
                    source_entity_id=first,
                    target_entity_id=second,
                    relationship_type="MENTIONED_WITH",
                    confidence=share * self.config.co_occurrence_weight,
                    prediction_method="co_mention",
                    evidence={"co_occurrence_count": len(source_ids), "sources": source_ids[:5]},
                )
            )
        return links

    def detect_temporal_proximity(
        self,
        timed_items: list[dict[str, Any]],
        data_source_type: str,
    ) -> list[PredictedLink]:
        """Link records of one source that fall within ``temporal_window``.

        Confidence falls linearly from ``co_occurrence_weight`` for
        simultaneous records to zero at the window edge.
        """
        if not self.config.enable_temporal_links:
            return []
        window = self.config.temporal_window.total_seconds()
        if window <= 0:
            return []

        timed = []
        for item in timed_items:
            timestamp = item_timestamp(item)
            if timestamp is not None:
                timed.append((timestamp, item))
        timed.sort(key=lambda pair: pair[0])

        links = []
        for i, (time_a, item_a) in enumerate(timed):
            id_a = self._item_entity_id(item_a, data_source_type)
            for time_b, item_b in timed[i + 1 :]:
                gap = (time_b - time_a).total_seconds()
                if gap > window:
                    break
                id_b = self._item_entity_id(item_b, data_source_type)
                if id_a == id_b:
                    continue
                links.append(
                    PredictedLink(
                        source_entity_id=id_a,
                        target_entity_id=id_b,
                        relationship_type="TEMPORALLY_PROXIMATE",
                        confidence=(1 - gap / window) * self.config.co_occurrence_weight,
                        prediction_method="temporal_proximity",
                        evidence={
                            "time_difference_minutes": int(gap // 60),
                            "time_a": time_a.isoformat(),
                            "time_b": time_b.isoformat(),
                        },
                    )
                )
        return links

    @staticmethod
    def _item_entity_id(item: dict[str, Any], data_source_type: str) -> str:
        name = _first(item, "full_name", "name", "title", "id")
        entity_type = _RECORD_ENTITY_TYPES.get(_source_family(data_source_type), data_source_type)
        return entity_id_for(_text(name), entity_type)

    async def infer_colleague_relationships(self) -> list[PredictedLink]:
        """COLLEAGUE_OF between people who work at the same organization."""
        members: dict[str, list[str]] = {}
        for person in await self.repository.get_entities_by_type("PERSON"):
            for rel in await self.repository.get_relationships(person.id):
                if rel.source_id != person.id:
                    continue
                if rel.type in (RelationshipTypes.WORKS_AT, RelationshipTypes.WORKS_FOR):
                    people = members.setdefault(rel.target_id, [])
                    if person.id not in people:
                        people.append(person.id)

        links = []
        for organization, people in members.items():
            for i, first in enumerate(people):
                for second in people[i + 1 :]:
                    links.append(
                        PredictedLink(
                            source_entity_id=first,
                            target_entity_id=second,
                            relationship_type=RelationshipTypes.COLLEAGUE_OF,
                            confidence=self.config.template_weight * 0.8,
                            prediction_method="inferred_colleague",
                            evidence={"shared_organization": organization},
                        )
                    )
        return links

    async def store_predicted_links(self, links: list[PredictedLink]) -> int:
        """Store links whose endpoints both exist; returns how many were stored."""
        stored = 0
        for link in links:
            source = await self.repository.get_entity(link.source_entity_id)
            target = await self.repository.get_entity(link.target_entity_id)
            if source is None or target is None:
                continue
            await self.repository.add_relationship(link.to_relationship())
            stored += 1
        logger.debug(f"Stored {stored} of {len(links)} predicted links")
        return stored

    async def process_batch(
        self,
        items: list[dict[str, Any]],
        data_source_type: str,
        extractions: list[ExtractionResult],
        include_you_links: bool = True,
    ) -> list[PredictedLink]:
        """Template, co-mention and temporal links for one indexing batch."""
        if include_you_links:
            await self.ensure_you_entity()

        links: list[PredictedLink] = []
        for item in items:
            links.extend(self.infer_from_structured(item, data_source_type))
        links.extend(self.detect_co_mentions(extractions))

        timed = [item for item in items if item_timestamp(item) is not None]
        if timed:
            links.extend(self.detect_temporal_proximity(timed, data_source_type))
        return links


@dataclass
class EmbeddingCandidate:
    entity_a: GraphEntity
    entity_b: GraphEntity
    similarity: float


@dataclass
class LinkValidation:
    """Outcome of the three-step model check of one candidate pair."""

    is_valid: bool
    relationship_type: str | None = None
    confidence: float = 0.0
    explanation: str | None = None


CATEGORIZE_PROMPT = """Two entities from a personal knowledge graph are semantically similar ({similarity:.1f}%).

Entity A:
- Name: {name_a}
- Type: {type_a}
- Description: {description_a}

Entity B:
- Name: {name_b}
- Type: {type_b}
- Description: {description_b}

Which relationship type best describes how they are connected?
Choose from RELATED_TO, ASSOCIATED_WITH, SIMILAR_TO, WORKS_WITH, KNOWS, LOCATED_IN, PART_OF, MENTIONED_WITH, or name a more specific type.

Respond with ONLY the relationship type in uppercase:"""

PLAUSIBILITY_PROMPT = """These two entities are {similarity:.0f}% semantically similar.

Entity A: {name_a} ({type_a})
Entity B: {name_b} ({type_b})
Proposed relationship: {relationship_type}

Is there any reasonable way they could be connected, such as a shared category, theme or time period?
Answer YES unless a connection is impossible.
Answer with "YES" or "NO":"""

CONFIDENCE_PROMPT = """Rate your confidence that "{name_a}" and "{name_b}" have a "{relationship_type}" relationship.

Consider how likely the relationship is for a {type_a} and a {type_b}, how specific it is, and whether it could be a false positive.

Respond with ONLY a number from 0.0 (not confident) to 1.0 (very confident):"""


class EmbeddingSimilarityLinkPredictor:
    """Propose links between entities whose embeddings are close.

    Same-type pairs above ``same_type_auto_approve_threshold`` become
    RELATED_TO without a model call. Cross-type pairs go through a
    three-step check: categorize the relationship, confirm it is plausible,
    then score confidence. The stored confidence is the model's score
    weighted by the similarity.
    """

    def __init__(
        self,
        repository: GraphRepository,
        generate_function: GenerateFn,
        config: LinkPredictionConfig | None = None,
    ):
        self.repository = repository
        self.generate_function = generate_function
        self.config = config or LinkPredictionConfig()

    async def find_candidates(
        self, entities: list[GraphEntity] | None = None
    ) -> list[EmbeddingCandidate]:
        """Pairs above the similarity threshold, most similar first."""
        cfg = self.config
        if not cfg.enable_embedding_similarity_links:
            return []
        if entities is None:
            entities = await self.repository.get_all_entities()
        embedded = [e for e in entities if e.embedding and e.id != YOU_ENTITY_ID]
        if len(embedded) < 2:
            return []

        matrix = np.array([e.embedding for e in embedded], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        unit = np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms > 0)
        similarities = unit @ unit.T

        candidates = []
        for i, entity_a in enumerate(embedded):
            for j in range(i + 1, len(embedded)):
                entity_b = embedded[j]
                same_type = entity_a.type == entity_b.type
                if same_type and entity_a.type.upper() in cfg.skip_same_type:
                    continue
                threshold = (
                    cfg.same_type_similarity_threshold
                    if same_type
                    else cfg.embedding_similarity_threshold
                )
                similarity = float(similarities[i, j])
                if similarity >= threshold:
                    candidates.append(EmbeddingCandidate(entity_a, entity_b, similarity))

        candidates.sort(key=lambda c: (-c.similarity, c.entity_a.id, c.entity_b.id))
        logger.info(
            f"{len(candidates)} similarity candidates among {len(embedded)} entities, "
            f"keeping {min(len(candidates), cfg.max_embedding_candidates)}"
        )
        return candidates[: cfg.max_embedding_candidates]

    async def _already_linked(self, candidate: EmbeddingCandidate) -> bool:
        other = candidate.entity_b.id
        return any(
            other in (rel.source_id, rel.target_id)
            for rel in await self.repository.get_relationships(candidate.entity_a.id)
        )

    async def validate_and_create_links(
        self, candidates: list[EmbeddingCandidate]
    ) -> list[PredictedLink]:
        """Turn candidates into links; a failing model call skips its pair."""
        cfg = self.config
        links = []

        for candidate in candidates:
            if candidate.entity_a.type != candidate.entity_b.type:
                continue
            if candidate.similarity < cfg.same_type_auto_approve_threshold:
                continue
            if await self._already_linked(candidate):
                continue
            links.append(
                PredictedLink(
                    source_entity_id=candidate.entity_a.id,
                    target_entity_id=candidate.entity_b.id,
                    relationship_type=RelationshipTypes.RELATED_TO,
                    confidence=candidate.similarity,
                    prediction_method="embedding_similarity_same_type",
                    evidence={
                        "embedding_similarity": candidate.similarity,
                        "entity_a_type": candidate.entity_a.type,
                        "entity_b_type": candidate.entity_b.type,
                    },
                )
            )

        cross_type = [c for c in candidates if c.entity_a.type != c.entity_b.type]
        for candidate in cross_type[: cfg.max_llm_validations]:
            if await self._already_linked(candidate):
                continue
            try:
                validation = await self._validate(candidate)
            except Exception as e:
                logger.warning(
                    f"Validation failed for {candidate.entity_a.name} - "
                    f"{candidate.entity_b.name}: {e}"
                )
                continue
            if not validation.is_valid:
                continue
            links.append(
                PredictedLink(
                    source_entity_id=candidate.entity_a.id,
                    target_entity_id=candidate.entity_b.id,
                    relationship_type=validation.relationship_type,
                    confidence=validation.confidence,
                    prediction_method="embedding_similarity_llm_validated",
                    evidence={
                        "embedding_similarity": candidate.similarity,
                        "explanation": validation.explanation,
                        "entity_a_type": candidate.entity_a.type,
                        "entity_b_type": candidate.entity_b.type,
                    },
                )
            )

        logger.info(f"Validated {len(links)} links from {len(candidates)} candidates")
        return links

    async def _validate(self, candidate: EmbeddingCandidate) -> LinkValidation:
        a, b = candidate.entity_a, candidate.entity_b
        fields = {
            "similarity": candidate.similarity * 100,
            "name_a": a.name,
            "type_a": a.type,
            "description_a": a.description or "None",
            "name_b": b.name,
            "type_b": b.type,
            "description_b": b.description or "None",
        }

        response = await self.generate_function(CATEGORIZE_PROMPT.format(**fields))
        relationship_type = parse_relationship_type(response)

        response = await self.generate_function(
            PLAUSIBILITY_PROMPT.format(relationship_type=relationship_type, **fields)
        )
        if not response.strip().upper().startswith("YES"):
            return LinkValidation(is_valid=False, relationship_type=relationship_type)

        response = await self.generate_function(
            CONFIDENCE_PROMPT.format(relationship_type=relationship_type, **fields)
        )
        match = _NUMBER.search(response)
        confidence = min(1.0, max(0.0, float(match.group()))) if match else 0.5
        if confidence < self.config.min_validation_confidence:
            return LinkValidation(is_valid=False, relationship_type=relationship_type)

        return LinkValidation(
            is_valid=True,
            relationship_type=relationship_type,
            confidence=confidence * candidate.similarity,
            explanation=f"Model validated with {confidence * 100:.0f}% confidence",
        )

    async def predict(self, entities: list[GraphEntity] | None = None) -> list[PredictedLink]:
        return await self.validate_and_create_links(await self.find_candidates(entities))


def parse_relationship_type(response: str) -> str:
    """First line of a model reply as an UPPER_SNAKE relationship type."""
    lines = response.strip().splitlines()
    label = lines[0].strip().strip("\"'`.").upper().replace(" ", "_") if lines else ""
    if not label or len(label) > 30:
        return "SEMANTICALLY_SIMILAR"
    return label

