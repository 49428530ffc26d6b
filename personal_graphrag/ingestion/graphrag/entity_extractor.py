"""Entity and relationship extraction from personal data."""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class EntityTypes:
    """Entity type tags produced by the extractor."""

    PERSON = "PERSON"
    ORGANIZATION = "ORGANIZATION"
    LOCATION = "LOCATION"
    EVENT = "EVENT"
    DATE = "DATE"
    PROJECT = "PROJECT"
    DOCUMENT = "DOCUMENT"
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    SKILL = "SKILL"
    TOPIC = "TOPIC"

    ALL = [
        PERSON, ORGANIZATION, LOCATION, EVENT, DATE,
        PROJECT, DOCUMENT, EMAIL, PHONE, SKILL, TOPIC,
    ]


class RelationshipTypes:
    """Relationship type tags produced by the extractor."""

    WORKS_AT = "WORKS_AT"
    WORKS_FOR = "WORKS_FOR"
    COLLEAGUE_OF = "COLLEAGUE_OF"
    KNOWS = "KNOWS"
    ATTENDED_BY = "ATTENDED_BY"
    LOCATED_IN = "LOCATED_IN"
    PART_OF = "PART_OF"
    CREATED_BY = "CREATED_BY"
    OWNED_BY = "OWNED_BY"
    MENTIONED_IN = "MENTIONED_IN"
    RELATED_TO = "RELATED_TO"
    HAS_SKILL = "HAS_SKILL"
    INTERESTED_IN = "INTERESTED_IN"
    CONTACT_OF = "CONTACT_OF"
    SCHEDULED_FOR = "SCHEDULED_FOR"


@dataclass
class ExtractedEntity:
    """Candidate entity before merging and persistence."""

    name: str
    type: str
    description: str | None = None
    attributes: dict[str, Any] | None = None
    confidence: float = 1.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtractedEntity":
        attributes = data.get("attributes")
        return cls(
            name=str(data.get("name") or "").strip(),
            type=str(data.get("type") or "UNKNOWN").upper(),
            description=data.get("description"),
            attributes=attributes if isinstance(attributes, dict) else None,
            confidence=_as_float(data.get("confidence"), 1.0),
        )


@dataclass
class ExtractedRelationship:
    """Candidate relationship between two entity names."""

    source_entity: str
    target_entity: str
    type: str
    description: str | None = None
    weight: float = 1.0
    confidence: float = 1.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtractedRelationship":
        return cls(
            source_entity=str(data.get("source") or data.get("source_entity") or "").strip(),
            target_entity=str(data.get("target") or data.get("target_entity") or "").strip(),
            type=str(
                data.get("type") or data.get("relationship") or RelationshipTypes.RELATED_TO
            ).upper(),
            description=data.get("description"),
            weight=max(0.0, _as_float(data.get("weight"), 1.0)),
            confidence=_as_float(data.get("confidence"), 1.0),
        )


@dataclass
class ExtractionResult:
    """Entities and relationships extracted from one source item."""

    source_id: str
    source_type: str
    entities: list[ExtractedEntity] = field(default_factory=list)
    relationships: list[ExtractedRelationship] = field(default_factory=list)


@dataclass
class EntityExtractionConfig:
    """Extraction thresholds and caps."""

    min_entity_confidence: float = 0.7
    min_relationship_confidence: float = 0.6
    entity_types: list[str] = field(default_factory=list)  # empty means all
    max_entities: int = 50
    max_relationships: int = 100


ENTITY_EXTRACTION_PROMPT = """Extract named entities and their relationships from the following text.

Entity types to extract: {entity_types}

For each entity, provide:
- name: The entity's name
- type: One of the entity types listed above
- description: A brief description if available

For each relationship, provide:
- source: Source entity name
- target: Target entity name
- type: Relationship type (e.g., WORKS_AT, KNOWS, LOCATED_IN, PART_OF)

Respond in JSON format:
{{
  "entities": [
    {{"name": "...", "type": "...", "description": "..."}}
  ],
  "relationships": [
    {{"source": "...", "target": "...", "type": "..."}}
  ]
}}

TEXT:
\"\"\"
{text}
\"\"\"

JSON output:"""


CONTACT_EXTRACTION_PROMPT = """Analyze this contact and extract entities and relationships.

Contact Information:
- Name: {name}
- Organization: {organization}
- Job Title: {job_title}
- Email(s): {emails}
- Phone(s): {phones}
- Notes: {note}

Extract entities (the person, their organization, location, skills mentioned)
and relationships between them.

Respond in JSON format:
{{
  "entities": [...],
  "relationships": [...]
}}

JSON output:"""


EVENT_EXTRACTION_PROMPT = """Analyze this calendar event and extract entities and relationships.

Event Information:
- Title: {title}
- Location: {location}
- Description: {description}
- Attendees: {attendees}
- Start: {start}
- End: {end}

Extract entities (people, places, topics, projects mentioned)
and relationships between them.

Respond in JSON format:
{{
  "entities": [...],
  "relationships": [...]
}}

JSON output:"""

# Capitalized words or runs of them, used when the model returns no JSON
_NAME_PATTERN = re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)\b")

_CONTACT_TYPES = {"contact", "contacts"}
_EVENT_TYPES = {"event", "calendar", "calendar_event"}
_NON_ALNUM = re.compile(r"[^a-z0-9]")


def entity_id_for(name: str, entity_type: str) -> str:
    """Stable entity id from type and normalized name."""
    normalized = _NON_ALNUM.sub("_", name.lower())
    return f"{entity_type.lower()}_{normalized}" if entity_type else normalized


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _join(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value if v is not None)
    return "" if value is None else str(value)


class EntityExtractor:
    """Extract entities and relationships using an LLM callback."""

    def __init__(
        self,
        generate_function: Callable[[str], Awaitable[str]],
        embed_function: Callable[[str], Awaitable[list[float]]],
        config: EntityExtractionConfig | None = None,
    ):
        """Initialize entity extractor.

        Args:
            generate_function: Async function to generate text (LLM call)
            embed_function: Async function embedding a single text
            config: Extraction thresholds
        """
        self.generate_function = generate_function
        self.embed_function = embed_function
        self.config = config or EntityExtractionConfig()

    def _entity_types_text(self) -> str:
        return ", ".join(self.config.entity_types or EntityTypes.ALL)

    async def extract_from_text(
        self,
        text: str,
        source_id: str,
        source_type: str = "text",
    ) -> ExtractionResult:
        """Extract entities and relationships from free text.

        Generation errors propagate to the caller.
        """
        if not text.strip():
            return ExtractionResult(source_id=source_id, source_type=source_type)

        prompt = ENTITY_EXTRACTION_PROMPT.format(
            entity_types=self._entity_types_text(),
            text=text[:8000],
        )
        response = await self.generate_function(prompt)
        return self._build_result(response, source_id, source_type)

    async def extract_from_structured(
        self,
        data: dict[str, Any],
        source_id: str,
        source_type: str,
    ) -> ExtractionResult:
        """Extract from a structured record (contact, event, anything else)."""
        kind = source_type.lower()
        if kind in _CONTACT_TYPES:
            prompt = CONTACT_EXTRACTION_PROMPT.format(
                name=data.get("full_name") or data.get("name") or "Unknown",
                organization=data.get("organization_name") or data.get("organization") or "",
                job_title=data.get("job_title") or "",
                emails=_join(data.get("email_addresses")),
                phones=_join(data.get("phone_numbers")),
                note=data.get("note") or "",
            )
        elif kind in _EVENT_TYPES:
            prompt = EVENT_EXTRACTION_PROMPT.format(
                title=data.get("title") or data.get("summary") or "Untitled Event",
                location=data.get("location") or "",
                description=data.get("notes") or data.get("description") or "",
                attendees=_join(data.get("attendees")),
                start=data.get("start_date") or data.get("start") or "",
                end=data.get("end_date") or data.get("end") or "",
            )
        else:
            prompt = ENTITY_EXTRACTION_PROMPT.format(
                entity_types=self._entity_types_text(),
                text=structured_data_to_text(data),
            )

        response = await self.generate_function(prompt)
        return self._build_result(response, source_id, source_type)

    async def generate_embedding(self, text: str) -> list[float]:
        return await self.embed_function(text)

    def _build_result(self, response: str, source_id: str, source_type: str) -> ExtractionResult:
        entities, relationships = parse_extraction_response(response)
        cfg = self.config
        result = ExtractionResult(
            source_id=source_id,
            source_type=source_type,
            entities=[e for e in entities if e.confidence >= cfg.min_entity_confidence][
                : cfg.max_entities
            ],
            relationships=[
                r for r in relationships if r.confidence >= cfg.min_relationship_confidence
            ][: cfg.max_relationships],
        )
        logger.debug(
            f"Extracted {len(result.entities)} entities and "
            f"{len(result.relationships)} relationships from {source_type}:{source_id}"
        )
        return result


def parse_extraction_response(
    response: str,
) -> tuple[list[ExtractedEntity], list[ExtractedRelationship]]:
    """Parse the model's JSON between the first ``{`` and the last ``}``.

    Falls back to capitalised-name matching (PERSON, confidence 0.5) when no
    valid JSON is found.
    """
    start = response.find("{")
    end = response.rfind("}")
    if start >= 0 and end > start:
        try:
            data = json.loads(response[start : end + 1])
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse extraction JSON, using fallback: {e}")
        else:
            if isinstance(data, dict):
                entities = [
                    ExtractedEntity.from_dict(e)
                    for e in data.get("entities") or []
                    if isinstance(e, dict)
                ]
                relationships = [
                    ExtractedRelationship.from_dict(r)
                    for r in data.get("relationships") or []
                    if isinstance(r, dict)
                ]
                return (
                    [e for e in entities if e.name],
                    [r for r in relationships if r.source_entity and r.target_entity],
                )

    return _fallback_parse(response), []


def _fallback_parse(response: str) -> list[ExtractedEntity]:
    entities = []
    seen: set[str] = set()
    for match in _NAME_PATTERN.finditer(response):
        name = match.group(1)
        if name.lower() in seen:
            continue
        seen.add(name.lower())
        entities.append(ExtractedEntity(name=name, type=EntityTypes.PERSON, confidence=0.5))
    return entities


def structured_data_to_text(data: dict[str, Any]) -> str:
    """Render a record as ``key: value`` lines, skipping empty values."""
    lines = []
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            if value:
                lines.append(f"{key}: {_join(value)}")
        elif isinstance(value, dict):
            lines.append(f"{key}: {json.dumps(value, default=str)}")
        else:
            lines.append(f"{key}: {value}")
    return "\n".join(lines)


class EntityMerger:
    """Deduplication of extracted entities by name similarity."""

    @staticmethod
    def are_similar_names(a: str, b: str, threshold: float = 0.8) -> bool:
        a_lower = a.lower().strip()
        b_lower = b.lower().strip()

        if a_lower == b_lower:
            return True
        if a_lower in b_lower or b_lower in a_lower:
            return True

        a_words = set(a_lower.split())
        b_words = set(b_lower.split())
        union = a_words | b_words
        return bool(union) and len(a_words & b_words) / len(union) >= threshold

    @classmethod
    def deduplicate_entities(
        cls,
        entities: list[ExtractedEntity],
        similarity_threshold: float = 0.8,
    ) -> list[ExtractedEntity]:
        """Collapse similar names, keeping the more confident or more descriptive one."""
        merged = []
        processed: set[int] = set()

        for i, entity in enumerate(entities):
            if i in processed:
                continue
            best = entity
            for j in range(i + 1, len(entities)):
                if j in processed:
                    continue
                other = entities[j]
                if not cls.are_similar_names(best.name, other.name, similarity_threshold):
                    continue
                if other.confidence > best.confidence or (
                    other.description and not best.description
                ):
                    best = other
                processed.add(j)
            merged.append(best)
            processed.add(i)

        return merged

    @classmethod
    def build_name_mapping(
        cls,
        original: list[ExtractedEntity],
        merged: list[ExtractedEntity],
        similarity_threshold: float = 0.8,
    ) -> dict[str, str]:
        """Map each lowercase original name to its canonical merged name."""
        mapping = {}
        for entity in original:
            for canonical in merged:
                if cls.are_similar_names(entity.name, canonical.name, similarity_threshold):
                    mapping[entity.name.lower()] = canonical.name
                    break
        return mapping

    @staticmethod
    def remap_relationships(
        relationships: list[ExtractedRelationship],
        name_mapping: dict[str, str],
    ) -> list[ExtractedRelationship]:
        """Rewrite relationship endpoints to canonical names."""
        return [
            ExtractedRelationship(
                source_entity=name_mapping.get(r.source_entity.lower(), r.source_entity),
                target_entity=name_mapping.get(r.target_entity.lower(), r.target_entity),
                type=r.type,
                description=r.description,
                weight=r.weight,
                confidence=r.confidence,
            )
            for r in relationships
        ]
