"""Tests for link prediction."""

from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock

from personal_graphrag.exceptions import DimensionMismatchError
from personal_graphrag.graph import InMemoryGraphRepository
from personal_graphrag.ingestion.graphrag import (
    YOU_ENTITY_ID,
    EmbeddingCandidate,
    EmbeddingSimilarityLinkPredictor,
    ExtractedEntity,
    ExtractionResult,
    LinkPredictionConfig,
    LinkPredictor,
    PredictedLink,
)
from personal_graphrag.ingestion.graphrag.link_prediction import (
    parse_relationship_type,
    parse_timestamp,
    you_relationship_type,
)

from conftest import axis_embedding, make_entity, make_relationship

START = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def extraction(source_id: str, *names: tuple[str, str]) -> ExtractionResult:
    return ExtractionResult(
        source_id=source_id,
        source_type="document",
        entities=[ExtractedEntity(name=name, type=entity_type) for name, entity_type in names],
    )


def triples(links: list[PredictedLink]) -> list[tuple[str, str, str]]:
    return [(l.source_entity_id, l.relationship_type, l.target_entity_id) for l in links]


@pytest.fixture
def predictor():
    """Predictor over an uninitialized repository, for the pure rules."""
    return LinkPredictor(InMemoryGraphRepository())


class TestTemplateRules:
    """Tests for links inferred from record fields."""

    def test_contact_organization(self, predictor):
        """Test a contact's organization becomes WORKS_AT."""
        links = predictor.infer_from_structured(
            {"id": "c1", "full_name": "Alice Smith", "organization_name": "Acme"}, "contacts"
        )

        assert triples(links) == [("person_alice_smith", "WORKS_AT", "organization_acme")]
        assert links[0].confidence == 1.0
        assert links[0].prediction_method == "template_contact_org"

    def test_contact_without_organization(self, predictor):
        """Test contacts without an organization yield nothing."""
        assert predictor.infer_from_structured({"full_name": "Alice Smith"}, "CONTACT") == []

    def test_calendar_event(self, predictor):
        """Test event location and attendees."""
        links = predictor.infer_from_structured(
            {"title": "Standup", "location": "Room 4", "attendees": ["Bob Jones", ""]},
            "calendar",
        )

        assert triples(links) == [
            ("event_standup", "LOCATED_IN", "location_room_4"),
            ("person_bob_jones", "ATTENDED_BY", "event_standup"),
        ]

    def test_phone_call_direction(self, predictor):
        """Test incoming and outgoing calls link the central node differently."""
        incoming = predictor.infer_from_structured(
            {"id": "call1", "contact_name": "Bob", "direction": "incoming", "phone_number": "555"},
            "calls",
        )
        outgoing = predictor.infer_from_structured(
            {"id": "call2", "contact_name": "Bob", "direction": "outgoing"}, "PHONE_CALL"
        )

        assert triples(incoming) == [(YOU_ENTITY_ID, "RECEIVED_CALL_FROM", "person_bob")]
        assert incoming[0].evidence["phone_number"] == "555"
        assert triples(outgoing) == [(YOU_ENTITY_ID, "CALLED", "person_bob")]

    def test_photo(self, predictor):
        """Test photo location, people and capture date."""
        links = predictor.infer_from_structured(
            {
                "id": "img1",
                "location": "Lisbon",
                "people": ["Carol"],
                "taken_at": "2025-01-02T10:00:00Z",
            },
            "photos",
        )

        assert triples(links) == [
            ("photo_img1", "TAKEN_AT", "location_lisbon"),
            ("person_carol", "PICTURED_IN", "photo_img1"),
            ("photo_img1", "TAKEN_ON", "date_2025_01_02"),
        ]

    def test_document(self, predictor):
        """Test document owners, shares and folder."""
        links = predictor.infer_from_structured(
            {"title": "Plan", "owners": ["Alice"], "sharedWith": ["Bob"], "folder": "Q1"},
            "documents",
        )

        assert triples(links) == [
            ("document_plan", "CREATED_BY", "person_alice"),
            ("document_plan", "SHARED_WITH", "person_bob"),
            ("document_plan", "PART_OF", "project_q1"),
        ]

    def test_note_tags(self, predictor):
        """Test note folder and tags."""
        links = predictor.infer_from_structured(
            {"title": "Ideas", "notebook": "Work", "tags": ["ml", "graphs"]}, "notes"
        )

        assert triples(links) == [
            ("note_ideas", "PART_OF", "project_work"),
            ("note_ideas", "TAGGED_WITH", "topic_ml"),
            ("note_ideas", "TAGGED_WITH", "topic_graphs"),
        ]

    def test_unknown_source_and_disabled(self):
        """Test unknown sources and disabled templates produce no links."""
        enabled = LinkPredictor(InMemoryGraphRepository())
        disabled = LinkPredictor(
            InMemoryGraphRepository(), LinkPredictionConfig(enable_template_links=False)
        )
        contact = {"full_name": "Alice", "organization_name": "Acme"}

        assert enabled.infer_from_structured(contact, "emails") == []
        assert disabled.infer_from_structured(contact, "contacts") == []

    def test_you_relationship_type(self):
        """Test source types map onto relationships from the central node."""
        assert you_relationship_type("contacts") == "KNOWS"
        assert you_relationship_type("CALENDAR_EVENT") == "HAS_EVENT"
        assert you_relationship_type("CALLS") == "MADE_CALL"
        assert you_relationship_type("bookmarks") == "OWNS"

    def test_to_relationship(self):
        """Test a predicted link converts to a stored relationship."""
        link = PredictedLink("a", "b", "KNOWS", 0.6, "co_mention", {"co_occurrence_count": 2})

        rel = link.to_relationship()

        assert rel.id == "a_KNOWS_b"
        assert rel.weight == 0.6
        assert rel.metadata == {
            "prediction_method": "co_mention",
            "evidence": {"co_occurrence_count": 2},
        }


class TestStatisticalRules:
    """Tests for co-mention and temporal links."""

    def test_co_mentions(self, predictor):
        """Test pairs mentioned together often enough are linked."""
        extractions = [
            extraction("d1", ("Alice", "PERSON"), ("Acme", "ORGANIZATION")),
            extraction("d2", ("Alice", "PERSON"), ("Acme", "ORGANIZATION"), ("Bob", "PERSON")),
            extraction("d3", ("Bob", "PERSON")),
        ]

        links = predictor.detect_co_mentions(extractions)

        assert triples(links) == [("organization_acme", "MENTIONED_WITH", "person_alice")]
        assert links[0].confidence == pytest.approx(2 / 3 * 0.7)
        assert links[0].evidence == {"co_occurrence_count": 2, "sources": ["d1", "d2"]}

    def test_co_mentions_ignore_repeats_within_one_record(self, predictor):
        """Test an entity named twice in one record is not paired with itself."""
        links = predictor.detect_co_mentions(
            [extraction(f"d{i}", ("Alice", "PERSON"), ("alice", "PERSON")) for i in range(3)]
        )

        assert links == []

    def test_temporal_proximity(self, predictor):
        """Test records inside the window are linked with decaying confidence."""
        items = [
            {"title": "Standup", "start_date": START.isoformat()},
            {"title": "Review", "start_date": (START + timedelta(minutes=30)).isoformat()},
            {"title": "Lunch", "start_date": (START + timedelta(hours=3)).isoformat()},
            {"title": "Undated"},
        ]

        links = predictor.detect_temporal_proximity(items, "calendar")

        assert triples(links) == [("event_standup", "TEMPORALLY_PROXIMATE", "event_review")]
        assert links[0].confidence == pytest.approx(0.75 * 0.7)
        assert links[0].evidence["time_difference_minutes"] == 30

    def test_temporal_disabled(self):
        """Test disabling temporal links."""
        predictor = LinkPredictor(
            InMemoryGraphRepository(), LinkPredictionConfig(enable_temporal_links=False)
        )
        items = [{"title": "A", "timestamp": 0}, {"title": "B", "timestamp": 1000}]

        assert predictor.detect_temporal_proximity(items, "calendar") == []

    def test_parse_timestamp(self):
        """Test the accepted timestamp forms."""
        assert parse_timestamp(86_400_000) == datetime(1970, 1, 2, tzinfo=timezone.utc)
        assert parse_timestamp("2025-03-01T09:00:00Z") == START
        assert parse_timestamp(datetime(2025, 3, 1, 9, 0)) == START
        assert parse_timestamp("next tuesday") is None
        assert parse_timestamp(True) is None


class TestRepositoryRules:
    """Tests for rules that read or write the graph."""

    @pytest.mark.asyncio
    async def test_ensure_you_entity(self, repository, embed_function):
        """Test the central node is created once, with an embedding."""
        predictor = LinkPredictor(repository, embed_function=embed_function)

        first = await predictor.ensure_you_entity()
        second = await predictor.ensure_you_entity()

        assert first.id == second.id == YOU_ENTITY_ID
        assert first.type == "SELF"
        assert len(first.embedding) == 8
        embed_function.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_you_entity_needs_embedding_once_dimension_known(self, people_graph):
        """Test the central node is rejected without an embedding in an embedded graph."""
        predictor = LinkPredictor(people_graph)

        with pytest.raises(DimensionMismatchError):
            await predictor.ensure_you_entity()

    @pytest.mark.asyncio
    async def test_link_to_you(self, people_graph):
        """Test links from the central node to existing entities."""
        predictor = LinkPredictor(people_graph)

        link = await predictor.link_to_you("alice", "contacts")

        assert (link.source_entity_id, link.relationship_type) == (YOU_ENTITY_ID, "KNOWS")
        assert link.evidence == {"data_source_type": "contacts", "entity_type": "PERSON"}
        assert await predictor.link_to_you("ghost", "contacts") is None

    @pytest.mark.asyncio
    async def test_infer_colleagues(self, people_graph):
        """Test people at the same organization become colleagues."""
        predictor = LinkPredictor(people_graph)

        links = await predictor.infer_colleague_relationships()

        assert triples(links) == [("alice", "COLLEAGUE_OF", "bob")]
        assert links[0].confidence == pytest.approx(0.8)
        assert links[0].evidence == {"shared_organization": "acme"}

    @pytest.mark.asyncio
    async def test_store_requires_both_endpoints(self, people_graph):
        """Test links to missing entities are not stored."""
        predictor = LinkPredictor(people_graph)
        links = [
            PredictedLink("alice", "bob", "COLLEAGUE_OF", 0.8, "inferred_colleague"),
            PredictedLink("alice", "ghost", "KNOWS", 1.0, "template_contact_org"),
        ]

        stored = await predictor.store_predicted_links(links)

        assert stored == 1
        rel_ids = {r.id for r in await people_graph.get_relationships("alice")}
        assert "alice_COLLEAGUE_OF_bob" in rel_ids
        assert "alice_KNOWS_ghost" not in rel_ids

    @pytest.mark.asyncio
    async def test_process_batch(self, repository, embed_function):
        """Test a batch combines template and co-mention links."""
        predictor = LinkPredictor(repository, embed_function=embed_function)
        items = [
            {"id": "c1", "full_name": "Alice", "organization_name": "Acme"},
            {"id": "c2", "full_name": "Bob", "organization_name": "Acme"},
        ]
        extractions = [
            extraction("c1", ("Alice", "PERSON"), ("Acme", "ORGANIZATION")),
            extraction("c2", ("Alice", "PERSON"), ("Acme", "ORGANIZATION")),
        ]

        links = await predictor.process_batch(items, "contacts", extractions)

        assert triples(links) == [
            ("person_alice", "WORKS_AT", "organization_acme"),
            ("person_bob", "WORKS_AT", "organization_acme"),
            ("organization_acme", "MENTIONED_WITH", "person_alice"),
        ]
        assert await repository.get_entity(YOU_ENTITY_ID) is not None


def similarity_graph_entities():
    near = [0.9, 0.1, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]
    return [
        make_entity("mom", "Mom", "PERSON", axis_embedding(0)),
        make_entity("dad", "Dad", "PERSON", near),
        make_entity("garden", "Garden", "LOCATION", axis_embedding(0)),
        make_entity("bday", "Birthday", "EVENT", axis_embedding(5)),
        make_entity("xmas", "Christmas", "EVENT", axis_embedding(5)),
        make_entity(YOU_ENTITY_ID, "You", "SELF", axis_embedding(0)),
        make_entity("bare", "No embedding", "PERSON"),
    ]


class TestEmbeddingSimilarityLinkPredictor:
    """Tests for EmbeddingSimilarityLinkPredictor."""

    @pytest.mark.asyncio
    async def test_find_candidates(self, repository):
        """Test thresholds, skipped types and ordering."""
        predictor = EmbeddingSimilarityLinkPredictor(repository, AsyncMock())

        candidates = await predictor.find_candidates(similarity_graph_entities())

        pairs = [(c.entity_a.id, c.entity_b.id) for c in candidates]
        assert pairs == [("mom", "garden"), ("dad", "garden"), ("mom", "dad")]
        assert candidates[0].similarity == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_candidate_limit_and_disable(self, repository):
        """Test the candidate cap and the off switch."""
        capped = EmbeddingSimilarityLinkPredictor(
            repository, AsyncMock(), LinkPredictionConfig(max_embedding_candidates=1)
        )
        off = EmbeddingSimilarityLinkPredictor(
            repository, AsyncMock(), LinkPredictionConfig(enable_embedding_similarity_links=False)
        )

        assert len(await capped.find_candidates(similarity_graph_entities())) == 1
        assert await off.find_candidates(similarity_graph_entities()) == []

    @pytest.mark.asyncio
    async def test_same_type_approved_without_model(self, people_graph):
        """Test similar same-type pairs become RELATED_TO with no model call."""
        generate = AsyncMock()
        predictor = EmbeddingSimilarityLinkPredictor(people_graph, generate)
        carol = await people_graph.get_entity("carol")
        dave = make_entity("dave", "Dave", embedding=axis_embedding(2))
        weak = make_entity("erin", "Erin", embedding=axis_embedding(2))

        links = await predictor.validate_and_create_links(
            [
                EmbeddingCandidate(carol, dave, 0.95),
                EmbeddingCandidate(carol, weak, 0.6),
            ]
        )

        assert triples(links) == [("carol", "RELATED_TO", "dave")]
        assert links[0].confidence == 0.95
        generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_existing_links_skipped(self, people_graph):
        """Test pairs that are already related are not proposed again."""
        predictor = EmbeddingSimilarityLinkPredictor(people_graph, AsyncMock())
        alice = await people_graph.get_entity("alice")
        carol = await people_graph.get_entity("carol")

        links = await predictor.validate_and_create_links([EmbeddingCandidate(alice, carol, 0.9)])

        assert links == []

    @pytest.mark.asyncio
    async def test_cross_type_validation_chain(self, people_graph):
        """Test the three model steps label and score a cross-type pair."""
        generate = AsyncMock(side_effect=['"works with"\nbecause...', "YES, plausibly", "0.9"])
        predictor = EmbeddingSimilarityLinkPredictor(people_graph, generate)
        carol = await people_graph.get_entity("carol")
        acme = await people_graph.get_entity("acme")

        [link] = await predictor.validate_and_create_links([EmbeddingCandidate(carol, acme, 0.8)])

        assert (link.relationship_type, link.prediction_method) == (
            "WORKS_WITH",
            "embedding_similarity_llm_validated",
        )
        assert link.confidence == pytest.approx(0.72)
        assert generate.await_count == 3

    @pytest.mark.asyncio
    async def test_cross_type_rejections(self, people_graph):
        """Test implausible, low-confidence and failing pairs are dropped."""
        carol = await people_graph.get_entity("carol")
        acme = await people_graph.get_entity("acme")
        candidate = [EmbeddingCandidate(carol, acme, 0.8)]

        implausible = EmbeddingSimilarityLinkPredictor(
            people_graph, AsyncMock(side_effect=["KNOWS", "NO"])
        )
        unsure = EmbeddingSimilarityLinkPredictor(
            people_graph, AsyncMock(side_effect=["KNOWS", "YES", "confidence 0.2"])
        )
        failing = EmbeddingSimilarityLinkPredictor(
            people_graph, AsyncMock(side_effect=RuntimeError("model offline"))
        )

        assert await implausible.validate_and_create_links(candidate) == []
        assert await unsure.validate_and_create_links(candidate) == []
        assert await failing.validate_and_create_links(candidate) == []

    @pytest.mark.asyncio
    async def test_cross_type_validation_cap(self, people_graph):
        """Test at most max_llm_validations pairs reach the model."""
        generate = AsyncMock(return_value="NO")
        predictor = EmbeddingSimilarityLinkPredictor(
            people_graph, generate, LinkPredictionConfig(max_llm_validations=1)
        )
        carol = await people_graph.get_entity("carol")
        acme = await people_graph.get_entity("acme")
        standup = await people_graph.get_entity("standup")

        await predictor.validate_and_create_links(
            [EmbeddingCandidate(carol, acme, 0.8), EmbeddingCandidate(carol, standup, 0.8)]
        )

        assert generate.await_count == 2

    def test_parse_relationship_type(self):
        """Test model replies are normalized to relationship tags."""
        assert parse_relationship_type("part of\nexplanation") == "PART_OF"
        assert parse_relationship_type('"KNOWS".') == "KNOWS"
        assert parse_relationship_type("") == "SEMANTICALLY_SIMILAR"
        assert parse_relationship_type("x" * 31) == "SEMANTICALLY_SIMILAR"


@pytest.mark.asyncio
async def test_colleague_links_feed_queries(people_graph):
    """Test stored colleague links are visible as relationships."""
    predictor = LinkPredictor(people_graph)

    await predictor.store_predicted_links(await predictor.infer_colleague_relationships())

    bob_links = await people_graph.get_relationships("bob")
    assert make_relationship("alice", "COLLEAGUE_OF", "bob").id in {r.id for r in bob_links}
