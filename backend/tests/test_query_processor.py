"""Query processing: intent, entities and expansion."""

import pytest

from modules.search.query_processor import QueryProcessor, mentions


@pytest.fixture
def qp():
    return QueryProcessor()


class TestMentions:
    def test_matches_at_word_start(self):
        assert mentions("eating out tonight", "eat")

    def test_ignores_substring_inside_word(self):
        assert not mentions("great views", "eat")


class TestIntent:
    def test_empty_query_defaults_to_exploration(self, qp):
        intent = qp.process("").intent
        assert intent.primary == "exploration"
        assert intent.confidence == 0.3
        assert intent.secondary == []

    def test_scenic_without_false_dining_match(self, qp):
        intent = qp.process("great views").intent
        assert intent.primary == "scenic"
        assert "dining" not in intent.scores

    def test_primary_and_secondary(self, qp):
        intent = qp.process("explore and discover heritage museums").intent
        assert intent.primary == "exploration"
        assert intent.confidence == pytest.approx(2 / 6)
        assert intent.secondary == ["cultural"]


class TestEntities:
    def test_extracts_every_entity_kind(self, qp):
        entities = qp.process("romantic dinner at the night market near session road with kids").entities
        assert "shopping" in entities.activities
        assert entities.locations == ["session road", "night market"]
        assert entities.time_refs == ["evening"]
        assert entities.preferences == ["family-friendly", "romantic"]

    def test_custom_location_list(self):
        entities = QueryProcessor(known_locations=["Old Town"]).process("walk around old town").entities
        assert entities.locations == ["old town"]


class TestExpansion:
    def test_synonym_substitution_and_related_terms(self, qp):
        expansion = qp.process("quiet park").expansion
        assert expansion.expanded[0] == "quiet park"
        assert "peaceful places" in expansion.expanded
        assert "quiet garden" in expansion.expanded
        assert "garden" in expansion.synonyms
        assert "outdoor" in expansion.related_terms
        assert expansion.negative_terms == ["crowded", "noisy", "busy", "chaotic"]

    def test_time_reference_adds_related_terms(self, qp):
        expansion = qp.process("morning park walk").expansion
        assert "fresh air" in expansion.related_terms

    def test_expansions_are_deduplicated(self, qp):
        expansion = qp.process("park park").expansion
        assert len(expansion.expanded) == len(set(expansion.expanded))
        assert len(expansion.synonyms) == len(set(expansion.synonyms))

    def test_to_dict_rounds_confidence(self, qp):
        data = qp.process("explore").to_dict()
        assert data["intent"] == {"primary": "exploration", "secondary": [], "confidence": 0.167}
        assert data["expansion"]["original"] == "explore"
