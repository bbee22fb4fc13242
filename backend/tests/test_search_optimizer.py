"""Second-pass re-ranking boosts and filter recommendations."""

import pytest

from modules.search.query_processor import QueryProcessor
from modules.search.retrieval import SearchContext
from modules.search.search_optimizer import SearchOptimizer
from schemas.activity import Activity, RankedCandidate

from helpers import make_candidate


def _candidate(activity_id, title, description="", score=10.0, time_slot="anytime"):
    return RankedCandidate(
        activity  = Activity(activity_id=activity_id, title=title, description=description),
        score     = score,
        time_slot = time_slot,
    )


@pytest.fixture
def optimizer():
    return SearchOptimizer()


class TestOptimize:
    def test_exact_query_match_doubles_score(self, optimizer):
        processed = QueryProcessor().process("night market")
        cand = _candidate("nm", "Harrison Road Night Market")
        optimizer.optimize([cand], processed, SearchContext(weather="clear"))
        assert "Exact query match" in cand.reasons
        assert cand.score >= 20.0

    def test_negative_terms_penalise(self, optimizer):
        processed = QueryProcessor().process("quiet relaxing spot")
        cand = _candidate("loud", "Arcade", description="crowded and noisy")
        optimizer.optimize([cand], processed, SearchContext(weather="clear"))
        assert "Negative term penalty: 2" in cand.reasons
        assert cand.score == pytest.approx(6.0)

    def test_temporal_boost_on_matching_slot(self, optimizer):
        processed = QueryProcessor().process("")
        morning = _candidate("a", "Sunrise Walk", time_slot="morning")
        evening = _candidate("b", "Late Show", time_slot="evening")
        ranked = optimizer.optimize([evening, morning], processed,
                                    SearchContext(weather="clear", time_of_day="morning"))
        assert [c.activity_id for c in ranked] == ["a", "b"]
        assert "Time alignment: morning" in morning.reasons
        assert morning.score == pytest.approx(12.0)

    def test_interest_boost_uses_tags(self, optimizer):
        processed = QueryProcessor().process("")
        cand = make_candidate("museum-visit", tags=("Museum",))
        optimizer.optimize([cand], processed, SearchContext(interests=["museum"], weather="clear"))
        assert "Contextual boost: museum" in cand.reasons

    def test_ties_sorted_by_activity_id(self, optimizer):
        processed = QueryProcessor().process("")
        ranked = optimizer.optimize(
            [_candidate("b", "Beta"), _candidate("a", "Alpha")], processed, SearchContext(weather="clear"))
        assert [c.activity_id for c in ranked] == ["a", "b"]


    def test_contextual_boosts_skip_unmatchable_keys(self, optimizer):
        assert optimizer.contextual_boosts(SearchContext()) == {}
        boosts = optimizer.contextual_boosts(
            SearchContext(interests=["Food"], weather="rainy", budget="free", group_size=4))
        assert boosts == {"food": 1.3, "rainy": 1.2, "free": 1.2, "group": 1.1}

    def test_group_friendly_boost_needs_a_party(self, optimizer):
        processed = QueryProcessor().process("")

        def grove():
            return RankedCandidate(activity=Activity("grove", "Picnic Grove", tags=("Group-Friendly",)), score=10.0)

        solo, party = grove(), grove()
        optimizer.optimize([solo], processed, SearchContext(group_size=1))
        optimizer.optimize([party], processed, SearchContext(group_size=4))
        assert "Contextual boost: group" not in solo.reasons
        assert "Contextual boost: group" in party.reasons
        assert party.score == pytest.approx(solo.score * 1.1)

class TestFilterRecommendations:
    def test_large_groups(self, optimizer):
        processed = QueryProcessor().process("")
        recs = optimizer.filter_recommendations(processed, SearchContext(weather="clear", group_size=5))
        assert recs == ["Filter by group-friendly activities"]

    def test_fallback_when_nothing_applies(self, optimizer):
        processed = QueryProcessor().process("")
        recs = optimizer.filter_recommendations(processed, SearchContext(weather="clear", interests=["food"]))
        assert recs == ["Optimize for anytime activities", "Filter by food interests"]

    def test_weather_and_time_refs(self, optimizer):
        processed = QueryProcessor().process("cheap morning stroll")
        recs = optimizer.filter_recommendations(processed, SearchContext(weather="rainy"))
        assert recs == [
            "Filter by morning availability",
            "Apply budget-friendly filters",
            "Filter by rainy-appropriate activities",
        ]
