"""Retrieval pipeline: fan-out, scoring, diversity and the degraded path."""

import threading

import pytest

from db.cache import TTLCache
from modules.errors import ReasonCode, RetrievalUnavailable
from modules.search.query_processor import QueryProcessor
from modules.search.retrieval import (
    RetrievalPipeline,
    SearchContext,
    budget_category_for,
    default_duration,
    time_of_day_for_hour,
)
from modules.search.search_index import SearchIndexManager
from modules.search.vector_search import SearchHit, VectorSearch, cosine
from schemas.activity import Activity

from helpers import make_candidate


class FakeSimilarity:
    """Returns fixed hits for every query, or raises when told to."""

    def __init__(self, hits=None, error=None):
        self.hits = hits or []
        self.error = error
        self.queries = []
        self._lock = threading.Lock()

    def search(self, query, k):
        with self._lock:
            self.queries.append(query)
        if self.error:
            raise self.error
        return self.hits[:k]


def _small_catalog():
    return [
        Activity(activity_id="art-museum", title="City Art Museum", description="Paintings and history",
                 tags=("Museum", "Indoor-Friendly"), activity_type="Museum"),
        Activity(activity_id="river-park", title="River Park", description="Green riverside lawns",
                 tags=("Nature", "Outdoor-Friendly"), activity_type="Nature"),
        Activity(activity_id="noodle-bar", title="Noodle Bar", description="Hand-pulled noodles",
                 tags=("Food",), activity_type="Food"),
    ]


class TestHelpers:
    @pytest.mark.parametrize("budget, num_days, category", [
        (None, 1, None), (0, 3, "free"), (4999, 1, "budget"), (9000, 2, "budget"),
        (5000, 1, "mid"), (25000, 3, "mid"), (10000, 1, "premium"), (30000, 2, "premium"),
    ])
    def test_budget_category_per_day(self, budget, num_days, category):
        assert budget_category_for(budget, num_days) == category

    def test_default_duration_by_category(self):
        assert default_duration(Activity("a", "A", activity_type="Food")) == 90
        assert default_duration(Activity("b", "B", tags=("Park",))) == 120
        assert default_duration(Activity("c", "C")) == 60
        assert default_duration(Activity("d", "D", duration_minutes=45, activity_type="Museum")) == 45

    @pytest.mark.parametrize("hour, slot", [(6, "morning"), (11, "morning"), (12, "afternoon"),
                                            (17, "afternoon"), (18, "evening"), (3, "evening")])
    def test_time_of_day_for_hour(self, hour, slot):
        assert time_of_day_for_hour(hour) == slot

    def test_cosine(self):
        assert cosine([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        assert cosine([1.0, 0.0], [0.0, 1.0]) == 0.0
        assert cosine([1.0], [1.0, 2.0]) == 0.0


class TestScoring:
    def test_composite_score_formula(self):
        activity = Activity("p", "Park", tags=("Nature", "Outdoor-Friendly"))
        score = RetrievalPipeline.composite_score(activity, 0.5, ["nature", "food"], "clear")
        assert score == pytest.approx(0.5 * 10 + 0.5 * 5 + 1 * 2)

    def test_no_interests_contributes_nothing(self):
        activity = Activity("m", "Museum", tags=("Museum", "Indoor-Friendly"))
        assert RetrievalPipeline.composite_score(activity, 1.0, [], "rainy") == pytest.approx(12.0)

    def test_build_queries(self, pipeline):
        processed = QueryProcessor().process("explore the city")
        queries = pipeline.build_queries("explore the city", processed,
                                         SearchContext(interests=["food", "art"]))
        assert queries == [
            "explore the city sightseeing tourist attractions must-see places",
            "food activities explore the city",
            "art activities explore the city",
        ]

    def test_merge_keeps_first_occurrence(self):
        merged = RetrievalPipeline.merge_hits([
            [SearchHit("a", 0.9), SearchHit("b", 0.8)],
            [SearchHit("a", 0.1), SearchHit("c", 0.7)],
        ])
        assert [(h.activity_id, h.similarity) for h in merged] == [("a", 0.9), ("b", 0.8), ("c", 0.7)]


class TestDiversityCap:
    def test_no_type_exceeds_thirty_percent_of_target(self, pipeline):
        food = [make_candidate(f"food-{i}", activity_type="Food", score=20 - i) for i in range(10)]
        nature = [make_candidate(f"nature-{i}", activity_type="Nature", score=5 - i) for i in range(2)]
        kept = pipeline.apply_diversity_cap(food + nature, target_count=10)
        kinds = [c.activity.activity_type for c in kept]
        assert kinds.count("Food") == 3
        assert kinds.count("Nature") == 2

    def test_cap_is_at_least_one(self, pipeline):
        kept = pipeline.apply_diversity_cap(
            [make_candidate("a", activity_type="Food"), make_candidate("b", activity_type="Food")],
            target_count=2,
        )
        assert [c.activity_id for c in kept] == ["a"]

    def test_empty(self, pipeline):
        assert pipeline.apply_diversity_cap([]) == []


class TestBuildCandidates:
    def test_degrades_to_token_search_without_similarity(self):
        manager = SearchIndexManager(_small_catalog())
        pipeline = RetrievalPipeline(manager, cache=TTLCache(60))
        result = pipeline.build_candidates("museum", SearchContext())
        assert result.degraded
        assert result.reason_code == ReasonCode.RETRIEVAL_UNAVAILABLE.value
        assert [c.activity_id for c in result.candidates] == ["art-museum"]

    def test_degrades_when_every_similarity_query_fails(self):
        manager = SearchIndexManager(_small_catalog())
        search = FakeSimilarity(error=RetrievalUnavailable("down"))
        pipeline = RetrievalPipeline(manager, similarity_search=search, cache=TTLCache(60))
        result = pipeline.build_candidates("museum", SearchContext(interests=["art"]))
        assert result.degraded
        assert len(search.queries) == 2
        assert "art-museum" in [c.activity_id for c in result.candidates]

    def test_uses_similarity_hits(self):
        manager = SearchIndexManager(_small_catalog())
        search = FakeSimilarity(hits=[SearchHit("river-park", 0.9), SearchHit("noodle-bar", 0.2),
                                      SearchHit("unknown-id", 0.99)])
        pipeline = RetrievalPipeline(manager, similarity_search=search, cache=TTLCache(60))
        result = pipeline.build_candidates("green lawns", SearchContext(weather="clear"))
        assert not result.degraded
        assert result.reason_code is None
        ids = [c.activity_id for c in result.candidates]
        assert ids == ["river-park"]           # noodle-bar falls under the minimum score
        park = result.candidates[0]
        assert park.similarity == 0.9
        assert park.duration_minutes == 120

    def test_search_responses_are_cached(self):
        manager = SearchIndexManager(_small_catalog())
        search = FakeSimilarity(hits=[SearchHit("river-park", 0.9)])
        pipeline = RetrievalPipeline(manager, similarity_search=search, cache=TTLCache(60))
        pipeline.build_candidates("parks", SearchContext(interests=["nature"]))
        pipeline.build_candidates("parks", SearchContext(interests=["nature"]))
        assert len(search.queries) == 2

    def test_index_rebuild_drops_cached_hits(self):
        manager = SearchIndexManager(_small_catalog())
        search = FakeSimilarity(hits=[SearchHit("river-park", 0.9)])
        cache = TTLCache(60)
        pipeline = RetrievalPipeline(manager, similarity_search=search, cache=cache)
        pipeline.build_candidates("parks", SearchContext(interests=["nature"]))
        assert len(cache) == 2

        manager.build()
        assert len(cache) == 0
        pipeline.build_candidates("parks", SearchContext(interests=["nature"]))
        assert len(search.queries) == 4

    def test_identical_requests_rank_identically(self, index_manager):
        first = RetrievalPipeline(index_manager, cache=TTLCache(60)).build_candidates(
            "scenic parks and local food", SearchContext(interests=["nature", "food"], weather="clear"))
        second = RetrievalPipeline(index_manager, cache=TTLCache(60)).build_candidates(
            "scenic parks and local food", SearchContext(interests=["nature", "food"], weather="clear"))
        assert [c.activity_id for c in first.candidates] == [c.activity_id for c in second.candidates]
        assert [c.score for c in first.candidates] == [c.score for c in second.candidates]

    def test_composite_threshold_applies_before_boosts(self, pipeline):
        result = pipeline.build_candidates("museums and history", SearchContext(interests=["culture"]))
        assert result.candidates
        composites = [float(c.reasons[1].split()[-1]) for c in result.candidates]
        assert all(score >= 5.0 for score in composites)


class TestVectorSearch:
    def test_requires_embedding_generator(self, index_manager):
        with pytest.raises(RetrievalUnavailable):
            VectorSearch(index_manager, None).search("parks", 5)

    def test_requires_indexed_vectors(self, index_manager):
        with pytest.raises(RetrievalUnavailable):
            VectorSearch(index_manager, lambda text: [1.0]).search("parks", 5)

    def test_ranks_by_cosine(self):
        vectors = {"City Art Museum": [1.0, 0.0], "River Park": [0.0, 1.0], "Noodle Bar": [0.7, 0.7]}

        def embed(text):
            for title, vec in vectors.items():
                if text.startswith(title):
                    return vec
            return [0.0, 1.0]

        manager = SearchIndexManager(_small_catalog(), embed_fn=embed)
        hits = VectorSearch(manager, embed).search("green spaces", 2)
        assert [h.activity_id for h in hits] == ["river-park", "noodle-bar"]
        assert hits[0].similarity == pytest.approx(1.0)

    def test_ties_ordered_by_id_and_negatives_clipped(self):
        manager = SearchIndexManager(_small_catalog(), embed_fn=lambda text: [-1.0, 0.0] if "Noodle" in text else [0.0, 1.0])
        hits = VectorSearch(manager, lambda text: [0.0, 1.0]).search("anything", 5)
        assert [(h.activity_id, h.similarity) for h in hits] == [
            ("art-museum", pytest.approx(1.0)), ("river-park", pytest.approx(1.0)), ("noodle-bar", 0.0)]

    def test_query_dimension_mismatch_is_unavailable(self):
        manager = SearchIndexManager(_small_catalog(), embed_fn=lambda text: [1.0, 0.0])
        with pytest.raises(RetrievalUnavailable, match="dims"):
            VectorSearch(manager, lambda text: [1.0, 0.0, 0.0]).search("parks", 3)

    def test_many_rows_ranked_by_similarity(self):
        catalog = [Activity(f"a{i:04d}", f"Place {i}") for i in range(300)]
        manager = SearchIndexManager(catalog, embed_fn=lambda text: [1.0, float(text.split()[1])])
        manager.build()
        hits = VectorSearch(manager, lambda text: [0.0, 1.0]).search("q", 3)
        assert [h.activity_id for h in hits] == ["a0299", "a0298", "a0297"]
