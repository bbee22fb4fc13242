"""End-to-end plan generation, rebuild and refresh through the engine."""

import json
import re
from datetime import datetime, timezone

import pytest

from db.cache import TTLCache
from db.repositories.plan_repo import InMemoryPlanStore
from itinerary_generator import ItineraryEngine, seed_days
from modules.drafting.draft_decoder import decode_draft
from modules.drafting.drafting_client import DraftingClient, RetryPolicy
from modules.search.retrieval import RetrievalPipeline
from modules.search.search_index import SearchIndexManager
from modules.search.vector_search import SearchHit
from modules.tool_usage.weather_tool import WeatherReading, WeatherTool
from schemas.activity import Activity
from schemas.refresh import PlanRequest, RefreshReason, RefreshStatus

from helpers import make_candidate


@pytest.fixture
def request_2d():
    return PlanRequest(query="scenic parks and local food", interests=["nature", "food"], num_days=2)


class TestSeedDays:
    def test_titles_are_pinned_to_their_days(self):
        admitted = [make_candidate(i) for i in ("burnham-park", "wright-park", "mines-view", "cathedral")]
        decoded = decode_draft(json.dumps({"items": [
            {"period": "Day 2 - Morning", "activities": [{"title": "Wright Park"}]},
            {"period": "Day 1 - Afternoon", "activities": [{"title": "burnham park"}]},
            {"period": "Day 9 - Evening", "activities": [{"title": "Mines View"}, {"title": "Not Listed"}]},
        ]}))
        days = seed_days(decoded, admitted, num_days=2)
        assert [[c.activity_id for c in day] for day in days] == [
            ["burnham-park", "cathedral"],
            ["wright-park", "mines-view", "cathedral"],
        ]

    def test_no_known_titles(self):
        decoded = decode_draft('[{"title": "Somewhere Else"}]')
        assert seed_days(decoded, [make_candidate("burnham-park")], num_days=1) is None


class TestGenerate:
    def test_plan_is_built_and_stored(self, engine, request_2d):
        result = engine.generate_itinerary(request_2d, owner_id="traveler-1")
        plan = result.plan
        ids = plan.draft.activity_ids()

        assert len(plan.draft.days) == 2
        assert ids
        assert len(ids) == len(set(ids))
        assert all(item.traffic in ("low-traffic", "moderate-traffic")
                   for day in plan.draft.days for item in day.items)
        assert "RETRIEVAL_UNAVAILABLE" in result.reason_codes
        assert plan.refresh.weather_snapshot.condition == "clear"
        assert plan.refresh.traffic_snapshot.samples

        stored = engine.store.get(plan.plan_id)
        assert stored.owner_id == "traveler-1"
        assert stored.draft.activity_ids() == ids

    def test_supplied_weather_is_snapshotted(self, engine, request_2d):
        result = engine.generate_itinerary(request_2d, weather=WeatherReading("rainy", 18.0))
        assert result.plan.refresh.weather_snapshot.condition == "rainy"
        assert "WEATHER_UNAVAILABLE" not in result.reason_codes

    def test_fallback_weather_is_flagged(self, engine, request_2d):
        result = engine.generate_itinerary(
            request_2d, weather=WeatherReading("clear", 20.0, low_confidence=True))
        assert result.reason_codes[0] == "WEATHER_UNAVAILABLE"
        assert result.plan.refresh.weather_snapshot is None
        assert engine.store.get(result.plan.plan_id).refresh.weather_snapshot is None

    def test_to_dict(self, engine, request_2d):
        data = engine.generate_itinerary(request_2d).to_dict()
        assert data["plan_id"]
        assert len(data["itinerary"]["days"]) == 2
        assert data["weather"]["condition"] == "clear"
        assert data["draft_strategy"] is None


class TestDrafting:
    def _engine(self, pipeline, traffic_filter, generate, no_sleep):
        client = DraftingClient(generate, RetryPolicy(max_attempts=1, jitter=0.0), sleep=no_sleep)
        return ItineraryEngine(
            pipeline        = pipeline,
            traffic_filter  = traffic_filter,
            weather_tool    = WeatherTool(use_stub=True),
            drafting_client = client,
            store           = InMemoryPlanStore(),
            use_drafting    = True,
        )

    def test_drafted_titles_seed_the_schedule(self, pipeline, traffic_filter, no_sleep, request_2d):
        def generate(prompt):
            titles = re.findall(r'"title": "([^"]+)"', prompt)
            return json.dumps({"items": [{"period": "Day 1 - Morning",
                                          "activities": [{"title": t} for t in titles]}]})

        result = self._engine(pipeline, traffic_filter, generate, no_sleep).generate_itinerary(request_2d)
        assert result.draft_strategy == "direct"
        assert "DRAFTING_MALFORMED_OUTPUT" not in result.reason_codes
        assert result.plan.draft.days[0].items

    def test_unavailable_drafting_falls_back_to_pooled_schedule(self, pipeline, traffic_filter, no_sleep,
                                                                request_2d):
        def generate(prompt):
            raise RuntimeError("service down")

        result = self._engine(pipeline, traffic_filter, generate, no_sleep).generate_itinerary(request_2d)
        assert result.draft_strategy == "empty"
        assert "DRAFTING_MALFORMED_OUTPUT" in result.reason_codes
        assert result.plan.draft.activity_ids()


class TestRebuildAndRefresh:
    def test_rebuild_stamps_refresh(self, engine, request_2d):
        plan = engine.generate_itinerary(request_2d).plan
        rebuilt = engine.rebuild_plan(plan)
        assert rebuilt is not None
        assert plan.refresh.refresh_count == 1
        assert plan.refresh.status == RefreshStatus.REFRESH_COMPLETED
        assert plan.refresh.reasons == [RefreshReason.MANUAL_REFRESH]
        assert engine.store.get(plan.plan_id).refresh.refresh_count == 1

    def test_fallback_weather_leaves_the_baseline_in_place(self, engine, request_2d):
        plan = engine.generate_itinerary(request_2d, weather=WeatherReading("rainy", 18.0)).plan
        engine.rebuild_plan(plan, weather=WeatherReading("clear", 20.0, low_confidence=True))
        assert plan.refresh.refresh_count == 1
        assert plan.refresh.weather_snapshot.condition == "rainy"
        assert engine.store.get(plan.plan_id).refresh.weather_snapshot.condition == "rainy"

    def test_rebuild_respects_daily_cap(self, engine, request_2d):
        plan = engine.generate_itinerary(request_2d).plan
        plan.refresh.refresh_history = [datetime.now(timezone.utc)] * 4
        assert engine.rebuild_plan(plan) is None
        assert plan.refresh.refresh_count == 0

    def test_evaluate_unchanged_plan(self, engine, request_2d):
        plan = engine.generate_itinerary(request_2d).plan
        result = engine.evaluate_plan(plan)
        assert not result.needs_refresh
        stored = engine.store.get(plan.plan_id)
        assert stored.refresh.status == RefreshStatus.FRESH
        assert stored.refresh.last_evaluated_at is not None

    def test_evaluate_after_weather_turns(self, engine, request_2d):
        plan = engine.generate_itinerary(request_2d).plan
        engine.weather_tool = WeatherTool(use_stub=True, stub_condition="thunderstorm", stub_temperature=18.0)
        result = engine.evaluate_plan(plan)
        assert result.needs_refresh
        assert engine.store.get(plan.plan_id).refresh.status == RefreshStatus.STALE_PENDING

    def test_refresh_run_rebuilds_changed_plans(self, engine, request_2d):
        plan_id = engine.generate_itinerary(request_2d, owner_id="u1").plan.plan_id
        engine.weather_tool = WeatherTool(use_stub=True, stub_condition="thunderstorm", stub_temperature=18.0)
        stats = engine.run_refresh()
        assert stats.evaluated == 1
        assert stats.refreshes_triggered == 1
        stored = engine.store.get(plan_id)
        assert stored.refresh.refresh_count == 1
        assert stored.refresh.status == RefreshStatus.REFRESH_COMPLETED
        assert stored.refresh.weather_snapshot.condition == "thunderstorm"


class _FixedHits:
    def __init__(self, *activity_ids):
        self.activity_ids = activity_ids

    def search(self, query, k):
        return [SearchHit(aid, 0.8) for aid in self.activity_ids]


class TestBudgetContext:
    @pytest.fixture
    def budget_engine(self, traffic_filter):
        # Identical rows apart from id, type and price band.
        deck = dict(title="Ridge View Deck", description="Lookout over the valley",
                    tags=("Outdoor-Friendly",), lat=16.41, lon=120.59)
        catalog = [
            Activity("a-view-deck", budget_category="premium", activity_type="Tour", **deck),
            Activity("z-view-deck", budget_category="free", activity_type="Nature", **deck),
        ]
        manager = SearchIndexManager(catalog)
        return ItineraryEngine(
            catalog        = catalog,
            pipeline       = RetrievalPipeline(manager, similarity_search=_FixedHits("a-view-deck", "z-view-deck"),
                                               cache=TTLCache(60)),
            traffic_filter = traffic_filter,
            weather_tool   = WeatherTool(use_stub=True),
            store          = InMemoryPlanStore(),
            use_drafting   = False,
        )

    @staticmethod
    def _ranked(result):
        return [c.activity_id for c in result.candidates.candidates]

    def test_matching_budget_category_outranks_an_equal_row(self, budget_engine):
        unset = budget_engine.generate_itinerary(PlanRequest(query="valley lookout"))
        free = budget_engine.generate_itinerary(PlanRequest(query="valley lookout", budget=0))

        assert self._ranked(unset) == ["a-view-deck", "z-view-deck"]
        assert self._ranked(free) == ["z-view-deck", "a-view-deck"]
        top, other = free.candidates.candidates
        assert "Contextual boost: free" in top.reasons
        assert top.score == pytest.approx(other.score * 1.2)

    def test_budget_is_spread_over_the_days(self, budget_engine):
        lavish = budget_engine.generate_itinerary(PlanRequest(query="valley lookout", budget=30000, num_days=2))
        top = lavish.candidates.candidates[0]
        assert top.activity_id == "a-view-deck"
        assert "Contextual boost: premium" in top.reasons
