"""
itinerary_generator.py
----------------------
End-to-end plan construction and rebuild.

    build_candidates  →  filter_by_traffic  →  (draft decode)  →  schedule_itinerary
        →  weather / traffic snapshots  →  plan store

When USE_STUB_LLM=false the drafting service proposes a per-day split of the
admitted candidates; titles it names are pinned to its days and everything
it leaves out stays available to every day.  A malformed or empty draft
degrades to the plain pooled schedule.

ItineraryEngine owns the long-lived components (index, pipeline, filter,
scheduler, refresh service, store).  generate_itinerary() / rebuild_plan()
use a process-wide default engine built on first use.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Optional

import config
from db.repositories.plan_repo import InMemoryPlanStore, PostgresPlanStore, make_plan_store
from modules.drafting.draft_decoder import DecodeError, DecodedDraft, draft_or_empty
from modules.drafting.drafting_client import DraftingClient, build_prompt
from modules.errors import ReasonCode
from modules.observability.logger import StructuredLogger
from modules.planning.heuristic_scheduler import HeuristicScheduler, SchedulerConfig
from modules.planning.traffic_filter import TrafficAwareFilter, TrafficFilterResult
from modules.reoptimization.refresh_scheduler import RefreshScheduler, SchedulerStats
from modules.reoptimization.refresh_service import ChangeDetectionResult, RefreshService
from modules.search.retrieval import CandidateSet, RetrievalPipeline, SearchContext, budget_category_for
from modules.search.search_index import SearchIndexManager
from modules.search.vector_search import VectorSearch
from modules.tool_usage.activity_catalog import load_catalog
from modules.tool_usage.weather_tool import WeatherReading, WeatherTool, retrieval_weather
from schemas.activity import Activity, RankedCandidate
from schemas.refresh import PlanRequest, RefreshReason, SavedPlan

logger = logging.getLogger(__name__)

_events = StructuredLogger()

_DAY_RE = re.compile(r"day\s*(\d+)", re.IGNORECASE)


@dataclass
class GenerationResult:
    plan: SavedPlan
    candidates: CandidateSet
    traffic: TrafficFilterResult
    weather: WeatherReading
    draft_strategy: Optional[str] = None
    reason_codes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "plan_id":                self.plan.plan_id,
            "itinerary":              self.plan.draft.to_dict(),
            "refresh":                self.plan.refresh.to_dict(),
            "weather":                self.weather.to_metadata(),
            "query_analysis":         self.candidates.processed.to_dict(),
            "filter_recommendations": list(self.candidates.filter_recommendations),
            "candidates":             len(self.candidates.candidates),
            "admitted":               len(self.traffic.admitted),
            "excluded":               self.traffic.to_dict()["excluded"],
            "draft_strategy":         self.draft_strategy,
            "reason_codes":           list(self.reason_codes),
        }


# ─────────────────────────────────────────────────────────────────────────────
# Draft seeding
# ─────────────────────────────────────────────────────────────────────────────

def seed_days(
    decoded: DecodedDraft,
    admitted: list[RankedCandidate],
    num_days: int,
) -> Optional[list[list[RankedCandidate]]]:
    """
    Per-day candidate lists from a decoded draft, or None when the draft
    names none of the admitted activities.
    """
    by_title = {c.activity.title.strip().lower(): c for c in admitted}
    pinned: dict[str, int] = {}
    for period in decoded.draft.items:
        m = _DAY_RE.search(period.period)
        day = min(max(int(m.group(1)), 1), num_days) if m else 1
        for act in period.activities:
            cand = by_title.get(act.title.strip().lower())
            if cand is not None and cand.activity_id not in pinned:
                pinned[cand.activity_id] = day
    if not pinned:
        return None

    free = [c for c in admitted if c.activity_id not in pinned]
    return [
        [c for c in admitted if pinned.get(c.activity_id) == day] + free
        for day in range(1, num_days + 1)
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Engine
# ─────────────────────────────────────────────────────────────────────────────

class ItineraryEngine:
    def __init__(
        self,
        catalog: Optional[list[Activity]] = None,
        pipeline: Optional[RetrievalPipeline] = None,
        traffic_filter: Optional[TrafficAwareFilter] = None,
        scheduler: Optional[HeuristicScheduler] = None,
        weather_tool: Optional[WeatherTool] = None,
        refresh_service: Optional[RefreshService] = None,
        drafting_client: Optional[DraftingClient] = None,
        store: InMemoryPlanStore | PostgresPlanStore | None = None,
        use_drafting: bool = not config.USE_STUB_LLM,
    ) -> None:
        if pipeline is None:
            embed_fn = None
            if not config.USE_STUB_LLM:
                from llm import embed_text
                embed_fn = embed_text
            index_manager = SearchIndexManager(catalog if catalog is not None else load_catalog(), embed_fn=embed_fn)
            index_manager.build()
            search = VectorSearch(index_manager, embed_fn) if embed_fn else None
            pipeline = RetrievalPipeline(index_manager, similarity_search=search)
        self.pipeline = pipeline
        self.traffic_filter = traffic_filter or TrafficAwareFilter()
        self.scheduler = scheduler or HeuristicScheduler()
        self.weather_tool = weather_tool or WeatherTool()
        self.refresh_service = refresh_service or RefreshService(traffic_filter=self.traffic_filter)
        self.store = store if store is not None else make_plan_store()
        self._use_drafting = use_drafting
        self._drafting = drafting_client
        if use_drafting and drafting_client is None:
            self._drafting = DraftingClient()

    # ── public API ────────────────────────────────────────────────────────

    def generate_itinerary(
        self,
        request: PlanRequest,
        owner_id: str = "anonymous",
        weather: Optional[WeatherReading] = None,
        cfg: Optional[SchedulerConfig] = None,
    ) -> GenerationResult:
        weather = weather or self._current_weather(request)
        result = self._build(request, weather, cfg)
        plan = SavedPlan(
            plan_id  = str(uuid.uuid4()),
            owner_id = owner_id,
            request  = request,
            draft    = result.plan.draft,
            refresh  = result.plan.refresh,
        )
        # A fallback reading is not a baseline; the plan starts with none.
        if not weather.low_confidence:
            plan.refresh.weather_snapshot = weather.to_snapshot()
        plan.refresh.traffic_snapshot = self.refresh_service.create_traffic_snapshot(
            list(result.traffic.readings.values())
        )
        result.plan = plan
        self.store.save(plan)

        logger.info("Plan %s generated: %d days, %d activities",
                    plan.plan_id, len(plan.draft.days), len(plan.draft.activity_ids()))
        _events.log("pipeline", "PLAN_SAVED", {
            "plan_id":      plan.plan_id,
            "owner_id":     owner_id,
            "activities":   plan.draft.activity_ids(),
            "reason_codes": result.reason_codes,
        })
        return result

    def rebuild_plan(
        self,
        plan: SavedPlan,
        weather: Optional[WeatherReading] = None,
        reason: RefreshReason = RefreshReason.MANUAL_REFRESH,
    ) -> Optional[GenerationResult]:
        """
        Re-run the pipeline for a saved plan and replace its itinerary.

        Returns None (plan untouched) when the rolling 24 h refresh cap is
        already reached.
        """
        if not self.refresh_service.can_refresh(plan.refresh):
            logger.warning("Refresh cap reached for plan %s; rebuild skipped", plan.plan_id)
            return None

        weather = weather or self._current_weather(plan.request, plan)
        result = self._build(plan.request, weather, None)
        plan.draft = result.plan.draft
        if not plan.refresh.reasons:
            plan.refresh.reasons = [reason]
        self.refresh_service.record_refresh(
            plan.refresh,
            None if weather.low_confidence else weather.to_snapshot(),
            self.refresh_service.create_traffic_snapshot(list(result.traffic.readings.values())),
        )
        result.plan = plan
        self.store.save(plan)

        _events.log("pipeline", "PLAN_REBUILT", {
            "plan_id":       plan.plan_id,
            "reasons":       [r.value for r in plan.refresh.reasons],
            "refresh_count": plan.refresh.refresh_count,
        })
        return result

    def evaluate_plan(self, plan: SavedPlan) -> ChangeDetectionResult:
        """Change detection for one stored plan; evaluation state is persisted."""
        coords = plan.draft.coordinates() or [(config.CITY_CENTER_LAT, config.CITY_CENTER_LON)]
        weather = self._current_weather(plan.request, plan)
        result = self.refresh_service.evaluate_refresh(plan, weather, coords)
        self.refresh_service.record_evaluation(plan.refresh, result)
        self.store.save(plan)
        return result

    def run_refresh(self, owner_id: Optional[str] = None) -> SchedulerStats:
        """One batch pass over stored plans, rebuilding those that need it."""
        scheduler = RefreshScheduler(
            self.refresh_service,
            weather_tool = self.weather_tool,
            on_refresh   = lambda plan, _result: self.rebuild_plan(plan, reason=RefreshReason.SCHEDULED_REFRESH),
        )
        plans = self.store.list(owner_id)
        stats = scheduler.evaluate_plans(plans)
        for plan in plans:
            self.store.save(plan)
        return stats

    # ── pipeline ──────────────────────────────────────────────────────────

    def _current_weather(self, request: PlanRequest, plan: Optional[SavedPlan] = None) -> WeatherReading:
        lat = request.lat if request.lat is not None else config.CITY_CENTER_LAT
        lon = request.lon if request.lon is not None else config.CITY_CENTER_LON
        last_known = plan.refresh.weather_snapshot if plan is not None else None
        return self.weather_tool.fetch_or_fallback(lat, lon, last_known)

    def _build(
        self,
        request: PlanRequest,
        weather: WeatherReading,
        cfg: Optional[SchedulerConfig],
    ) -> GenerationResult:
        reason_codes: list[str] = []
        if weather.low_confidence:
            reason_codes.append(ReasonCode.WEATHER_UNAVAILABLE.value)

        context = SearchContext(
            interests   = list(request.interests),
            weather     = retrieval_weather(weather.condition, weather.temperature),
            budget      = budget_category_for(request.budget, request.num_days),
            group_size  = request.group_size,
            time_of_day = request.time_of_day,
        )
        candidates = self.pipeline.build_candidates(request.query, context)
        if candidates.reason_code:
            reason_codes.append(candidates.reason_code)
        _events.log("pipeline", "CANDIDATES_BUILT", {
            "query":    request.query,
            "count":    len(candidates.candidates),
            "degraded": candidates.degraded,
        })

        traffic = self.traffic_filter.filter_by_traffic(candidates.candidates)
        reason_codes.extend(rc.value for rc in traffic.reason_codes)
        _events.log("pipeline", "TRAFFIC_FILTERED", {
            "admitted": len(traffic.admitted),
            "excluded": len(traffic.excluded),
        })

        num_days = max(1, request.num_days)
        day_lists, strategy = self._draft_days(request, traffic.admitted, weather, num_days, reason_codes)
        if day_lists is not None:
            draft = self.scheduler.schedule_itinerary(day_lists, cfg)
        else:
            draft = self.scheduler.schedule_itinerary(traffic.admitted, cfg, num_days=num_days)

        for day in draft.days:
            if day.notes and ReasonCode.SCHEDULING_INFEASIBLE.value not in reason_codes:
                reason_codes.append(ReasonCode.SCHEDULING_INFEASIBLE.value)
        _events.log("pipeline", "ITINERARY_SCHEDULED", {
            "days":        len(draft.days),
            "scheduled":   len(draft.activity_ids()),
            "unscheduled": len(draft.unscheduled),
        })

        return GenerationResult(
            plan           = SavedPlan(plan_id="", owner_id="", request=request, draft=draft),
            candidates     = candidates,
            traffic        = traffic,
            weather        = weather,
            draft_strategy = strategy,
            reason_codes   = reason_codes,
        )

    def _draft_days(
        self,
        request: PlanRequest,
        admitted: list[RankedCandidate],
        weather: WeatherReading,
        num_days: int,
        reason_codes: list[str],
    ) -> tuple[Optional[list[list[RankedCandidate]]], Optional[str]]:
        if not self._use_drafting or self._drafting is None or not admitted:
            return None, None

        prompt = build_prompt(request.query, admitted, num_days, request.interests, weather.condition)
        outcome = self._drafting.draft(prompt)
        if isinstance(outcome, DecodeError):
            logger.warning("Draft unusable (%s); scheduling from the ranked pool", outcome.reason)
            reason_codes.append(outcome.reason_code.value)
        decoded = draft_or_empty(outcome)
        _events.log("pipeline", "DRAFT_DECODED", {
            "strategy": decoded.strategy,
            "titles":   decoded.draft.titles(),
        })
        return seed_days(decoded, admitted, num_days), decoded.strategy


# ─────────────────────────────────────────────────────────────────────────────
# Module-level entry points
# ─────────────────────────────────────────────────────────────────────────────

_default_engine: Optional[ItineraryEngine] = None


def get_engine() -> ItineraryEngine:
    global _default_engine
    if _default_engine is None:
        _default_engine = ItineraryEngine()
    return _default_engine


def generate_itinerary(request: PlanRequest, owner_id: str = "anonymous") -> GenerationResult:
    return get_engine().generate_itinerary(request, owner_id=owner_id)


def rebuild_plan(plan: SavedPlan, weather: Optional[WeatherReading] = None) -> Optional[GenerationResult]:
    return get_engine().rebuild_plan(plan, weather)
