"""
api/routes/itinerary.py
------------------------
POST /v1/itinerary/candidates      ranked candidates for a free-text query
POST /v1/itinerary/filter-traffic  traffic-aware admission of given activities
POST /v1/itinerary/schedule        day schedule for given activities
POST /v1/itinerary/generate        full pipeline; the plan is persisted
GET  /v1/itinerary/{plan_id}       stored plan

All handlers share the process-wide ItineraryEngine (get_engine); tests
override it through app.dependency_overrides.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, model_validator

from itinerary_generator import ItineraryEngine, get_engine
from modules.planning.heuristic_scheduler import SchedulerConfig
from modules.search.retrieval import SearchContext, default_duration
from schemas.activity import Activity, RankedCandidate, parse_clock
from schemas.refresh import PlanRequest

router = APIRouter()


# ── Request schemas ────────────────────────────────────────────────────────────

class ActivityIn(BaseModel):
    activity_id: Optional[str] = None
    title: str = Field(..., min_length=1)
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    time: str = ""
    duration_minutes: Optional[int] = Field(None, gt=0)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lon: Optional[float] = Field(None, ge=-180, le=180)
    popularity: Optional[float] = Field(None, ge=0, le=100)
    price: Optional[float] = Field(None, ge=0)
    budget_category: str = "budget"
    activity_type: str = "Other"
    score: float = Field(0.0, description="Composite score from /candidates, if known")


class CandidatesRequest(BaseModel):
    query: str = Field(..., min_length=1)
    interests: list[str] = Field(default_factory=list)
    weather: str = Field("default", description="clear | cloudy | rainy | thunderstorm | snow | foggy | cold")
    budget: Optional[str] = Field(None, description="free | budget | mid | premium")
    group_size: int = Field(1, ge=1)
    time_of_day: Optional[str] = Field(None, description="morning | afternoon | evening")
    target_count: Optional[int] = Field(None, ge=1)


class FilterRequest(BaseModel):
    activities: list[ActivityIn]


class ScheduleRequest(BaseModel):
    activities: list[ActivityIn]
    num_days: int = Field(1, ge=1, le=14)
    day_start: str = "08:00"
    day_end: str = "21:00"
    buffer_minutes: int = Field(30, ge=0)
    max_per_day: int = Field(8, ge=1)
    min_per_day: int = Field(2, ge=0)

    @model_validator(mode="after")
    def _window(self) -> "ScheduleRequest":
        start, end = parse_clock(self.day_start), parse_clock(self.day_end)
        if start is None or end is None:
            raise ValueError("day_start / day_end must be HH:MM")
        if end <= start:
            raise ValueError(f"day_end ({self.day_end}) must be after day_start ({self.day_start})")
        return self


class GenerateRequest(BaseModel):
    owner_id: str = Field("anonymous", description="Plan owner identifier")
    query: str = Field(..., min_length=1)
    interests: list[str] = Field(default_factory=list)
    num_days: int = Field(1, ge=1, le=14)
    budget: Optional[float] = Field(None, ge=0)
    group_size: int = Field(1, ge=1)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lon: Optional[float] = Field(None, ge=-180, le=180)
    time_of_day: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def _dates(self) -> "GenerateRequest":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError(f"end_date ({self.end_date}) must be >= start_date ({self.start_date})")
        return self


# ── Helpers ────────────────────────────────────────────────────────────────────

def to_candidate(item: ActivityIn) -> RankedCandidate:
    data: dict[str, Any] = item.model_dump(exclude={"score"})
    activity = Activity.from_dict(data)
    return RankedCandidate(
        activity         = activity,
        score            = item.score,
        popularity_score = (activity.popularity or 50) / 100,
        duration_minutes = default_duration(activity),
    )


# ── Endpoints ──────────────────────────────────────────────────────────────────

@router.post("/candidates", summary="Ranked activity candidates for a query")
def build_candidates(req: CandidatesRequest, engine: ItineraryEngine = Depends(get_engine)) -> dict:
    context = SearchContext(
        interests    = req.interests,
        weather      = req.weather,
        budget       = req.budget,
        group_size   = req.group_size,
        time_of_day  = req.time_of_day,
        target_count = req.target_count,
    )
    return engine.pipeline.build_candidates(req.query, context).to_dict()


@router.post("/filter-traffic", summary="Admit activities under current traffic")
def filter_traffic(req: FilterRequest, engine: ItineraryEngine = Depends(get_engine)) -> dict:
    result = engine.traffic_filter.filter_by_traffic([to_candidate(a) for a in req.activities])
    return result.to_dict()


@router.post("/schedule", summary="Place activities into day time windows")
def schedule(req: ScheduleRequest, engine: ItineraryEngine = Depends(get_engine)) -> dict:
    cfg = SchedulerConfig(
        day_start      = parse_clock(req.day_start),
        day_end        = parse_clock(req.day_end),
        buffer_minutes = req.buffer_minutes,
        max_per_day    = req.max_per_day,
        min_per_day    = req.min_per_day,
    )
    draft = engine.scheduler.schedule_itinerary([to_candidate(a) for a in req.activities], cfg, req.num_days)
    return draft.to_dict()


@router.post("/generate", summary="Generate and persist a multi-day itinerary")
def generate(req: GenerateRequest, engine: ItineraryEngine = Depends(get_engine)) -> dict:
    """
    Runs retrieval → traffic admission → (draft) → scheduling, snapshots the
    weather and traffic it was built under, and stores the plan.  The
    returned `plan_id` is used by the /v1/refresh/* endpoints.
    """
    request = PlanRequest(
        query       = req.query,
        interests   = req.interests,
        num_days    = req.num_days,
        budget      = req.budget,
        group_size  = req.group_size,
        lat         = req.lat,
        lon         = req.lon,
        time_of_day = req.time_of_day,
        start_date  = req.start_date,
        end_date    = req.end_date,
    )
    return engine.generate_itinerary(request, owner_id=req.owner_id).to_dict()


@router.get("/{plan_id}", summary="Fetch a stored plan")
def get_plan(plan_id: str, engine: ItineraryEngine = Depends(get_engine)) -> dict:
    plan = engine.store.get(plan_id)
    if plan is None:
        raise HTTPException(status_code=404, detail=f"Plan '{plan_id}' not found.")
    return plan.to_dict()
