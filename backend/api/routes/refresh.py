"""
api/routes/refresh.py
---------------------
POST /v1/refresh/run                 batch evaluation of stored plans
POST /v1/refresh/{plan_id}/evaluate  change detection for one plan
                                     (?rebuild=true rebuilds when needed)
GET  /v1/refresh/{plan_id}/status    refresh bookkeeping for one plan

A rebuild past the rolling 24 h refresh cap answers 429.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from itinerary_generator import ItineraryEngine, get_engine
from schemas.refresh import SavedPlan

router = APIRouter()


def _load(engine: ItineraryEngine, plan_id: str) -> SavedPlan:
    plan = engine.store.get(plan_id)
    if plan is None:
        raise HTTPException(status_code=404, detail=f"Plan '{plan_id}' not found.")
    return plan


@router.post("/run", summary="Evaluate every eligible stored plan")
def run(owner_id: Optional[str] = None, engine: ItineraryEngine = Depends(get_engine)) -> dict:
    return engine.run_refresh(owner_id).to_dict()


@router.post("/{plan_id}/evaluate", summary="Detect weather / traffic changes for a plan")
def evaluate(plan_id: str, rebuild: bool = False, engine: ItineraryEngine = Depends(get_engine)) -> dict:
    plan = _load(engine, plan_id)
    result = engine.evaluate_plan(plan)
    body = {
        "plan_id": plan_id,
        **result.to_dict(),
        "summary": engine.refresh_service.get_change_summary(result),
        "rebuilt": False,
    }
    if rebuild and result.needs_refresh:
        rebuilt = engine.rebuild_plan(plan)
        if rebuilt is None:
            raise HTTPException(status_code=429, detail="Daily refresh limit reached for this plan.")
        body["rebuilt"] = True
        body["itinerary"] = rebuilt.plan.draft.to_dict()
    return body


@router.get("/{plan_id}/status", summary="Refresh status of a plan")
def status(plan_id: str, engine: ItineraryEngine = Depends(get_engine)) -> dict:
    plan = _load(engine, plan_id)
    service = engine.refresh_service
    return {
        "plan_id":             plan_id,
        **plan.refresh.to_dict(),
        "refreshes_last_24h":  service.refreshes_in_window(plan.refresh),
        "can_refresh":         service.can_refresh(plan.refresh),
    }
