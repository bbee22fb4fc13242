"""
api/routes/health.py
--------------------
Health-check endpoint: used by load balancers, Docker health probes, etc.
"""
from __future__ import annotations

from fastapi import APIRouter

import config

router = APIRouter()


@router.get("/health", summary="Health check")
def health() -> dict:
    """Returns 200 OK when the service is running; reports store reachability."""
    body = {"status": "ok", "service": "itinerary-engine", "plan_store": config.PLAN_STORE_BACKEND}
    if config.PLAN_STORE_BACKEND == "postgres":
        from db.connection import ping
        body["database"] = "ok" if ping() else "unreachable"
    return body
