"""
api/server.py
-------------
FastAPI application entry point.

Run dev server:
    cd backend
    uvicorn api.server:app --reload --port 8000

Endpoints:
    GET  /v1/health
    POST /v1/itinerary/candidates
    POST /v1/itinerary/filter-traffic
    POST /v1/itinerary/schedule
    POST /v1/itinerary/generate
    GET  /v1/itinerary/{plan_id}
    POST /v1/budget/allocate
    POST /v1/budget/optimize
    POST /v1/refresh/run
    POST /v1/refresh/{plan_id}/evaluate
    GET  /v1/refresh/{plan_id}/status
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import budget, health, itinerary, refresh
from llm import require_credentials

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Missing LLM credentials with stub mode off is the only fatal startup error.
    require_credentials()
    yield


app = FastAPI(
    title="City Itinerary Engine API",
    version="1.0.0",
    description=(
        "Activity retrieval and ranking, traffic-aware admission, heuristic "
        "day scheduling, budget allocation and plan refresh detection."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Allow the web frontend (any origin during development)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router,     prefix="/v1",           tags=["Health"])
app.include_router(itinerary.router,  prefix="/v1/itinerary", tags=["Itinerary"])
app.include_router(budget.router,     prefix="/v1/budget",    tags=["Budget"])
app.include_router(refresh.router,    prefix="/v1/refresh",   tags=["Refresh"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
