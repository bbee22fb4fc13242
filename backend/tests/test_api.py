"""HTTP surface, served against an isolated engine through dependency_overrides."""

import pytest
from fastapi.testclient import TestClient

from api.server import app
from itinerary_generator import get_engine
from modules.tool_usage.weather_tool import WeatherTool


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _activities(payload):
    return [a for period in payload.values() for a in period]


class TestHealth:
    def test_health(self, client):
        r = client.get("/v1/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"
        assert r.json()["plan_store"] == "in_memory"


class TestItineraryEndpoints:
    def test_candidates(self, client):
        r = client.post("/v1/itinerary/candidates", json={"query": "museum", "interests": ["culture"]})
        assert r.status_code == 200
        body = r.json()
        assert body["candidates"]
        assert body["degraded"] is True
        assert body["reason_code"] == "RETRIEVAL_UNAVAILABLE"

    def test_candidates_requires_query(self, client):
        assert client.post("/v1/itinerary/candidates", json={"query": ""}).status_code == 422

    def test_filter_traffic(self, client):
        r = client.post("/v1/itinerary/filter-traffic", json={"activities": [
            {"activity_id": "park", "title": "Park", "lat": 16.41, "lon": 120.59},
            {"activity_id": "nowhere", "title": "Nowhere"},
        ]})
        assert r.status_code == 200
        body = r.json()
        assert [a["activity_id"] for a in body["admitted"]] == ["park"]
        assert [e["activity_id"] for e in body["excluded"]] == ["nowhere"]

    def test_schedule(self, client):
        r = client.post("/v1/itinerary/schedule", json={
            "activities": [
                {"activity_id": "b", "title": "B", "duration_minutes": 60, "score": 3},
                {"activity_id": "a", "title": "A", "duration_minutes": 60, "score": 5},
            ],
            "day_start": "09:00",
            "day_end": "12:00",
            "min_per_day": 0,
        })
        assert r.status_code == 200
        placed = _activities(r.json()["days"][0]["periods"])
        assert [(a["activity_id"], a["start_time"]) for a in placed] == [("a", "09:00"), ("b", "10:30")]

    def test_schedule_rejects_inverted_window(self, client):
        r = client.post("/v1/itinerary/schedule", json={
            "activities": [], "day_start": "18:00", "day_end": "09:00",
        })
        assert r.status_code == 422

    def test_generate_and_fetch(self, client):
        r = client.post("/v1/itinerary/generate", json={
            "owner_id": "u1", "query": "parks and local food", "num_days": 2,
        })
        assert r.status_code == 200
        body = r.json()
        assert len(body["itinerary"]["days"]) == 2
        assert body["weather"]["condition"] == "clear"

        fetched = client.get(f"/v1/itinerary/{body['plan_id']}")
        assert fetched.status_code == 200
        assert fetched.json()["owner_id"] == "u1"

    def test_generate_rejects_inverted_dates(self, client):
        r = client.post("/v1/itinerary/generate", json={
            "query": "parks", "start_date": "2026-10-20", "end_date": "2026-10-19",
        })
        assert r.status_code == 422

    def test_unknown_plan(self, client):
        assert client.get("/v1/itinerary/missing").status_code == 404


class TestBudgetEndpoints:
    def test_allocate_stays_within_budget(self, client):
        r = client.post("/v1/budget/allocate", json={
            "items": [
                {"item_id": "a", "price": 100, "category": "Food"},
                {"item_id": "b", "price": 200, "category": "Culture"},
                {"item_id": "c", "price": 300, "category": "Nature"},
            ],
            "budget": 350,
        })
        assert r.status_code == 200
        body = r.json()
        assert body["selected"]
        assert body["total_cost"] <= 350
        assert {i["item_id"] for i in body["selected"]} <= {"a", "b", "c"}

    def test_allocate_infeasible(self, client):
        r = client.post("/v1/budget/allocate", json={
            "items": [{"item_id": "a", "price": 100}], "budget": 0,
        })
        assert r.status_code == 200
        assert r.json()["selected"] == []
        assert r.json()["reason_code"] == "BUDGET_INFEASIBLE"

    def test_optimize(self, client):
        r = client.post("/v1/budget/optimize", json={
            "selected": [{"item_id": "a", "price": 200}, {"item_id": "b", "price": 300}],
            "budget": 250,
        })
        assert r.status_code == 200
        assert r.json()["total_cost"] <= 250

    def test_negative_price_rejected(self, client):
        r = client.post("/v1/budget/optimize", json={"selected": [{"item_id": "a", "price": -1}], "budget": 10})
        assert r.status_code == 422


class TestRefreshEndpoints:
    def _generate(self, client) -> str:
        r = client.post("/v1/itinerary/generate", json={"owner_id": "u1", "query": "parks", "num_days": 1})
        return r.json()["plan_id"]

    def test_status(self, client):
        plan_id = self._generate(client)
        r = client.get(f"/v1/refresh/{plan_id}/status")
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "FRESH"
        assert body["can_refresh"] is True
        assert body["refreshes_last_24h"] == 0

    def test_evaluate_unchanged(self, client):
        plan_id = self._generate(client)
        r = client.post(f"/v1/refresh/{plan_id}/evaluate")
        assert r.status_code == 200
        assert r.json()["needs_refresh"] is False
        assert r.json()["rebuilt"] is False

    def test_evaluate_and_rebuild(self, client, engine):
        plan_id = self._generate(client)
        engine.weather_tool = WeatherTool(use_stub=True, stub_condition="thunderstorm", stub_temperature=18.0)
        r = client.post(f"/v1/refresh/{plan_id}/evaluate", params={"rebuild": "true"})
        assert r.status_code == 200
        body = r.json()
        assert body["needs_refresh"] is True
        assert body["rebuilt"] is True
        assert "itinerary" in body
        assert engine.store.get(plan_id).refresh.refresh_count == 1

    def test_run(self, client):
        self._generate(client)
        r = client.post("/v1/refresh/run")
        assert r.status_code == 200
        assert r.json()["total"] == 1
        assert r.json()["evaluated"] == 1

    def test_unknown_plan(self, client):
        assert client.get("/v1/refresh/missing/status").status_code == 404
        assert client.post("/v1/refresh/missing/evaluate").status_code == 404
