"""Plan persistence: in-memory store and the saved_plans row functions."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

import config
from db.repositories import plan_repo
from db.repositories.plan_repo import InMemoryPlanStore, PostgresPlanStore, make_plan_store
from schemas.itinerary import DayPlan, ItineraryDraft
from schemas.refresh import PlanRequest, RefreshStatus, SavedPlan

T0 = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


def _plan(plan_id: str, owner_id: str = "u1", minutes: int = 0) -> SavedPlan:
    return SavedPlan(
        plan_id    = plan_id,
        owner_id   = owner_id,
        request    = PlanRequest(query="parks", interests=["nature"], num_days=2),
        draft      = ItineraryDraft(days=[DayPlan(day_number=1), DayPlan(day_number=2)]),
        created_at = T0 + timedelta(minutes=minutes),
    )


@pytest.fixture
def store() -> InMemoryPlanStore:
    return InMemoryPlanStore()


class TestInMemoryPlanStore:
    def test_save_and_get(self, store):
        store.save(_plan("p1"))
        got = store.get("p1")
        assert got.plan_id == "p1"
        assert got.request.interests == ["nature"]
        assert len(got.draft.days) == 2
        assert got.created_at == T0

    def test_missing_plan(self, store):
        assert store.get("nope") is None

    def test_returned_plans_are_copies(self, store):
        store.save(_plan("p1"))
        got = store.get("p1")
        got.refresh.status = RefreshStatus.STALE_PENDING
        got.refresh.refresh_count = 3
        again = store.get("p1")
        assert again.refresh.status == RefreshStatus.FRESH
        assert again.refresh.refresh_count == 0

    def test_save_overwrites(self, store):
        plan = _plan("p1")
        store.save(plan)
        plan.refresh.refresh_count = 2
        store.save(plan)
        assert store.get("p1").refresh.refresh_count == 2

    def test_list_newest_first_with_owner_filter(self, store):
        store.save(_plan("old", minutes=0))
        store.save(_plan("new", minutes=30))
        store.save(_plan("other", owner_id="u2", minutes=10))
        assert [p.plan_id for p in store.list()] == ["new", "other", "old"]
        assert [p.plan_id for p in store.list("u1")] == ["new", "old"]
        assert store.list("nobody") == []

    def test_delete(self, store):
        store.save(_plan("p1"))
        assert store.delete("p1") is True
        assert store.delete("p1") is False
        assert store.get("p1") is None


class TestMakePlanStore:
    def test_backend_from_config(self, monkeypatch):
        monkeypatch.setattr(config, "PLAN_STORE_BACKEND", "in_memory")
        assert isinstance(make_plan_store(), InMemoryPlanStore)
        monkeypatch.setattr(config, "PLAN_STORE_BACKEND", "postgres")
        assert isinstance(make_plan_store(), PostgresPlanStore)


# ─────────────────────────────────────────────────────────────────────────────
# Row functions against a mocked psycopg2 connection
# ─────────────────────────────────────────────────────────────────────────────

_COLS = ["plan_id", "owner_id", "request", "draft", "refresh_metadata", "created_at"]


def _conn(rows=None, rowcount=0):
    cur = MagicMock()
    cur.description = [(c,) for c in _COLS]
    cur.fetchall.return_value = rows or []
    cur.fetchone.return_value = (rows or [None])[0]
    cur.rowcount = rowcount
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cur
    return conn, cur


def _row(plan: SavedPlan) -> tuple:
    data = plan.to_dict()
    # psycopg2 hands JSONB back as dicts and timestamptz as datetime
    return (data["plan_id"], data["owner_id"], data["request"], data["draft"],
            json.dumps(data["refresh"]), plan.created_at)


class TestRowFunctions:
    def test_upsert_serializes_jsonb(self):
        conn, cur = _conn()
        plan_repo.upsert_plan(conn, _plan("p1"))
        sql, params = cur.execute.call_args.args
        assert "ON CONFLICT (plan_id)" in sql
        assert params["plan_id"] == "p1"
        assert json.loads(params["request"])["query"] == "parks"
        assert json.loads(params["refresh"])["status"] == "FRESH"

    def test_get_plan(self):
        conn, _ = _conn([_row(_plan("p1"))])
        got = plan_repo.get_plan(conn, "p1")
        assert got.plan_id == "p1"
        assert got.request.num_days == 2
        assert got.created_at == T0

    def test_get_plan_missing(self):
        conn, cur = _conn()
        cur.fetchone.return_value = None
        assert plan_repo.get_plan(conn, "p1") is None

    def test_list_plans_by_owner(self):
        conn, cur = _conn([_row(_plan("p2", minutes=5)), _row(_plan("p1"))])
        plans = plan_repo.list_plans(conn, "u1")
        assert [p.plan_id for p in plans] == ["p2", "p1"]
        sql, params = cur.execute.call_args.args
        assert "WHERE owner_id = %s" in sql
        assert params == ("u1",)

    def test_delete_plan(self):
        conn, _ = _conn(rowcount=1)
        assert plan_repo.delete_plan(conn, "p1") is True
        conn, _ = _conn(rowcount=0)
        assert plan_repo.delete_plan(conn, "p1") is False
