"""
db/repositories/plan_repo.py
------------------------------
Persistence for saved plans (`saved_plans` table, db/schema.sql).

Row functions accept a psycopg2 connection object; commit/rollback is
managed by the caller via db.connection.get_conn().

Plan stores wrap them behind one interface used by the orchestrator, the
refresh scheduler and the API:
    InMemoryPlanStore:   process-local dict (default; tests, demo API)
    PostgresPlanStore:   one get_conn() transaction per call
make_plan_store() picks one from config.PLAN_STORE_BACKEND.
"""

from __future__ import annotations

import json
import threading
from typing import Any, Optional, Protocol

import config
from schemas.refresh import SavedPlan


# ── saved_plans table ──────────────────────────────────────────────────────────

def upsert_plan(conn, plan: SavedPlan) -> None:
    """Insert or replace one plan row (request/draft/refresh as JSONB)."""
    data = plan.to_dict()
    sql = """
        INSERT INTO saved_plans (
            plan_id, owner_id, request, draft, refresh_metadata, created_at
        ) VALUES (
            %(plan_id)s, %(owner_id)s,
            %(request)s::jsonb, %(draft)s::jsonb, %(refresh)s::jsonb,
            %(created_at)s
        )
        ON CONFLICT (plan_id) DO UPDATE SET
            request          = EXCLUDED.request,
            draft            = EXCLUDED.draft,
            refresh_metadata = EXCLUDED.refresh_metadata,
            updated_at       = now()
    """
    with conn.cursor() as cur:
        cur.execute(sql, {
            "plan_id":    data["plan_id"],
            "owner_id":   data["owner_id"],
            "request":    json.dumps(data["request"]),
            "draft":      json.dumps(data["draft"]),
            "refresh":    json.dumps(data["refresh"]),
            "created_at": data["created_at"],
        })


def _row_to_plan(row: dict[str, Any]) -> SavedPlan:
    def _json(value: Any) -> Any:
        return json.loads(value) if isinstance(value, str) else value

    return SavedPlan.from_dict({
        "plan_id":    row["plan_id"],
        "owner_id":   row["owner_id"],
        "request":    _json(row["request"]),
        "draft":      _json(row["draft"]),
        "refresh":    _json(row["refresh_metadata"]),
        "created_at": row["created_at"],
    })


def get_plan(conn, plan_id: str) -> SavedPlan | None:
    """Return a single plan by id, or None if not found."""
    sql = "SELECT * FROM saved_plans WHERE plan_id = %s"
    with conn.cursor() as cur:
        cur.execute(sql, (plan_id,))
        row = cur.fetchone()
        if row is None:
            return None
        cols = [d[0] for d in cur.description]
        return _row_to_plan(dict(zip(cols, row)))


def list_plans(conn, owner_id: str | None = None) -> list[SavedPlan]:
    """All plans, optionally for one owner, newest first."""
    if owner_id:
        sql = "SELECT * FROM saved_plans WHERE owner_id = %s ORDER BY created_at DESC"
        params: tuple = (owner_id,)
    else:
        sql = "SELECT * FROM saved_plans ORDER BY created_at DESC"
        params = ()
    with conn.cursor() as cur:
        cur.execute(sql, params)
        cols = [d[0] for d in cur.description]
        return [_row_to_plan(dict(zip(cols, row))) for row in cur.fetchall()]


def delete_plan(conn, plan_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute("DELETE FROM saved_plans WHERE plan_id = %s", (plan_id,))
        return cur.rowcount > 0


# ── stores ─────────────────────────────────────────────────────────────────────

class PlanStore(Protocol):
    def save(self, plan: SavedPlan) -> None: ...
    def get(self, plan_id: str) -> Optional[SavedPlan]: ...
    def list(self, owner_id: Optional[str] = None) -> list[SavedPlan]: ...
    def delete(self, plan_id: str) -> bool: ...


class InMemoryPlanStore:
    """Stores serialized copies so callers never share mutable plan objects."""

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, plan: SavedPlan) -> None:
        with self._lock:
            self._rows[plan.plan_id] = plan.to_dict()

    def get(self, plan_id: str) -> Optional[SavedPlan]:
        with self._lock:
            row = self._rows.get(plan_id)
        return SavedPlan.from_dict(row) if row else None

    def list(self, owner_id: Optional[str] = None) -> list[SavedPlan]:
        with self._lock:
            rows = list(self._rows.values())
        plans = [SavedPlan.from_dict(r) for r in rows if owner_id is None or r["owner_id"] == owner_id]
        return sorted(plans, key=lambda p: p.created_at, reverse=True)

    def delete(self, plan_id: str) -> bool:
        with self._lock:
            return self._rows.pop(plan_id, None) is not None


class PostgresPlanStore:
    def save(self, plan: SavedPlan) -> None:
        from db.connection import get_conn
        with get_conn() as conn:
            upsert_plan(conn, plan)

    def get(self, plan_id: str) -> Optional[SavedPlan]:
        from db.connection import get_conn
        with get_conn() as conn:
            return get_plan(conn, plan_id)

    def list(self, owner_id: Optional[str] = None) -> list[SavedPlan]:
        from db.connection import get_conn
        with get_conn() as conn:
            return list_plans(conn, owner_id)

    def delete(self, plan_id: str) -> bool:
        from db.connection import get_conn
        with get_conn() as conn:
            return delete_plan(conn, plan_id)


def make_plan_store() -> InMemoryPlanStore | PostgresPlanStore:
    if config.PLAN_STORE_BACKEND == "postgres":
        return PostgresPlanStore()
    return InMemoryPlanStore()
