"""
modules/reoptimization/refresh_scheduler.py
---------------------------------------------
Batch evaluation of saved plans (cron / manual trigger).

  1. Filter eligible plans: auto-refresh on, not evaluated within
     REFRESH_EVAL_INTERVAL_H, under the rolling-24 h refresh cap, trip not
     already over.
  2. Evaluate in batches of REFRESH_BATCH_SIZE (concurrently inside a
     batch), sleeping REFRESH_BATCH_DELAY_S between batches.
  3. For each plan: current weather (with fallback) at the plan location,
     traffic at its activity coordinates (city centre when it has none),
     RefreshService.evaluate_refresh(), then the optional rebuild hook.

One plan failing is recorded in the stats and never aborts its batch.
"""

from __future__ import annotations
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import config
from modules.observability.logger import StructuredLogger
from modules.reoptimization.refresh_service import ChangeDetectionResult, RefreshService
from modules.tool_usage.weather_tool import WeatherTool
from schemas.refresh import RefreshStatus, SavedPlan

logger = logging.getLogger(__name__)

_events = StructuredLogger()

RebuildHook = Callable[[SavedPlan, ChangeDetectionResult], None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ScheduledEvaluation:
    plan_id: str
    needs_refresh: bool
    severity: str
    reasons: list[str]
    confidence: int
    summary: str
    refreshed: bool
    evaluated_at: datetime

    def to_dict(self) -> dict:
        return {
            "plan_id":       self.plan_id,
            "needs_refresh": self.needs_refresh,
            "severity":      self.severity,
            "reasons":       list(self.reasons),
            "confidence":    self.confidence,
            "summary":       self.summary,
            "refreshed":     self.refreshed,
            "evaluated_at":  self.evaluated_at.isoformat(),
        }


@dataclass
class SchedulerStats:
    total: int = 0
    evaluated: int = 0
    needs_refresh: int = 0
    refreshes_triggered: int = 0
    skipped: int = 0
    errors: int = 0
    duration_s: float = 0.0
    results: list[ScheduledEvaluation] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total":               self.total,
            "evaluated":           self.evaluated,
            "needs_refresh":       self.needs_refresh,
            "refreshes_triggered": self.refreshes_triggered,
            "skipped":             self.skipped,
            "errors":              self.errors,
            "duration_s":          round(self.duration_s, 3),
            "results":             [r.to_dict() for r in self.results],
        }


class RefreshScheduler:
    def __init__(
        self,
        refresh_service: RefreshService,
        weather_tool: Optional[WeatherTool] = None,
        on_refresh: Optional[RebuildHook] = None,
        batch_size: int = config.REFRESH_BATCH_SIZE,
        batch_delay_s: float = config.REFRESH_BATCH_DELAY_S,
        eval_interval_h: float = config.REFRESH_EVAL_INTERVAL_H,
        clock: Callable[[], datetime] = _now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._service = refresh_service
        self._weather = weather_tool or WeatherTool()
        self._on_refresh = on_refresh
        self._batch_size = max(1, batch_size)
        self._batch_delay_s = batch_delay_s
        self._interval = timedelta(hours=eval_interval_h)
        self._clock = clock
        self._sleep = sleep

    def is_eligible(self, plan: SavedPlan, now: datetime) -> bool:
        meta = plan.refresh
        if not meta.auto_refresh:
            return False
        if meta.last_evaluated_at and now - meta.last_evaluated_at < self._interval:
            return False
        if not self._service.can_refresh(meta, now):
            return False
        if plan.request.end_date and plan.request.end_date < now.date():
            return False
        return True

    def evaluate_plans(self, plans: list[SavedPlan]) -> SchedulerStats:
        started = time.monotonic()
        now = self._clock()
        stats = SchedulerStats(total=len(plans))

        eligible = [p for p in plans if self.is_eligible(p, now)]
        stats.skipped = len(plans) - len(eligible)
        logger.info("Refresh run: %d plans, %d eligible", len(plans), len(eligible))

        for start in range(0, len(eligible), self._batch_size):
            if start:
                self._sleep(self._batch_delay_s)
            batch = eligible[start:start + self._batch_size]
            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                outcomes = list(pool.map(self._evaluate_safely, batch))
            for outcome in outcomes:
                if outcome is None:
                    stats.errors += 1
                    continue
                stats.evaluated += 1
                stats.results.append(outcome)
                stats.needs_refresh += int(outcome.needs_refresh)
                stats.refreshes_triggered += int(outcome.refreshed)

        stats.duration_s = time.monotonic() - started
        _events.log("refresh", "REFRESH_RUN", {k: v for k, v in stats.to_dict().items() if k != "results"})
        return stats

    # ── one plan ──────────────────────────────────────────────────────────

    def _evaluate_safely(self, plan: SavedPlan) -> Optional[ScheduledEvaluation]:
        try:
            return self.evaluate_plan(plan)
        except Exception:
            logger.exception("Refresh evaluation failed for plan %s", plan.plan_id)
            plan.refresh.status = RefreshStatus.REFRESH_FAILED
            return None

    def evaluate_plan(self, plan: SavedPlan) -> ScheduledEvaluation:
        now = self._clock()
        coords = plan.draft.coordinates() or [(config.CITY_CENTER_LAT, config.CITY_CENTER_LON)]
        lat = plan.request.lat if plan.request.lat is not None else coords[0][0]
        lon = plan.request.lon if plan.request.lon is not None else coords[0][1]

        weather = self._weather.fetch_or_fallback(lat, lon, plan.refresh.weather_snapshot)
        result = self._service.evaluate_refresh(plan, weather, coords)
        self._service.record_evaluation(plan.refresh, result, now)

        refreshed = False
        if result.needs_refresh and self._on_refresh is not None and self._service.can_refresh(plan.refresh, now):
            self._on_refresh(plan, result)
            refreshed = True

        return ScheduledEvaluation(
            plan_id       = plan.plan_id,
            needs_refresh = result.needs_refresh,
            severity      = result.severity.value,
            reasons       = [r.value for r in result.reasons],
            confidence    = result.confidence,
            summary       = self._service.get_change_summary(result),
            refreshed     = refreshed,
            evaluated_at  = now,
        )
