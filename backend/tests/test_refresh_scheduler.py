"""Batch refresh evaluation over saved plans."""

from datetime import date, datetime, timedelta, timezone

import pytest

from modules.planning.traffic_filter import TrafficAwareFilter
from modules.reoptimization.refresh_scheduler import RefreshScheduler
from modules.reoptimization.refresh_service import RefreshService
from modules.tool_usage.weather_tool import WeatherReading, WeatherTool
from schemas.itinerary import ItineraryDraft
from schemas.refresh import PlanRequest, RefreshStatus, SavedPlan, WeatherSnapshot

from helpers import FakeTrafficTool

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _plan(plan_id, **request):
    plan = SavedPlan(plan_id=plan_id, owner_id="u", request=PlanRequest(query="parks", **request),
                     draft=ItineraryDraft())
    plan.refresh.weather_snapshot = WeatherSnapshot(condition="clear", temperature=22.0)
    return plan


@pytest.fixture
def service(no_sleep):
    return RefreshService(traffic_filter=TrafficAwareFilter(FakeTrafficTool(), sleep=no_sleep), clock=lambda: NOW)


class TestEligibility:
    @pytest.fixture
    def scheduler(self, service, no_sleep):
        return RefreshScheduler(service, WeatherTool(use_stub=True), clock=lambda: NOW, sleep=no_sleep)

    def test_fresh_plan_is_eligible(self, scheduler):
        assert scheduler.is_eligible(_plan("p"), NOW)

    def test_auto_refresh_off(self, scheduler):
        plan = _plan("p")
        plan.refresh.auto_refresh = False
        assert not scheduler.is_eligible(plan, NOW)

    def test_recently_evaluated(self, scheduler):
        plan = _plan("p")
        plan.refresh.last_evaluated_at = NOW - timedelta(hours=1)
        assert not scheduler.is_eligible(plan, NOW)
        plan.refresh.last_evaluated_at = NOW - timedelta(hours=7)
        assert scheduler.is_eligible(plan, NOW)

    def test_refresh_cap_reached(self, scheduler):
        plan = _plan("p")
        plan.refresh.refresh_history = [NOW - timedelta(minutes=m) for m in (10, 20, 30, 40)]
        assert not scheduler.is_eligible(plan, NOW)

    def test_trip_already_over(self, scheduler):
        assert not scheduler.is_eligible(_plan("p", end_date=date(2026, 10, 18)), NOW)
        assert scheduler.is_eligible(_plan("q", end_date=date(2026, 10, 19)), NOW)


class TestEvaluatePlans:
    def test_rebuild_hook_runs_for_changed_plans(self, service, no_sleep):
        rebuilt = []
        scheduler = RefreshScheduler(
            service,
            WeatherTool(use_stub=True, stub_condition="thunderstorm", stub_temperature=18.0),
            on_refresh=lambda plan, result: rebuilt.append((plan.plan_id, result.severity.value)),
            clock=lambda: NOW,
            sleep=no_sleep,
        )
        stats = scheduler.evaluate_plans([_plan("a"), _plan("b")])
        assert stats.evaluated == 2
        assert stats.needs_refresh == 2
        assert stats.refreshes_triggered == 2
        assert sorted(rebuilt) == [("a", "CRITICAL"), ("b", "CRITICAL")]

    def test_unchanged_plans_are_marked_fresh(self, service, no_sleep):
        plan = _plan("a")
        scheduler = RefreshScheduler(service, WeatherTool(use_stub=True), clock=lambda: NOW, sleep=no_sleep)
        stats = scheduler.evaluate_plans([plan])
        assert stats.needs_refresh == 0
        assert plan.refresh.status == RefreshStatus.FRESH
        assert plan.refresh.last_evaluated_at == NOW
        assert stats.results[0].summary.startswith("No significant changes")

    def test_batches_sleep_between(self, service):
        sleeps = []
        scheduler = RefreshScheduler(service, WeatherTool(use_stub=True), batch_size=2, batch_delay_s=0.5,
                                     clock=lambda: NOW, sleep=sleeps.append)
        stats = scheduler.evaluate_plans([_plan(f"p{i}") for i in range(5)])
        assert stats.evaluated == 5
        assert sleeps == [0.5, 0.5]

    def test_ineligible_plans_are_skipped(self, service, no_sleep):
        off = _plan("off")
        off.refresh.auto_refresh = False
        scheduler = RefreshScheduler(service, WeatherTool(use_stub=True), clock=lambda: NOW, sleep=no_sleep)
        stats = scheduler.evaluate_plans([off, _plan("on")])
        assert (stats.total, stats.skipped, stats.evaluated) == (2, 1, 1)
        assert off.refresh.last_evaluated_at is None

    def test_one_failure_does_not_abort_the_batch(self, service, no_sleep):
        class FlakyWeather:
            def fetch_or_fallback(self, lat, lon, last_known=None):
                if last_known is None:
                    raise RuntimeError("weather exploded")
                return WeatherReading("clear", 22.0)

        broken = _plan("broken")
        broken.refresh.weather_snapshot = None
        scheduler = RefreshScheduler(service, FlakyWeather(), clock=lambda: NOW, sleep=no_sleep)
        stats = scheduler.evaluate_plans([broken, _plan("ok")])
        assert stats.errors == 1
        assert stats.evaluated == 1
        assert broken.refresh.status == RefreshStatus.REFRESH_FAILED
        assert [r.plan_id for r in stats.results] == ["ok"]
