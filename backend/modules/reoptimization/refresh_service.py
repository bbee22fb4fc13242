"""
modules/reoptimization/refresh_service.py
-------------------------------------------
Change detection for saved plans: decides when a plan must be rebuilt
because weather or road traffic moved since its last snapshot.

Weather comparison
    |Δtemperature|, condition changed, precipitation flip across
    {rainy, drizzle, thunderstorm, snow}, extreme weather present
    (thunderstorm, tornado, squall, hurricane).
Traffic comparison (resolved readings only)
    mean congestion delta, mean ordinal level (1–5, mapped back to a label),
    new incidents vs. the snapshot, critical incidents (magnitude ≥ 4).

Refresh when any of:
    extreme weather · |Δtemp| > 5 °C · precipitation flip · critical incident
    · Δcongestion > 30 · level changed and now strictly above the ceiling

Severity score → LOW (<20) / MEDIUM (<40) / HIGH (<60) / CRITICAL
    extreme +40 · precipitation +20 · Δtemp > 5 → +10, > 10 → +20
    · critical incident +30 · Δcongestion > 30 → +10, > 60 → +20
    · current level SEVERE +20, HIGH +10

Confidence = 50 + 25 per available signal − 10 per marginal delta, in [0, 100].
A low-confidence (fallback) weather reading is not an available signal.

Refreshes are capped at REFRESH_MAX_PER_DAY per rolling 24 h window.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

import config
from modules.observability.logger import StructuredLogger
from modules.planning.traffic_filter import TrafficAwareFilter
from modules.tool_usage.traffic_tool import TrafficLevel, TrafficReading
from modules.tool_usage.weather_tool import EXTREME_CONDITIONS, PRECIPITATION_CONDITIONS, WeatherReading
from schemas.refresh import (
    RefreshMetadata,
    RefreshReason,
    RefreshStatus,
    SavedPlan,
    TrafficSample,
    TrafficSnapshot,
    WeatherSnapshot,
)

logger = logging.getLogger(__name__)

_events = StructuredLogger()

_COORD_DEDUPE_DEG: float = 0.001
_MARGINAL_TEMP_C: float = 2.0
_MARGINAL_CONGESTION: float = 10.0
_ROLLING_WINDOW: timedelta = timedelta(hours=24)


class Severity(str, Enum):
    LOW      = "LOW"
    MEDIUM   = "MEDIUM"
    HIGH     = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return list(Severity).index(self)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def dedupe_coordinates(coords: list[tuple[float, float]]) -> list[tuple[float, float]]:
    """Drop coordinates within 0.001° of one already kept (input order preserved)."""
    kept: list[tuple[float, float]] = []
    for lat, lon in coords:
        if not any(abs(lat - k[0]) < _COORD_DEDUPE_DEG and abs(lon - k[1]) < _COORD_DEDUPE_DEG for k in kept):
            kept.append((lat, lon))
    return kept


# ─────────────────────────────────────────────────────────────────────────────
# Result dataclasses
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class WeatherChange:
    temperature_delta: float            # absolute, °C
    previous_condition: str
    current_condition: str
    condition_changed: bool
    precipitation_changed: bool
    extreme_weather: bool

    def to_dict(self) -> dict:
        return {
            "temperature_delta":     round(self.temperature_delta, 2),
            "previous_condition":    self.previous_condition,
            "current_condition":     self.current_condition,
            "condition_changed":     self.condition_changed,
            "precipitation_changed": self.precipitation_changed,
            "extreme_weather":       self.extreme_weather,
        }


@dataclass
class TrafficChange:
    congestion_delta: float             # signed, current − previous
    previous_level: str                 # "UNKNOWN" without a prior snapshot
    current_level: str
    level_changed: bool
    new_incidents: int
    critical_incidents: int

    def to_dict(self) -> dict:
        return {
            "congestion_delta":   round(self.congestion_delta, 2),
            "previous_level":     self.previous_level,
            "current_level":      self.current_level,
            "level_changed":      self.level_changed,
            "new_incidents":      self.new_incidents,
            "critical_incidents": self.critical_incidents,
        }


@dataclass
class ChangeDetectionResult:
    needs_refresh: bool
    reasons: list[RefreshReason] = field(default_factory=list)
    severity: Severity = Severity.LOW
    confidence: int = 0
    weather_change: Optional[WeatherChange] = None
    traffic_change: Optional[TrafficChange] = None
    weather_snapshot: Optional[WeatherSnapshot] = None
    traffic_snapshot: Optional[TrafficSnapshot] = None

    def to_dict(self) -> dict:
        return {
            "needs_refresh":    self.needs_refresh,
            "reasons":          [r.value for r in self.reasons],
            "severity":         self.severity.value,
            "confidence":       self.confidence,
            "weather_change":   self.weather_change.to_dict() if self.weather_change else None,
            "traffic_change":   self.traffic_change.to_dict() if self.traffic_change else None,
            "weather_snapshot": self.weather_snapshot.to_dict() if self.weather_snapshot else None,
            "traffic_snapshot": self.traffic_snapshot.to_dict() if self.traffic_snapshot else None,
        }


# ─────────────────────────────────────────────────────────────────────────────
# RefreshService
# ─────────────────────────────────────────────────────────────────────────────

class RefreshService:
    """Long-lived; holds only thresholds and the traffic lookup."""

    def __init__(
        self,
        traffic_filter: Optional[TrafficAwareFilter] = None,
        temperature_threshold: float = config.REFRESH_TEMP_THRESHOLD_C,
        congestion_threshold: float = config.REFRESH_CONGESTION_THRESHOLD,
        traffic_ceiling: str = config.REFRESH_TRAFFIC_CEILING,
        max_refreshes_per_day: int = config.REFRESH_MAX_PER_DAY,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._traffic = traffic_filter or TrafficAwareFilter()
        self._temp_threshold = temperature_threshold
        self._congestion_threshold = congestion_threshold
        self._ceiling = TrafficLevel[traffic_ceiling.upper()]
        self._max_per_day = max_refreshes_per_day
        self._clock = clock

    # ── comparisons ───────────────────────────────────────────────────────

    def compare_weather(
        self,
        previous: Optional[WeatherSnapshot],
        current: WeatherReading,
    ) -> WeatherChange:
        if previous is None:
            return WeatherChange(
                temperature_delta     = 0.0,
                previous_condition    = "unknown",
                current_condition     = current.condition,
                condition_changed     = True,
                precipitation_changed = False,
                extreme_weather       = current.is_extreme,
            )
        was_wet = previous.condition in PRECIPITATION_CONDITIONS
        return WeatherChange(
            temperature_delta     = abs(current.temperature - previous.temperature),
            previous_condition    = previous.condition,
            current_condition     = current.condition,
            condition_changed     = previous.condition != current.condition,
            precipitation_changed = was_wet != current.has_precipitation,
            extreme_weather       = current.condition in EXTREME_CONDITIONS,
        )

    def compare_traffic(
        self,
        previous: Optional[TrafficSnapshot],
        readings: list[TrafficReading],
    ) -> Optional[TrafficChange]:
        """None when no reading resolved (traffic signal unavailable)."""
        current = self.create_traffic_snapshot(readings)
        if not current.samples:
            return None
        critical = sum(r.critical_incidents for r in readings if r.resolved)
        if previous is None:
            return TrafficChange(
                congestion_delta   = 0.0,
                previous_level     = "UNKNOWN",
                current_level      = current.average_level,
                level_changed      = False,
                new_incidents      = current.incident_count,
                critical_incidents = critical,
            )
        return TrafficChange(
            congestion_delta   = current.average_congestion - previous.average_congestion,
            previous_level     = previous.average_level,
            current_level      = current.average_level,
            level_changed      = current.average_level != previous.average_level,
            new_incidents      = max(0, current.incident_count - previous.incident_count),
            critical_incidents = critical,
        )

    @staticmethod
    def create_traffic_snapshot(readings: list[TrafficReading]) -> TrafficSnapshot:
        resolved = [r for r in readings if r.resolved]
        if not resolved:
            return TrafficSnapshot(average_congestion=0.0, average_level=TrafficLevel.VERY_LOW.name, incident_count=0)
        mean_ordinal = sum(r.level.value for r in resolved) / len(resolved)
        return TrafficSnapshot(
            average_congestion = sum(r.congestion_score for r in resolved) / len(resolved),
            average_level      = TrafficLevel.from_ordinal(mean_ordinal).name,
            incident_count     = sum(len(r.incidents) for r in resolved),
            samples            = [
                TrafficSample(
                    lat                = r.lat,
                    lon                = r.lon,
                    level              = r.level.name,
                    congestion_score   = r.congestion_score,
                    incident_count     = len(r.incidents),
                    critical_incidents = r.critical_incidents,
                )
                for r in resolved
            ],
        )

    # ── decision ──────────────────────────────────────────────────────────

    def evaluate_refresh(
        self,
        plan: SavedPlan,
        current_weather: WeatherReading,
        coordinates: list[tuple[float, float]],
    ) -> ChangeDetectionResult:
        meta = plan.refresh
        readings = self._traffic.lookup(dedupe_coordinates(coordinates)) if coordinates else []
        result = self.evaluate_signals(meta.weather_snapshot, meta.traffic_snapshot, current_weather, readings)

        logger.info("Refresh evaluation for plan %s: needs_refresh=%s severity=%s confidence=%d",
                    plan.plan_id, result.needs_refresh, result.severity.value, result.confidence)
        _events.log("refresh", "REFRESH_EVALUATED", {"plan_id": plan.plan_id, **result.to_dict()})
        return result

    def evaluate_signals(
        self,
        previous_weather: Optional[WeatherSnapshot],
        previous_traffic: Optional[TrafficSnapshot],
        current_weather: WeatherReading,
        readings: list[TrafficReading],
    ) -> ChangeDetectionResult:
        """Pure core of evaluate_refresh(): snapshots + fresh readings → decision."""
        weather = None if current_weather.low_confidence else self.compare_weather(previous_weather, current_weather)
        traffic = self.compare_traffic(previous_traffic, readings)
        return ChangeDetectionResult(
            needs_refresh    = self._should_refresh(weather, traffic),
            reasons          = self._reasons(weather, traffic),
            severity         = self._severity(weather, traffic),
            confidence       = self._confidence(weather, traffic),
            weather_change   = weather,
            traffic_change   = traffic,
            weather_snapshot = current_weather.to_snapshot(),
            traffic_snapshot = self.create_traffic_snapshot(readings) if traffic else previous_traffic,
        )

    def _weather_significant(self, w: Optional[WeatherChange]) -> bool:
        return bool(w) and (
            w.extreme_weather or w.precipitation_changed or w.temperature_delta > self._temp_threshold
        )

    def _level_above_ceiling(self, t: TrafficChange) -> bool:
        return t.level_changed and TrafficLevel[t.current_level].value > self._ceiling.value

    def _should_refresh(self, w: Optional[WeatherChange], t: Optional[TrafficChange]) -> bool:
        if self._weather_significant(w):
            return True
        if t is None:
            return False
        return (
            t.critical_incidents > 0
            or t.congestion_delta > self._congestion_threshold
            or self._level_above_ceiling(t)
        )

    def _reasons(self, w: Optional[WeatherChange], t: Optional[TrafficChange]) -> list[RefreshReason]:
        reasons: list[RefreshReason] = []
        if self._weather_significant(w):
            reasons.append(RefreshReason.WEATHER_SIGNIFICANT_CHANGE)
        if t is not None:
            if t.critical_incidents > 0:
                reasons.append(RefreshReason.INCIDENT_DETECTED)
            if t.congestion_delta > self._congestion_threshold or self._level_above_ceiling(t):
                reasons.append(RefreshReason.TRAFFIC_DEGRADATION)
        if RefreshReason.WEATHER_SIGNIFICANT_CHANGE in reasons and len(reasons) > 1:
            reasons.append(RefreshReason.WEATHER_AND_TRAFFIC)
        return reasons

    def _severity(self, w: Optional[WeatherChange], t: Optional[TrafficChange]) -> Severity:
        score = 0
        if w is not None:
            if w.extreme_weather:
                score += 40
            if w.precipitation_changed:
                score += 20
            if w.temperature_delta > self._temp_threshold * 2:
                score += 20
            elif w.temperature_delta > self._temp_threshold:
                score += 10
        if t is not None:
            if t.critical_incidents > 0:
                score += 30
            if t.congestion_delta > self._congestion_threshold * 2:
                score += 20
            elif t.congestion_delta > self._congestion_threshold:
                score += 10
            if t.current_level == TrafficLevel.SEVERE.name:
                score += 20
            elif t.current_level == TrafficLevel.HIGH.name:
                score += 10

        if score >= 60:
            return Severity.CRITICAL
        if score >= 40:
            return Severity.HIGH
        if score >= 20:
            return Severity.MEDIUM
        return Severity.LOW

    @staticmethod
    def _confidence(w: Optional[WeatherChange], t: Optional[TrafficChange]) -> int:
        confidence = 50
        if w is not None:
            confidence += 25
            if w.temperature_delta < _MARGINAL_TEMP_C:
                confidence -= 10
        if t is not None:
            confidence += 25
            if abs(t.congestion_delta) < _MARGINAL_CONGESTION:
                confidence -= 10
        return max(0, min(100, confidence))

    # ── presentation ──────────────────────────────────────────────────────

    def get_change_summary(self, result: ChangeDetectionResult) -> str:
        if not result.needs_refresh:
            return "No significant changes detected. Your itinerary is still optimal."
        parts: list[str] = []
        w, t = result.weather_change, result.traffic_change
        if w is not None:
            if w.extreme_weather:
                parts.append(f"Extreme weather alert: {w.current_condition}")
            elif w.condition_changed:
                parts.append(f"Weather changed to {w.current_condition}")
            if w.temperature_delta > self._temp_threshold:
                parts.append(f"Temperature changed by {w.temperature_delta:.1f}°C")
        if t is not None:
            if t.critical_incidents > 0:
                plural = "s" if t.critical_incidents > 1 else ""
                parts.append(f"{t.critical_incidents} critical traffic incident{plural} detected")
            if t.congestion_delta > self._congestion_threshold:
                parts.append(f"Traffic congestion increased by {t.congestion_delta:.0f}%")
            if t.current_level in (TrafficLevel.HIGH.name, TrafficLevel.SEVERE.name):
                parts.append(f"Current traffic level: {t.current_level}")
        return " • ".join(parts)

    # ── bookkeeping ───────────────────────────────────────────────────────

    def refreshes_in_window(self, meta: RefreshMetadata, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        return sum(1 for ts in meta.refresh_history if now - ts < _ROLLING_WINDOW)

    def can_refresh(self, meta: RefreshMetadata, now: Optional[datetime] = None) -> bool:
        return self.refreshes_in_window(meta, now) < self._max_per_day

    def record_evaluation(
        self,
        meta: RefreshMetadata,
        result: ChangeDetectionResult,
        now: Optional[datetime] = None,
    ) -> None:
        meta.last_evaluated_at = now or self._clock()
        meta.reasons = list(result.reasons)
        meta.status = RefreshStatus.STALE_PENDING if result.needs_refresh else RefreshStatus.FRESH

    def record_refresh(
        self,
        meta: RefreshMetadata,
        weather_snapshot: Optional[WeatherSnapshot],
        traffic_snapshot: Optional[TrafficSnapshot],
        now: Optional[datetime] = None,
    ) -> None:
        """Stamp a completed rebuild; history older than 24 h is pruned."""
        now = now or self._clock()
        meta.last_refreshed_at = now
        meta.refresh_count += 1
        meta.refresh_history = [ts for ts in meta.refresh_history if now - ts < _ROLLING_WINDOW] + [now]
        meta.status = RefreshStatus.REFRESH_COMPLETED
        if weather_snapshot is not None:
            meta.weather_snapshot = weather_snapshot
        if traffic_snapshot is not None:
            meta.traffic_snapshot = traffic_snapshot
