"""
schemas/refresh.py
------------------
Snapshots and refresh bookkeeping attached to a persisted plan.

WeatherSnapshot / TrafficSnapshot: timestamped captures compared on every
refresh evaluation.  RefreshMetadata is mutated only by the RefreshService
and the orchestrator that executes a rebuild.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from schemas.itinerary import ItineraryDraft


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class RefreshReason(str, Enum):
    WEATHER_SIGNIFICANT_CHANGE = "WEATHER_SIGNIFICANT_CHANGE"
    TRAFFIC_DEGRADATION        = "TRAFFIC_DEGRADATION"
    WEATHER_AND_TRAFFIC        = "WEATHER_AND_TRAFFIC"
    INCIDENT_DETECTED          = "INCIDENT_DETECTED"
    MANUAL_REFRESH             = "MANUAL_REFRESH"
    SCHEDULED_REFRESH          = "SCHEDULED_REFRESH"


class RefreshStatus(str, Enum):
    FRESH             = "FRESH"
    STALE_PENDING     = "STALE_PENDING"
    REFRESHING        = "REFRESHING"
    REFRESH_FAILED    = "REFRESH_FAILED"
    REFRESH_COMPLETED = "REFRESH_COMPLETED"


@dataclass
class WeatherSnapshot:
    condition: str                 # internal condition string, e.g. "clear"
    temperature: float             # °C
    description: str = ""
    timestamp: datetime = field(default_factory=_now)
    low_confidence: bool = False   # True when built from a fallback reading

    def to_dict(self) -> dict[str, Any]:
        return {
            "condition":      self.condition,
            "temperature":    self.temperature,
            "description":    self.description,
            "timestamp":      self.timestamp.isoformat(),
            "low_confidence": self.low_confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WeatherSnapshot":
        return cls(
            condition      = data["condition"],
            temperature    = float(data["temperature"]),
            description    = data.get("description", ""),
            timestamp      = _parse_dt(data.get("timestamp")) or _now(),
            low_confidence = bool(data.get("low_confidence", False)),
        )


@dataclass
class TrafficSample:
    """One location's reading inside a TrafficSnapshot."""
    lat: float
    lon: float
    level: str                     # TrafficLevel name
    congestion_score: float
    incident_count: int = 0
    critical_incidents: int = 0    # incidents with magnitude ≥ 4

    def to_dict(self) -> dict[str, Any]:
        return {
            "lat": self.lat, "lon": self.lon, "level": self.level,
            "congestion_score":   self.congestion_score,
            "incident_count":     self.incident_count,
            "critical_incidents": self.critical_incidents,
        }


@dataclass
class TrafficSnapshot:
    average_congestion: float
    average_level: str             # ordinal mean mapped back to a TrafficLevel name
    incident_count: int
    samples: list[TrafficSample] = field(default_factory=list)
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "average_congestion": round(self.average_congestion, 2),
            "average_level":      self.average_level,
            "incident_count":     self.incident_count,
            "samples":            [s.to_dict() for s in self.samples],
            "timestamp":          self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrafficSnapshot":
        return cls(
            average_congestion = float(data["average_congestion"]),
            average_level      = data["average_level"],
            incident_count     = int(data.get("incident_count", 0)),
            samples            = [TrafficSample(**s) for s in data.get("samples", [])],
            timestamp          = _parse_dt(data.get("timestamp")) or _now(),
        )


@dataclass
class RefreshMetadata:
    last_evaluated_at: Optional[datetime] = None
    last_refreshed_at: Optional[datetime] = None
    reasons: list[RefreshReason] = field(default_factory=list)
    status: RefreshStatus = RefreshStatus.FRESH
    weather_snapshot: Optional[WeatherSnapshot] = None
    traffic_snapshot: Optional[TrafficSnapshot] = None
    refresh_count: int = 0
    refresh_history: list[datetime] = field(default_factory=list)   # rebuild timestamps
    auto_refresh: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_evaluated_at": self.last_evaluated_at.isoformat() if self.last_evaluated_at else None,
            "last_refreshed_at": self.last_refreshed_at.isoformat() if self.last_refreshed_at else None,
            "reasons":           [r.value for r in self.reasons],
            "status":            self.status.value,
            "weather_snapshot":  self.weather_snapshot.to_dict() if self.weather_snapshot else None,
            "traffic_snapshot":  self.traffic_snapshot.to_dict() if self.traffic_snapshot else None,
            "refresh_count":     self.refresh_count,
            "refresh_history":   [t.isoformat() for t in self.refresh_history],
            "auto_refresh":      self.auto_refresh,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RefreshMetadata":
        ws, ts = data.get("weather_snapshot"), data.get("traffic_snapshot")
        return cls(
            last_evaluated_at = _parse_dt(data.get("last_evaluated_at")),
            last_refreshed_at = _parse_dt(data.get("last_refreshed_at")),
            reasons           = [RefreshReason(r) for r in data.get("reasons", [])],
            status            = RefreshStatus(data.get("status", "FRESH")),
            weather_snapshot  = WeatherSnapshot.from_dict(ws) if ws else None,
            traffic_snapshot  = TrafficSnapshot.from_dict(ts) if ts else None,
            refresh_count     = int(data.get("refresh_count", 0)),
            refresh_history   = [_parse_dt(t) for t in data.get("refresh_history", [])],
            auto_refresh      = bool(data.get("auto_refresh", True)),
        )


@dataclass
class PlanRequest:
    """The inputs a plan was built from; replayed on every rebuild."""
    query: str
    interests: list[str] = field(default_factory=list)
    num_days: int = 1
    budget: Optional[float] = None
    group_size: int = 1
    lat: Optional[float] = None
    lon: Optional[float] = None
    time_of_day: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "query":       self.query,
            "interests":   list(self.interests),
            "num_days":    self.num_days,
            "budget":      self.budget,
            "group_size":  self.group_size,
            "lat":         self.lat,
            "lon":         self.lon,
            "time_of_day": self.time_of_day,
            "start_date":  self.start_date.isoformat() if self.start_date else None,
            "end_date":    self.end_date.isoformat() if self.end_date else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlanRequest":
        sd, ed = data.get("start_date"), data.get("end_date")
        return cls(
            query       = data.get("query", ""),
            interests   = list(data.get("interests", [])),
            num_days    = int(data.get("num_days", 1)),
            budget      = data.get("budget"),
            group_size  = int(data.get("group_size", 1)),
            lat         = data.get("lat"),
            lon         = data.get("lon"),
            time_of_day = data.get("time_of_day"),
            start_date  = date.fromisoformat(sd) if isinstance(sd, str) else sd,
            end_date    = date.fromisoformat(ed) if isinstance(ed, str) else ed,
        )


@dataclass
class SavedPlan:
    plan_id: str
    owner_id: str
    request: PlanRequest
    draft: ItineraryDraft
    refresh: RefreshMetadata = field(default_factory=RefreshMetadata)
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id":    self.plan_id,
            "owner_id":   self.owner_id,
            "request":    self.request.to_dict(),
            "draft":      self.draft.to_dict(),
            "refresh":    self.refresh.to_dict(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SavedPlan":
        return cls(
            plan_id    = str(data["plan_id"]),
            owner_id   = str(data["owner_id"]),
            request    = PlanRequest.from_dict(data.get("request", {})),
            draft      = ItineraryDraft.from_dict(data.get("draft", {})),
            refresh    = RefreshMetadata.from_dict(data.get("refresh", {})),
            created_at = _parse_dt(data.get("created_at")) or _now(),
        )
