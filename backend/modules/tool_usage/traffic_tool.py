"""
modules/tool_usage/traffic_tool.py
-------------------------------------
Live traffic reading per coordinate, backed by TomTom Traffic Flow +
Traffic Incidents APIs.

Endpoints:
    GET {TOMTOM_BASE_URL}/4/flowSegmentData/absolute/10/json
        ?point={lat},{lon}&key={key}
    GET {TOMTOM_BASE_URL}/5/incidentDetails
        ?bbox={minLon},{minLat},{maxLon},{maxLat}
        &fields={incidents{properties{iconCategory,magnitudeOfDelay,events{description}}}}
        &key={key}

Derived fields:
    congestion_score = (1 − currentSpeed / freeFlowSpeed) × 100     (30 with no flow)
                       + Σ min(magnitude × 10, 30) per incident, clamped [0, 100]
    level            = SEVERE if any incident magnitude ≥ 4,
                       else ≥80 HIGH, ≥50 MODERATE, ≥20 LOW, else VERY_LOW
    recommendation_score = 100 − congestion − Σ min(magnitude × 5, 20)
                           + level adjustment (SEVERE −30 … VERY_LOW +20)
    crowd_level      = congestion + level weight, bucketed at 20/45/70/85
    recommendation   = VISIT_NOW | VISIT_SOON | PLAN_LATER | AVOID_NOW

Any failure to resolve a reading raises TrafficUnknown; the caller
(TrafficAwareFilter) treats that as SEVERE.  Successful readings are cached
per coordinate for TRAFFIC_CACHE_TTL seconds.
"""

from __future__ import annotations
import hashlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import requests

import config
from db.cache import TTLCache, RedisCache, make_cache
from modules.errors import TrafficUnknown

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Ordinal labels
# ─────────────────────────────────────────────────────────────────────────────

class TrafficLevel(Enum):
    VERY_LOW = 1
    LOW      = 2
    MODERATE = 3
    HIGH     = 4
    SEVERE   = 5

    @classmethod
    def from_ordinal(cls, value: float) -> "TrafficLevel":
        """Map a (possibly averaged) ordinal 1–5 back to a label."""
        if value >= 4.5:
            return cls.SEVERE
        if value >= 3.5:
            return cls.HIGH
        if value >= 2.5:
            return cls.MODERATE
        if value >= 1.5:
            return cls.LOW
        return cls.VERY_LOW


class CrowdLevel(str, Enum):
    VERY_LOW  = "VERY_LOW"
    LOW       = "LOW"
    MODERATE  = "MODERATE"
    HIGH      = "HIGH"
    VERY_HIGH = "VERY_HIGH"


class TrafficRecommendation(str, Enum):
    VISIT_NOW  = "VISIT_NOW"
    VISIT_SOON = "VISIT_SOON"
    PLAN_LATER = "PLAN_LATER"
    AVOID_NOW  = "AVOID_NOW"


ADMISSIBLE_LEVELS: frozenset[TrafficLevel] = frozenset(
    {TrafficLevel.VERY_LOW, TrafficLevel.LOW, TrafficLevel.MODERATE}
)
CRITICAL_INCIDENT_MAGNITUDE: int = 4

_NO_FLOW_CONGESTION: float = 30.0
_LEVEL_SCORE_ADJUST: dict[TrafficLevel, float] = {
    TrafficLevel.SEVERE:   -30,
    TrafficLevel.HIGH:     -20,
    TrafficLevel.MODERATE: -10,
    TrafficLevel.LOW:      +10,
    TrafficLevel.VERY_LOW: +20,
}
_LEVEL_CROWD_WEIGHT: dict[TrafficLevel, float] = {
    TrafficLevel.VERY_LOW: 0,
    TrafficLevel.LOW:      0,
    TrafficLevel.MODERATE: 0,
    TrafficLevel.HIGH:     10,
    TrafficLevel.SEVERE:   20,
}


# ─────────────────────────────────────────────────────────────────────────────
# Result dataclasses
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class TrafficIncident:
    magnitude: int                # TomTom magnitudeOfDelay: 0 unknown … 4 road closed
    category: int = 0             # TomTom iconCategory
    description: str = ""

    @property
    def is_critical(self) -> bool:
        return self.magnitude >= CRITICAL_INCIDENT_MAGNITUDE


@dataclass
class TrafficReading:
    """One resolved (or fail-closed) reading for a coordinate."""
    lat: float
    lon: float
    level: TrafficLevel
    congestion_score: float                       # [0, 100]
    crowd_level: CrowdLevel
    recommendation: TrafficRecommendation
    recommendation_score: float = 0.0             # [0, 100], higher = better now
    incidents: list[TrafficIncident] = field(default_factory=list)
    current_speed: Optional[float] = None
    free_flow_speed: Optional[float] = None
    resolved: bool = True                         # False → fail-closed placeholder
    is_stub: bool = False
    error: str = ""

    @classmethod
    def unknown(cls, lat: float, lon: float, error: str = "") -> "TrafficReading":
        """Fail-closed reading: SEVERE / VERY_HIGH / AVOID_NOW."""
        return cls(
            lat=lat, lon=lon,
            level=TrafficLevel.SEVERE,
            congestion_score=100.0,
            crowd_level=CrowdLevel.VERY_HIGH,
            recommendation=TrafficRecommendation.AVOID_NOW,
            resolved=False,
            error=error,
        )

    @property
    def critical_incidents(self) -> int:
        return sum(1 for i in self.incidents if i.is_critical)

    def to_metadata(self) -> dict:
        return {
            "lat": self.lat, "lon": self.lon,
            "level":                self.level.name,
            "congestion_score":     round(self.congestion_score, 1),
            "crowd_level":          self.crowd_level.value,
            "recommendation":       self.recommendation.value,
            "recommendation_score": round(self.recommendation_score, 1),
            "incidents":            [{"magnitude": i.magnitude, "category": i.category,
                                      "description": i.description} for i in self.incidents],
            "current_speed":        self.current_speed,
            "free_flow_speed":      self.free_flow_speed,
            "resolved":             self.resolved,
            "is_stub":              self.is_stub,
        }

    @classmethod
    def from_metadata(cls, data: dict[str, Any]) -> "TrafficReading":
        return cls(
            lat                  = data["lat"],
            lon                  = data["lon"],
            level                = TrafficLevel[data["level"]],
            congestion_score     = float(data["congestion_score"]),
            crowd_level          = CrowdLevel(data["crowd_level"]),
            recommendation       = TrafficRecommendation(data["recommendation"]),
            recommendation_score = float(data.get("recommendation_score", 0.0)),
            incidents            = [TrafficIncident(**i) for i in data.get("incidents", [])],
            current_speed        = data.get("current_speed"),
            free_flow_speed      = data.get("free_flow_speed"),
            resolved             = bool(data.get("resolved", True)),
            is_stub              = bool(data.get("is_stub", False)),
        )


# ─────────────────────────────────────────────────────────────────────────────
# Scoring (pure)
# ─────────────────────────────────────────────────────────────────────────────

def compute_congestion(
    current_speed: Optional[float],
    free_flow_speed: Optional[float],
    incidents: list[TrafficIncident],
) -> float:
    if current_speed is not None and free_flow_speed:
        score = (1 - current_speed / free_flow_speed) * 100
    else:
        score = _NO_FLOW_CONGESTION
    for inc in incidents:
        score += min(inc.magnitude * 10, 30)
    return max(0.0, min(100.0, score))


def classify_level(congestion: float, incidents: list[TrafficIncident]) -> TrafficLevel:
    if any(i.is_critical for i in incidents):
        return TrafficLevel.SEVERE
    if congestion >= 80:
        return TrafficLevel.HIGH
    if congestion >= 50:
        return TrafficLevel.MODERATE
    if congestion >= 20:
        return TrafficLevel.LOW
    return TrafficLevel.VERY_LOW


def recommendation_score(congestion: float, level: TrafficLevel, incidents: list[TrafficIncident]) -> float:
    score = 100 - congestion
    for inc in incidents:
        score -= min(inc.magnitude * 5, 20)
    score += _LEVEL_SCORE_ADJUST[level]
    return max(0.0, min(100.0, score))


def crowd_level_for(congestion: float, level: TrafficLevel) -> CrowdLevel:
    crowd = congestion + _LEVEL_CROWD_WEIGHT[level]
    if crowd >= 85:
        return CrowdLevel.VERY_HIGH
    if crowd >= 70:
        return CrowdLevel.HIGH
    if crowd >= 45:
        return CrowdLevel.MODERATE
    if crowd >= 20:
        return CrowdLevel.LOW
    return CrowdLevel.VERY_LOW


def recommend(score: float, level: TrafficLevel) -> TrafficRecommendation:
    if level not in ADMISSIBLE_LEVELS or score < 35:
        return TrafficRecommendation.AVOID_NOW
    if score >= 80:
        return TrafficRecommendation.VISIT_NOW
    if score >= 55:
        return TrafficRecommendation.VISIT_SOON
    return TrafficRecommendation.PLAN_LATER


def build_reading(
    lat: float,
    lon: float,
    current_speed: Optional[float],
    free_flow_speed: Optional[float],
    incidents: list[TrafficIncident],
    is_stub: bool = False,
) -> TrafficReading:
    congestion = compute_congestion(current_speed, free_flow_speed, incidents)
    level = classify_level(congestion, incidents)
    rec_score = recommendation_score(congestion, level, incidents)
    return TrafficReading(
        lat=lat, lon=lon,
        level                = level,
        congestion_score     = congestion,
        crowd_level          = crowd_level_for(congestion, level),
        recommendation       = recommend(rec_score, level),
        recommendation_score = rec_score,
        incidents            = incidents,
        current_speed        = current_speed,
        free_flow_speed      = free_flow_speed,
        is_stub              = is_stub,
    )


# ─────────────────────────────────────────────────────────────────────────────
# TrafficTool
# ─────────────────────────────────────────────────────────────────────────────

class TrafficTool:
    """
    Live-traffic collaborator.  Long-lived; inject one instance.

    Stub mode (USE_STUB_TRAFFIC=true, the default) returns deterministic
    readings derived from the coordinate hash: light traffic, no incidents.
    """

    def __init__(
        self,
        use_stub: bool = config.USE_STUB_TRAFFIC,
        timeout_s: float = config.TRAFFIC_TIMEOUT_S,
        cache: TTLCache | RedisCache | None = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._use_stub = use_stub
        self._timeout_s = timeout_s
        self._cache = cache if cache is not None else make_cache("traffic", config.TRAFFIC_CACHE_TTL)
        self._session = session or requests.Session()

    def fetch(self, lat: float, lon: float) -> TrafficReading:
        """Return a reading for (lat, lon) or raise TrafficUnknown."""
        key = f"{lat:.4f}:{lon:.4f}"
        cached = self._cache.get(key)
        if cached is not None:
            return TrafficReading.from_metadata(cached)

        if self._use_stub:
            reading = self._stub_reading(lat, lon)
        else:
            reading = self._live_reading(lat, lon)
        self._cache.set(key, reading.to_metadata())
        return reading

    # ── live path ─────────────────────────────────────────────────────────

    def _live_reading(self, lat: float, lon: float) -> TrafficReading:
        if not config.TOMTOM_API_KEY:
            raise TrafficUnknown("TOMTOM_API_KEY not configured")
        try:
            flow = self._get_json(
                f"{config.TOMTOM_BASE_URL}/4/flowSegmentData/absolute/10/json",
                {"point": f"{lat},{lon}", "key": config.TOMTOM_API_KEY},
            ).get("flowSegmentData")
            r = config.TRAFFIC_INCIDENT_RADIUS_DEG
            incidents_raw = self._get_json(
                f"{config.TOMTOM_BASE_URL}/5/incidentDetails",
                {
                    "bbox":   f"{lon - r},{lat - r},{lon + r},{lat + r}",
                    "fields": "{incidents{properties{iconCategory,magnitudeOfDelay,events{description}}}}",
                    "key":    config.TOMTOM_API_KEY,
                },
            ).get("incidents", [])
        except (requests.RequestException, ValueError) as exc:
            raise TrafficUnknown(f"traffic provider error: {exc}") from exc

        if not flow or flow.get("currentSpeed") is None or not flow.get("freeFlowSpeed"):
            raise TrafficUnknown("no flow data for location")

        incidents = [self._parse_incident(i) for i in incidents_raw]
        return build_reading(lat, lon, float(flow["currentSpeed"]), float(flow["freeFlowSpeed"]), incidents)

    def _get_json(self, url: str, params: dict) -> dict:
        resp = self._session.get(url, params=params, timeout=self._timeout_s)
        resp.raise_for_status()
        return resp.json()

    @staticmethod
    def _parse_incident(raw: dict) -> TrafficIncident:
        props = raw.get("properties", {})
        events = props.get("events") or [{}]
        return TrafficIncident(
            magnitude   = int(props.get("magnitudeOfDelay") or 0),
            category    = int(props.get("iconCategory") or 0),
            description = events[0].get("description", ""),
        )

    # ── stub path ─────────────────────────────────────────────────────────

    @staticmethod
    def _stub_reading(lat: float, lon: float) -> TrafficReading:
        """Deterministic light-traffic reading (current speed 75–100 % of free flow)."""
        digest = hashlib.sha1(f"{lat:.4f},{lon:.4f}".encode("utf-8")).hexdigest()
        ratio = 0.75 + (int(digest[:4], 16) % 26) / 100
        return build_reading(lat, lon, 40.0 * ratio, 40.0, [], is_stub=True)
