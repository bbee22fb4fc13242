"""Test doubles and builders shared across test modules."""

from modules.tool_usage.traffic_tool import TrafficReading, build_reading
from schemas.activity import Activity, RankedCandidate


class FakeTrafficTool:
    """Coordinate → reading (or exception) lookup; unknown coordinates are light traffic."""

    def __init__(self, readings: dict | None = None) -> None:
        self.readings = readings or {}
        self.calls: list[tuple[float, float]] = []

    def fetch(self, lat: float, lon: float) -> TrafficReading:
        self.calls.append((lat, lon))
        found = self.readings.get((lat, lon))
        if isinstance(found, Exception):
            raise found
        if found is None:
            return build_reading(lat, lon, 38.0, 40.0, [])
        return found


def make_candidate(
    activity_id: str,
    activity_type: str = "Other",
    score: float = 10.0,
    lat: float | None = 16.41,
    lon: float | None = 120.59,
    time: str = "",
    duration: int = 60,
    tags: tuple[str, ...] = (),
    popularity_score: float = 0.5,
) -> RankedCandidate:
    activity = Activity(
        activity_id   = activity_id,
        title         = activity_id.replace("-", " ").title(),
        tags          = tags,
        time          = time,
        lat           = lat,
        lon           = lon,
        activity_type = activity_type,
    )
    return RankedCandidate(
        activity         = activity,
        score            = score,
        duration_minutes = duration,
        popularity_score = popularity_score,
    )

