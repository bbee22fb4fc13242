"""
schemas/itinerary.py
--------------------
Dataclass definitions for the scheduled itinerary produced by the
HeuristicScheduler and persisted by the plan store.

ItineraryDraft
  └─ DayPlan (one per trip day)
       └─ ScheduledActivity (period + activity + assigned HH:MM range)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any

from schemas.activity import Activity

PERIODS: tuple[str, ...] = ("Morning", "Afternoon", "Evening")


def fmt_minutes(mins: int) -> str:
    """Minutes-from-midnight → "HH:MM" (24:00 allowed for end-of-day)."""
    return f"{mins // 60:02d}:{mins % 60:02d}"


@dataclass
class ScheduledActivity:
    """One placed activity; start/end are minutes-from-midnight."""
    period: str
    activity: Activity
    start: int
    end: int
    score: float = 0.0
    traffic: str | None = None

    @property
    def duration(self) -> int:
        return self.end - self.start

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.activity.to_dict(),
            "period":           self.period,
            "start_time":       fmt_minutes(self.start),
            "end_time":         fmt_minutes(self.end),
            "duration_minutes": self.duration,
            "score":            round(self.score, 4),
            "traffic":          self.traffic,
        }


@dataclass
class DayPlan:
    """One day of the itinerary."""
    day_number: int                                    # 1-based
    items: list[ScheduledActivity] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)     # reason codes, e.g. partial day

    @property
    def total_duration(self) -> int:
        return sum(i.duration for i in self.items)

    def by_period(self) -> dict[str, list[ScheduledActivity]]:
        buckets: dict[str, list[ScheduledActivity]] = {p: [] for p in PERIODS}
        for item in self.items:
            buckets[item.period].append(item)
        return buckets

    def to_dict(self) -> dict[str, Any]:
        return {
            "day_number": self.day_number,
            "periods": {
                period: [i.to_dict() for i in items]
                for period, items in self.by_period().items()
            },
            "total_duration_minutes": self.total_duration,
            "notes": list(self.notes),
        }


@dataclass
class ItineraryDraft:
    """Scheduler output. Deterministic for a given candidate list + config."""
    days: list[DayPlan] = field(default_factory=list)
    unscheduled: list[str] = field(default_factory=list)   # activity ids left over

    def activity_ids(self) -> list[str]:
        return [i.activity.activity_id for d in self.days for i in d.items]

    def coordinates(self) -> list[tuple[float, float]]:
        return [
            (i.activity.lat, i.activity.lon)
            for d in self.days for i in d.items
            if i.activity.has_coordinates()
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "days": [d.to_dict() for d in self.days],
            "unscheduled": list(self.unscheduled),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ItineraryDraft":
        """Rebuild from ``to_dict`` output (used by the plan store)."""
        def _mins(hhmm: str) -> int:
            h, m = hhmm.split(":")
            return int(h) * 60 + int(m)

        days: list[DayPlan] = []
        for d in data.get("days", []):
            items = [
                ScheduledActivity(
                    period   = period,
                    activity = Activity.from_dict(raw),
                    start    = _mins(raw["start_time"]),
                    end      = _mins(raw["end_time"]),
                    score    = float(raw.get("score", 0.0)),
                    traffic  = raw.get("traffic"),
                )
                for period, rows in d.get("periods", {}).items()
                for raw in rows
            ]
            items.sort(key=lambda i: i.start)
            days.append(DayPlan(day_number=d["day_number"], items=items, notes=list(d.get("notes", []))))
        return cls(days=days, unscheduled=list(data.get("unscheduled", [])))
