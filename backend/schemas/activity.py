"""
schemas/activity.py
-------------------
Dataclass definitions for catalog activities and the per-request ranking
structures built on top of them.

Activity:          immutable catalog row (seed / reference data)
IndexedActivity:   Activity + derived search fields (owned by the index)
RankedCandidate:   one retrieval hit with its score and reasoning trail
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

# "9:00 AM", "9 AM", "21:30"
_CLOCK_RE = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)?", re.IGNORECASE)


def parse_clock(text: str) -> Optional[int]:
    """Parse a clock string into minutes-from-midnight, or None."""
    m = _CLOCK_RE.search(text.strip())
    if not m:
        return None
    hour = int(m.group(1))
    minute = int(m.group(2) or 0)
    meridiem = (m.group(3) or "").lower()
    if meridiem == "pm" and hour < 12:
        hour += 12
    elif meridiem == "am" and hour == 12:
        hour = 0
    if hour > 24 or minute > 59:
        return None
    return min(hour * 60 + minute, 24 * 60)


@dataclass(frozen=True)
class Activity:
    """
    One catalog entry.

    time:            declared opening window as free text, e.g.
                      "9:00 AM - 5:00 PM", "24 hours", "Evenings"
    popularity:      0-100 (None = unknown)
    budget_category: "free" | "budget" | "mid" | "premium"
    activity_type:   Food | Nature | Museum | Shopping | Nightlife | Tour | Other
    """
    activity_id: str
    title: str
    description: str = ""
    tags: tuple[str, ...] = ()
    time: str = ""
    duration_minutes: Optional[int] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    popularity: Optional[float] = None
    price: Optional[float] = None
    budget_category: str = "budget"
    activity_type: str = "Other"

    def searchable_text(self) -> str:
        return f"{self.title} {self.description} {' '.join(self.tags)}"

    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None

    def opening_window(self) -> Optional[tuple[int, int]]:
        """
        (open, close) in minutes-from-midnight, or None for "open all day".

        A window whose close is before its open wraps past midnight and is
        clamped to 24:00.
        """
        text = self.time.strip().lower()
        if not text or "24 hours" in text or "anytime" in text:
            return None
        parts = re.split(r"\s*(?:-|–|to)\s*", text, maxsplit=1)
        if len(parts) != 2:
            return None
        start, end = parse_clock(parts[0]), parse_clock(parts[1])
        if start is None or end is None:
            return None
        # "9 - 5 PM": the first half inherits the second's meridiem
        if "am" not in parts[0] and "pm" not in parts[0] and "pm" in parts[1] and start + 12 * 60 < end:
            start += 12 * 60
        if end <= start:
            end = 24 * 60
        return start, end

    def to_dict(self) -> dict[str, Any]:
        return {
            "activity_id":      self.activity_id,
            "title":            self.title,
            "description":      self.description,
            "tags":             list(self.tags),
            "time":             self.time,
            "duration_minutes": self.duration_minutes,
            "lat":              self.lat,
            "lon":              self.lon,
            "popularity":       self.popularity,
            "price":            self.price,
            "budget_category":  self.budget_category,
            "activity_type":    self.activity_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Activity":
        return cls(
            activity_id      = str(data.get("activity_id") or data.get("id") or data["title"]),
            title            = data["title"],
            description      = data.get("description", ""),
            tags             = tuple(data.get("tags", ())),
            time             = data.get("time", ""),
            duration_minutes = data.get("duration_minutes"),
            lat              = data.get("lat"),
            lon              = data.get("lon"),
            popularity       = data.get("popularity"),
            price            = data.get("price"),
            budget_category  = data.get("budget_category", "budget"),
            activity_type    = data.get("activity_type", "Other"),
        )


@dataclass
class IndexedActivity:
    """Activity plus the fields derived at index-build time."""
    activity: Activity
    search_tokens: list[str] = field(default_factory=list)
    category_scores: dict[str, float] = field(default_factory=dict)
    time_slot: str = "anytime"          # morning | afternoon | evening | anytime
    popularity_score: float = 0.5       # [0, 1]
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def activity_id(self) -> str:
        return self.activity.activity_id


@dataclass
class RankedCandidate:
    """
    One candidate produced by the retrieval pipeline.

    similarity: raw similarity from the search collaborator [0, 1]
    score:      composite score, later multiplied by optimizer boosts
    reasons:    human-readable reasoning trail, appended by each stage
    traffic:    "low-traffic" | "moderate-traffic" once admitted
    """
    activity: Activity
    similarity: float = 0.0
    score: float = 0.0
    reasons: list[str] = field(default_factory=list)
    traffic: Optional[str] = None
    popularity_score: float = 0.5
    time_slot: str = "anytime"
    duration_minutes: int = 60

    @property
    def activity_id(self) -> str:
        return self.activity.activity_id

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.activity.to_dict(),
            "duration_minutes": self.duration_minutes,
            "similarity":       round(self.similarity, 4),
            "score":            round(self.score, 4),
            "reasons":          list(self.reasons),
            "traffic":          self.traffic,
            "time_slot":        self.time_slot,
        }
