"""
modules/planning/heuristic_scheduler.py
-----------------------------------------
Deterministic multi-day time-slot scheduler.

Input is either one list of admitted candidates per day, or one pooled list
plus num_days (leftovers of day d flow into day d+1).

Each day:
  1. Candidates are walked in rank order: score desc, popularity desc,
     activity id asc.
  2. Each goes into the earliest free gap of the day window where it fits:
     start = max(gap start, opening_start), start + duration <= gap end and
     its closing time.  The day's cumulative duration stays within the window.
  3. A placement keeps the travel buffer clear on both sides; stop at max_per_day.
  4. Items are returned in start order.
  5. Period from start: < 12:00 Morning, < 18:00 Afternoon, else Evening.

An activity is never placed twice in the trip.  A day with fewer than
min_per_day placements is returned as-is with a SCHEDULING_INFEASIBLE note.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import config
from modules.errors import ReasonCode
from schemas.activity import RankedCandidate, parse_clock
from schemas.itinerary import DayPlan, ItineraryDraft, ScheduledActivity

_NOON: int = 12 * 60
_EVENING: int = 18 * 60
_WHOLE_DAY: tuple[int, int] = (0, 24 * 60)


def period_for(start: int) -> str:
    if start < _NOON:
        return "Morning"
    if start < _EVENING:
        return "Afternoon"
    return "Evening"


@dataclass(frozen=True)
class SchedulerConfig:
    day_start: int = 8 * 60          # minutes from midnight
    day_end: int = 21 * 60
    buffer_minutes: int = 30
    max_per_day: int = 8
    min_per_day: int = 2

    @property
    def window(self) -> int:
        return self.day_end - self.day_start

    @classmethod
    def from_config(cls) -> "SchedulerConfig":
        return cls(
            day_start      = parse_clock(config.SCHEDULE_DAY_START) or 8 * 60,
            day_end        = parse_clock(config.SCHEDULE_DAY_END) or 21 * 60,
            buffer_minutes = config.SCHEDULE_BUFFER_MIN,
            max_per_day    = config.SCHEDULE_MAX_PER_DAY,
            min_per_day    = config.SCHEDULE_MIN_PER_DAY,
        )


ActivitiesByDay = Union[Sequence[RankedCandidate], Sequence[Sequence[RankedCandidate]]]


class HeuristicScheduler:
    """Pure: no state between calls, no I/O."""

    def schedule_itinerary(
        self,
        activities_by_day: ActivitiesByDay,
        cfg: Optional[SchedulerConfig] = None,
        num_days: int = 1,
    ) -> ItineraryDraft:
        cfg = cfg or SchedulerConfig.from_config()
        pooled = not activities_by_day or isinstance(activities_by_day[0], RankedCandidate)

        if pooled:
            day_lists = [list(activities_by_day)] * max(1, num_days)
        else:
            day_lists = [list(day) for day in activities_by_day]

        scheduled: set[str] = set()
        days: list[DayPlan] = []
        for number, pool in enumerate(day_lists, start=1):
            days.append(self._schedule_day(number, pool, cfg, scheduled))

        seen: set[str] = set()
        unscheduled: list[str] = []
        for pool in (day_lists[:1] if pooled else day_lists):
            for cand in pool:
                aid = cand.activity_id
                if aid not in scheduled and aid not in seen:
                    seen.add(aid)
                    unscheduled.append(aid)
        return ItineraryDraft(days=days, unscheduled=unscheduled)

    # ── one day ───────────────────────────────────────────────────────────

    def _schedule_day(
        self,
        number: int,
        pool: list[RankedCandidate],
        cfg: SchedulerConfig,
        scheduled: set[str],
    ) -> DayPlan:
        day = DayPlan(day_number=number)
        ranked = sorted(
            (c for c in pool if c.activity_id not in scheduled),
            key=lambda c: (-c.score, -c.popularity_score, c.activity_id),
        )
        free: list[tuple[int, int]] = [(cfg.day_start, cfg.day_end)]
        used = 0

        for cand in ranked:
            if len(day.items) >= cfg.max_per_day:
                break
            duration = self._duration(cand)
            if used + duration > cfg.window:
                continue
            placed = self._fit(cand, free, duration)
            if placed is None:
                continue

            slot, start = placed
            end = start + duration
            day.items.append(ScheduledActivity(
                period   = period_for(start),
                activity = cand.activity,
                start    = start,
                end      = end,
                score    = cand.score,
                traffic  = cand.traffic,
            ))
            scheduled.add(cand.activity_id)
            used += duration
            free = self._split(free, slot, start, end, cfg.buffer_minutes)

        day.items.sort(key=lambda i: (i.start, i.activity.activity_id))
        if len(day.items) < cfg.min_per_day:
            day.notes.append(
                f"{ReasonCode.SCHEDULING_INFEASIBLE.value}: placed {len(day.items)} of "
                f"minimum {cfg.min_per_day}"
            )
        return day

    @staticmethod
    def _duration(cand: RankedCandidate) -> int:
        return max(1, int(cand.duration_minutes or cand.activity.duration_minutes or 60))

    @staticmethod
    def _fit(
        cand: RankedCandidate,
        free: list[tuple[int, int]],
        duration: int,
    ) -> Optional[tuple[tuple[int, int], int]]:
        """Earliest free gap and start time that fit cand's opening window, or None."""
        opens, closes = cand.activity.opening_window() or _WHOLE_DAY
        for slot in free:
            lo, hi = slot
            start = max(lo, opens)
            if start + duration <= min(hi, closes):
                return slot, start
        return None

    @staticmethod
    def _split(
        free: list[tuple[int, int]],
        slot: tuple[int, int],
        start: int,
        end: int,
        buffer: int,
    ) -> list[tuple[int, int]]:
        # The travel buffer is kept clear on both sides of a placement.
        lo, hi = slot
        pieces = [(lo, start - buffer), (end + buffer, hi)]
        out: list[tuple[int, int]] = []
        for gap in free:
            if gap != slot:
                out.append(gap)
                continue
            out.extend(p for p in pieces if p[1] > p[0])
        return out
