"""
modules/planning/traffic_filter.py
-------------------------------------
Traffic-aware admission of ranked candidates.

For each candidate with coordinates, TrafficTool.fetch() is called under a
per-call timeout.  Lookups run concurrently in batches of TRAFFIC_BATCH_SIZE
with a short delay between batches.

Admission rule:
    level ∈ {VERY_LOW, LOW, MODERATE}
    AND crowd_level ∉ {HIGH, VERY_HIGH}
    AND recommendation ≠ AVOID_NOW

Fail-closed: a candidate whose reading cannot be resolved (no coordinates,
provider error, missing data, timeout) gets a SEVERE / AVOID_NOW reading
and is excluded.  A batch in which no lookup completes within the timeout is
marked SEVERE as a whole; nothing is retried.

Admitted candidates are tagged "low-traffic" (VERY_LOW/LOW) or
"moderate-traffic" (MODERATE).
"""

from __future__ import annotations
import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Optional

import config
from modules.errors import ReasonCode
from modules.tool_usage.traffic_tool import (
    ADMISSIBLE_LEVELS,
    CrowdLevel,
    TrafficLevel,
    TrafficReading,
    TrafficRecommendation,
    TrafficTool,
)
from schemas.activity import RankedCandidate

logger = logging.getLogger(__name__)

LOW_TRAFFIC_TAG: str = "low-traffic"
MODERATE_TRAFFIC_TAG: str = "moderate-traffic"

_BLOCKED_CROWDS: frozenset[CrowdLevel] = frozenset({CrowdLevel.HIGH, CrowdLevel.VERY_HIGH})


def is_admissible(reading: TrafficReading) -> bool:
    return (
        reading.resolved
        and reading.level in ADMISSIBLE_LEVELS
        and reading.crowd_level not in _BLOCKED_CROWDS
        and reading.recommendation != TrafficRecommendation.AVOID_NOW
    )


def traffic_tag(level: TrafficLevel) -> str:
    return LOW_TRAFFIC_TAG if level in (TrafficLevel.VERY_LOW, TrafficLevel.LOW) else MODERATE_TRAFFIC_TAG


# ─────────────────────────────────────────────────────────────────────────────
# Result dataclass
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class TrafficFilterResult:
    admitted: list[RankedCandidate] = field(default_factory=list)
    excluded: list[tuple[RankedCandidate, TrafficReading]] = field(default_factory=list)
    readings: dict[str, TrafficReading] = field(default_factory=dict)   # activity_id → reading
    reason_codes: list[ReasonCode] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "admitted": [c.to_dict() for c in self.admitted],
            "excluded": [
                {
                    "activity_id": c.activity_id,
                    "title":       c.activity.title,
                    "level":       r.level.name,
                    "resolved":    r.resolved,
                    "reason":      r.error or r.recommendation.value,
                }
                for c, r in self.excluded
            ],
            "reason_codes": [rc.value for rc in self.reason_codes],
        }


# ─────────────────────────────────────────────────────────────────────────────
# TrafficAwareFilter
# ─────────────────────────────────────────────────────────────────────────────

class TrafficAwareFilter:
    """Long-lived; holds only the traffic collaborator and batching settings."""

    def __init__(
        self,
        traffic_tool: Optional[TrafficTool] = None,
        batch_size: int = config.TRAFFIC_BATCH_SIZE,
        timeout_s: float = config.TRAFFIC_TIMEOUT_S,
        batch_delay_s: float = config.TRAFFIC_BATCH_DELAY_S,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._tool = traffic_tool or TrafficTool()
        self._batch_size = max(1, batch_size)
        self._timeout_s = timeout_s
        self._batch_delay_s = batch_delay_s
        self._sleep = sleep

    def filter_by_traffic(self, candidates: list[RankedCandidate]) -> TrafficFilterResult:
        result = TrafficFilterResult()

        located = [c for c in candidates if c.activity.has_coordinates()]
        for cand in candidates:
            if not cand.activity.has_coordinates():
                logger.warning("Traffic unknown for %s: no coordinates (excluded)", cand.activity_id)
                reading = TrafficReading.unknown(0.0, 0.0, "no coordinates")
                result.readings[cand.activity_id] = reading
                result.excluded.append((cand, reading))

        coords = [(c.activity.lat, c.activity.lon) for c in located]
        readings = self.lookup(coords)

        for cand, reading in zip(located, readings):
            result.readings[cand.activity_id] = reading
            if is_admissible(reading):
                cand.traffic = traffic_tag(reading.level)
                cand.reasons.append(f"Traffic {reading.level.name}: {cand.traffic}")
                result.admitted.append(cand)
            else:
                if not reading.resolved:
                    logger.warning("Traffic unknown for %s: %s (excluded)", cand.activity_id, reading.error)
                result.excluded.append((cand, reading))

        if any(not r.resolved for _, r in result.excluded):
            result.reason_codes.append(ReasonCode.TRAFFIC_UNKNOWN)
        return result

    def lookup(self, coords: list[tuple[float, float]]) -> list[TrafficReading]:
        """One reading per coordinate, in input order; unresolved ones fail closed."""
        readings: list[TrafficReading] = []
        for start in range(0, len(coords), self._batch_size):
            if start:
                self._sleep(self._batch_delay_s)
            readings.extend(self._lookup_batch(coords[start:start + self._batch_size]))
        return readings

    def _lookup_batch(self, batch: list[tuple[float, float]]) -> list[TrafficReading]:
        executor = ThreadPoolExecutor(max_workers=len(batch))
        try:
            futures = [executor.submit(self._tool.fetch, lat, lon) for lat, lon in batch]
            done, not_done = wait(futures, timeout=self._timeout_s)
            if futures and not done:
                logger.warning("Traffic batch of %d timed out after %.1fs; marking SEVERE",
                               len(batch), self._timeout_s)
                return [TrafficReading.unknown(lat, lon, "batch timeout") for lat, lon in batch]

            out: list[TrafficReading] = []
            for (lat, lon), fut in zip(batch, futures):
                if fut in not_done:
                    out.append(TrafficReading.unknown(lat, lon, "timeout"))
                    continue
                try:
                    out.append(fut.result())
                except Exception as exc:
                    out.append(TrafficReading.unknown(lat, lon, str(exc) or type(exc).__name__))
            return out
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
