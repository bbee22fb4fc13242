"""
modules/drafting/drafting_client.py
-------------------------------------
Calls the natural-language drafting service (Gemini via llm.call_llm) under
an explicit retry policy and hands the text to the defensive decoder.

RetryPolicy
    attempt n (1-based) waits  min(max_delay, base_delay × 2^(n−1))
    scaled by a uniform ±jitter factor before attempt n+1.

draft(prompt) → DecodeOutcome.  Exhausted retries come back as a
DecodeError with the per-attempt errors; nothing here raises.
"""

from __future__ import annotations
import json
import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional

import config
from modules.drafting.draft_decoder import DecodeError, DecodeOutcome, decode_draft
from schemas.activity import RankedCandidate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0       # seconds
    max_delay: float = 8.0
    jitter: float = 0.25          # ± fraction of the computed delay

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        return cls(
            max_attempts = config.DRAFT_MAX_ATTEMPTS,
            base_delay   = config.DRAFT_BASE_DELAY_S,
            max_delay    = config.DRAFT_MAX_DELAY_S,
            jitter       = config.DRAFT_JITTER_RATIO,
        )

    def delay_for(self, attempt: int, rng: random.Random) -> float:
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if self.jitter:
            delay *= 1 + rng.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)


# ─────────────────────────────────────────────────────────────────────────────
# Prompt
# ─────────────────────────────────────────────────────────────────────────────

_DRAFT_PROMPT = """You are an itinerary planner for a {num_days}-day city trip.

TRAVELER REQUEST:
{query}

INTERESTS: {interests}
CURRENT WEATHER: {weather}

ACTIVITY DATABASE (use ONLY these; copy titles exactly):
{database}

TASK:
Distribute the best-fitting activities across Morning, Afternoon and Evening
of each day.  Return ONLY valid JSON: no markdown, no explanation:

{{
  "title": "short itinerary title",
  "subtitle": "one-line summary",
  "items": [
    {{
      "period": "Day 1 - Morning",
      "activities": [{{"title": "...", "description": "...", "duration": "...", "tags": ["..."]}}],
      "reason": "why these fit"
    }}
  ]
}}
"""


def build_prompt(
    query: str,
    candidates: list[RankedCandidate],
    num_days: int = 1,
    interests: Optional[list[str]] = None,
    weather: str = "clear",
) -> str:
    database = [
        {
            "title":       c.activity.title,
            "description": c.activity.description,
            "tags":        list(c.activity.tags),
            "time":        c.activity.time,
            "duration":    f"{c.duration_minutes} min",
        }
        for c in candidates
    ]
    return _DRAFT_PROMPT.format(
        num_days  = num_days,
        query     = query,
        interests = ", ".join(interests or []) or "general sightseeing",
        weather   = weather,
        database  = json.dumps(database, ensure_ascii=False, indent=1),
    )


# ─────────────────────────────────────────────────────────────────────────────
# DraftingClient
# ─────────────────────────────────────────────────────────────────────────────

class DraftingClient:
    def __init__(
        self,
        generate: Optional[Callable[[str], str]] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        if generate is None:
            from llm import call_llm
            generate = call_llm
        self._generate = generate
        self._policy = policy or RetryPolicy.from_config()
        self._sleep = sleep
        self._rng = rng or random.Random()

    def generate(self, prompt: str) -> str:
        """One generate call under the retry policy; re-raises the last error."""
        attempts = max(1, self._policy.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return self._generate(prompt)
            except Exception as exc:
                logger.warning("Drafting attempt %d/%d failed: %s", attempt, attempts, exc)
                if attempt == attempts:
                    raise
                self._sleep(self._policy.delay_for(attempt, self._rng))
        raise RuntimeError("unreachable: retry loop exited without a result")

    def draft(self, prompt: str) -> DecodeOutcome:
        try:
            text = self.generate(prompt)
        except Exception as exc:
            return DecodeError(reason=f"drafting service unavailable: {exc}")
        return decode_draft(text)
