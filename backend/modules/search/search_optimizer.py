"""
modules/search/search_optimizer.py
------------------------------------
Second-pass re-rank of retrieval candidates using multiplicative boosts.

  exact original-query substring      × 2.0
  synonym matches (n)                 × min(1 + 0.2n, 1.5)
  related-term matches (n)            × min(1 + 0.1n, 1.2)
  negative-term matches (n)           × max(0.5, 1 − 0.2n)
  primary-intent keyword alignment    × 1.4
  each secondary-intent alignment     × min(1.4 × 0.7, 1.2)
  context: interest × 1.3, weather × 1.2, budget × 1.2,
           group-friendly × 1.1 (parties of two or more)
  temporal fit (time slot == requested time of day)  × 1.2

Output is sorted by boosted score descending, ties by activity id.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from modules.search.query_processor import INTENT_PATTERNS, ProcessedQuery, mentions
from schemas.activity import RankedCandidate

if TYPE_CHECKING:
    from modules.search.retrieval import SearchContext

_BOOST_EXACT_MATCH:     float = 2.0
_SYNONYM_STEP:          float = 0.2
_SYNONYM_CAP:           float = 1.5
_RELATED_STEP:          float = 0.1
_RELATED_CAP:           float = 1.2
_NEGATIVE_STEP:         float = 0.2
_NEGATIVE_FLOOR:        float = 0.5
_BOOST_INTENT:          float = 1.4
_SECONDARY_INTENT_CAP:  float = 1.2
_BOOST_INTEREST:        float = 1.3
_BOOST_WEATHER:         float = 1.2
_BOOST_BUDGET:          float = 1.2
_BOOST_GROUP:           float = 1.1
_BOOST_TEMPORAL:        float = 1.2


def _activity_text(candidate: RankedCandidate) -> str:
    a = candidate.activity
    return f"{a.title} {a.description}".lower()


class SearchOptimizer:
    """Pure re-ranker; holds no state between calls."""

    def contextual_boosts(self, context: "SearchContext") -> dict[str, float]:
        """factor → multiplier, applied when an activity matches the factor."""
        boosts: dict[str, float] = {}
        for interest in context.interests:
            boosts[interest.lower()] = _BOOST_INTEREST
        if context.weather and context.weather.lower() != "default":
            boosts[context.weather.lower()] = _BOOST_WEATHER
        if context.budget:
            boosts[context.budget.lower()] = _BOOST_BUDGET
        if context.group_size > 1:
            boosts["group"] = _BOOST_GROUP
        return boosts

    def optimize(
        self,
        candidates: list[RankedCandidate],
        processed: ProcessedQuery,
        context: "SearchContext",
    ) -> list[RankedCandidate]:
        boosts = self.contextual_boosts(context)
        for cand in candidates:
            multiplier = 1.0
            multiplier *= self._expansion_boost(cand, processed)
            multiplier *= self._intent_boost(cand, processed)
            for factor, boost in boosts.items():
                if self._matches_factor(cand, factor):
                    multiplier *= boost
                    cand.reasons.append(f"Contextual boost: {factor}")
            if context.time_of_day and cand.time_slot == context.time_of_day.lower():
                multiplier *= _BOOST_TEMPORAL
                cand.reasons.append(f"Time alignment: {context.time_of_day}")
            cand.score *= multiplier
        return sorted(candidates, key=lambda c: (-c.score, c.activity_id))

    def filter_recommendations(self, processed: ProcessedQuery, context: "SearchContext") -> list[str]:
        recs: list[str] = []
        if processed.intent.confidence > 0.7:
            recs.append(f"Filter by {processed.intent.primary} activities")
        if processed.entities.time_refs:
            recs.append(f"Filter by {processed.entities.time_refs[0]} availability")
        if processed.entities.preferences:
            recs.append(f"Apply {', '.join(processed.entities.preferences)} filters")
        if context.weather and context.weather != "clear":
            recs.append(f"Filter by {context.weather}-appropriate activities")
        if context.group_size > 4:
            recs.append("Filter by group-friendly activities")
        if not recs:
            recs.append(f"Optimize for {context.time_of_day or 'anytime'} activities")
            recs.append(f"Filter by {', '.join(context.interests) or 'general'} interests")
        return recs

    # ── boosts ────────────────────────────────────────────────────────────

    @staticmethod
    def _expansion_boost(cand: RankedCandidate, processed: ProcessedQuery) -> float:
        text = _activity_text(cand)
        exp = processed.expansion
        boost = 1.0

        if exp.original.strip() and exp.original.lower() in text:
            boost *= _BOOST_EXACT_MATCH
            cand.reasons.append("Exact query match")

        n = sum(1 for s in exp.synonyms if s.lower() in text)
        if n:
            boost *= min(1 + n * _SYNONYM_STEP, _SYNONYM_CAP)
            cand.reasons.append(f"Synonym matches: {n}")

        n = sum(1 for t in exp.related_terms if t.lower() in text)
        if n:
            boost *= min(1 + n * _RELATED_STEP, _RELATED_CAP)
            cand.reasons.append(f"Related term matches: {n}")

        n = sum(1 for t in exp.negative_terms if t.lower() in text)
        if n:
            boost *= max(_NEGATIVE_FLOOR, 1 - n * _NEGATIVE_STEP)
            cand.reasons.append(f"Negative term penalty: {n}")
        return boost

    @staticmethod
    def _aligned(cand: RankedCandidate, intent: str) -> bool:
        text = _activity_text(cand)
        tags = [t.lower() for t in cand.activity.tags]
        return any(
            mentions(text, p) or any(p in tag for tag in tags)
            for p in INTENT_PATTERNS.get(intent, [])
        )

    def _intent_boost(self, cand: RankedCandidate, processed: ProcessedQuery) -> float:
        boost = 1.0
        if self._aligned(cand, processed.intent.primary):
            boost *= _BOOST_INTENT
            cand.reasons.append(f"Primary intent alignment: {processed.intent.primary}")
        for secondary in processed.intent.secondary:
            if self._aligned(cand, secondary):
                boost *= min(_BOOST_INTENT * 0.7, _SECONDARY_INTENT_CAP)
                cand.reasons.append(f"Secondary intent alignment: {secondary}")
        return boost

    @staticmethod
    def _matches_factor(cand: RankedCandidate, factor: str) -> bool:
        if cand.activity.budget_category.lower() == factor:
            return True
        return factor in _activity_text(cand) or any(factor in t.lower() for t in cand.activity.tags)
