"""
modules/search/retrieval.py
-----------------------------
Retrieval & ranking pipeline: buildCandidates(query, context).

Stages
  1. Query processing   QueryProcessor → intent, entities, expansion
  2. Fan-out            one similarity query per interest + one base query
                        (original + intent expansions), issued concurrently,
                        top-K each, per-call timeout, cached 10 min
  3. Merge              dedupe by activity id, first occurrence wins
  4. Composite score    sim×10 + (interest matches / max(1,|interests|))×5
                        + weather-tag matches×2
  5. Threshold          drop composite < MIN_COMPOSITE_SCORE (5)
  6. Diversity cap      no activity type above 30 % of the surviving set
  7. Duration backfill  Food 90, Museum 120, Nature/Park 120, Shopping 90, else 60
  8. Re-rank            SearchOptimizer multiplicative boosts

When every similarity query fails (or no similarity collaborator is wired)
the pipeline degrades to the index's token search and marks the result
RETRIEVAL_UNAVAILABLE.  It never raises for collaborator failures.
"""

from __future__ import annotations

import hashlib
import logging
import math
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Optional

import config
from db.cache import TTLCache, RedisCache, make_cache
from modules.errors import ReasonCode
from modules.search.query_processor import INTENT_EXPANSIONS, ProcessedQuery, QueryProcessor
from modules.search.search_index import SearchIndex, SearchIndexManager
from modules.search.search_optimizer import SearchOptimizer
from modules.search.vector_search import SearchHit, SimilaritySearch
from schemas.activity import Activity, RankedCandidate

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Fixed tables
# ─────────────────────────────────────────────────────────────────────────────

WEATHER_TAG_FILTERS: dict[str, list[str]] = {
    "thunderstorm": ["Indoor-Friendly"],
    "rainy":        ["Indoor-Friendly"],
    "snow":         ["Indoor-Friendly"],
    "foggy":        ["Indoor-Friendly", "Weather-Flexible"],
    "cloudy":       ["Outdoor-Friendly", "Weather-Flexible"],
    "clear":        ["Outdoor-Friendly"],
    "cold":         ["Indoor-Friendly"],
    "default":      [],
}

_DEFAULT_DURATIONS: dict[str, int] = {
    "food":     90,
    "museum":   120,
    "nature":   120,
    "park":     120,
    "shopping": 90,
}
_FALLBACK_DURATION: int = 60

_W_SIMILARITY: float = 10.0
_W_INTEREST:   float = 5.0
_W_WEATHER:    float = 2.0


def default_duration(activity: Activity) -> int:
    """Declared duration, else the per-category default."""
    if activity.duration_minutes:
        return int(activity.duration_minutes)
    keys = [activity.activity_type.lower()] + [t.lower() for t in activity.tags]
    for key in keys:
        if key in _DEFAULT_DURATIONS:
            return _DEFAULT_DURATIONS[key]
    return _FALLBACK_DURATION


def time_of_day_for_hour(hour: int) -> str:
    """6–11 morning, 12–17 afternoon, otherwise evening."""
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    return "evening"


def budget_category_for(budget: Optional[float], num_days: int = 1) -> Optional[str]:
    """Trip budget spread over the days, mapped onto an activity budget category."""
    if budget is None:
        return None
    per_day = budget / max(1, num_days)
    if per_day <= 0:
        return "free"
    if per_day < config.BUDGET_MID_PER_DAY:
        return "budget"
    if per_day < config.BUDGET_PREMIUM_PER_DAY:
        return "mid"
    return "premium"


# ─────────────────────────────────────────────────────────────────────────────
# Request / result dataclasses
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class SearchContext:
    """
    Per-request ranking context.

    weather:      internal condition string ("clear", "rainy", ...)
    budget:       budget category the traveler prefers ("free" | "budget" | ...)
    time_of_day:  morning | afternoon | evening (None = no temporal boost)
    target_count: desired number of candidates (None = all survivors)
    """
    interests: list[str] = field(default_factory=list)
    weather: str = "default"
    budget: Optional[str] = None
    group_size: int = 1
    time_of_day: Optional[str] = None
    target_count: Optional[int] = None


@dataclass
class CandidateSet:
    candidates: list[RankedCandidate]
    processed: ProcessedQuery
    queries: list[str] = field(default_factory=list)
    filter_recommendations: list[str] = field(default_factory=list)
    degraded: bool = False
    reason_code: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "candidates":             [c.to_dict() for c in self.candidates],
            "query_analysis":         self.processed.to_dict(),
            "queries":                list(self.queries),
            "filter_recommendations": list(self.filter_recommendations),
            "degraded":               self.degraded,
            "reason_code":            self.reason_code,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Pipeline
# ─────────────────────────────────────────────────────────────────────────────

class RetrievalPipeline:
    """
    Long-lived; construct once with the shared index manager and inject.

    Args:
        index_manager:     Owner of the current SearchIndex.
        similarity_search: External similarity collaborator (None → token search).
        cache:             Search-response cache (default: configured backend);
                           cleared whenever the index manager swaps in a new index.
    """

    def __init__(
        self,
        index_manager: SearchIndexManager,
        similarity_search: Optional[SimilaritySearch] = None,
        query_processor: Optional[QueryProcessor] = None,
        optimizer: Optional[SearchOptimizer] = None,
        cache: TTLCache | RedisCache | None = None,
        top_k: int = config.SEARCH_TOP_K,
        timeout_s: float = config.SEARCH_TIMEOUT_S,
        min_score: float = config.MIN_COMPOSITE_SCORE,
        diversity_ratio: float = config.DIVERSITY_CAP_RATIO,
        max_workers: int = 8,
    ) -> None:
        self._index = index_manager
        self._search = similarity_search
        self._qp = query_processor or QueryProcessor()
        self._optimizer = optimizer or SearchOptimizer()
        self._cache = cache if cache is not None else make_cache(
            "search", config.SEARCH_CACHE_TTL, config.SEARCH_CACHE_MAX)
        self._top_k = top_k
        self._timeout_s = timeout_s
        self._min_score = min_score
        self._diversity_ratio = diversity_ratio
        self._max_workers = max_workers
        index_manager.add_swap_listener(self._on_index_swap)

    # ── public API ────────────────────────────────────────────────────────

    def build_candidates(self, query: str, context: SearchContext) -> CandidateSet:
        self._index.get_index()   # a due rebuild happens before any hit is cached
        processed = self._qp.process(query)
        queries = self.build_queries(query, processed, context)

        results, failures = self._run_queries(queries)
        degraded = self._search is None or failures == len(queries)
        if degraded:
            logger.warning(
                "Similarity search unavailable (%d/%d queries failed): token search fallback",
                failures, len(queries),
            )
            results = [self._token_hits(q) for q in queries]

        hits = self.merge_hits(results)
        scored = self._score(hits, context)
        survivors = [c for c in scored if c.score >= self._min_score]
        capped = self.apply_diversity_cap(survivors, context.target_count)
        ranked = self._optimizer.optimize(capped, processed, context)

        logger.info(
            "buildCandidates: %d queries, %d hits, %d ≥ min score, %d after diversity cap",
            len(queries), len(hits), len(survivors), len(ranked),
        )
        return CandidateSet(
            candidates             = ranked,
            processed              = processed,
            queries                = queries,
            filter_recommendations = self._optimizer.filter_recommendations(processed, context),
            degraded               = degraded,
            reason_code            = ReasonCode.RETRIEVAL_UNAVAILABLE.value if degraded else None,
        )

    def build_queries(self, query: str, processed: ProcessedQuery, context: SearchContext) -> list[str]:
        """Base query (enhanced prompt) first, then one per interest."""
        enhanced = " ".join([query, *INTENT_EXPANSIONS.get(processed.intent.primary, [])]).strip()
        queries = [enhanced] + [f"{i} activities {query}".strip() for i in context.interests]
        return list(dict.fromkeys(q for q in queries if q))

    @staticmethod
    def merge_hits(results: list[list[SearchHit]]) -> list[SearchHit]:
        """Flatten in query order; the first hit for an activity id wins."""
        seen: set[str] = set()
        merged: list[SearchHit] = []
        for hits in results:
            for hit in hits:
                if hit.activity_id in seen:
                    continue
                seen.add(hit.activity_id)
                merged.append(hit)
        return merged

    @staticmethod
    def composite_score(activity: Activity, similarity: float, interests: list[str], weather: str) -> float:
        tags = [t.lower() for t in activity.tags]
        interest_matches = sum(
            1 for i in interests if any(i.lower() in t or t in i.lower() for t in tags)
        )
        allowed = {t.lower() for t in WEATHER_TAG_FILTERS.get(weather, WEATHER_TAG_FILTERS["default"])}
        weather_matches = sum(1 for t in tags if t in allowed)
        return (
            similarity * _W_SIMILARITY
            + (interest_matches / max(1, len(interests))) * _W_INTEREST
            + weather_matches * _W_WEATHER
        )

    def apply_diversity_cap(
        self,
        candidates: list[RankedCandidate],
        target_count: Optional[int] = None,
    ) -> list[RankedCandidate]:
        """
        Keep candidates best-first while no activity type exceeds
        floor(ratio × target) (at least 1); truncate to the target.
        """
        if not candidates:
            return []
        target = min(target_count or len(candidates), len(candidates))
        cap = max(1, math.floor(self._diversity_ratio * target))
        ordered = sorted(candidates, key=lambda c: (-c.score, c.activity_id))
        per_type: dict[str, int] = {}
        kept: list[RankedCandidate] = []
        for cand in ordered:
            kind = cand.activity.activity_type.lower()
            if per_type.get(kind, 0) >= cap:
                continue
            per_type[kind] = per_type.get(kind, 0) + 1
            kept.append(cand)
            if len(kept) >= target:
                break
        return kept

    # ── internals ─────────────────────────────────────────────────────────

    def _run_queries(self, queries: list[str]) -> tuple[list[list[SearchHit]], int]:
        """Issue all queries concurrently; returns (results in query order, failure count)."""
        if self._search is None:
            return [[] for _ in queries], len(queries)

        results: list[list[SearchHit]] = [[] for _ in queries]
        pending: dict = {}
        failures = 0
        to_fetch: list[int] = []
        for i, q in enumerate(queries):
            cached = self._cache.get(self._cache_key(q))
            if cached is None:
                to_fetch.append(i)
            else:
                results[i] = [SearchHit.from_dict(h) for h in cached]

        executor = ThreadPoolExecutor(max_workers=min(self._max_workers, max(1, len(queries))))
        try:
            for i in to_fetch:
                pending[executor.submit(self._search.search, queries[i], self._top_k)] = i
            done, not_done = wait(pending, timeout=self._timeout_s)
            for fut in not_done:
                fut.cancel()
                failures += 1
                logger.warning("Similarity query timed out: %r", queries[pending[fut]])
            for fut in done:
                i = pending[fut]
                try:
                    hits = fut.result()
                except Exception as exc:
                    failures += 1
                    logger.warning("Similarity query failed: %r (%s)", queries[i], exc)
                    continue
                results[i] = hits
                self._cache.set(self._cache_key(queries[i]), [h.to_dict() for h in hits])
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return results, failures

    def _on_index_swap(self, index: SearchIndex) -> None:
        self._cache.clear()
        logger.info("Search cache cleared for index built at %.0f", index.built_at)

    def _cache_key(self, query: str) -> str:
        return hashlib.sha1(f"{query}|{self._top_k}".encode("utf-8")).hexdigest()

    def _token_hits(self, query: str) -> list[SearchHit]:
        """Token-search hits with scores normalised so the best hit is 1.0."""
        scored = self._index.search_by_tokens(query, limit=self._top_k)
        if not scored:
            return []
        best = scored[0][1] or 1.0
        return [
            SearchHit(ia.activity_id, score / best, {"title": ia.activity.title, "source": "tokens"})
            for ia, score in scored
        ]

    def _score(self, hits: list[SearchHit], context: SearchContext) -> list[RankedCandidate]:
        index = self._index.get_index()
        out: list[RankedCandidate] = []
        for hit in hits:
            indexed = index.activities.get(hit.activity_id)
            if indexed is None:
                continue
            activity = indexed.activity
            score = self.composite_score(activity, hit.similarity, context.interests, context.weather)
            out.append(RankedCandidate(
                activity         = activity,
                similarity       = hit.similarity,
                score            = score,
                reasons          = [f"Similarity {hit.similarity:.2f}", f"Composite {score:.2f}"],
                popularity_score = indexed.popularity_score,
                time_slot        = indexed.time_slot,
                duration_minutes = default_duration(activity),
            ))
        return out
