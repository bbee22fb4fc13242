"""
modules/search/search_index.py
--------------------------------
In-process search index over the activity catalog.

Per activity (title + description + tags):
  1. tokenize:        lowercase, strip punctuation, drop len ≤ 2 / stop words
  2. expand:          fixed synonym table + adjacent-word bigrams
  3. TF-IDF:          tf = count / len(tokens), idf = log(N / df)
  4. category scores: keyword table (nature, culture, food, shopping,
                       adventure, relaxation) → [0, 1]
  5. time slot:       morning | afternoon | evening | anytime from the
                       declared opening-time text
  6. popularity:      0.5 base + language bonuses, capped at 1.0
  7. embedding:       best-effort; failures are logged and skipped.  Vectors
                       are stacked into one row-normalised numpy matrix
                       once the build finishes

Inverted maps: token → ids, category → ids, time_slot → ids, tag → ids.

Lifecycle:
  SearchIndexManager is constructed once per process and injected.  build()
  creates a complete new SearchIndex and swaps the reference under a lock,
  so readers see either the old index or the fully built new one.
  get_index() rebuilds on demand when the index is older than
  INDEX_MAX_AGE_S or was built with a different schema version.
"""

from __future__ import annotations

import logging
import math
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

import numpy as np

import config
from schemas.activity import Activity, IndexedActivity

logger = logging.getLogger(__name__)

EmbedFn = Callable[[str], list[float]]


# ─────────────────────────────────────────────────────────────────────────────
# Fixed vocabularies
# ─────────────────────────────────────────────────────────────────────────────

STOP_WORDS: frozenset[str] = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "is", "are", "was", "were", "be", "been", "being", "have",
    "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "may", "might", "can", "must", "shall",
})

SYNONYMS: dict[str, list[str]] = {
    "beautiful": ["scenic", "stunning", "picturesque", "gorgeous"],
    "food":      ["cuisine", "dining", "restaurant", "eat", "meal"],
    "view":      ["scenery", "vista", "panorama", "overlook", "viewpoint"],
    "walk":      ["stroll", "hike", "trek", "trail", "path"],
    "shop":      ["market", "store", "buy", "purchase", "shopping"],
    "old":       ["historic", "heritage", "traditional", "ancient", "vintage"],
    "fun":       ["exciting", "entertaining", "enjoyable", "amusing"],
    "quiet":     ["peaceful", "calm", "serene", "tranquil", "relaxing"],
}

CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "nature":     ["nature", "park", "garden", "mountain", "view", "scenic", "outdoor"],
    "culture":    ["museum", "heritage", "history", "traditional", "art", "culture"],
    "food":       ["food", "restaurant", "cuisine", "dining", "eat", "taste", "market"],
    "shopping":   ["shop", "market", "buy", "store", "souvenir", "night"],
    "adventure":  ["adventure", "hiking", "trail", "climb", "explore", "trek"],
    "relaxation": ["peaceful", "quiet", "calm", "serene", "relaxing"],
}

TIME_SLOTS: tuple[str, ...] = ("morning", "afternoon", "evening", "anytime")

_CATEGORY_INDEX_MIN: float = 0.1     # only scores above this enter the category index
_TFIDF_BOOST_CAP:    float = 0.4
_POPULARITY_WORDS:   tuple[str, ...] = ("famous", "popular", "must-see", "iconic", "landmark")

_MORNING_RE = re.compile(r"\b[6-9]:\d\d\s*am\b")
_EVENING_RE = re.compile(r"\b(9|1[0-2]):\d\d\s*pm\b")


# ─────────────────────────────────────────────────────────────────────────────
# Text helpers (pure)
# ─────────────────────────────────────────────────────────────────────────────

def _raw_words(text: str) -> list[str]:
    return re.sub(r"[^\w\s]", " ", text.lower()).split()


def tokenize(text: str) -> list[str]:
    """Lowercase, strip punctuation, drop short tokens and stop words."""
    return [w for w in _raw_words(text) if len(w) > 2 and w not in STOP_WORDS]


def expand_tokens(tokens: Iterable[str]) -> list[str]:
    """Tokens + synonyms + adjacent-word bigrams, de-duplicated in order."""
    tokens = list(tokens)
    out: list[str] = []
    seen: set[str] = set()

    def _add(tok: str) -> None:
        if tok not in seen:
            seen.add(tok)
            out.append(tok)

    for tok in tokens:
        _add(tok)
        for syn in SYNONYMS.get(tok, ()):
            _add(syn)
    for left, right in zip(tokens, tokens[1:]):
        _add(f"{left} {right}")
    return out


def classify_time_slot(time_text: str) -> str:
    """Map a declared opening-time string to a time slot."""
    t = (time_text or "").lower()
    if "24 hours" in t or "anytime" in t:
        return "anytime"
    if "morning" in t or _MORNING_RE.search(t):
        return "morning"
    if "night" in t or _EVENING_RE.search(t):
        return "evening"
    if "pm" in t or "afternoon" in t:
        return "afternoon"
    if "am" in t:
        return "morning"
    return "anytime"


def popularity_from_text(text: str) -> float:
    """0.5 base, +0.2 "free", +0.1 per fame word, +0.1 central; cap 1.0."""
    t = text.lower()
    score = 0.5
    if "free" in t:
        score += 0.2
    score += 0.1 * sum(1 for w in _POPULARITY_WORDS if w in t)
    if "center" in t or "central" in t:
        score += 0.1
    return min(score, 1.0)


def category_scores_for(text: str, tfidf: dict[str, float]) -> dict[str, float]:
    """
    Score every category in [0, 1].

    matches / keywords, halved, plus 0.1 for any match, plus the summed TF-IDF
    weight of the matching keywords (capped).  Zero when no keyword appears.
    """
    t = text.lower()
    scores: dict[str, float] = {}
    for category, keywords in CATEGORY_KEYWORDS.items():
        matched = [k for k in keywords if k in t]
        if not matched:
            scores[category] = 0.0
            continue
        boost = min(sum(tfidf.get(k, 0.0) for k in matched), _TFIDF_BOOST_CAP)
        scores[category] = min(0.5 * len(matched) / len(keywords) + 0.1 + boost, 1.0)
    return scores


# ─────────────────────────────────────────────────────────────────────────────
# Index structure
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class SearchIndex:
    """One complete, immutable-once-built index generation."""
    token_index: dict[str, set[str]] = field(default_factory=dict)
    category_index: dict[str, set[str]] = field(default_factory=dict)
    time_slot_index: dict[str, set[str]] = field(default_factory=dict)
    tag_index: dict[str, set[str]] = field(default_factory=dict)
    embeddings: dict[str, list[float]] = field(default_factory=dict)
    embedding_ids: list[str] = field(default_factory=list)      # row order of embedding_matrix
    embedding_matrix: Optional[np.ndarray] = None               # unit rows, shape (n, dim)
    activities: dict[str, IndexedActivity] = field(default_factory=dict)
    built_at: float = 0.0            # epoch seconds
    version: str = config.INDEX_VERSION

    @property
    def count(self) -> int:
        return len(self.activities)

    def is_consistent(self) -> bool:
        """Every id referenced by an inverted map exists in the activity map."""
        for inverted in (self.token_index, self.category_index, self.time_slot_index, self.tag_index):
            for ids in inverted.values():
                if not ids <= self.activities.keys():
                    return False
        return self.embeddings.keys() <= self.activities.keys()

    def pack_embeddings(self) -> None:
        """Stack the stored vectors into unit-length rows, sorted by activity id.

        Vectors whose dimension differs from the most common one are left out
        of the matrix.  Zero vectors stay as zero rows.
        """
        if not self.embeddings:
            self.embedding_ids, self.embedding_matrix = [], None
            return
        dims: dict[int, int] = {}
        for vec in self.embeddings.values():
            dims[len(vec)] = dims.get(len(vec), 0) + 1
        dim = max(dims, key=lambda d: (dims[d], d))
        ids = sorted(aid for aid, vec in self.embeddings.items() if len(vec) == dim)
        if len(ids) < len(self.embeddings):
            logger.warning("Dropped %d embeddings not of dimension %d", len(self.embeddings) - len(ids), dim)
        matrix = np.asarray([self.embeddings[aid] for aid in ids], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        np.divide(matrix, norms, out=matrix, where=norms > 0)
        self.embedding_ids, self.embedding_matrix = ids, matrix


# ─────────────────────────────────────────────────────────────────────────────
# Manager
# ─────────────────────────────────────────────────────────────────────────────

class SearchIndexManager:
    """
    Long-lived owner of the current SearchIndex.

    Args:
        activities: Catalog rows to index.
        embed_fn:   Optional text → vector generator (best-effort).
        max_age_s:  Staleness threshold (default INDEX_MAX_AGE_S = 30 min).
        clock:      Injected for tests; returns epoch seconds.
    """

    def __init__(
        self,
        activities: list[Activity],
        embed_fn: Optional[EmbedFn] = None,
        max_age_s: float = config.INDEX_MAX_AGE_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._activities = list(activities)
        self._embed_fn = embed_fn
        self._max_age_s = max_age_s
        self._clock = clock
        self._index: Optional[SearchIndex] = None
        self._swap_lock = threading.Lock()
        self._build_lock = threading.Lock()
        self._swap_listeners: list[Callable[[SearchIndex], None]] = []

    # ── lifecycle ─────────────────────────────────────────────────────────

    def build(self) -> SearchIndex:
        """Build a complete new index and atomically replace the current one."""
        with self._build_lock:
            started = time.perf_counter()
            index = self._build_index(self._activities)
            with self._swap_lock:
                self._index = index
        logger.info(
            "Search index built: %d activities, %d tokens, %d embeddings in %.1f ms",
            index.count, len(index.token_index), len(index.embeddings),
            (time.perf_counter() - started) * 1000,
        )
        for listener in list(self._swap_listeners):
            try:
                listener(index)
            except Exception as exc:   # a failed listener never undoes the swap
                logger.warning("Index swap listener %r failed: %s", listener, exc)
        return index

    def add_swap_listener(self, listener: Callable[[SearchIndex], None]) -> None:
        """Call ``listener(new_index)`` after every swap, e.g. to drop cached hits."""
        self._swap_listeners.append(listener)

    def is_stale(self, index: Optional[SearchIndex] = None) -> bool:
        index = index if index is not None else self._current()
        if index is None:
            return True
        if index.version != config.INDEX_VERSION:
            return True
        return (self._clock() - index.built_at) > self._max_age_s

    def get_index(self) -> SearchIndex:
        """Current index, rebuilt first if missing or stale."""
        index = self._current()
        if index is None or self.is_stale(index):
            index = self.build()
        return index

    def _current(self) -> Optional[SearchIndex]:
        with self._swap_lock:
            return self._index

    # ── queries ───────────────────────────────────────────────────────────

    def get_activity(self, activity_id: str) -> Optional[IndexedActivity]:
        return self.get_index().activities.get(activity_id)

    def search_by_tokens(self, query: str, limit: int = 20) -> list[tuple[IndexedActivity, float]]:
        """
        Token search: hits / |expanded query tokens| + popularity × 0.2.

        Used directly by callers and as the degraded retrieval path when the
        similarity collaborator is unavailable.
        """
        index = self.get_index()
        query_tokens = expand_tokens(tokenize(query))
        if not query_tokens:
            return []
        hits: dict[str, int] = {}
        for tok in query_tokens:
            for aid in index.token_index.get(tok, ()):
                hits[aid] = hits.get(aid, 0) + 1
        scored = [
            (index.activities[aid], n / len(query_tokens) + index.activities[aid].popularity_score * 0.2)
            for aid, n in hits.items()
        ]
        scored.sort(key=lambda pair: (-pair[1], pair[0].activity_id))
        return scored[:limit]

    def filter_by_category(self, category: str, min_score: float = _CATEGORY_INDEX_MIN) -> list[IndexedActivity]:
        index = self.get_index()
        ids = index.category_index.get(category.lower(), set())
        found = [
            index.activities[aid] for aid in ids
            if index.activities[aid].category_scores.get(category.lower(), 0.0) >= min_score
        ]
        return sorted(found, key=lambda ia: (-ia.category_scores[category.lower()], ia.activity_id))

    def filter_by_time_slot(self, slot: str) -> list[IndexedActivity]:
        """Activities in ``slot`` plus those available any time."""
        index = self.get_index()
        ids = set(index.time_slot_index.get(slot.lower(), set()))
        ids |= index.time_slot_index.get("anytime", set())
        return [index.activities[aid] for aid in sorted(ids)]

    def filter_by_tags(self, tags: Iterable[str]) -> list[IndexedActivity]:
        """Activities carrying any of ``tags`` (case-insensitive)."""
        index = self.get_index()
        ids: set[str] = set()
        for tag in tags:
            ids |= index.tag_index.get(tag.lower(), set())
        return [index.activities[aid] for aid in sorted(ids)]

    def get_index_stats(self) -> dict:
        index = self.get_index()
        return {
            "total_activities":   index.count,
            "total_tokens":       len(index.token_index),
            "total_embeddings":   len(index.embeddings),
            "categories":         {c: len(ids) for c, ids in index.category_index.items()},
            "time_slots":         {s: len(ids) for s, ids in index.time_slot_index.items()},
            "total_tags":         len(index.tag_index),
            "built_at":           datetime.fromtimestamp(index.built_at, tz=timezone.utc).isoformat(),
            "version":            index.version,
            "age_seconds":        round(self._clock() - index.built_at, 1),
        }

    # ── build internals ───────────────────────────────────────────────────

    def _build_index(self, activities: list[Activity]) -> SearchIndex:
        index = SearchIndex(built_at=self._clock(), version=config.INDEX_VERSION)
        texts = {a.activity_id: a.searchable_text().lower() for a in activities}
        raw_tokens = {a.activity_id: tokenize(a.searchable_text()) for a in activities}
        df = self._document_frequency(raw_tokens, texts)
        n_docs = max(len(activities), 1)

        for activity in activities:
            aid = activity.activity_id
            tokens = raw_tokens[aid]
            tfidf = self._tfidf(tokens, df, n_docs)
            expanded = expand_tokens(tokens)
            indexed = IndexedActivity(
                activity         = activity,
                search_tokens    = expanded,
                category_scores  = category_scores_for(texts[aid], tfidf),
                time_slot        = classify_time_slot(activity.time),
                popularity_score = popularity_from_text(texts[aid]),
                last_updated     = datetime.fromtimestamp(index.built_at, tz=timezone.utc),
            )
            index.activities[aid] = indexed

            for tok in expanded:
                index.token_index.setdefault(tok, set()).add(aid)
            for category, score in indexed.category_scores.items():
                if score > _CATEGORY_INDEX_MIN:
                    index.category_index.setdefault(category, set()).add(aid)
            index.time_slot_index.setdefault(indexed.time_slot, set()).add(aid)
            for tag in activity.tags:
                index.tag_index.setdefault(tag.lower(), set()).add(aid)

            vector = self._embed(activity)
            if vector:
                index.embeddings[aid] = vector
        index.pack_embeddings()
        return index

    @staticmethod
    def _document_frequency(raw_tokens: dict[str, list[str]], texts: dict[str, str]) -> dict[str, int]:
        vocabulary = {tok for toks in raw_tokens.values() for tok in toks}
        vocabulary |= {k for kws in CATEGORY_KEYWORDS.values() for k in kws}
        return {tok: sum(1 for text in texts.values() if tok in text) for tok in vocabulary}

    @staticmethod
    def _tfidf(tokens: list[str], df: dict[str, int], n_docs: int) -> dict[str, float]:
        if not tokens:
            return {}
        counts: dict[str, int] = {}
        for tok in tokens:
            counts[tok] = counts.get(tok, 0) + 1
        return {
            tok: (c / len(tokens)) * math.log(n_docs / df[tok])
            for tok, c in counts.items()
            if df.get(tok)
        }

    def _embed(self, activity: Activity) -> Optional[list[float]]:
        if self._embed_fn is None:
            return None
        try:
            return self._embed_fn(activity.searchable_text())
        except Exception as exc:   # embedding is best-effort
            logger.warning("Embedding failed for %s: %s", activity.activity_id, exc)
            return None
