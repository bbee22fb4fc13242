"""
modules/search/query_processor.py
-----------------------------------
Free-text request → intent + entities + expanded query bundle.

Intent
  Each fixed pattern set scores matched / pattern-size.  Primary = highest
  (default "exploration"), secondary = next two intents with any match,
  confidence = primary score (0.3 when nothing matched).

Entities
  activities:   activity-type groups (park, museum, restaurant, ...)
  locations:    known place names (config.KNOWN_LOCATIONS)
  time_refs:    morning / afternoon / evening / weekend / weekday
  preferences:  budget-friendly, luxury, family-friendly, romantic,
                 solo-friendly, accessible

Expansion
  original text, intent expansion phrases, synonym substitutions,
  entity-derived related terms, negative terms for the primary intent.

Keywords match at a word start ("eat" matches "eating", not "great").
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

import config


# ─────────────────────────────────────────────────────────────────────────────
# Vocabularies
# ─────────────────────────────────────────────────────────────────────────────

INTENT_PATTERNS: dict[str, list[str]] = {
    "exploration": ["explore", "discover", "find", "see", "visit", "check out"],
    "relaxation":  ["relax", "chill", "peaceful", "quiet", "calm", "serene"],
    "adventure":   ["adventure", "exciting", "thrilling", "active", "challenging"],
    "cultural":    ["culture", "history", "traditional", "heritage", "local", "authentic"],
    "scenic":      ["beautiful", "scenic", "view", "panoramic", "picturesque", "stunning"],
    "dining":      ["eat", "food", "restaurant", "cuisine", "taste", "dining", "delicious"],
    "shopping":    ["shop", "buy", "market", "souvenir", "local products", "handicrafts"],
    "photography": ["photo", "instagram", "picture", "photogenic", "capture", "shoot"],
}

ACTIVITY_SYNONYMS: dict[str, list[str]] = {
    "park":       ["garden", "green", "nature", "outdoor", "places", "beautiful"],
    "museum":     ["gallery", "art", "exhibit", "culture"],
    "restaurant": ["food", "dining", "eat", "cuisine"],
    "shopping":   ["mall", "market", "store", "buy", "night market"],
    "beach":      ["coast", "shore", "sand", "ocean"],
    "temple":     ["church", "shrine", "religious", "worship"],
    "mountain":   ["hill", "peak", "climb", "hike", "view"],
    "lake":       ["water", "pond", "river", "stream"],
    "trail":      ["path", "hike", "trek", "walkway", "route"],
    "church":     ["cathedral", "chapel", "religious site", "place of worship"],
    "hotel":      ["accommodation", "lodging", "resort", "inn"],
}

TIME_PATTERNS: dict[str, list[str]] = {
    "morning":   ["morning", "early", "sunrise", "dawn"],
    "afternoon": ["afternoon", "lunch", "midday"],
    "evening":   ["evening", "sunset", "night", "dinner", "late"],
    "weekend":   ["weekend", "saturday", "sunday"],
    "weekday":   ["weekday", "monday", "tuesday", "wednesday", "thursday", "friday"],
}

PREFERENCE_PATTERNS: dict[str, list[str]] = {
    "budget-friendly": ["cheap", "budget", "affordable"],
    "luxury":          ["luxury", "premium", "expensive"],
    "family-friendly": ["family", "kids", "children"],
    "romantic":        ["romantic", "couple", "date"],
    "solo-friendly":   ["solo", "alone", "myself"],
    "accessible":      ["accessible", "wheelchair", "elderly"],
}

INTENT_EXPANSIONS: dict[str, list[str]] = {
    "exploration": ["sightseeing", "tourist attractions", "must-see places"],
    "relaxation":  ["peaceful places", "quiet spots", "zen locations"],
    "adventure":   ["outdoor activities", "hiking trails", "exciting experiences"],
    "cultural":    ["heritage sites", "museums", "traditional places"],
    "scenic":      ["viewpoints", "photo spots", "beautiful locations"],
    "dining":      ["local cuisine", "restaurants", "food experiences"],
    "shopping":    ["markets", "local products", "souvenir shops"],
    "photography": ["instagrammable spots", "photo opportunities", "scenic views"],
}

RELATED_TERMS: dict[str, list[str]] = {
    "park":       ["outdoor", "nature", "recreation", "walking"],
    "museum":     ["art", "history", "culture", "education"],
    "shopping":   ["local", "vendors", "souvenirs", "food"],
    "restaurant": ["cuisine", "dining", "local food", "taste"],
    "mountain":   ["scenery", "photography", "landscape", "view"],
    "trail":      ["hiking", "nature", "exercise", "outdoor"],
    "church":     ["architecture", "history", "spiritual", "peaceful"],
    "temple":     ["architecture", "spiritual", "peaceful"],
    "lake":       ["boating", "scenic", "relaxing"],
    "beach":      ["swimming", "sunset", "relaxing"],
    "hotel":      ["accommodation", "comfort", "service", "amenities"],
}

TIME_RELATED_TERMS: dict[str, list[str]] = {
    "morning":   ["fresh air", "sunrise", "peaceful", "quiet"],
    "afternoon": ["active", "busy", "warm", "social"],
    "evening":   ["romantic", "dinner", "nightlife", "relaxed"],
    "weekend":   ["crowded", "family time", "leisure", "popular"],
    "weekday":   ["quiet", "less crowded", "peaceful", "local"],
}

NEGATIVE_TERMS: dict[str, list[str]] = {
    "relaxation": ["crowded", "noisy", "busy", "chaotic"],
    "adventure":  ["boring", "inactive", "sedentary", "passive"],
    "cultural":   ["modern", "commercial", "touristy", "artificial"],
    "scenic":     ["ugly", "industrial", "blocked view", "construction"],
}

_DEFAULT_INTENT = "exploration"
_DEFAULT_CONFIDENCE = 0.3


@lru_cache(maxsize=512)
def _word_start_re(phrase: str) -> re.Pattern:
    return re.compile(r"\b" + re.escape(phrase))


def mentions(text: str, phrase: str) -> bool:
    """True when ``phrase`` occurs in ``text`` starting at a word boundary."""
    return _word_start_re(phrase.lower()).search(text) is not None


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


# ─────────────────────────────────────────────────────────────────────────────
# Result dataclasses
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class QueryEntities:
    activities: list[str] = field(default_factory=list)
    locations: list[str] = field(default_factory=list)
    time_refs: list[str] = field(default_factory=list)
    preferences: list[str] = field(default_factory=list)


@dataclass
class QueryIntent:
    primary: str = _DEFAULT_INTENT
    secondary: list[str] = field(default_factory=list)
    confidence: float = _DEFAULT_CONFIDENCE
    scores: dict[str, float] = field(default_factory=dict)


@dataclass
class ExpandedQuery:
    original: str
    expanded: list[str] = field(default_factory=list)
    synonyms: list[str] = field(default_factory=list)
    related_terms: list[str] = field(default_factory=list)
    negative_terms: list[str] = field(default_factory=list)


@dataclass
class ProcessedQuery:
    intent: QueryIntent
    entities: QueryEntities
    expansion: ExpandedQuery

    def to_dict(self) -> dict:
        return {
            "intent": {
                "primary":    self.intent.primary,
                "secondary":  list(self.intent.secondary),
                "confidence": round(self.intent.confidence, 3),
            },
            "entities": {
                "activities":  self.entities.activities,
                "locations":   self.entities.locations,
                "time_refs":   self.entities.time_refs,
                "preferences": self.entities.preferences,
            },
            "expansion": {
                "original":       self.expansion.original,
                "expanded":       self.expansion.expanded,
                "synonyms":       self.expansion.synonyms,
                "related_terms":  self.expansion.related_terms,
                "negative_terms": self.expansion.negative_terms,
            },
        }


# ─────────────────────────────────────────────────────────────────────────────
# QueryProcessor
# ─────────────────────────────────────────────────────────────────────────────

class QueryProcessor:
    """Stateless classifier/expander; holds only the known-location list."""

    def __init__(self, known_locations: Optional[list[str]] = None) -> None:
        self._locations = [l.lower() for l in (known_locations if known_locations is not None
                                               else config.KNOWN_LOCATIONS)]

    def process(self, query: str) -> ProcessedQuery:
        text = query.lower()
        intent = self.classify_intent(text)
        entities = self.extract_entities(text)
        expansion = self.expand(query, intent, entities)
        return ProcessedQuery(intent=intent, entities=entities, expansion=expansion)

    # ── intent ────────────────────────────────────────────────────────────

    def classify_intent(self, text: str) -> QueryIntent:
        text = text.lower()
        scores: dict[str, float] = {}
        for intent, patterns in INTENT_PATTERNS.items():
            matched = sum(1 for p in patterns if mentions(text, p))
            if matched:
                scores[intent] = matched / len(patterns)
        if not scores:
            return QueryIntent()
        # stable: ties keep the pattern-table order
        ranked = sorted(scores.items(), key=lambda kv: -kv[1])
        return QueryIntent(
            primary    = ranked[0][0],
            secondary  = [name for name, _ in ranked[1:3]],
            confidence = ranked[0][1],
            scores     = scores,
        )

    # ── entities ──────────────────────────────────────────────────────────

    def extract_entities(self, text: str) -> QueryEntities:
        text = text.lower()
        return QueryEntities(
            activities  = [a for a, syns in ACTIVITY_SYNONYMS.items()
                           if mentions(text, a) or any(mentions(text, s) for s in syns)],
            locations   = [loc for loc in self._locations if loc in text],
            time_refs   = [t for t, pats in TIME_PATTERNS.items() if any(mentions(text, p) for p in pats)],
            preferences = [p for p, pats in PREFERENCE_PATTERNS.items() if any(mentions(text, w) for w in pats)],
        )

    # ── expansion ─────────────────────────────────────────────────────────

    def expand(self, query: str, intent: QueryIntent, entities: QueryEntities) -> ExpandedQuery:
        text = query.lower()
        expanded: list[str] = [query]
        synonyms: list[str] = []
        related: list[str] = []

        expanded.extend(INTENT_EXPANSIONS.get(intent.primary, []))

        for term, term_syns in ACTIVITY_SYNONYMS.items():
            if mentions(text, term):
                synonyms.extend(term_syns)
                pattern = re.compile(re.escape(term), re.IGNORECASE)
                expanded.extend(pattern.sub(syn, query) for syn in term_syns)

        for activity in entities.activities:
            related.extend(RELATED_TERMS.get(activity, []))
        if entities.time_refs:
            related.extend(TIME_RELATED_TERMS.get(entities.time_refs[0], []))

        return ExpandedQuery(
            original       = query,
            expanded       = _dedupe(expanded),
            synonyms       = _dedupe(synonyms),
            related_terms  = _dedupe(related),
            negative_terms = list(NEGATIVE_TERMS.get(intent.primary, [])),
        )
