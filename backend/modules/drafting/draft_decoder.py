"""
modules/drafting/draft_decoder.py
-----------------------------------
Defensive decode of the drafting service's free text into a typed Draft.

Expected shape (the prompt asks for it, nothing guarantees it):

    {"title": ..., "subtitle": ..., "items": [
        {"period": "Day 1 - Morning", "activities": [{"title", "description",
         "duration", "tags": [...]}, ...], "reason": ...}, ...]}

Strategies, first success wins:
    direct        json.loads on the whole text
    code_block    ```json fenced blocks
    braces        first brace-balanced {...} object
    repair        comments, trailing commas, unquoted keys, single quotes,
                  bare words inside arrays
    aggressive    repair + control characters stripped + truncated tail
                  closed off (open strings, brackets)
    structural    regex salvage of "title" fields into a single period

Every candidate is normalised and validated through pydantic models.
Output beyond DRAFT_MAX_CHARS or DRAFT_MAX_DEPTH is rejected before any
strategy runs.  decode_draft() returns DecodedDraft | DecodeError and never raises;
draft_or_empty() turns a DecodeError into the explicit empty marker.
"""

from __future__ import annotations
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

import config
from modules.errors import DraftingMalformedOutput, ReasonCode

logger = logging.getLogger(__name__)

EMPTY_STRATEGY = "empty"
_DEFAULT_PERIOD = "Day 1"
_MAX_TAIL_CUTS = 40


# ─────────────────────────────────────────────────────────────────────────────
# Typed draft
# ─────────────────────────────────────────────────────────────────────────────

class DraftActivity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1)
    description: str = ""
    duration: str = ""
    tags: list[str] = Field(default_factory=list)


class DraftPeriod(BaseModel):
    model_config = ConfigDict(extra="ignore")

    period: str = _DEFAULT_PERIOD
    activities: list[DraftActivity] = Field(default_factory=list)
    reason: Optional[str] = None


class Draft(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = "City Itinerary"
    subtitle: str = ""
    items: list[DraftPeriod] = Field(default_factory=list)

    def titles(self) -> list[str]:
        return [a.title for p in self.items for a in p.activities]


@dataclass
class DecodedDraft:
    draft: Draft
    strategy: str

    @property
    def is_empty(self) -> bool:
        return not self.draft.titles()

    def matches(self, known_titles: list[str]) -> list[str]:
        """Drafted titles that name a known activity (case-insensitive), in draft order."""
        by_key = {t.strip().lower(): t for t in known_titles}
        out: list[str] = []
        for title in self.draft.titles():
            hit = by_key.get(title.strip().lower())
            if hit is not None and hit not in out:
                out.append(hit)
        return out


@dataclass
class DecodeError:
    reason: str
    attempts: list[str] = field(default_factory=list)   # "strategy: error" per failed strategy
    reason_code: ReasonCode = ReasonCode.DRAFTING_MALFORMED_OUTPUT


DecodeOutcome = Union[DecodedDraft, DecodeError]


def draft_or_empty(outcome: DecodeOutcome) -> DecodedDraft:
    if isinstance(outcome, DecodedDraft):
        return outcome
    return DecodedDraft(draft=Draft(), strategy=EMPTY_STRATEGY)


# ─────────────────────────────────────────────────────────────────────────────
# Text repair helpers
# ─────────────────────────────────────────────────────────────────────────────

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL | re.IGNORECASE)
_LINE_COMMENT_RE = re.compile(r"(?<![:\"'])//[^\n]*")
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_UNQUOTED_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_$][A-Za-z0-9_$]*)\s*:")
_SINGLE_QUOTED_RE = re.compile(r"([:\[,]\s*)'((?:[^'\\]|\\.)*)'")
_BARE_ARRAY_WORD_RE = re.compile(r"([\[,]\s*)([A-Za-z][A-Za-z0-9 _\-]*?)(?=\s*[,\]])")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_ELLIPSIS_TAIL_RE = re.compile(r"(?:\.{2,}|…)\s*$")
_TITLE_RE = re.compile(r"[\"']?title[\"']?\s*:\s*[\"']([^\"'\n]+)[\"']")
_LITERALS = {"true", "false", "null"}


def balanced_object(text: str) -> Optional[str]:
    """First complete {...} in text, respecting strings; None when unbalanced."""
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def _from_first_brace(text: str) -> str:
    start = text.find("{")
    return text[start:] if start >= 0 else text


def repair(text: str) -> str:
    text = _BLOCK_COMMENT_RE.sub("", text)
    text = _LINE_COMMENT_RE.sub("", text)
    text = _UNQUOTED_KEY_RE.sub(r'\1"\2":', text)
    text = _SINGLE_QUOTED_RE.sub(lambda m: m.group(1) + json.dumps(m.group(2).replace("\\'", "'")), text)
    text = _BARE_ARRAY_WORD_RE.sub(
        lambda m: m.group(0) if m.group(2).strip() in _LITERALS else f'{m.group(1)}"{m.group(2).strip()}"',
        text,
    )
    text = _TRAILING_COMMA_RE.sub(r"\1", text)
    return text


def close_open_structures(text: str) -> str:
    """Terminate an open string and append the closers for unbalanced brackets."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]" and stack:
            stack.pop()
    if in_string:
        text += '"'
    text = re.sub(r"[,:\s]+$", "", text)
    return text + "".join(reversed(stack))


def _cut_points(text: str) -> list[int]:
    """Indices of commas outside strings, last first."""
    points: list[int] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == ",":
            points.append(i)
    return points[::-1]


# ─────────────────────────────────────────────────────────────────────────────
# Strategies (each returns parsed JSON or raises)
# ─────────────────────────────────────────────────────────────────────────────

def _direct(text: str) -> Any:
    return json.loads(text)


def _code_block(text: str) -> Any:
    for block in _FENCE_RE.findall(text):
        try:
            return json.loads(block)
        except json.JSONDecodeError:
            continue
    raise ValueError("no valid JSON in code blocks")


def _braces(text: str) -> Any:
    obj = balanced_object(text)
    if obj is None:
        raise ValueError("no balanced object")
    return json.loads(obj)


def _repair(text: str) -> Any:
    return json.loads(repair(balanced_object(text) or _from_first_brace(text)))


def _aggressive(text: str) -> Any:
    cleaned = _CONTROL_RE.sub("", _from_first_brace(text))
    cleaned = _ELLIPSIS_TAIL_RE.sub("", cleaned.rstrip())
    cleaned = repair(cleaned)
    try:
        return json.loads(close_open_structures(cleaned))
    except json.JSONDecodeError:
        pass
    # drop the last partial element and retry
    for cut in _cut_points(cleaned)[:_MAX_TAIL_CUTS]:
        try:
            return json.loads(close_open_structures(cleaned[:cut]))
        except json.JSONDecodeError:
            continue
    raise ValueError("could not close truncated structure")


def _structural(text: str) -> Any:
    titles = _TITLE_RE.findall(text)
    if not titles:
        raise ValueError("no title fields to salvage")
    return {"items": [{"period": _DEFAULT_PERIOD, "activities": [{"title": t.strip()} for t in titles]}]}


_STRATEGIES: list[tuple[str, Callable[[str], Any]]] = [
    ("direct",     _direct),
    ("code_block", _code_block),
    ("braces",     _braces),
    ("repair",     _repair),
    ("aggressive", _aggressive),
    ("structural", _structural),
]


# ─────────────────────────────────────────────────────────────────────────────
# Normalisation + validation
# ─────────────────────────────────────────────────────────────────────────────

def _as_activity(raw: Any) -> Optional[dict]:
    if not isinstance(raw, dict) or not isinstance(raw.get("title"), str) or not raw["title"].strip():
        return None
    tags = raw.get("tags")
    return {
        "title":       raw["title"].strip(),
        "description": str(raw.get("description") or ""),
        "duration":    str(raw.get("duration") or ""),
        "tags":        [str(t) for t in tags] if isinstance(tags, list) else [],
    }


def normalise(parsed: Any) -> dict:
    """Coerce loosely shaped JSON into the Draft layout."""
    if isinstance(parsed, list):
        parsed = {"items": parsed}
    if not isinstance(parsed, dict):
        raise ValueError("top level is not an object")

    periods: list[dict] = []
    loose: list[dict] = []
    for item in parsed.get("items") or []:
        if not isinstance(item, dict):
            continue
        if isinstance(item.get("activities"), list):
            periods.append({
                "period":     str(item.get("period") or item.get("day") or _DEFAULT_PERIOD),
                "activities": [a for a in map(_as_activity, item["activities"]) if a],
                "reason":     item.get("reason") if isinstance(item.get("reason"), str) else None,
            })
        else:
            activity = _as_activity(item)
            if activity:
                loose.append(activity)
    if loose:
        periods.append({"period": _DEFAULT_PERIOD, "activities": loose})

    out: dict[str, Any] = {"items": periods}
    for key in ("title", "subtitle"):
        if isinstance(parsed.get(key), str) and parsed[key]:
            out[key] = parsed[key]
    return out


def _check_bounds(text: str) -> None:
    """Reject output too large or too deeply nested to decode safely."""
    if len(text) > config.DRAFT_MAX_CHARS:
        raise DraftingMalformedOutput(f"drafting output too large ({len(text)} chars)")
    depth = deepest = 0
    in_string = escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in "[{":
            depth += 1
            deepest = max(deepest, depth)
        elif ch in "]}":
            depth = max(0, depth - 1)
    if deepest > config.DRAFT_MAX_DEPTH:
        raise DraftingMalformedOutput(f"drafting output nested {deepest} levels deep")


def decode_draft(text: Optional[str]) -> DecodeOutcome:
    if not text or not text.strip():
        return DecodeError(reason="empty drafting output")
    try:
        _check_bounds(text)
    except DraftingMalformedOutput as exc:
        logger.warning("Draft rejected: %s", exc)
        return DecodeError(reason=str(exc), reason_code=exc.reason)

    attempts: list[str] = []
    for name, strategy in _STRATEGIES:
        try:
            draft = Draft.model_validate(normalise(strategy(text)))
        except (ValueError, ValidationError, RecursionError) as exc:
            # json.JSONDecodeError is a ValueError
            attempts.append(f"{name}: {str(exc).splitlines()[0] if str(exc) else type(exc).__name__}")
            continue
        if name != "direct":
            logger.info("Draft decoded with %s strategy", name)
        return DecodedDraft(draft=draft, strategy=name)

    logger.warning("Draft decoding failed after %d strategies", len(attempts))
    return DecodeError(reason="all decode strategies failed", attempts=attempts)
