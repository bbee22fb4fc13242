"""
main.py
--------
Command-line entry point for the city itinerary engine.

  Stage 1: Candidate retrieval and ranking
  Stage 2: Traffic-aware admission
  Stage 3: Day scheduling (optionally seeded by the drafting service)
  Stage 4: Plan persistence and refresh evaluation

Run:
  python main.py "museums and local food" --days 2
  python main.py "parks" --interests nature,photography --refresh
  python main.py --events refresh

Flags:
  --days N          trip length (default 1)
  --interests a,b   comma-separated interest list
  --refresh         evaluate the new plan for changes right after saving it
  --json            also print the machine-readable plan
  --events STREAM   print the structured event log for STREAM and exit

Stub providers are on by default (USE_STUB_LLM / USE_STUB_TRAFFIC /
USE_STUB_WEATHER); see config.py.
"""

from __future__ import annotations
import json
import logging
import sys

import config
from itinerary_generator import GenerationResult, ItineraryEngine
from llm import require_credentials
from modules.observability.logger import StructuredLogger
from schemas.refresh import PlanRequest

_DEFAULT_QUERY = "scenic parks, local food and museums"


def _flag_value(argv: list[str], flag: str) -> str | None:
    if flag not in argv:
        return None
    idx = argv.index(flag)
    if idx + 1 >= len(argv):
        print(f"Usage: python main.py ... {flag} <value>")
        sys.exit(1)
    return argv[idx + 1]


def _positional_query(argv: list[str]) -> str:
    skip = {"--days", "--interests", "--events"}
    words: list[str] = []
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg in skip:
            i += 2
            continue
        if not arg.startswith("--"):
            words.append(arg)
        i += 1
    return " ".join(words) or _DEFAULT_QUERY


def run_pipeline(
    query: str = _DEFAULT_QUERY,
    num_days: int = 1,
    interests: list[str] | None = None,
    engine: ItineraryEngine | None = None,
) -> GenerationResult:
    require_credentials()
    if config.USE_STUB_LLM:
        print("  [LLM] Running in stub mode (USE_STUB_LLM=true): no drafting, token search only.")

    engine = engine or ItineraryEngine()

    print("\n" + "=" * 60)
    print("  CITY ITINERARY PIPELINE")
    print("=" * 60)
    print(f"\n[Stage 1] Query: {query!r} | days={num_days} | interests={interests or []}")

    request = PlanRequest(query=query, interests=interests or [], num_days=num_days)
    result = engine.generate_itinerary(request, owner_id="cli")

    analysis = result.candidates.processed
    print(f"  Intent      : {analysis.intent.primary} (confidence {analysis.intent.confidence:.2f})")
    print(f"  Candidates  : {len(result.candidates.candidates)}"
          f"{'  [degraded: token search]' if result.candidates.degraded else ''}")
    for rec in result.candidates.filter_recommendations:
        print(f"  Hint        : {rec}")

    print("\n[Stage 2] Traffic admission")
    print(f"  Admitted {len(result.traffic.admitted)}, excluded {len(result.traffic.excluded)}")
    for cand, reading in result.traffic.excluded:
        print(f"    ✗ {cand.activity.title} ({reading.level.name}, {reading.error or reading.recommendation.value})")

    print("\n[Stage 3] Scheduling")
    if result.draft_strategy:
        print(f"  Draft decoded via '{result.draft_strategy}' strategy")
    print(f"  Weather: {result.weather.condition} {result.weather.temperature:.0f}°C"
          f"{' (low confidence)' if result.weather.low_confidence else ''}")

    print(f"\n[Stage 4] Plan {result.plan.plan_id} saved ({config.PLAN_STORE_BACKEND} store)")
    if result.reason_codes:
        print(f"  Reason codes: {', '.join(result.reason_codes)}")
    return result


def _print_itinerary(result: GenerationResult) -> None:
    width = 60
    print()
    print("═" * width)
    print(f"  ITINERARY  ({len(result.plan.draft.days)} day(s))")
    print("═" * width)
    for day in result.plan.draft.days:
        print(f"\n  Day {day.day_number}  ({day.total_duration} min of activities)")
        for note in day.notes:
            print(f"    ! {note}")
        for item in day.items:
            d = item.to_dict()
            name_col = item.activity.title[:30].ljust(30)
            tag = f"  [{item.traffic}]" if item.traffic else ""
            print(f"    {d['start_time']} – {d['end_time']}   {name_col}  ({item.duration} min){tag}")
    if result.plan.draft.unscheduled:
        print(f"\n  Not placed: {len(result.plan.draft.unscheduled)} candidate(s)")
    print()
    print("═" * width)
    print()


def _print_events(stream: str) -> None:
    records = StructuredLogger(enabled=True).read(stream)
    if not records:
        print(f"No events recorded for stream '{stream}'.")
        return
    for rec in records:
        print(f"{rec['timestamp']}  {rec['event_type']:<22} {json.dumps(rec['payload'], default=str)[:120]}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    argv = sys.argv[1:]

    _events_stream = _flag_value(argv, "--events")
    if _events_stream:
        _print_events(_events_stream)
        sys.exit(0)

    _days = int(_flag_value(argv, "--days") or 1)
    _interests = [s.strip() for s in (_flag_value(argv, "--interests") or "").split(",") if s.strip()]

    _engine = ItineraryEngine()
    result = run_pipeline(_positional_query(argv), _days, _interests, engine=_engine)
    _print_itinerary(result)

    if "--refresh" in argv:
        change = _engine.evaluate_plan(result.plan)
        print("REFRESH CHECK:")
        print(f"  {_engine.refresh_service.get_change_summary(change)}")
        print(f"  needs_refresh={change.needs_refresh} severity={change.severity.value} "
              f"confidence={change.confidence}")

    if "--json" in argv:
        print("PLAN (JSON):")
        print(json.dumps(result.plan.to_dict(), indent=2))
