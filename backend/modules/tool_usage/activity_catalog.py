"""
modules/tool_usage/activity_catalog.py
----------------------------------------
Activity catalog: static reference data the search index is built from.

Two sources:
  1. Built-in seed list (_SEED_ACTIVITIES): Baguio City, used in stub mode
     and by the test-suite.
  2. A JSON file (list of activity dicts) passed to load_catalog(path),
     e.g. an export from the content team.

Activities are immutable once loaded; the catalog is re-read only when the
index manager is explicitly rebuilt.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from schemas.activity import Activity

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Seed data
# ─────────────────────────────────────────────────────────────────────────────

_SEED_ACTIVITIES: list[dict] = [
    {
        "activity_id": "burnham-park", "title": "Burnham Park",
        "description": "Famous central park with a scenic lake, boating and garden walks. Free entry.",
        "tags": ["Nature", "Outdoor-Friendly", "Family", "Park"],
        "time": "6:00 AM - 8:00 PM", "lat": 16.4123, "lon": 120.5937,
        "popularity": 90, "price": 0, "budget_category": "free", "activity_type": "Nature",
    },
    {
        "activity_id": "mines-view", "title": "Mines View Park",
        "description": "Iconic overlook with a panoramic mountain view and souvenir stalls.",
        "tags": ["Nature", "Outdoor-Friendly", "Sightseeing", "Photography"],
        "time": "6:00 AM - 6:00 PM", "lat": 16.4197, "lon": 120.6280,
        "popularity": 85, "price": 0, "budget_category": "free", "activity_type": "Nature",
    },
    {
        "activity_id": "botanical-garden", "title": "Botanical Garden",
        "description": "Quiet garden with peaceful trails and native plants, relaxing morning stroll.",
        "tags": ["Nature", "Outdoor-Friendly", "Relaxation", "Park"],
        "time": "7:00 AM - 5:00 PM", "lat": 16.4143, "lon": 120.6137,
        "popularity": 70, "price": 0, "budget_category": "free", "activity_type": "Nature",
    },
    {
        "activity_id": "bencab-museum", "title": "BenCab Museum",
        "description": "Art museum with heritage galleries of Cordillera culture and a cafe.",
        "tags": ["Culture", "Indoor-Friendly", "Art", "Museum"],
        "time": "9:00 AM - 6:00 PM", "lat": 16.4104, "lon": 120.5500,
        "popularity": 88, "price": 300, "budget_category": "mid", "activity_type": "Museum",
    },
    {
        "activity_id": "baguio-museum", "title": "Baguio Museum",
        "description": "History museum with traditional artifacts of the highland tribes.",
        "tags": ["Culture", "Indoor-Friendly", "History", "Museum"],
        "time": "9:00 AM - 5:00 PM", "lat": 16.4097, "lon": 120.6003,
        "popularity": 60, "price": 100, "budget_category": "budget", "activity_type": "Museum",
    },
    {
        "activity_id": "tam-awan", "title": "Tam-awan Village",
        "description": "Reconstructed heritage village with traditional huts, art workshops and a view.",
        "tags": ["Culture", "Weather-Flexible", "Art", "Heritage"],
        "time": "8:00 AM - 6:00 PM", "lat": 16.4290, "lon": 120.5755,
        "popularity": 75, "price": 100, "budget_category": "budget", "activity_type": "Museum",
    },
    {
        "activity_id": "night-market", "title": "Harrison Road Night Market",
        "description": "Popular night market for street food, ukay-ukay shopping and souvenirs.",
        "tags": ["Shopping", "Food", "Outdoor-Friendly", "Nightlife"],
        "time": "9:00 PM - 2:00 AM", "lat": 16.4108, "lon": 120.5965,
        "popularity": 80, "price": 200, "budget_category": "budget", "activity_type": "Shopping",
    },
    {
        "activity_id": "public-market", "title": "Baguio Public Market",
        "description": "Central market to buy strawberries, local products and handicrafts.",
        "tags": ["Shopping", "Food", "Indoor-Friendly", "Local"],
        "time": "6:00 AM - 7:00 PM", "lat": 16.4149, "lon": 120.5967,
        "popularity": 72, "price": 150, "budget_category": "budget", "activity_type": "Shopping",
    },
    {
        "activity_id": "session-road-cafe", "title": "Session Road Cafe Crawl",
        "description": "Dining along the central street: coffee, cuisine and delicious pastries.",
        "tags": ["Food", "Indoor-Friendly", "Dining"],
        "time": "7:00 AM - 10:00 PM", "lat": 16.4116, "lon": 120.5988,
        "popularity": 78, "price": 400, "budget_category": "mid", "activity_type": "Food",
    },
    {
        "activity_id": "good-shepherd", "title": "Good Shepherd Convent",
        "description": "Famous stop for ube jam and local delicacies with a hillside view.",
        "tags": ["Food", "Shopping", "Weather-Flexible"],
        "time": "8:00 AM - 5:00 PM", "lat": 16.4205, "lon": 120.6260,
        "popularity": 82, "price": 250, "budget_category": "budget", "activity_type": "Food",
    },
    {
        "activity_id": "cathedral", "title": "Baguio Cathedral",
        "description": "Landmark church with historic architecture, quiet and serene.",
        "tags": ["Culture", "Indoor-Friendly", "Religious", "History"],
        "time": "6:00 AM - 7:00 PM", "lat": 16.4124, "lon": 120.5982,
        "popularity": 76, "price": 0, "budget_category": "free", "activity_type": "Tour",
    },
    {
        "activity_id": "camp-john-hay", "title": "Camp John Hay Trails",
        "description": "Pine forest hiking trail with adventure park and zipline, exciting outdoor trek.",
        "tags": ["Adventure", "Outdoor-Friendly", "Nature", "Hiking"],
        "time": "7:00 AM - 5:00 PM", "lat": 16.3976, "lon": 120.6140,
        "popularity": 83, "price": 500, "budget_category": "mid", "activity_type": "Nature",
    },
    {
        "activity_id": "wright-park", "title": "Wright Park",
        "description": "Scenic park with pony rides and the Pool of Pines, calm afternoon walk.",
        "tags": ["Nature", "Outdoor-Friendly", "Family", "Park"],
        "time": "7:00 AM - 6:00 PM", "lat": 16.4165, "lon": 120.6163,
        "popularity": 68, "price": 0, "budget_category": "free", "activity_type": "Nature",
    },
    {
        "activity_id": "strawberry-farm", "title": "La Trinidad Strawberry Farm",
        "description": "Pick strawberries in the morning at the farm, scenic valley view.",
        "tags": ["Nature", "Outdoor-Friendly", "Food", "Family"],
        "time": "6:00 AM - 5:00 PM", "lat": 16.4560, "lon": 120.5890,
        "popularity": 79, "price": 350, "budget_category": "budget", "activity_type": "Nature",
    },
    {
        "activity_id": "sm-baguio", "title": "SM City Baguio",
        "description": "Open-air mall for shopping, dining and cinema; good on rainy days.",
        "tags": ["Shopping", "Indoor-Friendly", "Weather-Flexible"],
        "time": "10:00 AM - 9:00 PM", "lat": 16.4090, "lon": 120.5995,
        "popularity": 74, "price": 0, "budget_category": "mid", "activity_type": "Shopping",
    },
    {
        "activity_id": "ili-likha", "title": "Ili-Likha Artist Village",
        "description": "Quirky artist village with food stalls and murals, photogenic corners.",
        "tags": ["Culture", "Food", "Art", "Weather-Flexible", "Photography"],
        "time": "10:00 AM - 9:00 PM", "lat": 16.4113, "lon": 120.5975,
        "popularity": 66, "price": 200, "budget_category": "budget", "activity_type": "Food",
    },
    {
        "activity_id": "bar-crawl", "title": "Legarda Road Bars",
        "description": "Evening live music and craft beer along Legarda road.",
        "tags": ["Nightlife", "Indoor-Friendly", "Drinks"],
        "time": "6:00 PM - 1:00 AM", "lat": 16.4150, "lon": 120.5920,
        "popularity": 64, "price": 600, "budget_category": "mid", "activity_type": "Nightlife",
    },
    {
        "activity_id": "lions-head", "title": "Lion's Head",
        "description": "Roadside landmark sculpture, open 24 hours, quick photo stop.",
        "tags": ["Sightseeing", "Outdoor-Friendly", "Photography"],
        "time": "24 hours", "lat": 16.3780, "lon": 120.6020,
        "popularity": 58, "price": 0, "budget_category": "free", "activity_type": "Tour",
    },
]


# ─────────────────────────────────────────────────────────────────────────────
# Loader
# ─────────────────────────────────────────────────────────────────────────────

def load_catalog(path: str | Path | None = None) -> list[Activity]:
    """
    Return the activity catalog.

    Args:
        path: Optional JSON file containing a list of activity dicts.
              None → built-in seed list.

    Rows missing a title are skipped (logged); duplicate ids keep the first row.
    """
    if path is None:
        rows = _SEED_ACTIVITIES
    else:
        rows = json.loads(Path(path).read_text(encoding="utf-8"))

    activities: list[Activity] = []
    seen: set[str] = set()
    for row in rows:
        if not row.get("title"):
            logger.warning("Skipping catalog row without title: %r", row)
            continue
        activity = Activity.from_dict(row)
        if activity.activity_id in seen:
            continue
        seen.add(activity.activity_id)
        activities.append(activity)
    return activities
