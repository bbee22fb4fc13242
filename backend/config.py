"""
config.py
---------
Central configuration for the itinerary engine.
All secrets loaded from environment variables: never hard-coded.

Tunable ranking / allocation constants live here too so they can be
overridden per deployment without touching module code.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the backend directory (if it exists) so env vars in that file
# are picked up by os.getenv() below.  Won't override vars already set in the shell.
_env_path = Path(__file__).parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path, override=False)


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


# ── LLM (drafting + embeddings) ───────────────────────────────────────────────
GEMINI_API_KEY: str       = os.getenv("GEMINI_API_KEY", "")
LLM_MODEL_NAME: str       = os.getenv("LLM_MODEL_NAME", "gemini-2.0-flash")
EMBEDDING_MODEL_NAME: str = os.getenv("EMBEDDING_MODEL_NAME", "text-embedding-004")

# Stub mode: no external LLM calls; drafting is skipped and the scheduler
# works from the ranked pool directly.  Set USE_STUB_LLM=false and supply
# GEMINI_API_KEY to enable real drafting / embeddings.
USE_STUB_LLM: bool = _flag("USE_STUB_LLM", "true")

# Drafting retry policy
DRAFT_MAX_ATTEMPTS: int     = int(os.getenv("DRAFT_MAX_ATTEMPTS", "3"))
DRAFT_BASE_DELAY_S: float   = float(os.getenv("DRAFT_BASE_DELAY_S", "1.0"))
DRAFT_MAX_DELAY_S: float    = float(os.getenv("DRAFT_MAX_DELAY_S", "8.0"))
DRAFT_JITTER_RATIO: float   = float(os.getenv("DRAFT_JITTER_RATIO", "0.25"))
# Drafting output larger or more deeply nested than this is rejected undecoded
DRAFT_MAX_CHARS: int        = int(os.getenv("DRAFT_MAX_CHARS", "200000"))
DRAFT_MAX_DEPTH: int        = int(os.getenv("DRAFT_MAX_DEPTH", "64"))

# ── Live traffic (TomTom Traffic Flow + Incidents) ────────────────────────────
# Obtain at: https://developer.tomtom.com/
USE_STUB_TRAFFIC: bool      = _flag("USE_STUB_TRAFFIC", "true")
TOMTOM_API_KEY: str         = os.getenv("TOMTOM_API_KEY", "")
TOMTOM_BASE_URL: str        = os.getenv("TOMTOM_BASE_URL", "https://api.tomtom.com/traffic/services")
TRAFFIC_TIMEOUT_S: float    = float(os.getenv("TRAFFIC_TIMEOUT_S", "10"))
TRAFFIC_CACHE_TTL: int      = int(os.getenv("TRAFFIC_CACHE_TTL", "300"))     # 5 minutes
TRAFFIC_BATCH_SIZE: int     = int(os.getenv("TRAFFIC_BATCH_SIZE", "5"))
TRAFFIC_BATCH_DELAY_S: float = float(os.getenv("TRAFFIC_BATCH_DELAY_S", "0.1"))
TRAFFIC_INCIDENT_RADIUS_DEG: float = 0.01    # bounding-box half-width for incident lookup

# ── Weather (OpenWeatherMap current weather) ──────────────────────────────────
USE_STUB_WEATHER: bool      = _flag("USE_STUB_WEATHER", "true")
OPENWEATHER_API_KEY: str    = os.getenv("OPENWEATHER_API_KEY", "")
OPENWEATHER_URL: str        = os.getenv("OPENWEATHER_URL", "https://api.openweathermap.org/data/2.5/weather")
WEATHER_TIMEOUT_S: float    = float(os.getenv("WEATHER_TIMEOUT_S", "10"))
WEATHER_DEFAULT_TEMP_C: float = 20.0   # benign fallback when the provider is down

# ── Search index / retrieval ──────────────────────────────────────────────────
INDEX_VERSION: str          = "2.0.0"
INDEX_MAX_AGE_S: int        = int(os.getenv("INDEX_MAX_AGE_S", "1800"))       # 30 minutes
SEARCH_TOP_K: int           = int(os.getenv("SEARCH_TOP_K", "30"))
SEARCH_TIMEOUT_S: float     = float(os.getenv("SEARCH_TIMEOUT_S", "8"))
SEARCH_CACHE_TTL: int       = int(os.getenv("SEARCH_CACHE_TTL", "600"))       # 10 minutes
SEARCH_CACHE_MAX: int       = int(os.getenv("SEARCH_CACHE_MAX", "256"))
MIN_COMPOSITE_SCORE: float  = float(os.getenv("MIN_COMPOSITE_SCORE", "5"))
DIVERSITY_CAP_RATIO: float  = float(os.getenv("DIVERSITY_CAP_RATIO", "0.3"))
# Per-day trip budget at which the preferred category moves up to mid / premium
BUDGET_MID_PER_DAY: float   = float(os.getenv("BUDGET_MID_PER_DAY", "5000"))
BUDGET_PREMIUM_PER_DAY: float = float(os.getenv("BUDGET_PREMIUM_PER_DAY", "10000"))
# City centre, used when a saved plan has no located activities
CITY_CENTER_LAT: float = float(os.getenv("CITY_CENTER_LAT", "16.4023"))
CITY_CENTER_LON: float = float(os.getenv("CITY_CENTER_LON", "120.5960"))

# Known place names recognised as location entities in free-text queries.
KNOWN_LOCATIONS: list[str] = [
    s.strip() for s in os.getenv(
        "KNOWN_LOCATIONS",
        "burnham park,session road,mines view,wright park,camp john hay,"
        "botanical garden,night market,bell church,baguio cathedral,tam-awan village",
    ).split(",") if s.strip()
]

# ── Scheduler (SUGGESTED DEFAULT) ─────────────────────────────────────────────
SCHEDULE_DAY_START: str     = os.getenv("SCHEDULE_DAY_START", "08:00")
SCHEDULE_DAY_END: str       = os.getenv("SCHEDULE_DAY_END", "21:00")
SCHEDULE_BUFFER_MIN: int    = int(os.getenv("SCHEDULE_BUFFER_MIN", "30"))
SCHEDULE_MAX_PER_DAY: int   = int(os.getenv("SCHEDULE_MAX_PER_DAY", "8"))
SCHEDULE_MIN_PER_DAY: int   = int(os.getenv("SCHEDULE_MIN_PER_DAY", "2"))   # fewer → partial-day note

# ── Budget allocator (empirical: tune, not guaranteed semantics) ─────────────
BUDGET_MIN_ITEMS_PER_PERSON: int  = int(os.getenv("BUDGET_MIN_ITEMS_PER_PERSON", "2"))
BUDGET_MAX_ITEMS_PER_PERSON: int  = int(os.getenv("BUDGET_MAX_ITEMS_PER_PERSON", "6"))
BUDGET_CATEGORY_CAP_DIVISOR: int  = int(os.getenv("BUDGET_CATEGORY_CAP_DIVISOR", "3"))
BUDGET_RELAX_UTILIZATION: float   = float(os.getenv("BUDGET_RELAX_UTILIZATION", "0.75"))
BUDGET_STOP_UTILIZATION: float    = float(os.getenv("BUDGET_STOP_UTILIZATION", "0.90"))

# ── Refresh / change detection ────────────────────────────────────────────────
REFRESH_TEMP_THRESHOLD_C: float      = float(os.getenv("REFRESH_TEMP_THRESHOLD_C", "5"))
REFRESH_CONGESTION_THRESHOLD: float  = float(os.getenv("REFRESH_CONGESTION_THRESHOLD", "30"))
REFRESH_MAX_PER_DAY: int             = int(os.getenv("REFRESH_MAX_PER_DAY", "4"))
REFRESH_EVAL_INTERVAL_H: float       = float(os.getenv("REFRESH_EVAL_INTERVAL_H", "6"))
REFRESH_TRAFFIC_CEILING: str         = os.getenv("REFRESH_TRAFFIC_CEILING", "MODERATE")
REFRESH_BATCH_SIZE: int              = int(os.getenv("REFRESH_BATCH_SIZE", "10"))
REFRESH_BATCH_DELAY_S: float         = float(os.getenv("REFRESH_BATCH_DELAY_S", "1.0"))

# ── PostgreSQL ────────────────────────────────────────────────────────────────
# Schema defined in db/schema.sql
# Apply with: python scripts/run_migrations.py
POSTGRES_HOST: str     = os.getenv("POSTGRES_HOST",     "localhost")
POSTGRES_PORT: int     = int(os.getenv("POSTGRES_PORT", "5432"))
POSTGRES_DB: str       = os.getenv("POSTGRES_DB",       "itinerary")
POSTGRES_USER: str     = os.getenv("POSTGRES_USER",     "itinerary_user")
POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "itinerary_pass")
POSTGRES_MIN_CONN: int = int(os.getenv("POSTGRES_MIN_CONN", "1"))
POSTGRES_MAX_CONN: int = int(os.getenv("POSTGRES_MAX_CONN", "10"))

# Plan store backend: "in_memory" | "postgres"
PLAN_STORE_BACKEND: str = os.getenv("PLAN_STORE_BACKEND", "in_memory")

# ── Redis / caches ────────────────────────────────────────────────────────────
# Cache backend: "in_memory" | "redis"
CACHE_BACKEND: str     = os.getenv("CACHE_BACKEND", "in_memory")
REDIS_HOST: str        = os.getenv("REDIS_HOST",     "localhost")
REDIS_PORT: int        = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB: int          = int(os.getenv("REDIS_DB",   "0"))
REDIS_PASSWORD: str    = os.getenv("REDIS_PASSWORD", "")

# ── Structured event logs ─────────────────────────────────────────────────────
# JSONL event streams (pipeline, refresh) written by modules/observability/logger.py
STRUCTURED_LOGS_ENABLED: bool = _flag("STRUCTURED_LOGS_ENABLED", "true")
STRUCTURED_LOGS_DIR: str      = os.getenv("STRUCTURED_LOGS_DIR", "")
