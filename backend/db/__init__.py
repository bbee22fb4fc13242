"""
db/
----
Storage layer for the itinerary engine.

Storage architecture:
  PostgreSQL (psycopg2): persistent plan store
    tables: saved_plans
    schema: db/schema.sql
    apply:  python scripts/run_migrations.py

  Redis (redis-py): optional shared cache backend (CACHE_BACKEND=redis)
    search:{hash}            TTL = SEARCH_CACHE_TTL   (10 min)
    traffic:{lat}:{lon}      TTL = TRAFFIC_CACHE_TTL  (5 min)

Public exports (import from here for convenience):
    from db import get_conn, get_redis, make_cache
    from db.repositories import plan_repo
"""

from db.cache import make_cache
from db.connection import get_conn, close_pool
from db.redis_client import get_redis

__all__ = ["get_conn", "close_pool", "get_redis", "make_cache"]
