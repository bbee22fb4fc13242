"""
db/redis_client.py
-------------------
redis-py client: singleton plus JSON helpers for the cache key schemas.

Key schemas:

  1. search:{sha1(query|k)}
       Type : String (JSON list of hits)
       TTL  : SEARCH_CACHE_TTL  (default 600 s)

  2. traffic:{lat:.4f}:{lon:.4f}
       Type : String (JSON TrafficReading)
       TTL  : TRAFFIC_CACHE_TTL (default 300 s)

Environment variables (set in config.py):
    REDIS_HOST        default: localhost
    REDIS_PORT        default: 6379
    REDIS_DB          default: 0
    REDIS_PASSWORD    default: ""  (empty = no auth)
"""

from __future__ import annotations

import json
from typing import Any

import redis

import config

# Module-level singleton; initialised lazily on first call to get_redis()
_client: redis.Redis | None = None


def get_redis() -> redis.Redis:
    """Return the singleton Redis client, creating it on first call."""
    global _client
    if _client is None:
        kwargs: dict[str, Any] = {
            "host":             config.REDIS_HOST,
            "port":             config.REDIS_PORT,
            "db":               config.REDIS_DB,
            "decode_responses": True,   # return str, not bytes
            "socket_timeout":   2.0,
        }
        if config.REDIS_PASSWORD:
            kwargs["password"] = config.REDIS_PASSWORD
        _client = redis.Redis(**kwargs)
    return _client


def get_json(key: str) -> Any | None:
    """Return the decoded JSON value at ``key``, or None on miss."""
    val = get_redis().get(key)
    return json.loads(val) if val is not None else None


def set_json(key: str, value: Any, ttl_seconds: int) -> None:
    """Write one JSON value with ``ttl_seconds`` expiry (last writer wins)."""
    get_redis().setex(key, ttl_seconds, json.dumps(value, default=str))


def invalidate_prefix(prefix: str) -> int:
    """
    Delete all keys under ``prefix:``.

    Reached through RedisCache.clear() when the search index is rebuilt, so
    hits cached against the previous index are dropped.

    Returns: number of keys deleted.
    """
    r = get_redis()
    keys = list(r.scan_iter(f"{prefix}:*"))
    if keys:
        return r.delete(*keys)
    return 0
