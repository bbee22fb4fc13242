"""
db/cache.py
-----------
Bounded, time-expiring caches shared by the retrieval pipeline (search
responses) and the traffic tool (per-coordinate readings).

Two backends, chosen by ``config.CACHE_BACKEND``:

  in_memory: ``TTLCache``: dict + insertion order, guarded by a lock.
  redis:     ``RedisCache``: JSON values written with SETEX.

Concurrent writers to the same key are last-writer-wins; no cross-key
atomicity is provided.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Callable

import config
from db import redis_client


class TTLCache:
    """Thread-safe in-process cache with per-entry expiry and a size bound."""

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._data: OrderedDict[str, tuple[float, Any]] = OrderedDict()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = (self._clock() + self._ttl, value)
            self._data.move_to_end(key)
            while len(self._data) > self._max:
                self._data.popitem(last=False)   # oldest write goes first

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class RedisCache:
    """Same interface as TTLCache, backed by the shared Redis client."""

    def __init__(self, namespace: str, ttl_seconds: int) -> None:
        self._ns = namespace
        self._ttl = int(ttl_seconds)

    def get(self, key: str) -> Any | None:
        return redis_client.get_json(f"{self._ns}:{key}")

    def set(self, key: str, value: Any) -> None:
        redis_client.set_json(f"{self._ns}:{key}", value, self._ttl)

    def clear(self) -> None:
        redis_client.invalidate_prefix(self._ns)


def make_cache(namespace: str, ttl_seconds: int, max_entries: int = 256) -> TTLCache | RedisCache:
    """Build the cache for ``namespace`` using the configured backend."""
    if config.CACHE_BACKEND == "redis":
        return RedisCache(namespace, ttl_seconds)
    return TTLCache(ttl_seconds, max_entries=max_entries)
