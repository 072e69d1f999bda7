"""
cache.py

Purpose:
  Key/value cache with per-key TTL used for hot-path reads:
    - `alarm:{element_id}:{metric}`      threshold alarm mirrors (5 min)
    - `event:active:{event_id}`          high/critical event mirrors (1 h)
    - `measurements:{element_id}:latest` last measurement set (1 min)
    - `topology:{format}:...`            rendered topology views (10 min)

Contract:
  - Every operation is best-effort: backend failures are logged and reported
    as a miss / False, never raised. The cache is never the system of record.
  - Values are JSON-serialisable dicts/lists.

Backends:
  - `RedisCache`   (redis-py) when `REDIS_URL` is configured.
  - `MemoryCache`  in-process store for single-process deployments and tests.
"""
from __future__ import annotations

import fnmatch
import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import redis

logger = logging.getLogger(__name__)


def alarm_key(element_id: str, metric: str) -> str:
    return f"alarm:{element_id}:{metric}"


def event_key(event_id: str) -> str:
    return f"event:active:{event_id}"


def latest_measurement_key(element_id: str) -> str:
    return f"measurements:{element_id}:latest"


TOPOLOGY_PATTERN = "topology:*"
EVENT_PATTERN = "event:active:*"


class Cache:
    """Interface shared by the cache backends."""

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any, ttl_s: int = 60) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def keys(self, pattern: str) -> List[str]:
        raise NotImplementedError

    def invalidate_pattern(self, pattern: str) -> bool:
        ok = True
        for key in self.keys(pattern):
            ok = self.delete(key) and ok
        return ok


class MemoryCache(Cache):
    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        expires_at, raw = item
        if expires_at <= self._clock():
            self._data.pop(key, None)
            return None
        return raw

    def _sweep(self) -> None:
        now = self._clock()
        for key in [k for k, (expires_at, _) in self._data.items() if expires_at <= now]:
            del self._data[key]

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._live(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any, ttl_s: int = 60) -> bool:
        try:
            raw = json.dumps(value, default=str)
        except (TypeError, ValueError) as exc:
            logger.error("Cache set error for %s: %s", key, exc)
            return False
        with self._lock:
            self._sweep()
            self._data[key] = (self._clock() + max(1, int(ttl_s)), raw)
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            self._data.pop(key, None)
        return True

    def keys(self, pattern: str) -> List[str]:
        with self._lock:
            return [k for k in list(self._data) if fnmatch.fnmatchcase(k, pattern) and self._live(k) is not None]


class RedisCache(Cache):
    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        client = redis.Redis.from_url(url, socket_timeout=2.0, socket_connect_timeout=2.0)
        logger.info("Redis cache configured at %s", url.split("@")[-1])
        return cls(client)

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(key)
            return json.loads(raw) if raw else None
        except (redis.RedisError, ValueError) as exc:
            logger.error("Cache get error for %s: %s", key, exc)
            return None

    def set(self, key: str, value: Any, ttl_s: int = 60) -> bool:
        try:
            self.client.set(key, json.dumps(value, default=str), ex=max(1, int(ttl_s)))
            return True
        except (redis.RedisError, TypeError, ValueError) as exc:
            logger.error("Cache set error for %s: %s", key, exc)
            return False

    def delete(self, key: str) -> bool:
        try:
            self.client.delete(key)
            return True
        except redis.RedisError as exc:
            logger.error("Cache delete error for %s: %s", key, exc)
            return False

    def keys(self, pattern: str) -> List[str]:
        try:
            out = []
            for k in self.client.scan_iter(match=pattern, count=500):
                out.append(k.decode() if isinstance(k, bytes) else str(k))
            return out
        except redis.RedisError as exc:
            logger.error("Cache scan error for %s: %s", pattern, exc)
            return []

    def invalidate_pattern(self, pattern: str) -> bool:
        keys = self.keys(pattern)
        if not keys:
            return True
        try:
            self.client.delete(*keys)
            return True
        except redis.RedisError as exc:
            logger.error("Cache invalidate pattern error for %s: %s", pattern, exc)
            return False


def build_cache(redis_url: Optional[str]) -> Cache:
    if redis_url:
        return RedisCache.from_url(redis_url)
    return MemoryCache()
