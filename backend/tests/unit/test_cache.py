from unittest.mock import MagicMock

import redis

from gridmon.services.cache import MemoryCache, RedisCache, build_cache


# ============================================================
# MEMORY
# ============================================================

def test_memory_cache_expires_and_sweeps(clock):
    cache = MemoryCache(clock=clock)
    cache.set("measurements:a:latest", {"voltage": 11.0}, ttl_s=60)
    assert cache.get("measurements:a:latest") == {"voltage": 11.0}

    clock.advance(61)
    # never read again, but dropped on the next write
    cache.set("measurements:b:latest", {"voltage": 10.9}, ttl_s=60)
    assert list(cache._data) == ["measurements:b:latest"]


def test_memory_cache_pattern_invalidation(clock):
    cache = MemoryCache(clock=clock)
    cache.set("topology:graph:all:all:false", {"n": 1})
    cache.set("topology:matrix:all:all:false", {"n": 2})
    cache.set("alarm:l1:voltage", {"n": 3})
    cache.invalidate_pattern("topology:*")
    assert cache.keys("*") == ["alarm:l1:voltage"]


# ============================================================
# REDIS
# ============================================================

def test_redis_cache_round_trip():
    client = MagicMock()
    client.get.return_value = b'{"severity": "high"}'
    client.scan_iter.return_value = iter([b"alarm:l1:voltage", b"alarm:l1:current"])
    cache = RedisCache(client)

    assert cache.set("alarm:l1:voltage", {"severity": "high"}, ttl_s=300) is True
    client.set.assert_called_once_with("alarm:l1:voltage", '{"severity": "high"}', ex=300)

    assert cache.get("alarm:l1:voltage") == {"severity": "high"}
    assert cache.keys("alarm:l1:*") == ["alarm:l1:voltage", "alarm:l1:current"]
    client.scan_iter.assert_called_with(match="alarm:l1:*", count=500)


def test_redis_missing_key_is_a_miss():
    client = MagicMock()
    client.get.return_value = None
    assert RedisCache(client).get("event:active:nope") is None


def test_redis_invalidate_pattern_deletes_in_one_call():
    client = MagicMock()
    keys = [b"topology:graph:all:all:false", b"topology:matrix:all:all:false"]
    client.scan_iter.return_value = iter(keys)
    assert RedisCache(client).invalidate_pattern("topology:*") is True
    client.delete.assert_called_once_with("topology:graph:all:all:false", "topology:matrix:all:all:false")


def test_redis_failures_are_logged_misses(caplog):
    client = MagicMock()
    down = redis.ConnectionError("connection refused")
    client.get.side_effect = down
    client.set.side_effect = down
    client.delete.side_effect = down
    client.scan_iter.side_effect = down
    cache = RedisCache(client)

    assert cache.get("alarm:l1:voltage") is None
    assert cache.set("alarm:l1:voltage", {"severity": "high"}) is False
    assert cache.delete("alarm:l1:voltage") is False
    assert cache.keys("alarm:*") == []
    assert "connection refused" in caplog.text


def test_build_cache_selects_backend():
    assert isinstance(build_cache(None), MemoryCache)
    # from_url does not connect until the first command
    assert isinstance(build_cache("redis://localhost:6379/0"), RedisCache)
