# tests/unit/test_cache_service.py
"""
Unit tests for CacheService and the cache invalidation coordinator.

Redis is replaced with Mock objects; the in-memory backend is used as is.
"""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest
from redis.exceptions import RedisError

from parkspot.core.config import settings
from parkspot.services.cache_invalidation import CacheInvalidationCoordinator, InvalidationTargets
from parkspot.services.cache_service import (
    CacheKeys,
    CacheService,
    CircuitBreaker,
    CircuitState,
    get_cache_service,
)


class TestMemoryBackend:
    def test_factory_defaults_to_memory(self, monkeypatch):
        monkeypatch.setattr(settings, "redis_url", None)
        assert get_cache_service().backend == "memory"

    def test_round_trip_uses_json(self):
        cache = CacheService()
        assert cache.backend == "memory"

        assert cache.set("booking:1", {"id": "1", "total": "369.00"})
        assert cache.get("booking:1") == {"id": "1", "total": "369.00"}
        assert cache.get_stats()["hits"] == 1

    def test_miss_returns_none(self):
        cache = CacheService()
        assert cache.get("missing") is None
        assert cache.get_stats()["misses"] == 1

    def test_delete_pattern(self):
        cache = CacheService()
        cache.set("availability:s1:a:b", {"available": True})
        cache.set("availability:s1:c:d", {"available": False})
        cache.set("availability:s2:a:b", {"available": True})

        assert cache.delete_pattern(CacheKeys.availability_pattern("s1")) == 2
        assert cache.get("availability:s2:a:b") == {"available": True}

    def test_expired_entry_is_a_miss(self):
        cache = CacheService()
        cache.set("hot", 1, ttl=-1)
        assert cache.get("hot") is None

    def test_get_or_set_loads_once(self):
        cache = CacheService()
        loader = Mock(return_value={"value": 1})

        assert cache.get_or_set("k", loader) == {"value": 1}
        assert cache.get_or_set("k", loader) == {"value": 1}
        loader.assert_called_once()

    def test_get_or_set_does_not_cache_none(self):
        cache = CacheService()
        loader = Mock(return_value=None)
        cache.get_or_set("k", loader)
        cache.get_or_set("k", loader)
        assert loader.call_count == 2


class TestRedisBackend:
    def test_set_uses_tier_ttl(self):
        redis_client = Mock()
        cache = CacheService(redis_client=redis_client)

        cache.set("dashboard:member:u1", {"a": 1}, tier="hot")

        redis_client.setex.assert_called_once_with("dashboard:member:u1", 60, '{"a": 1}')

    def test_redis_errors_become_misses(self):
        redis_client = Mock()
        redis_client.get.side_effect = RedisError("connection reset")
        cache = CacheService(redis_client=redis_client)

        assert cache.get("booking:1") is None
        assert cache.get_stats()["errors"] == 1

    def test_delete_pattern_scans(self):
        redis_client = Mock()
        redis_client.scan_iter.return_value = ["search:a", "search:b"]
        redis_client.delete.return_value = 1
        cache = CacheService(redis_client=redis_client)

        assert cache.delete_pattern("search:*") == 2
        redis_client.scan_iter.assert_called_once_with(match="search:*")


class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60, expected_exception=RedisError)
        calls = []

        def failing():
            calls.append(1)
            raise RedisError("down")

        with pytest.raises(RedisError):
            breaker.call(failing)
        # The failure that trips the breaker is absorbed
        assert breaker.call(failing) is None

        assert breaker.state == CircuitState.OPEN
        assert breaker.call(failing) is None
        assert len(calls) == 2


class TestInvalidationTargets:
    def test_booking_targets(self):
        targets = InvalidationTargets.for_booking(
            "b1", reference="PK-1", spot_id="s1", user_id="u1", owner_id="o1"
        )
        assert targets.keys == {
            "booking:b1",
            "booking:ref:PK-1",
            "parking:s1",
            "dashboard:member:u1",
            "dashboard:vendor:o1",
        }
        assert targets.patterns == {"availability:s1:*", "search:*", "map:*"}

    def test_merge(self):
        merged = InvalidationTargets.for_booking("b1").merge(InvalidationTargets.for_booking("b2"))
        assert {"booking:b1", "booking:b2"} <= merged.keys

    def test_empty_targets_are_falsy(self):
        assert not InvalidationTargets()


class TestCacheInvalidationCoordinator:
    def test_clears_keys_and_patterns(self):
        cache = CacheService()
        cache.set("booking:b1", {"id": "b1"})
        cache.set("dashboard:member:u1", {"user_id": "u1"})
        cache.set("search:city=blr", [1, 2])
        cache.set("map:blr", [1])
        coordinator = CacheInvalidationCoordinator(cache)

        report = coordinator.invalidate(InvalidationTargets.for_booking("b1", user_id="u1"))

        assert report.keys_deleted == 2
        assert report.patterns_cleared == 2
        assert report.failures == 0
        assert cache.get("search:city=blr") is None

    def test_failures_are_swallowed_and_counted(self):
        cache = Mock()
        cache.delete.side_effect = RuntimeError("redis down")
        cache.delete_pattern.side_effect = RuntimeError("redis down")
        coordinator = CacheInvalidationCoordinator(cache)

        report = coordinator.invalidate(InvalidationTargets.for_booking("b1", spot_id="s1"))

        # Two keys, three patterns, each attempted independently
        assert report.failures == 5
        assert cache.delete.call_count == 2
        assert cache.delete_pattern.call_count == 3

    def test_without_cache_is_noop(self):
        report = CacheInvalidationCoordinator(None).invalidate(InvalidationTargets.for_booking("b1"))
        assert report.failures == 0

    def test_runs_on_executor(self):
        cache = CacheService()
        cache.set("booking:b1", {"id": "b1"})
        with ThreadPoolExecutor(max_workers=1) as executor:
            coordinator = CacheInvalidationCoordinator(cache, executor=executor)
            assert coordinator.invalidate(InvalidationTargets.for_booking("b1")) is None
        assert cache.get("booking:b1") is None

    def test_falls_back_inline_when_executor_is_closed(self):
        cache = CacheService()
        cache.set("booking:b1", {"id": "b1"})
        executor = ThreadPoolExecutor(max_workers=1)
        executor.shutdown()
        coordinator = CacheInvalidationCoordinator(cache, executor=executor)

        report = coordinator.invalidate(InvalidationTargets.for_booking("b1"))

        assert report is not None
        assert report.keys_deleted == 1
