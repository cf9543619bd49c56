# parkspot/services/cache_service.py
"""
Cache service for the ParkSpot booking core.

Redis when ``PARKSPOT_REDIS_URL`` is configured, an in-process dictionary
otherwise. The cache only accelerates reads (entities, dashboards,
availability previews); capacity decisions always go to the database.

Every public operation is best effort: errors are logged, counted and
turned into a miss or a ``False`` return.
"""

from datetime import datetime, timedelta
from enum import Enum
import fnmatch
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple, Type, TypeVar

import redis
from redis import Redis
from redis.exceptions import RedisError

from ..core.config import settings
from .base import BaseService

logger = logging.getLogger(__name__)


T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"  # one probe allowed through


class CircuitBreaker:
    """
    Stops calling Redis after repeated failures.

    ``failure_threshold`` consecutive errors open the circuit; while open,
    calls return None without touching Redis. After ``recovery_timeout``
    seconds one probe is let through and a success closes the circuit again.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: Type[BaseException] = RedisError,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._state = CircuitState.CLOSED
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            if (
                self._state == CircuitState.OPEN
                and self._opened_at is not None
                and time.monotonic() - self._opened_at >= self.recovery_timeout
            ):
                self._state = CircuitState.HALF_OPEN
            return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> Optional[T]:
        """
        Run ``func`` unless the circuit is open.

        Returns None when skipped. A failure below the threshold is re-raised;
        the failure that opens the circuit is absorbed.
        """
        if self.state == CircuitState.OPEN:
            logger.warning("Circuit open, skipping %s", getattr(func, "__name__", func))
            return None

        try:
            result = func(*args, **kwargs)
        except self.expected_exception:
            if self._record_failure():
                return None
            raise
        self._record_success()
        return result

    def _record_success(self) -> None:
        with self._lock:
            self._failures = 0
            if self._state != CircuitState.CLOSED:
                logger.info("Redis recovered, circuit closed")
            self._state = CircuitState.CLOSED
            self._opened_at = None

    def _record_failure(self) -> bool:
        """Count a failure; True when the circuit is (now) open."""
        with self._lock:
            self._failures += 1
            if self._failures >= self.failure_threshold or self._state == CircuitState.HALF_OPEN:
                if self._state != CircuitState.OPEN:
                    logger.warning("Circuit opened after %s consecutive failures", self._failures)
                self._state = CircuitState.OPEN
                self._opened_at = time.monotonic()
                return True
            return False


class CacheKeys:
    """Key layout shared by readers and the invalidation coordinator."""

    @staticmethod
    def booking(booking_id: str) -> str:
        return f"booking:{booking_id}"

    @staticmethod
    def booking_reference(reference: str) -> str:
        return f"booking:ref:{reference}"

    @staticmethod
    def parking(spot_id: str) -> str:
        return f"parking:{spot_id}"

    @staticmethod
    def availability(spot_id: str, start: datetime, end: datetime) -> str:
        return f"availability:{spot_id}:{start.isoformat()}:{end.isoformat()}"

    @staticmethod
    def availability_pattern(spot_id: str) -> str:
        return f"availability:{spot_id}:*"

    @staticmethod
    def member_dashboard(user_id: str) -> str:
        return f"dashboard:member:{user_id}"

    @staticmethod
    def owner_dashboard(owner_id: str) -> str:
        return f"dashboard:vendor:{owner_id}"

    SEARCH_PATTERN = "search:*"
    MAP_PATTERN = "map:*"


class _MemoryStore:
    """Process-local stand-in for Redis holding serialized values with expiry."""

    def __init__(self) -> None:
        self._values: Dict[str, Tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._values.get(key)
            if entry is None:
                return None
            raw, expires_at = entry
            if datetime.now() >= expires_at:
                del self._values[key]
                return None
            return raw

    def setex(self, key: str, ttl: int, raw: str) -> bool:
        with self._lock:
            self._values[key] = (raw, datetime.now() + timedelta(seconds=ttl))
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._values.pop(key, None) is not None

    def delete_matching(self, pattern: str) -> int:
        with self._lock:
            doomed = [key for key in self._values if fnmatch.fnmatch(key, pattern)]
            for key in doomed:
                del self._values[key]
        return len(doomed)


class CacheService:
    """
    Key/value cache with JSON serialization and TTL tiers.

    Both backends store JSON text, so an entry reads back the same whether it
    came from Redis or from the in-process store.
    """

    TTL_TIERS = {
        "hot": 60,  # dashboards, availability
        "warm": 300,  # booking and space snapshots
        "cold": 3600,
    }

    def __init__(self, redis_client: Optional[Redis] = None, redis_url: Optional[str] = None):
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=5, recovery_timeout=60, expected_exception=RedisError
        )
        self._memory = _MemoryStore()
        self.redis: Optional[Redis] = redis_client
        if self.redis is None and redis_url:
            self.redis = self._connect(redis_url)
        self._stats: Dict[str, int] = dict.fromkeys(("hits", "misses", "sets", "deletes", "errors"), 0)

    @staticmethod
    def _connect(redis_url: str) -> Optional[Redis]:
        try:
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            client.ping()
        except (RedisError, ConnectionError) as exc:
            logger.warning("Redis unavailable at startup (%s); caching in process memory", exc)
            return None
        logger.info("Cache backed by Redis")
        return client

    @property
    def backend(self) -> str:
        return "redis" if self.redis is not None else "memory"

    def _on_redis(self, operation: Callable[[Redis], T]) -> Optional[T]:
        client = self.redis
        assert client is not None
        return self.circuit_breaker.call(operation, client)

    def _failed(self, action: str, key: str, exc: Exception) -> None:
        self._stats["errors"] += 1
        logger.error("Cache %s failed for %s: %s", action, key, exc)

    # Core operations

    @BaseService.measure_operation("cache_get")
    def get(self, key: str) -> Optional[Any]:
        try:
            if self.redis is not None:
                raw = self._on_redis(lambda client: client.get(key))
            else:
                raw = self._memory.get(key)
        except Exception as exc:
            self._failed("get", key, exc)
            return None

        if raw is None:
            self._stats["misses"] += 1
            return None
        self._stats["hits"] += 1
        return json.loads(raw)

    @BaseService.measure_operation("cache_set")
    def set(self, key: str, value: Any, ttl: Optional[int] = None, tier: str = "warm") -> bool:
        seconds = ttl if ttl is not None else self.TTL_TIERS.get(tier, settings.cache_default_ttl_seconds)
        try:
            raw = json.dumps(value, default=str)
            if self.redis is not None:
                stored = bool(self._on_redis(lambda client: client.setex(key, seconds, raw)))
            else:
                stored = self._memory.setex(key, seconds, raw)
        except Exception as exc:
            self._failed("set", key, exc)
            return False

        if stored:
            self._stats["sets"] += 1
        return stored

    @BaseService.measure_operation("cache_delete")
    def delete(self, key: str) -> bool:
        try:
            if self.redis is not None:
                removed = bool(self._on_redis(lambda client: client.delete(key)))
            else:
                removed = self._memory.delete(key)
        except Exception as exc:
            self._failed("delete", key, exc)
            return False

        if removed:
            self._stats["deletes"] += 1
        return removed

    @BaseService.measure_operation("cache_delete_pattern")
    def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern (SCAN on Redis)."""
        try:
            if self.redis is not None:
                removed = self._on_redis(
                    lambda client: sum(1 for key in client.scan_iter(match=pattern) if client.delete(key))
                ) or 0
            else:
                removed = self._memory.delete_matching(pattern)
        except Exception as exc:
            self._failed("delete_pattern", pattern, exc)
            return 0

        self._stats["deletes"] += removed
        logger.debug("Dropped %s cache keys matching %s", removed, pattern)
        return removed

    def get_or_set(
        self,
        key: str,
        loader: Callable[[], Any],
        ttl: Optional[int] = None,
        tier: str = "warm",
    ) -> Any:
        """Return the cached value for ``key``, loading and caching it on a miss."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        if value is not None:
            self.set(key, value, ttl=ttl, tier=tier)
        return value

    def get_stats(self) -> Dict[str, Any]:
        lookups = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "backend": self.backend,
            "hit_rate": f"{(self._stats['hits'] / lookups * 100) if lookups else 0:.2f}%",
            "total_requests": lookups,
            "circuit_breaker": {
                "state": self.circuit_breaker.state.value,
                "failure_count": self.circuit_breaker.failure_count,
                "threshold": self.circuit_breaker.failure_threshold,
            },
        }


def get_cache_service() -> CacheService:
    """Build a cache service from settings (in-memory when no Redis URL is set)."""
    return CacheService(redis_url=settings.redis_url)
