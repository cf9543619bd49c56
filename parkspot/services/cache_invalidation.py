# parkspot/services/cache_invalidation.py
"""
Cache invalidation coordinator.

After a booking, spot or payment mutation commits, the orchestrators hand
the affected keys and patterns to ``CacheInvalidationCoordinator``. Every
target is attempted independently; a failing delete is logged and counted
but never reaches the caller, since the database is already committed and
cached entries expire on their own.
"""

from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
import logging
from typing import Any, FrozenSet, Optional

from ..monitoring.prometheus_metrics import prometheus_metrics
from .cache_service import CacheKeys

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvalidationTargets:
    """Exact keys plus glob patterns to drop from the cache."""

    keys: FrozenSet[str] = field(default_factory=frozenset)
    patterns: FrozenSet[str] = field(default_factory=frozenset)

    def __bool__(self) -> bool:
        return bool(self.keys or self.patterns)

    def merge(self, other: "InvalidationTargets") -> "InvalidationTargets":
        return InvalidationTargets(self.keys | other.keys, self.patterns | other.patterns)

    @classmethod
    def for_booking(
        cls,
        booking_id: str,
        *,
        reference: Optional[str] = None,
        spot_id: Optional[str] = None,
        user_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> "InvalidationTargets":
        """
        Everything that may show a booking: the entity itself, its spot's
        availability, both dashboards and the broad search/map listings.
        """
        keys = {CacheKeys.booking(booking_id)}
        patterns = {CacheKeys.SEARCH_PATTERN, CacheKeys.MAP_PATTERN}
        if reference:
            keys.add(CacheKeys.booking_reference(reference))
        if spot_id:
            keys.add(CacheKeys.parking(spot_id))
            patterns.add(CacheKeys.availability_pattern(spot_id))
        if user_id:
            keys.add(CacheKeys.member_dashboard(user_id))
        if owner_id:
            keys.add(CacheKeys.owner_dashboard(owner_id))
        return cls(frozenset(keys), frozenset(patterns))

    @classmethod
    def for_booking_entity(cls, booking: Any, owner_id: Optional[str] = None) -> "InvalidationTargets":
        return cls.for_booking(
            booking.id,
            reference=booking.booking_reference,
            spot_id=booking.parking_space_id,
            user_id=booking.user_id,
            owner_id=owner_id,
        )


@dataclass
class InvalidationReport:
    keys_deleted: int = 0
    patterns_cleared: int = 0
    failures: int = 0


class CacheInvalidationCoordinator:
    """Best-effort fan-out of cache deletes."""

    def __init__(self, cache: Optional[Any], executor: Optional[Executor] = None):
        self.cache = cache
        self.executor = executor

    def invalidate(self, targets: InvalidationTargets) -> Optional[InvalidationReport]:
        """
        Drop ``targets`` from the cache.

        With an executor the work is submitted and ``None`` is returned
        immediately; otherwise the report of the synchronous run is returned.
        """
        if self.cache is None or not targets:
            return InvalidationReport()

        if self.executor is not None:
            try:
                future = self.executor.submit(self._run, targets)
                future.add_done_callback(self._log_background_failure)
            except RuntimeError as exc:
                # Executor already shut down; fall back to inline
                logger.warning("Cache invalidation executor unavailable: %s", exc)
                return self._run(targets)
            return None

        return self._run(targets)

    def _run(self, targets: InvalidationTargets) -> InvalidationReport:
        report = InvalidationReport()
        for key in sorted(targets.keys):
            try:
                if self.cache.delete(key):
                    report.keys_deleted += 1
            except Exception as exc:
                report.failures += 1
                prometheus_metrics.inc_cache_invalidation_failure("key")
                logger.warning(f"Failed to invalidate cache key {key}: {str(exc)}")

        for pattern in sorted(targets.patterns):
            try:
                report.patterns_cleared += int(self.cache.delete_pattern(pattern) or 0)
            except Exception as exc:
                report.failures += 1
                prometheus_metrics.inc_cache_invalidation_failure("pattern")
                logger.warning(f"Failed to invalidate pattern {pattern}: {str(exc)}")

        logger.debug(
            "Cache invalidation finished",
            extra={
                "keys_deleted": report.keys_deleted,
                "patterns_cleared": report.patterns_cleared,
                "failures": report.failures,
            },
        )
        return report

    @staticmethod
    def _log_background_failure(future: "Future[InvalidationReport]") -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("Background cache invalidation failed: %s", exc)
