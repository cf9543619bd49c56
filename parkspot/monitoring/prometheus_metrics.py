"""
Prometheus metrics for the ParkSpot booking core.

Service timings come from ``BaseService.measure_operation``; the remaining
counters are fed by the orchestrators and the cache coordinator.
"""

from threading import Lock
from time import monotonic
from typing import Optional, cast

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Custom registry so importing the package twice in tests never collides
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "parkspot_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "parkspot_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "parkspot_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

booking_transitions_total = Counter(
    "parkspot_booking_transitions_total",
    "Booking lifecycle transitions committed",
    ["event"],
    registry=REGISTRY,
)

capacity_conflicts_total = Counter(
    "parkspot_capacity_conflicts_total",
    "Create attempts that lost the commit-time capacity recount",
    ["outcome"],  # retried | exhausted
    registry=REGISTRY,
)

cache_invalidation_failures_total = Counter(
    "parkspot_cache_invalidation_failures_total",
    "Cache invalidation targets that failed and were skipped",
    ["kind"],  # key | pattern
    registry=REGISTRY,
)

gateway_calls_total = Counter(
    "parkspot_gateway_calls_total",
    "Payment gateway calls by operation and outcome",
    ["gateway", "operation", "status"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None
    _cache_ts: Optional[float] = None
    _cache_ttl_seconds: float = 1.0

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'BookingService')
            operation: Operation name (e.g., 'create_booking')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_booking_transition(event: str) -> None:
        booking_transitions_total.labels(event=event).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_capacity_conflict(outcome: str) -> None:
        capacity_conflicts_total.labels(outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_cache_invalidation_failure(kind: str) -> None:
        cache_invalidation_failures_total.labels(kind=kind).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_gateway_call(gateway: str, operation: str, status: str) -> None:
        gateway_calls_total.labels(gateway=gateway, operation=operation, status=status).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """Metrics in Prometheus text exposition format, cached for a second."""
        now = monotonic()
        with PrometheusMetrics._cache_lock:
            payload = PrometheusMetrics._cache_payload
            ts = PrometheusMetrics._cache_ts
            if payload is None or ts is None or (now - ts) > PrometheusMetrics._cache_ttl_seconds:
                PrometheusMetrics._cache_payload = cast(bytes, generate_latest(REGISTRY))
                PrometheusMetrics._cache_ts = monotonic()
                payload = PrometheusMetrics._cache_payload
        return cast(bytes, payload)

    @staticmethod
    def _invalidate_cache() -> None:
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None


# Singleton instance
prometheus_metrics = PrometheusMetrics()
