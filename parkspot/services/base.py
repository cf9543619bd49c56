# parkspot/services/base.py
"""
Base Service Pattern for the ParkSpot booking core

Provides common functionality for all service classes including:
- Transaction management with post-commit event dispatch
- Per-transaction statement timeouts
- Logging
- Performance monitoring
"""

from contextlib import contextmanager
from functools import wraps
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, List, Optional, TypeVar, cast

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ServiceException
from ..database.session_utils import get_dialect_name
from ..events.dispatcher import EventDispatcher, default_dispatcher
from ..monitoring.prometheus_metrics import prometheus_metrics

# Use TYPE_CHECKING to avoid circular imports
if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# PostgreSQL serialization_failure / deadlock_detected
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def is_retryable_db_error(exc: Optional[BaseException]) -> bool:
    """
    True for serialization failures and deadlocks, which are safe to retry.

    Follows ``__cause__`` so wrapped repository/service errors are recognised.
    """
    while exc is not None:
        if isinstance(exc, OperationalError):
            orig = getattr(exc, "orig", None)
            code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
            if code in _RETRYABLE_SQLSTATES:
                return True
            message = str(orig or exc).lower()
            if "deadlock" in message or "could not serialize" in message:
                return True
        exc = exc.__cause__
    return False


class BaseService:
    """
    Base class for all service layer components.

    Provides common patterns for:
    - Database session management
    - Domain events collected during a transaction
    - Logging
    - Performance monitoring
    """

    # Class-level metrics storage
    _class_metrics: Dict[str, Dict[str, Dict[str, float]]] = {}

    def __init__(
        self,
        db: Session,
        cache: Optional["CacheService"] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        """
        Initialize base service.

        Args:
            db: Database session
            cache: Optional CacheService instance
            dispatcher: Post-commit event dispatcher (defaults to the shared one)
        """
        self.db = db
        self.cache = cache
        self.dispatcher = dispatcher or default_dispatcher
        self.logger = logging.getLogger(self.__class__.__name__)
        self._pending_events: List[Any] = []

    @contextmanager
    def transaction(self, timeout_seconds: Optional[float] = None) -> Iterator[Session]:
        """
        Context manager for database transactions.

        Commits on success and then dispatches the events recorded with
        ``record_event``. Any exception rolls back the whole unit of work and
        discards its events.

        Usage:
            with self.transaction(timeout_seconds=5):
                booking.approve()
                self.record_event(BookingApproved(...))
        """
        self._pending_events = []
        try:
            self._apply_statement_timeout(timeout_seconds)
            yield self.db
            self.db.commit()
            self.logger.debug("Transaction committed successfully")
        except SQLAlchemyError as e:
            self.logger.error(f"Transaction failed: {str(e)}")
            self.db.rollback()
            self._pending_events = []
            raise ServiceException(
                f"Database operation failed: {str(e)}",
                details={"retryable": is_retryable_db_error(e)},
            ) from e
        except Exception as e:
            self.logger.error(f"Unexpected error in transaction: {str(e)}")
            self.db.rollback()
            self._pending_events = []
            raise

        events, self._pending_events = self._pending_events, []
        self.dispatcher.dispatch_all(events)

    def record_event(self, event: Any) -> None:
        """Queue an event for dispatch once the current transaction commits."""
        self._pending_events.append(event)

    def _apply_statement_timeout(self, timeout_seconds: Optional[float]) -> None:
        if get_dialect_name(self.db) != "postgresql":
            return
        timeout_ms = (
            int(timeout_seconds * 1000)
            if timeout_seconds is not None
            else settings.db_statement_timeout_ms
        )
        # SET does not accept bind parameters
        self.db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Decorator to measure operation performance.

        Usage:
            @BaseService.measure_operation("create_booking")
            def create_booking(self, data):
                # Method implementation

        Args:
            operation_name: Name of the operation for metrics

        Returns:
            Decorator function
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
                start_time = time.time()
                success = False
                error_type = None

                try:
                    result = func(self, *args, **kwargs)
                    success = getattr(result, "success", True)
                    if not success:
                        error_type = getattr(getattr(result, "error", None), "value", None)
                    return result
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.time() - start_time

                    if hasattr(self, "_record_metric"):
                        self._record_metric(operation_name, elapsed, success)

                    # Only log if it's actually slow
                    if elapsed > 1.0 and hasattr(self, "logger"):
                        self.logger.warning(
                            f"Slow operation detected: {operation_name} took {elapsed:.2f}s"
                        )

                    try:
                        prometheus_metrics.record_service_operation(
                            service=self.__class__.__name__,
                            operation=operation_name,
                            duration=elapsed,
                            status="success" if success else "error",
                            error_type=error_type,
                        )
                    except Exception:
                        # Don't let metrics collection break the operation
                        logger.debug("Failed to record metrics for %s", operation_name)

            return cast(F, wrapper)

        return decorator

    def log_operation(self, operation: str, **context: Any) -> None:
        """
        Log an operation with context.

        Args:
            operation: Operation name
            **context: Additional context to log
        """
        self.logger.info(f"Operation: {operation}", extra={"operation": operation, **context})

    def _record_metric(self, operation: str, elapsed: float, success: bool) -> None:
        class_name = self.__class__.__name__
        metrics = BaseService._class_metrics.setdefault(class_name, {})

        if operation not in metrics:
            metrics[operation] = {
                "count": 0,
                "total_time": 0.0,
                "success_count": 0,
                "failure_count": 0,
                "min_time": float("inf"),
                "max_time": 0.0,
            }

        metric_data = metrics[operation]
        metric_data["count"] += 1
        metric_data["total_time"] += elapsed
        metric_data["min_time"] = min(metric_data["min_time"], elapsed)
        metric_data["max_time"] = max(metric_data["max_time"], elapsed)

        if success:
            metric_data["success_count"] += 1
        else:
            metric_data["failure_count"] += 1

    def get_metrics(self) -> Dict[str, Dict[str, float]]:
        """Per-operation timing statistics for this service class."""
        metrics = BaseService._class_metrics.get(self.__class__.__name__, {})
        result = {}
        for operation, data in metrics.items():
            count = data["count"] or 1
            result[operation] = {**data, "avg_time": data["total_time"] / count}
        return result
