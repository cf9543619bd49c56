"""Typed operation results returned across service boundaries."""

from dataclasses import dataclass, field
from functools import wraps
import logging
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from .exceptions import DomainException, ErrorKind, RepositoryException

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    """
    Success/failure envelope for orchestrator commands.

    ``error`` is a stable ErrorKind; ``message`` is human readable.
    ``already_processed`` marks idempotent replays (e.g. a payment that was
    completed by an earlier reconciliation).
    """

    success: bool
    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    already_processed: bool = False

    @classmethod
    def ok(
        cls,
        value: T,
        message: Optional[str] = None,
        *,
        already_processed: bool = False,
    ) -> "ServiceResult[T]":
        return cls(
            success=True,
            value=value,
            message=message,
            already_processed=already_processed,
        )

    @classmethod
    def failure(
        cls,
        error: ErrorKind,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> "ServiceResult[T]":
        return cls(success=False, error=error, message=message, details=details or {})

    @classmethod
    def from_exception(cls, exc: DomainException) -> "ServiceResult[T]":
        return cls.failure(exc.kind, exc.message, exc.details)

    def unwrap(self) -> T:
        """Return the value or raise if the result is a failure."""
        if not self.success or self.value is None:
            raise ValueError(f"Cannot unwrap failed result: {self.error} {self.message}")
        return self.value


def service_result(func: Callable[..., Any]) -> Callable[..., ServiceResult[Any]]:
    """
    Convert a method that returns a value or raises DomainException into one
    that always returns a ServiceResult.

    A method may also return a ServiceResult directly (used for idempotent
    replays); it is passed through untouched.
    """

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> ServiceResult[Any]:
        try:
            value = func(*args, **kwargs)
        except DomainException as exc:
            logger.info(
                "Operation %s failed: %s (%s)",
                func.__name__,
                exc.message,
                exc.kind.value,
                extra={"operation": func.__name__, "error_kind": exc.kind.value},
            )
            return ServiceResult.from_exception(exc)
        except RepositoryException as exc:
            logger.error(
                "Operation %s failed in the data layer: %s",
                func.__name__,
                exc,
                extra={"operation": func.__name__, "error_kind": ErrorKind.EXTERNAL_SERVICE_ERROR.value},
            )
            return ServiceResult.failure(ErrorKind.EXTERNAL_SERVICE_ERROR, str(exc))
        if isinstance(value, ServiceResult):
            return value
        return ServiceResult.ok(value)

    return wrapper
