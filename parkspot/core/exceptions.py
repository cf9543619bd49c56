# parkspot/core/exceptions.py
"""
Domain-specific exceptions for the ParkSpot booking core.

Every exception carries a stable ``ErrorKind`` code plus a human readable
message. Service boundaries turn them into ``ServiceResult`` failures, so
callers never have to catch them.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Stable error kinds surfaced to callers."""

    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    INVALID_DISCOUNT = "INVALID_DISCOUNT"
    PAYMENT_VERIFICATION_FAILED = "PAYMENT_VERIFICATION_FAILED"
    PAYMENT_DECLINED = "PAYMENT_DECLINED"
    ALREADY_PAID = "ALREADY_PAID"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.kind.value
        self.details = details or {}
        super().__init__(self.message)


class ValidationException(DomainException):
    """Raised when business validation fails."""

    kind = ErrorKind.VALIDATION_ERROR


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    kind = ErrorKind.NOT_FOUND

    @classmethod
    def for_resource(cls, resource_type: str, resource_id: Any = None) -> "NotFoundException":
        suffix = f" (id: {resource_id})" if resource_id is not None else ""
        return cls(
            f"{resource_type} not found{suffix}",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class UnauthorizedException(DomainException):
    """Raised when the caller is not the booking's user or the spot's owner."""

    kind = ErrorKind.UNAUTHORIZED

    def __init__(
        self,
        message: str = "You are not authorized to perform this action",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details)


class CapacityExceededException(DomainException):
    """Raised when no spots remain for the requested window."""

    kind = ErrorKind.CAPACITY_EXCEEDED

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message or "No spots available for the selected time",
            details=details,
        )


class CapacityConflictException(CapacityExceededException):
    """Raised when the commit-time recount shows a concurrent booking won the race."""


class InvalidStateTransitionException(DomainException):
    """Raised when a lifecycle event is illegal for the current status."""

    kind = ErrorKind.INVALID_STATE_TRANSITION

    def __init__(self, current_status: Any, event: str, message: Optional[str] = None) -> None:
        status_value = getattr(current_status, "value", current_status)
        super().__init__(
            message or f"Cannot {event} booking in {status_value} status",
            details={"current_status": status_value, "event": event},
        )
        self.current_status = status_value
        self.event = event


class InvalidDiscountException(DomainException):
    """Raised when a discount is unknown, inactive, or exceeds the pre-discount total."""

    kind = ErrorKind.INVALID_DISCOUNT


class PaymentVerificationException(DomainException):
    """Raised when a gateway signature or amount does not check out."""

    kind = ErrorKind.PAYMENT_VERIFICATION_FAILED


class PaymentDeclinedException(DomainException):
    """Raised when the gateway reports a failed payment."""

    kind = ErrorKind.PAYMENT_DECLINED


class ExternalServiceException(DomainException):
    """Raised when a gateway or store cannot be reached."""

    kind = ErrorKind.EXTERNAL_SERVICE_ERROR

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(f"{service_name}: {message}", details=details)
        self.service_name = service_name


class ServiceException(DomainException):
    """Raised when a service operation fails at the persistence layer."""

    kind = ErrorKind.EXTERNAL_SERVICE_ERROR


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
