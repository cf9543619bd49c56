"""
Event handlers and the static handler registry.

Outbound notifications live outside this package; the built-in handlers
only record the event in the log. Integrations attach their own handlers
with ``register_handler``.
"""
import logging
from typing import Any, Callable, Dict, List, Type

from .booking_events import (
    BookingApproved,
    BookingCancelled,
    BookingCheckedIn,
    BookingCheckedOut,
    BookingCreated,
    BookingRejected,
    PaymentCompleted,
    PaymentRefunded,
    RefundUnrecorded,
)

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]


def log_booking_event(event: Any) -> None:
    """Structured audit line for every booking lifecycle event."""
    logger.info(
        "booking_event=%s booking_id=%s",
        type(event).__name__,
        event.booking_id,
        extra={"event": type(event).__name__, "payload": event.to_dict()},
    )


def log_payment_event(event: Any) -> None:
    logger.info(
        "payment_event=%s payment_id=%s booking_id=%s",
        type(event).__name__,
        event.payment_id,
        event.booking_id,
        extra={"event": type(event).__name__, "payload": event.to_dict()},
    )


def alert_unrecorded_refund(event: RefundUnrecorded) -> None:
    logger.error(
        "Refund %s for payment %s (booking %s) was issued but not recorded: %s",
        event.refund_id,
        event.payment_id,
        event.booking_id,
        event.reason,
        extra={"event": type(event).__name__, "payload": event.to_dict()},
    )


# Registry of event class -> handlers, run in registration order
EVENT_HANDLERS: Dict[Type[Any], List[EventHandler]] = {
    BookingCreated: [log_booking_event],
    BookingApproved: [log_booking_event],
    BookingRejected: [log_booking_event],
    BookingCancelled: [log_booking_event],
    BookingCheckedIn: [log_booking_event],
    BookingCheckedOut: [log_booking_event],
    PaymentCompleted: [log_payment_event],
    PaymentRefunded: [log_payment_event],
    RefundUnrecorded: [alert_unrecorded_refund],
}


def register_handler(event_type: Type[Any], handler: EventHandler) -> None:
    """Attach an in-process handler for ``event_type``."""
    EVENT_HANDLERS.setdefault(event_type, []).append(handler)


def unregister_handler(event_type: Type[Any], handler: EventHandler) -> None:
    """Remove a previously registered handler."""
    handlers = EVENT_HANDLERS.get(event_type, [])
    EVENT_HANDLERS[event_type] = [existing for existing in handlers if existing is not handler]
