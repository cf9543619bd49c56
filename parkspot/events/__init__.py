"""Domain events for the booking lifecycle and payments."""

from parkspot.events.booking_events import (
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
from parkspot.events.dispatcher import EventDispatcher, default_dispatcher
from parkspot.events.handlers import EVENT_HANDLERS, register_handler, unregister_handler

__all__ = [
    "BookingApproved",
    "BookingCancelled",
    "BookingCheckedIn",
    "BookingCheckedOut",
    "BookingCreated",
    "BookingRejected",
    "PaymentCompleted",
    "PaymentRefunded",
    "RefundUnrecorded",
    "EventDispatcher",
    "default_dispatcher",
    "EVENT_HANDLERS",
    "register_handler",
    "unregister_handler",
]
