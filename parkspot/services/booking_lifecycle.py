# parkspot/services/booking_lifecycle.py
"""
Booking lifecycle state machine.

The transition table below is the only place that knows which status a
booking may move to. Model methods and orchestrators ask the state machine
for the next status instead of assigning ``status`` directly, so an illegal
transition always surfaces as ``InvalidStateTransitionException`` naming the
current status.

    Pending ──approve──► AwaitingPayment ──confirm──► Confirmed ──check_in──► InProgress ──check_out──► Completed
       │                      │                          │                        │
       ├──reject──► Rejected   └──────── cancel ─────────┴──────── cancel ────────┴──► Cancelled
       └──confirm (nothing to pay) ──► Confirmed
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
import logging
from typing import Dict, FrozenSet, List, Union

from ..core.enums import CAPACITY_CONSUMING_STATUSES, BookingStatus
from ..core.exceptions import InvalidStateTransitionException, ValidationException
from ..core.timezone_utils import ensure_utc

logger = logging.getLogger(__name__)

DEFAULT_CHECK_IN_WINDOW = timedelta(hours=1)


class BookingEvent(str, Enum):
    """Lifecycle events a booking reacts to."""

    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    CONFIRM = "confirm"
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"

    @property
    def verb(self) -> str:
        """Human readable form used in error messages ("check in")."""
        return self.value.replace("_", " ")


@dataclass(frozen=True)
class Transition:
    event: BookingEvent
    sources: FrozenSet[BookingStatus]
    target: BookingStatus


TRANSITIONS: Dict[BookingEvent, Transition] = {
    BookingEvent.APPROVE: Transition(
        BookingEvent.APPROVE,
        frozenset({BookingStatus.PENDING}),
        BookingStatus.AWAITING_PAYMENT,
    ),
    BookingEvent.REJECT: Transition(
        BookingEvent.REJECT,
        frozenset({BookingStatus.PENDING}),
        BookingStatus.REJECTED,
    ),
    BookingEvent.CANCEL: Transition(
        BookingEvent.CANCEL,
        frozenset(
            {
                BookingStatus.PENDING,
                BookingStatus.AWAITING_PAYMENT,
                BookingStatus.CONFIRMED,
                BookingStatus.IN_PROGRESS,
            }
        ),
        BookingStatus.CANCELLED,
    ),
    BookingEvent.CONFIRM: Transition(
        BookingEvent.CONFIRM,
        frozenset({BookingStatus.PENDING, BookingStatus.AWAITING_PAYMENT}),
        BookingStatus.CONFIRMED,
    ),
    BookingEvent.CHECK_IN: Transition(
        BookingEvent.CHECK_IN,
        frozenset({BookingStatus.CONFIRMED}),
        BookingStatus.IN_PROGRESS,
    ),
    BookingEvent.CHECK_OUT: Transition(
        BookingEvent.CHECK_OUT,
        frozenset({BookingStatus.IN_PROGRESS}),
        BookingStatus.COMPLETED,
    ),
}


def coerce_status(status: Union[str, BookingStatus]) -> BookingStatus:
    """Return ``status`` as a BookingStatus (rows loaded from SQL come back as str)."""
    if isinstance(status, BookingStatus):
        return status
    try:
        return BookingStatus(status)
    except ValueError:
        raise ValidationException(f"Unknown booking status: {status}")


class BookingStateMachine:
    """Stateless guard over ``TRANSITIONS``."""

    transitions = TRANSITIONS

    @classmethod
    def can_transition(cls, status: Union[str, BookingStatus], event: BookingEvent) -> bool:
        return coerce_status(status) in cls.transitions[event].sources

    @classmethod
    def next_status(cls, status: Union[str, BookingStatus], event: BookingEvent) -> BookingStatus:
        """
        Return the status reached by applying ``event`` to ``status``.

        Raises:
            InvalidStateTransitionException: the event is not legal from ``status``
        """
        current = coerce_status(status)
        transition = cls.transitions[event]
        if current not in transition.sources:
            logger.debug("Rejected transition %s from %s", event.value, current.value)
            raise InvalidStateTransitionException(current, event.verb)
        return transition.target

    @classmethod
    def allowed_events(cls, status: Union[str, BookingStatus]) -> List[BookingEvent]:
        current = coerce_status(status)
        return [event for event, t in cls.transitions.items() if current in t.sources]

    @staticmethod
    def consumes_capacity(status: Union[str, BookingStatus]) -> bool:
        return coerce_status(status) in CAPACITY_CONSUMING_STATUSES

    @staticmethod
    def assert_check_in_window(
        start_time: datetime,
        end_time: datetime,
        now: datetime,
        window: timedelta = DEFAULT_CHECK_IN_WINDOW,
    ) -> None:
        """
        Check-in opens ``window`` before the start and closes at the end.

        Raises:
            ValidationException: ``now`` falls outside ``[start - window, end)``
        """
        start = ensure_utc(start_time)
        end = ensure_utc(end_time)
        moment = ensure_utc(now)
        if moment < start - window:
            minutes = int(window.total_seconds() // 60)
            if minutes % 60 == 0:
                hours = minutes // 60
                label = f"{hours} hour" if hours == 1 else f"{hours} hours"
            else:
                label = f"{minutes} minutes"
            raise ValidationException(
                f"Check-in is only allowed within {label} before start time",
                details={"start_time": start.isoformat(), "now": moment.isoformat()},
            )
        if moment >= end:
            raise ValidationException(
                "Check-in window has closed for this booking",
                details={"end_time": end.isoformat(), "now": moment.isoformat()},
            )
