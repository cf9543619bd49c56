# tests/unit/test_booking_lifecycle.py
"""
Unit tests for the booking state machine and the Booking model's
lifecycle and pricing methods. Models are exercised unsaved.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from parkspot.core.enums import BookingStatus
from parkspot.core.exceptions import (
    InvalidDiscountException,
    InvalidStateTransitionException,
    ValidationException,
)
from parkspot.models.booking import Booking
from parkspot.services.booking_lifecycle import BookingEvent, BookingStateMachine, coerce_status

START = datetime(2025, 6, 2, 10, 0, tzinfo=timezone.utc)
END = START + timedelta(hours=2)


def _booking(status: BookingStatus = BookingStatus.PENDING, **overrides) -> Booking:
    values = {
        "id": "01HBOOKING0000000000000000",
        "user_id": "01HMEMBER00000000000000000",
        "parking_space_id": "01HSPACE000000000000000000",
        "booking_reference": "PK-20250602-ABC123",
        "start_time": START,
        "end_time": END,
        "pricing_mode": "hourly",
        "base_amount": Decimal("100.00"),
        "tax_amount": Decimal("10.00"),
        "service_fee": Decimal("5.00"),
        "status": status.value,
    }
    values.update(overrides)
    return Booking(**values)


class TestStateMachine:
    @pytest.mark.parametrize(
        "status,event,expected",
        [
            (BookingStatus.PENDING, BookingEvent.APPROVE, BookingStatus.AWAITING_PAYMENT),
            (BookingStatus.PENDING, BookingEvent.REJECT, BookingStatus.REJECTED),
            (BookingStatus.AWAITING_PAYMENT, BookingEvent.CONFIRM, BookingStatus.CONFIRMED),
            (BookingStatus.PENDING, BookingEvent.CONFIRM, BookingStatus.CONFIRMED),
            (BookingStatus.CONFIRMED, BookingEvent.CHECK_IN, BookingStatus.IN_PROGRESS),
            (BookingStatus.IN_PROGRESS, BookingEvent.CHECK_OUT, BookingStatus.COMPLETED),
            (BookingStatus.IN_PROGRESS, BookingEvent.CANCEL, BookingStatus.CANCELLED),
        ],
    )
    def test_legal_transitions(self, status, event, expected):
        assert BookingStateMachine.next_status(status, event) == expected

    @pytest.mark.parametrize(
        "status", [BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.REJECTED]
    )
    def test_terminal_statuses_allow_nothing(self, status):
        assert BookingStateMachine.allowed_events(status) == []

    def test_accepts_raw_status_strings(self):
        assert BookingStateMachine.can_transition("Pending", BookingEvent.APPROVE)
        assert not BookingStateMachine.can_transition("Confirmed", BookingEvent.APPROVE)

    def test_unknown_status_is_validation_error(self):
        with pytest.raises(ValidationException):
            coerce_status("Archived")

    def test_illegal_transition_names_current_status(self):
        with pytest.raises(InvalidStateTransitionException) as exc_info:
            BookingStateMachine.next_status(BookingStatus.COMPLETED, BookingEvent.CHECK_IN)
        assert exc_info.value.message == "Cannot check in booking in Completed status"
        assert exc_info.value.current_status == "Completed"

    def test_capacity_consuming_statuses(self):
        assert BookingStateMachine.consumes_capacity("Pending")
        assert BookingStateMachine.consumes_capacity("InProgress")
        assert not BookingStateMachine.consumes_capacity("Cancelled")
        assert not BookingStateMachine.consumes_capacity("Completed")


class TestConfirm:
    @pytest.mark.parametrize(
        "status", [BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.COMPLETED]
    )
    def test_confirm_rejected_outside_payment_stage(self, status):
        booking = _booking(status)
        with pytest.raises(InvalidStateTransitionException) as exc_info:
            booking.confirm()
        assert exc_info.value.message == f"Cannot confirm booking in {status.value} status"
        assert booking.status == status.value

    def test_confirm_stamps_time(self):
        booking = _booking(BookingStatus.AWAITING_PAYMENT)
        booking.confirm(START - timedelta(days=1))
        assert booking.status == "Confirmed"
        assert booking.confirmed_at == START - timedelta(days=1)


class TestApprove:
    def test_paid_booking_awaits_payment(self):
        booking = _booking()
        booking.approve(START)
        assert booking.status == "AwaitingPayment"
        assert booking.approved_at == START

    def test_free_booking_is_confirmed_immediately(self):
        booking = _booking(
            base_amount=Decimal("0"), tax_amount=Decimal("0"), service_fee=Decimal("0")
        )
        assert booking.total_amount == Decimal("0.00")
        booking.approve(START)
        assert booking.status == "Confirmed"


class TestCheckIn:
    def test_within_one_hour_before_start(self):
        booking = _booking(BookingStatus.CONFIRMED)
        booking.check_in(START - timedelta(minutes=59))
        assert booking.status == "InProgress"
        assert booking.check_in_time == START - timedelta(minutes=59)

    def test_too_early(self):
        booking = _booking(BookingStatus.CONFIRMED)
        with pytest.raises(ValidationException) as exc_info:
            booking.check_in(START - timedelta(hours=2))
        assert exc_info.value.message == "Check-in is only allowed within 1 hour before start time"
        assert booking.status == "Confirmed"

    def test_after_end(self):
        booking = _booking(BookingStatus.CONFIRMED)
        with pytest.raises(ValidationException) as exc_info:
            booking.check_in(END)
        assert exc_info.value.message == "Check-in window has closed for this booking"

    def test_unpaid_booking_reports_status_first(self):
        booking = _booking(BookingStatus.PENDING)
        with pytest.raises(InvalidStateTransitionException):
            booking.check_in(START - timedelta(days=3))

    def test_cannot_check_in_twice(self):
        booking = _booking(BookingStatus.CONFIRMED)
        booking.check_in(START)
        with pytest.raises(InvalidStateTransitionException):
            booking.check_in(START + timedelta(minutes=5))

    def test_custom_window(self):
        booking = _booking(BookingStatus.CONFIRMED)
        with pytest.raises(ValidationException) as exc_info:
            booking.check_in(START - timedelta(minutes=45), window=timedelta(minutes=30))
        assert exc_info.value.message == "Check-in is only allowed within 30 minutes before start time"


class TestDiscount:
    def test_discount_recomputes_total(self):
        booking = _booking()
        assert booking.total_amount == Decimal("115.00")

        booking.apply_discount("SAVE10", Decimal("10"))

        assert booking.discount_amount == Decimal("10.00")
        assert booking.total_amount == Decimal("105.00")
        assert booking.discount_code == "SAVE10"

    def test_discount_above_pre_discount_total_is_rejected(self):
        booking = _booking()
        with pytest.raises(InvalidDiscountException) as exc_info:
            booking.apply_discount("BIG", Decimal("200"))
        assert exc_info.value.message == "Invalid discount amount"
        assert booking.discount_amount == Decimal("0.00")
        assert booking.total_amount == Decimal("115.00")

    def test_negative_discount_is_rejected(self):
        booking = _booking()
        with pytest.raises(InvalidDiscountException):
            booking.apply_discount("NEG", Decimal("-5"))

    def test_discount_after_confirmation_is_rejected(self):
        booking = _booking(BookingStatus.CONFIRMED)
        with pytest.raises(InvalidStateTransitionException) as exc_info:
            booking.apply_discount("SAVE10", Decimal("10"))
        assert exc_info.value.message == "Cannot apply discount to booking in Confirmed status"


class TestCancel:
    def test_cancel_records_actor_and_reason(self):
        booking = _booking(BookingStatus.CONFIRMED)
        booking.cancel("01HOWNER000000000000000000", "Gate under repair", START)
        assert booking.status == "Cancelled"
        assert booking.cancelled_by_id == "01HOWNER000000000000000000"
        assert booking.cancellation_reason == "Gate under repair"
        assert not booking.consumes_capacity

    def test_cancel_completed_booking_fails(self):
        booking = _booking(BookingStatus.COMPLETED)
        with pytest.raises(InvalidStateTransitionException):
            booking.cancel("01HMEMBER00000000000000000")


def test_half_open_overlap():
    booking = _booking()
    assert booking.overlaps(START + timedelta(hours=1), END + timedelta(hours=1))
    assert not booking.overlaps(END, END + timedelta(hours=1))
    assert not booking.overlaps(START - timedelta(hours=1), START)
