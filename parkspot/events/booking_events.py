"""Booking and payment domain events, dispatched only after commit."""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ..core.timezone_utils import utc_now


@dataclass(frozen=True)
class BookingCreated:
    """Fired after a booking is persisted in Pending."""

    booking_id: str
    booking_reference: str
    user_id: str
    parking_space_id: str
    start_time: datetime
    end_time: datetime
    total_amount: str
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BookingApproved:
    """Fired after the owner approves; ``status`` is AwaitingPayment or Confirmed."""

    booking_id: str
    owner_id: str
    status: str
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BookingRejected:
    booking_id: str
    owner_id: str
    reason: Optional[str] = None
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BookingCancelled:
    """Fired after a booking is cancelled."""

    booking_id: str
    cancelled_by: str  # 'user' or 'owner'
    reason: Optional[str] = None
    refund_amount: Optional[str] = None
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BookingCheckedIn:
    booking_id: str
    check_in_time: datetime
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BookingCheckedOut:
    booking_id: str
    check_out_time: datetime
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PaymentCompleted:
    """Fired after a payment is verified and the booking confirmed."""

    payment_id: str
    booking_id: str
    amount: str
    transaction_id: Optional[str]
    invoice_number: Optional[str]
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PaymentRefunded:
    payment_id: str
    booking_id: str
    refund_amount: str
    total_refunded: str
    status: str
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RefundUnrecorded:
    """
    Fired when a gateway refund went through but could not be written to the
    payment row (the payment changed in the meantime). Needs manual review.
    """

    payment_id: str
    booking_id: str
    refund_id: str
    amount: str
    reason: str
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
