# parkspot/models/booking.py
"""
Booking model for ParkSpot.

A booking reserves one spot of a ParkingSpace for the half-open window
``[start_time, end_time)``. The price breakdown is snapshotted on the row so
that later rate changes never alter an existing reservation.

Status changes go through ``BookingStateMachine``; every mutator below asks
the state machine for the next status and raises
``InvalidStateTransitionException`` when the event is illegal. Bookings are
never deleted, they are retired through a terminal status.
"""

from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import BookingStatus, PricingMode
from ..core.exceptions import InvalidDiscountException, InvalidStateTransitionException
from ..core.timezone_utils import ensure_utc, utc_now
from ..database import Base
from ..services.booking_lifecycle import (
    DEFAULT_CHECK_IN_WINDOW,
    BookingEvent,
    BookingStateMachine,
    coerce_status,
)
from ..services.pricing_service import quantize_money

if TYPE_CHECKING:
    from ..services.pricing_service import PriceBreakdown

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

_DISCOUNTABLE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.AWAITING_PAYMENT})

_STATUS_VALUES = ", ".join(f"'{status.value}'" for status in BookingStatus)
_MODE_VALUES = ", ".join(f"'{mode.value}'" for mode in PricingMode)


class Booking(Base):
    """Reservation of one spot for a time window."""

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    user_id = Column(String(26), nullable=False, index=True)
    parking_space_id = Column(
        String(26), ForeignKey("parking_spaces.id"), nullable=False, index=True
    )
    booking_reference = Column(String(32), nullable=False, unique=True)

    # Window, always stored in UTC
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    pricing_mode = Column(String(20), nullable=False, default=PricingMode.HOURLY.value)

    # Vehicle descriptor
    vehicle_type = Column(String(20), nullable=True)
    vehicle_number = Column(String(20), nullable=True)
    vehicle_model = Column(String(100), nullable=True)

    # Price snapshot
    base_amount = Column(Numeric(10, 2), nullable=False, default=ZERO)
    tax_amount = Column(Numeric(10, 2), nullable=False, default=ZERO)
    service_fee = Column(Numeric(10, 2), nullable=False, default=ZERO)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=ZERO)
    discount_code = Column(String(50), nullable=True)
    total_amount = Column(Numeric(10, 2), nullable=False, default=ZERO)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    special_requests = Column(Text, nullable=True)

    # Lifecycle stamps
    approved_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    check_in_time = Column(DateTime(timezone=True), nullable=True)
    check_out_time = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by_id = Column(String(26), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    parking_space = relationship("ParkingSpace", back_populates="bookings")
    payment = relationship("Payment", back_populates="booking", uselist=False)

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_bookings_status"),
        CheckConstraint(f"pricing_mode IN ({_MODE_VALUES})", name="ck_bookings_pricing_mode"),
        CheckConstraint("start_time < end_time", name="ck_bookings_time_order"),
        CheckConstraint("total_amount >= 0", name="ck_bookings_total_non_negative"),
        CheckConstraint("discount_amount >= 0", name="ck_bookings_discount_non_negative"),
        CheckConstraint(
            # SQLite binds Numeric as REAL, so compare within half a cent
            "abs(total_amount - (base_amount + tax_amount + service_fee - discount_amount)) < 0.005",
            name="ck_bookings_total_formula",
        ),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = BookingStatus.PENDING.value
        for money_field in ("base_amount", "tax_amount", "service_fee", "discount_amount"):
            if getattr(self, money_field) is None:
                setattr(self, money_field, ZERO)
        if self.total_amount is None:
            self.total_amount = self.pre_discount_total - Decimal(self.discount_amount)

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: ref={self.booking_reference}, space={self.parking_space_id}, "
            f"user={self.user_id}, {self.start_time}-{self.end_time}, status={self.status}>"
        )

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def current_status(self) -> BookingStatus:
        return coerce_status(self.status)

    @property
    def pre_discount_total(self) -> Decimal:
        return quantize_money(
            Decimal(self.base_amount or 0) + Decimal(self.tax_amount or 0) + Decimal(self.service_fee or 0)
        )

    @property
    def consumes_capacity(self) -> bool:
        return BookingStateMachine.consumes_capacity(self.status)

    def is_owned_by(self, user_id: str) -> bool:
        return self.user_id == user_id

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open overlap: touching windows do not overlap."""
        return ensure_utc(self.start_time) < ensure_utc(end) and ensure_utc(self.end_time) > ensure_utc(start)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _advance(self, event: BookingEvent) -> BookingStatus:
        previous = self.current_status
        target = BookingStateMachine.next_status(previous, event)
        self.status = target.value
        logger.info(f"Booking {self.id} {previous.value} -> {target.value} ({event.value})")
        return target

    def approve(self, now: Optional[datetime] = None) -> None:
        """Owner approval. A booking with nothing to pay is confirmed straight away."""
        moment = now or utc_now()
        self._advance(BookingEvent.APPROVE)
        self.approved_at = moment
        if Decimal(self.total_amount or 0) == ZERO:
            self.confirm(moment)

    def reject(self, reason: Optional[str] = None) -> None:
        self._advance(BookingEvent.REJECT)
        self.rejection_reason = reason

    def confirm(self, now: Optional[datetime] = None) -> None:
        self._advance(BookingEvent.CONFIRM)
        self.confirmed_at = now or utc_now()

    def cancel(
        self,
        cancelled_by_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self._advance(BookingEvent.CANCEL)
        self.cancelled_at = now or utc_now()
        self.cancelled_by_id = cancelled_by_id
        self.cancellation_reason = reason

    def check_in(
        self,
        now: Optional[datetime] = None,
        window: timedelta = DEFAULT_CHECK_IN_WINDOW,
    ) -> None:
        moment = now or utc_now()
        # Validate status before the window so a Pending booking reports its status
        BookingStateMachine.next_status(self.status, BookingEvent.CHECK_IN)
        BookingStateMachine.assert_check_in_window(self.start_time, self.end_time, moment, window)
        self._advance(BookingEvent.CHECK_IN)
        self.check_in_time = moment

    def check_out(self, now: Optional[datetime] = None) -> None:
        self._advance(BookingEvent.CHECK_OUT)
        self.check_out_time = now or utc_now()

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    def apply_price(self, breakdown: "PriceBreakdown") -> None:
        """Snapshot a freshly computed breakdown onto the row."""
        self.base_amount = breakdown.base_amount
        self.tax_amount = breakdown.tax_amount
        self.service_fee = breakdown.service_fee
        self.discount_amount = breakdown.discount_amount
        self.total_amount = breakdown.total_amount

    def apply_discount(self, code: str, amount: Decimal) -> None:
        """
        Set the discount and recompute the total in one step.

        Raises:
            InvalidStateTransitionException: booking is past the payment stage
            InvalidDiscountException: amount is negative or exceeds the pre-discount total
        """
        if self.current_status not in _DISCOUNTABLE_STATUSES:
            raise InvalidStateTransitionException(
                self.current_status,
                "apply discount",
                f"Cannot apply discount to booking in {self.current_status.value} status",
            )
        value = quantize_money(Decimal(amount))
        if value < ZERO or value > self.pre_discount_total:
            raise InvalidDiscountException(
                "Invalid discount amount",
                details={
                    "discount_code": code,
                    "discount_amount": str(value),
                    "pre_discount_total": str(self.pre_discount_total),
                },
            )
        self.discount_code = code
        self.discount_amount = value
        self.recalculate_total()

    def recalculate_total(self) -> Decimal:
        total = self.pre_discount_total - quantize_money(Decimal(self.discount_amount or 0))
        if total < ZERO:
            raise InvalidDiscountException("Invalid discount amount")
        self.total_amount = total
        return total

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a cache/JSON friendly dictionary."""

        def _iso(value: Optional[datetime]) -> Optional[str]:
            return ensure_utc(value).isoformat() if value else None

        return {
            "id": self.id,
            "booking_reference": self.booking_reference,
            "user_id": self.user_id,
            "parking_space_id": self.parking_space_id,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "pricing_mode": self.pricing_mode,
            "vehicle_type": self.vehicle_type,
            "vehicle_number": self.vehicle_number,
            "vehicle_model": self.vehicle_model,
            "base_amount": str(self.base_amount),
            "tax_amount": str(self.tax_amount),
            "service_fee": str(self.service_fee),
            "discount_amount": str(self.discount_amount),
            "discount_code": self.discount_code,
            "total_amount": str(self.total_amount),
            "status": self.current_status.value,
            "special_requests": self.special_requests,
            "approved_at": _iso(self.approved_at),
            "confirmed_at": _iso(self.confirmed_at),
            "check_in_time": _iso(self.check_in_time),
            "check_out_time": _iso(self.check_out_time),
            "rejection_reason": self.rejection_reason,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_at": _iso(self.cancelled_at),
            "cancelled_by_id": self.cancelled_by_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


Index(
    "ix_bookings_space_window",
    Booking.parking_space_id,
    Booking.start_time,
    Booking.end_time,
)
