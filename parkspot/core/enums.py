# parkspot/core/enums.py
"""
Core enums for the ParkSpot booking core.

All enums inherit from (str, Enum) so that the persisted value is the enum
VALUE, which keeps ORM queries and raw SQL in agreement.
"""

from enum import Enum


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "Pending"  # Waiting for owner approval
    AWAITING_PAYMENT = "AwaitingPayment"  # Approved, not yet paid
    CONFIRMED = "Confirmed"  # Paid, not yet occupied
    IN_PROGRESS = "InProgress"  # Vehicle checked in
    COMPLETED = "Completed"  # Vehicle checked out
    CANCELLED = "Cancelled"
    REJECTED = "Rejected"


# Statuses that count against ParkingSpace.total_spots for overlap purposes
CAPACITY_CONSUMING_STATUSES = frozenset(
    {
        BookingStatus.PENDING,
        BookingStatus.AWAITING_PAYMENT,
        BookingStatus.CONFIRMED,
        BookingStatus.IN_PROGRESS,
    }
)

TERMINAL_STATUSES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.REJECTED}
)


class PricingMode(str, Enum):
    """Billing unit used to compute the base amount."""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class VehicleType(str, Enum):
    CAR = "car"
    MOTORCYCLE = "motorcycle"
    SUV = "suv"
    VAN = "van"
    TRUCK = "truck"
    ELECTRIC = "electric"


class PaymentStatus(str, Enum):
    """Payment record statuses."""

    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"
    REFUNDED = "Refunded"
    PARTIAL_REFUND = "PartialRefund"


REFUNDABLE_PAYMENT_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.PARTIAL_REFUND})


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    UPI = "upi"
    NET_BANKING = "net_banking"
    WALLET = "wallet"


class DiscountType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
