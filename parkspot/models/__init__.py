"""
Database models for the ParkSpot booking core.

- ParkingSpace: bookable location with finite capacity and per-mode rates
- Booking: reservation of one spot for a half-open time window
- Payment: one gateway payment per booking, refunds accumulate on it
- DiscountCode: fixed or percentage reductions
"""

from .booking import Booking
from .discount import DiscountCode
from .parking_space import ParkingSpace
from .payment import Payment

__all__ = [
    "Booking",
    "DiscountCode",
    "ParkingSpace",
    "Payment",
]
