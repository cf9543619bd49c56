# parkspot/models/parking_space.py
"""
ParkingSpace model.

A space publishes ``total_spots`` interchangeable spots and a rate per
pricing mode. Only ``hourly_rate`` is mandatory; a mode whose rate is NULL
cannot be booked. Ratings are maintained elsewhere and are read-only here.
"""

from decimal import Decimal
import logging
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import PricingMode
from ..database import Base

logger = logging.getLogger(__name__)


class ParkingSpace(Base):
    """A bookable parking location with finite capacity."""

    __tablename__ = "parking_spaces"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    owner_id = Column(String(26), nullable=False, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    address = Column(String(500), nullable=False)
    city = Column(String(100), nullable=False, index=True)

    total_spots = Column(Integer, nullable=False, default=1)

    hourly_rate = Column(Numeric(10, 2), nullable=False)
    daily_rate = Column(Numeric(10, 2), nullable=True)
    weekly_rate = Column(Numeric(10, 2), nullable=True)
    monthly_rate = Column(Numeric(10, 2), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    average_rating = Column(Numeric(3, 2), nullable=False, default=0)
    total_reviews = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    bookings = relationship("Booking", back_populates="parking_space", lazy="select")

    __table_args__ = (
        CheckConstraint("total_spots >= 1", name="ck_parking_spaces_total_spots"),
        CheckConstraint("hourly_rate >= 0", name="ck_parking_spaces_hourly_rate"),
    )

    def __repr__(self) -> str:
        return (
            f"<ParkingSpace {self.id}: owner={self.owner_id}, spots={self.total_spots}, "
            f"active={self.is_active}>"
        )

    @property
    def rates(self) -> Dict[PricingMode, Optional[Decimal]]:
        """Rate per pricing mode; ``None`` means the mode is not offered."""
        return {
            PricingMode.HOURLY: self.hourly_rate,
            PricingMode.DAILY: self.daily_rate,
            PricingMode.WEEKLY: self.weekly_rate,
            PricingMode.MONTHLY: self.monthly_rate,
        }

    def is_owned_by(self, user_id: str) -> bool:
        return self.owner_id == user_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "title": self.title,
            "address": self.address,
            "city": self.city,
            "total_spots": self.total_spots,
            "hourly_rate": str(self.hourly_rate) if self.hourly_rate is not None else None,
            "daily_rate": str(self.daily_rate) if self.daily_rate is not None else None,
            "weekly_rate": str(self.weekly_rate) if self.weekly_rate is not None else None,
            "monthly_rate": str(self.monthly_rate) if self.monthly_rate is not None else None,
            "is_active": self.is_active,
            "average_rating": float(self.average_rating or 0),
            "total_reviews": self.total_reviews,
        }
