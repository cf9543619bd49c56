# parkspot/schemas/booking.py
"""
Booking command schemas.

Timestamps are normalized to UTC on the way in; naive values are taken to be
UTC already. Window ordering and "not in the past" checks belong to the
orchestrator, which reports them as VALIDATION_ERROR results.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator, model_validator

from ..core.enums import PricingMode, VehicleType
from ..core.timezone_utils import ensure_utc
from ._strict_base import StrictModel, StrictRequestModel


_WINDOW_FIELDS = frozenset({"start_time", "end_time", "pricing_mode"})


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


class BookingCreate(StrictRequestModel):
    """Reserve one spot of a parking space for ``[start_time, end_time)``."""

    parking_space_id: str = Field(..., min_length=1, description="Parking space to book")
    start_time: datetime = Field(..., description="Window start (UTC)")
    end_time: datetime = Field(..., description="Window end, exclusive (UTC)")
    pricing_mode: PricingMode = Field(PricingMode.HOURLY, description="Billing unit")
    vehicle_type: Optional[VehicleType] = None
    vehicle_number: Optional[str] = Field(None, max_length=20)
    vehicle_model: Optional[str] = Field(None, max_length=100)
    discount_code: Optional[str] = Field(None, max_length=50)
    special_requests: Optional[str] = Field(None, max_length=1000)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("vehicle_number")
    @classmethod
    def normalize_plate(cls, v: Optional[str]) -> Optional[str]:
        """Plates are compared case-insensitively; store them upper-cased."""
        return v.upper() if v else v

    @field_validator("discount_code")
    @classmethod
    def normalize_code(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else None


class BookingPatch(StrictRequestModel):
    """
    Partial update of a Pending booking.

    Only fields that were explicitly provided are applied; ``changes()``
    returns exactly those.
    """

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    pricing_mode: Optional[PricingMode] = None
    vehicle_type: Optional[VehicleType] = None
    vehicle_number: Optional[str] = Field(None, max_length=20)
    vehicle_model: Optional[str] = Field(None, max_length=100)
    special_requests: Optional[str] = Field(None, max_length=1000)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _to_utc(v)

    @field_validator("vehicle_number")
    @classmethod
    def normalize_plate(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

    @model_validator(mode="after")
    def reject_cleared_window(self) -> "BookingPatch":
        for name in _WINDOW_FIELDS:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be cleared")
        return self

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)

    @property
    def touches_window(self) -> bool:
        return bool(_WINDOW_FIELDS & self.model_fields_set)


class AvailabilityView(StrictModel):
    parking_space_id: str
    start_time: datetime
    end_time: datetime
    available: bool
    active_count: int
    total_spots: int
    available_spots: int


class MemberDashboard(StrictModel):
    """A member's bookings grouped for the dashboard."""

    user_id: str
    upcoming: List[Dict[str, Any]] = Field(default_factory=list)
    in_progress: List[Dict[str, Any]] = Field(default_factory=list)
    past: List[Dict[str, Any]] = Field(default_factory=list)
    total_spent: str = "0.00"


class OwnerDashboard(StrictModel):
    """An owner's view across all of their parking spaces."""

    owner_id: str
    parking_space_ids: List[str] = Field(default_factory=list)
    pending_approval: List[Dict[str, Any]] = Field(default_factory=list)
    active: List[Dict[str, Any]] = Field(default_factory=list)
    status_counts: Dict[str, int] = Field(default_factory=dict)
    total_earnings: str = "0.00"
