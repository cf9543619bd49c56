# parkspot/services/availability_service.py
"""
Availability checker for parking spaces.

A space with ``total_spots = N`` is available for a window while fewer than
N capacity-consuming bookings overlap it. This read is advisory; the create
transaction repeats the count under a row lock on the space before
inserting, and once more after flushing.
"""

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import TYPE_CHECKING, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import NotFoundException, ValidationException
from ..core.timezone_utils import ensure_utc
from ..models.parking_space import ParkingSpace
from ..repositories.factory import RepositoryFactory
from .base import BaseService

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    active_count: int
    total_spots: int

    @property
    def available_spots(self) -> int:
        return max(self.total_spots - self.active_count, 0)


class AvailabilityService(BaseService):
    """Counts overlapping capacity-consuming bookings against a space's spots."""

    def __init__(self, db: Session, cache: Optional["CacheService"] = None):
        super().__init__(db, cache)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.parking_space_repository = RepositoryFactory.create_parking_space_repository(db)

    @BaseService.measure_operation("check_availability")
    def check_availability(
        self,
        parking_space_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> AvailabilityResult:
        """
        Check whether one more booking fits ``[start_time, end_time)``.

        Raises:
            NotFoundException: unknown space
            ValidationException: empty or inverted window
        """
        space = self.parking_space_repository.get_by_id(parking_space_id, load_relationships=False)
        if space is None:
            raise NotFoundException.for_resource("Parking space", parking_space_id)
        return self.count_for_space(space, start_time, end_time, exclude_booking_id)

    def count_for_space(
        self,
        space: ParkingSpace,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> AvailabilityResult:
        """Availability for an already loaded (possibly locked) space."""
        start = ensure_utc(start_time)
        end = ensure_utc(end_time)
        if start >= end:
            raise ValidationException("Start time must be before end time")

        active = self.booking_repository.get_active_bookings_count(
            space.id, start, end, exclude_booking_id
        )
        total = int(space.total_spots)
        result = AvailabilityResult(available=active < total, active_count=active, total_spots=total)
        logger.debug(
            "Availability for space %s %s-%s: %s/%s in use",
            space.id,
            start.isoformat(),
            end.isoformat(),
            active,
            total,
        )
        return result
