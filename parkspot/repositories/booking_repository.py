# parkspot/repositories/booking_repository.py
"""
Booking Repository for the ParkSpot booking core

Implements data access for bookings:
- Lookup by id and by human readable reference
- Overlap counting against capacity-consuming statuses
- Per-user and per-space listings for dashboards

Windows are half-open, so two bookings overlap when
``existing.start < requested.end AND existing.end > requested.start``;
a booking ending at 11:00 does not collide with one starting at 11:00.
"""

from datetime import datetime
import logging
from typing import Any, List, Optional, Sequence, cast

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.enums import CAPACITY_CONSUMING_STATUSES
from ..core.exceptions import RepositoryException
from ..core.timezone_utils import ensure_utc
from ..models.booking import Booking
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_ACTIVE_STATUS_VALUES = sorted(status.value for status in CAPACITY_CONSUMING_STATUSES)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        """Initialize with Booking model."""
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def create(self, **kwargs: Any) -> Booking:
        """Create a booking, exposing integrity errors for conflict handling."""
        try:
            return super().create(**kwargs)
        except RepositoryException as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise exc.__cause__
            raise

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(Booking.parking_space))

    def get_by_reference(self, booking_reference: str) -> Optional[Booking]:
        try:
            return cast(
                Optional[Booking],
                self._apply_eager_loading(self.db.query(Booking))
                .filter(Booking.booking_reference == booking_reference)
                .first(),
            )
        except Exception as e:
            self.logger.error(f"Error getting booking by reference: {str(e)}")
            raise RepositoryException(f"Failed to get booking by reference: {str(e)}") from e

    def reference_exists(self, booking_reference: str) -> bool:
        return self.exists(booking_reference=booking_reference)

    # Capacity queries

    def _overlap_query(
        self,
        parking_space_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> Query:
        query = self.db.query(Booking).filter(
            Booking.parking_space_id == parking_space_id,
            Booking.status.in_(_ACTIVE_STATUS_VALUES),
            Booking.start_time < ensure_utc(end_time),
            Booking.end_time > ensure_utc(start_time),
        )
        if exclude_booking_id:
            query = query.filter(Booking.id != exclude_booking_id)
        return query

    def get_active_bookings_count(
        self,
        parking_space_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> int:
        """
        Count capacity-consuming bookings on a space overlapping the window.

        Args:
            parking_space_id: Space to check
            start_time: Window start (inclusive)
            end_time: Window end (exclusive)
            exclude_booking_id: Booking to leave out (rescheduling)

        Returns:
            Number of overlapping active bookings
        """
        try:
            query = self._overlap_query(parking_space_id, start_time, end_time, exclude_booking_id)
            return int(query.with_entities(func.count(Booking.id)).scalar() or 0)
        except Exception as e:
            self.logger.error(f"Error counting overlapping bookings: {str(e)}")
            raise RepositoryException(f"Failed to count bookings: {str(e)}") from e

    def has_overlapping_booking(
        self,
        parking_space_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        """Efficient boolean check for any overlapping active booking."""
        try:
            query = self._overlap_query(parking_space_id, start_time, end_time, exclude_booking_id)
            return query.first() is not None
        except Exception as e:
            self.logger.error(f"Error checking booking overlap: {str(e)}")
            raise RepositoryException(f"Failed to check overlap: {str(e)}") from e

    def get_active_bookings_for_spots(
        self,
        parking_space_ids: Sequence[str],
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[Booking]:
        """
        Active bookings across several spaces, optionally limited to a window.

        Used by the owner dashboard and by map/search availability overlays.
        """
        if not parking_space_ids:
            return []
        try:
            query = self.db.query(Booking).filter(
                Booking.parking_space_id.in_(list(parking_space_ids)),
                Booking.status.in_(_ACTIVE_STATUS_VALUES),
            )
            if start_time is not None and end_time is not None:
                query = query.filter(
                    Booking.start_time < ensure_utc(end_time),
                    Booking.end_time > ensure_utc(start_time),
                )
            return cast(List[Booking], query.order_by(Booking.start_time).all())
        except Exception as e:
            self.logger.error(f"Error getting active bookings for spaces: {str(e)}")
            raise RepositoryException(f"Failed to get active bookings: {str(e)}") from e

    # Listings

    def get_user_bookings(self, user_id: str, limit: Optional[int] = None) -> List[Booking]:
        try:
            query = (
                self.db.query(Booking)
                .filter(Booking.user_id == user_id)
                .order_by(Booking.start_time.desc())
            )
            if limit:
                query = query.limit(limit)
            return cast(List[Booking], query.all())
        except Exception as e:
            self.logger.error(f"Error getting user bookings: {str(e)}")
            raise RepositoryException(f"Failed to get user bookings: {str(e)}") from e

    def get_bookings_for_spots(self, parking_space_ids: Sequence[str]) -> List[Booking]:
        if not parking_space_ids:
            return []
        try:
            return cast(
                List[Booking],
                self.db.query(Booking)
                .filter(Booking.parking_space_id.in_(list(parking_space_ids)))
                .order_by(Booking.start_time)
                .all(),
            )
        except Exception as e:
            self.logger.error(f"Error getting bookings for spaces: {str(e)}")
            raise RepositoryException(f"Failed to get bookings for spaces: {str(e)}") from e
