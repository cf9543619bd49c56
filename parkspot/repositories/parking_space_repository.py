# parkspot/repositories/parking_space_repository.py
"""Parking space data access."""

import logging
from typing import List

from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.parking_space import ParkingSpace
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ParkingSpaceRepository(BaseRepository[ParkingSpace]):
    """Repository for parking spaces; ratings and listings live elsewhere."""

    def __init__(self, db: Session):
        super().__init__(db, ParkingSpace)

    def get_ids_by_owner(self, owner_id: str) -> List[str]:
        try:
            rows = (
                self.db.query(ParkingSpace.id)
                .filter(ParkingSpace.owner_id == owner_id)
                .order_by(ParkingSpace.id)
                .all()
            )
            return [row[0] for row in rows]
        except Exception as e:
            self.logger.error(f"Error getting spaces for owner {owner_id}: {str(e)}")
            raise RepositoryException(f"Failed to get owner spaces: {str(e)}") from e

