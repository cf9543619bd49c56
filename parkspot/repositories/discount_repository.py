"""Discount code lookup."""

from typing import Optional, cast

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.discount import DiscountCode
from .base_repository import BaseRepository


class DiscountRepository(BaseRepository[DiscountCode]):
    def __init__(self, db: Session):
        super().__init__(db, DiscountCode)

    def get_by_code(self, code: str) -> Optional[DiscountCode]:
        """Case-insensitive lookup by code."""
        try:
            return cast(
                Optional[DiscountCode],
                self.db.query(DiscountCode)
                .filter(func.upper(DiscountCode.code) == code.strip().upper())
                .first(),
            )
        except Exception as e:
            self.logger.error(f"Error getting discount code {code}: {str(e)}")
            raise RepositoryException(f"Failed to get discount code: {str(e)}") from e
