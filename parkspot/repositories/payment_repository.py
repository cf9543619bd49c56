# parkspot/repositories/payment_repository.py
"""
Payment data access.

``booking_id`` is unique, so a concurrent lazy creation surfaces as an
IntegrityError from ``create``; callers re-read the winning row.
"""

import logging
from typing import Any, Optional, cast

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.payment import Payment
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[Payment]):
    def __init__(self, db: Session):
        super().__init__(db, Payment)

    def create(self, **kwargs: Any) -> Payment:
        """Create a payment, exposing integrity errors for conflict handling."""
        try:
            return super().create(**kwargs)
        except RepositoryException as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise exc.__cause__
            raise

    def get_by_booking_id(self, booking_id: str, for_update: bool = False) -> Optional[Payment]:
        try:
            query = self.db.query(Payment).filter(Payment.booking_id == booking_id)
            if for_update:
                query = query.with_for_update().populate_existing()
            return cast(Optional[Payment], query.first())
        except Exception as e:
            self.logger.error(f"Error getting payment for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to get payment: {str(e)}") from e

    def invoice_number_exists(self, invoice_number: str) -> bool:
        return self.exists(invoice_number=invoice_number)
