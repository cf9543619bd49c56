# parkspot/repositories/factory.py
"""
Repository Factory for the ParkSpot booking core

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .discount_repository import DiscountRepository
    from .parking_space_repository import ParkingSpaceRepository
    from .payment_repository import PaymentRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation so services can be handed fakes in tests.
    """

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_parking_space_repository(db: Session) -> "ParkingSpaceRepository":
        """Create repository for parking space operations."""
        from .parking_space_repository import ParkingSpaceRepository

        return ParkingSpaceRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> "PaymentRepository":
        """Create repository for payment operations."""
        from .payment_repository import PaymentRepository

        return PaymentRepository(db)

    @staticmethod
    def create_discount_repository(db: Session) -> "DiscountRepository":
        """Create repository for discount code lookups."""
        from .discount_repository import DiscountRepository

        return DiscountRepository(db)
