# parkspot/repositories/__init__.py
"""
Repository Pattern Implementation for the ParkSpot booking core

Key Components:
- BaseRepository: Foundation for all repositories with generic CRUD operations
- RepositoryFactory: Factory for creating repository instances
- BookingRepository: Overlap counting and booking listings
- ParkingSpaceRepository: Spaces and owner lookups
- PaymentRepository: One payment row per booking
- DiscountRepository: Discount code lookup

Usage:
    from parkspot.repositories import RepositoryFactory

    repository = RepositoryFactory.create_booking_repository(db)
    count = repository.get_active_bookings_count(space_id, start, end)
"""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .discount_repository import DiscountRepository
from .factory import RepositoryFactory
from .parking_space_repository import ParkingSpaceRepository
from .payment_repository import PaymentRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "DiscountRepository",
    "ParkingSpaceRepository",
    "PaymentRepository",
    "RepositoryFactory",
]
