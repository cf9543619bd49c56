# tests/conftest.py
"""
Pytest configuration for the ParkSpot booking core.

Tests run against an in-memory SQLite database; row locks are no-ops there,
so concurrency behaviour is exercised by patching the capacity recount.
"""

import os

# Set testing mode BEFORE any package imports
os.environ.setdefault("PARKSPOT_ENVIRONMENT", "test")
os.environ.setdefault("PARKSPOT_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("PARKSPOT_PAYMENT_GATEWAY", "mock")

from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterator

import pytest
from sqlalchemy.orm import Session, sessionmaker

from parkspot.core.enums import BookingStatus, PaymentStatus, PricingMode
from parkspot.database import Base, build_engine
from parkspot.models import Booking, DiscountCode, ParkingSpace, Payment
from parkspot.services.booking_service import BookingService
from parkspot.services.cache_service import CacheService
from parkspot.services.payment_gateway import MockPaymentGateway
from parkspot.services.payment_service import PaymentService
from tests.helpers import MEMBER_ID, NOW, OWNER_ID, FrozenClock, RecordingDispatcher


@pytest.fixture
def engine():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine) -> Iterator[Session]:
    session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def cache() -> CacheService:
    return CacheService()


@pytest.fixture
def gateway() -> MockPaymentGateway:
    return MockPaymentGateway()


@pytest.fixture
def booking_service(db, cache, gateway, dispatcher, clock) -> BookingService:
    return BookingService(
        db,
        cache,
        payment_gateway=gateway,
        dispatcher=dispatcher,
        clock=clock,
    )


@pytest.fixture
def payment_service(db, cache, gateway, dispatcher, clock) -> PaymentService:
    return PaymentService(
        db,
        cache,
        payment_gateway=gateway,
        dispatcher=dispatcher,
        clock=clock,
    )


@pytest.fixture
def make_space(db) -> Callable[..., ParkingSpace]:
    def _make_space(**overrides) -> ParkingSpace:
        values = {
            "owner_id": OWNER_ID,
            "title": "Basement parking near MG Road",
            "address": "12 MG Road",
            "city": "Bengaluru",
            "total_spots": 1,
            "hourly_rate": Decimal("100.00"),
            "daily_rate": Decimal("800.00"),
            "is_active": True,
        }
        values.update(overrides)
        space = ParkingSpace(**values)
        db.add(space)
        db.commit()
        return space

    return _make_space


@pytest.fixture
def space(make_space) -> ParkingSpace:
    return make_space()


@pytest.fixture
def make_booking(db) -> Callable[..., Booking]:
    """Insert a booking row directly, bypassing the orchestrator."""
    counter = {"n": 0}

    def _make_booking(space: ParkingSpace, start: datetime, end: datetime, **overrides) -> Booking:
        counter["n"] += 1
        values = {
            "user_id": MEMBER_ID,
            "parking_space_id": space.id,
            "booking_reference": f"PK-20250601-T{counter['n']:05d}",
            "start_time": start,
            "end_time": end,
            "pricing_mode": PricingMode.HOURLY.value,
            "base_amount": Decimal("100.00"),
            "tax_amount": Decimal("18.00"),
            "service_fee": Decimal("5.00"),
            "discount_amount": Decimal("0.00"),
            "total_amount": Decimal("123.00"),
            "status": BookingStatus.PENDING.value,
        }
        values.update(overrides)
        booking = Booking(**values)
        db.add(booking)
        db.commit()
        return booking

    return _make_booking


@pytest.fixture
def make_payment(db) -> Callable[..., Payment]:
    def _make_payment(booking: Booking, **overrides) -> Payment:
        values = {
            "booking_id": booking.id,
            "user_id": booking.user_id,
            "amount": Decimal(booking.total_amount),
            "currency": "INR",
            "status": PaymentStatus.COMPLETED.value,
            "gateway_name": "mock",
            "gateway_reference": "order_mock_seed",
            "transaction_id": "pay_mock_seed",
            "paid_at": NOW,
        }
        values.update(overrides)
        payment = Payment(**values)
        db.add(payment)
        db.commit()
        return payment

    return _make_payment


@pytest.fixture
def make_discount(db) -> Callable[..., DiscountCode]:
    def _make_discount(code: str = "SAVE10", **overrides) -> DiscountCode:
        values = {"code": code, "discount_type": "fixed", "value": Decimal("10.00"), "is_active": True}
        values.update(overrides)
        discount = DiscountCode(**values)
        db.add(discount)
        db.commit()
        return discount

    return _make_discount

