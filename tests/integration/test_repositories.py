# tests/integration/test_repositories.py
"""
Repository tests against SQLite.

Overlap queries use half-open windows and only count capacity-consuming
statuses; create() surfaces unique violations as raw IntegrityError.
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from parkspot.core.enums import BookingStatus, PaymentStatus
from parkspot.repositories.factory import RepositoryFactory
from tests.helpers import OTHER_MEMBER_ID, OWNER_ID, at


@pytest.fixture
def booking_repository(db):
    return RepositoryFactory.create_booking_repository(db)


class TestBookingRepository:
    def test_overlap_counts_only_active_statuses(self, booking_repository, space, make_booking):
        make_booking(space, at(10), at(12))
        make_booking(space, at(11), at(13), status=BookingStatus.IN_PROGRESS.value)
        make_booking(space, at(10), at(12), status=BookingStatus.CANCELLED.value)
        make_booking(space, at(10), at(12), status=BookingStatus.COMPLETED.value)

        assert booking_repository.get_active_bookings_count(space.id, at(11), at(12)) == 2

    def test_touching_windows_do_not_overlap(self, booking_repository, space, make_booking):
        make_booking(space, at(10), at(11))

        assert booking_repository.get_active_bookings_count(space.id, at(11), at(12)) == 0
        assert booking_repository.get_active_bookings_count(space.id, at(9), at(10)) == 0
        assert not booking_repository.has_overlapping_booking(space.id, at(11), at(12))
        assert booking_repository.has_overlapping_booking(space.id, at(10, 59), at(12))

    def test_excluding_a_booking(self, booking_repository, space, make_booking):
        booking = make_booking(space, at(10), at(11))

        assert booking_repository.get_active_bookings_count(
            space.id, at(10), at(11), exclude_booking_id=booking.id
        ) == 0
        assert not booking_repository.has_overlapping_booking(
            space.id, at(10), at(11), exclude_booking_id=booking.id
        )

    def test_active_bookings_for_spots(self, booking_repository, make_space, make_booking):
        first = make_space()
        second = make_space(title="Rooftop")
        early = make_booking(first, at(8), at(9))
        late = make_booking(second, at(15), at(16), status=BookingStatus.CONFIRMED.value)
        make_booking(second, at(15), at(16), status=BookingStatus.REJECTED.value)

        everything = booking_repository.get_active_bookings_for_spots([first.id, second.id])
        afternoon = booking_repository.get_active_bookings_for_spots(
            [first.id, second.id], at(14), at(17)
        )

        assert [b.id for b in everything] == [early.id, late.id]
        assert [b.id for b in afternoon] == [late.id]
        assert booking_repository.get_active_bookings_for_spots([]) == []

    def test_lookup_by_reference(self, booking_repository, space, make_booking):
        booking = make_booking(space, at(10), at(11))

        found = booking_repository.get_by_reference(booking.booking_reference)

        assert found.id == booking.id
        assert found.parking_space.owner_id == OWNER_ID
        assert booking_repository.reference_exists(booking.booking_reference)
        assert not booking_repository.reference_exists("PK-20250601-ZZZZZZ")

    def test_update_only_touches_given_fields(self, booking_repository, space, make_booking):
        booking = make_booking(space, at(10), at(11), vehicle_model="Swift")

        updated = booking_repository.update(booking.id, vehicle_number="KA01AB1234", not_a_column="x")

        assert updated.vehicle_number == "KA01AB1234"
        assert updated.vehicle_model == "Swift"
        assert booking_repository.update("missing", vehicle_number="X") is None

    def test_duplicate_reference_raises_integrity_error(self, booking_repository, space, make_booking):
        booking = make_booking(space, at(10), at(11))

        with pytest.raises(IntegrityError):
            booking_repository.create(
                user_id=OTHER_MEMBER_ID,
                parking_space_id=space.id,
                booking_reference=booking.booking_reference,
                start_time=at(12),
                end_time=at(13),
                base_amount=Decimal("100.00"),
                tax_amount=Decimal("18.00"),
                service_fee=Decimal("5.00"),
                total_amount=Decimal("123.00"),
            )


class TestOtherRepositories:
    def test_one_payment_per_booking(self, db, space, make_booking, make_payment):
        booking = make_booking(space, at(10), at(11), status=BookingStatus.CONFIRMED.value)
        make_payment(booking)
        repository = RepositoryFactory.create_payment_repository(db)

        with pytest.raises(IntegrityError):
            repository.create(
                booking_id=booking.id,
                user_id=booking.user_id,
                amount=Decimal("123.00"),
                status=PaymentStatus.PENDING.value,
            )

    def test_locked_payment_lookup(self, db, space, make_booking, make_payment):
        booking = make_booking(space, at(10), at(11), status=BookingStatus.CONFIRMED.value)
        payment = make_payment(booking, invoice_number="INV-20250601-AAAAAA")
        repository = RepositoryFactory.create_payment_repository(db)

        assert repository.get_by_booking_id(booking.id, for_update=True).id == payment.id
        assert repository.invoice_number_exists("INV-20250601-AAAAAA")
        assert repository.get_by_booking_id("missing") is None

    def test_space_ids_by_owner(self, db, make_space):
        mine = [make_space().id, make_space(title="Second").id]
        make_space(owner_id=OTHER_MEMBER_ID)
        repository = RepositoryFactory.create_parking_space_repository(db)

        assert repository.get_ids_by_owner(OWNER_ID) == sorted(mine)

    def test_discount_lookup_is_case_insensitive(self, db, make_discount):
        discount = make_discount("Summer25")
        repository = RepositoryFactory.create_discount_repository(db)

        assert repository.get_by_code(" summer25 ").id == discount.id
        assert repository.get_by_code("WINTER") is None
