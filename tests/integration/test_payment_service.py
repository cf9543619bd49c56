# tests/integration/test_payment_service.py
"""
Integration tests for PaymentService: orders, charges, idempotent
reconciliation and owner refunds.
"""

from decimal import Decimal
import re

import pytest

from parkspot.core.enums import BookingStatus, PaymentStatus
from parkspot.core.exceptions import ErrorKind
from parkspot.events import PaymentCompleted, PaymentRefunded
from parkspot.models import Payment
from parkspot.schemas.payment import GatewayPaymentResult
from parkspot.services.payment_gateway import MockPaymentGateway
from parkspot.services.payment_service import PaymentService
from tests.helpers import MEMBER_ID, OTHER_MEMBER_ID, OWNER_ID, at


def _gateway_result(order_id="order_1", amount="123.00", **overrides):
    values = {
        "order_id": order_id,
        "payment_id": "pay_1",
        "signature": "sig_1",
        "amount": Decimal(amount),
    }
    values.update(overrides)
    return GatewayPaymentResult(**values)


@pytest.fixture
def awaiting(space, make_booking):
    """An approved booking owing 123.00."""
    return make_booking(space, at(10), at(11), status=BookingStatus.AWAITING_PAYMENT.value)


class TestPaymentOrder:
    def test_creates_single_pending_payment(self, payment_service, awaiting, gateway):
        first = payment_service.create_payment_order(awaiting.id, MEMBER_ID).unwrap()
        second = payment_service.create_payment_order(awaiting.id, MEMBER_ID).unwrap()

        assert first.amount == Decimal("123.00")
        assert first.order_id in gateway.orders
        assert second.payment_id == first.payment_id
        assert second.order_id != first.order_id
        payment = payment_service.payment_repository.get_by_id(first.payment_id)
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.gateway_reference == second.order_id
        assert payment_service.db.query(Payment).count() == 1

    def test_pending_booking_needs_approval(self, payment_service, space, make_booking):
        booking = make_booking(space, at(10), at(11))

        result = payment_service.create_payment_order(booking.id, MEMBER_ID)

        assert result.error == ErrorKind.INVALID_STATE_TRANSITION
        assert result.message == "Booking must be approved by the owner before payment"

    def test_only_member_can_open_order(self, payment_service, awaiting):
        result = payment_service.create_payment_order(awaiting.id, OTHER_MEMBER_ID)
        assert result.error == ErrorKind.UNAUTHORIZED

    def test_settled_booking_replays_existing_order(self, payment_service, awaiting, make_payment):
        payment = make_payment(awaiting)

        result = payment_service.create_payment_order(awaiting.id, MEMBER_ID)

        assert result.already_processed
        assert result.value.payment_id == payment.id


class TestReconcile:
    def test_second_reconciliation_is_a_replay(self, payment_service, awaiting, dispatcher):
        """The same gateway callback delivered twice settles once."""
        order = payment_service.create_payment_order(awaiting.id, MEMBER_ID).unwrap()
        callback = _gateway_result(order.order_id)

        first = payment_service.reconcile(awaiting.id, callback, MEMBER_ID)
        second = payment_service.reconcile(awaiting.id, callback, MEMBER_ID)

        assert first.success and not first.already_processed
        payment = first.value
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.transaction_id == "pay_1"
        assert re.fullmatch(r"INV-20250601-[A-Z0-9]{6}", payment.invoice_number)
        assert awaiting.status == BookingStatus.CONFIRMED.value
        assert awaiting.confirmed_at is not None

        assert second.success and second.already_processed
        assert second.value.id == payment.id
        assert second.value.invoice_number == payment.invoice_number
        assert payment_service.db.query(Payment).count() == 1
        assert len(dispatcher.of_type(PaymentCompleted)) == 1

    def test_reconcile_without_prior_order_creates_payment(self, payment_service, awaiting):
        result = payment_service.reconcile(awaiting.id, _gateway_result("order_webhook"))

        assert result.success
        assert result.value.gateway_reference == "order_webhook"
        assert result.value.booking_id == awaiting.id

    def test_result_for_another_order_is_rejected(self, payment_service, awaiting):
        payment_service.create_payment_order(awaiting.id, MEMBER_ID).unwrap()

        result = payment_service.reconcile(awaiting.id, _gateway_result("order_elsewhere"), MEMBER_ID)

        assert result.error == ErrorKind.PAYMENT_VERIFICATION_FAILED
        assert result.message == "Payment order does not match the open order for this booking"
        payment = payment_service.payment_repository.get_by_booking_id(awaiting.id)
        assert payment.status == PaymentStatus.PENDING.value
        payment_service.db.refresh(awaiting)
        assert awaiting.status == BookingStatus.AWAITING_PAYMENT.value

    def test_invalid_signature(self, payment_service, awaiting):
        result = payment_service.reconcile(
            awaiting.id, _gateway_result(signature=MockPaymentGateway.INVALID_SIGNATURE)
        )

        assert result.error == ErrorKind.PAYMENT_VERIFICATION_FAILED
        assert result.message == "Invalid payment signature"
        payment_service.db.refresh(awaiting)
        assert awaiting.status == BookingStatus.AWAITING_PAYMENT.value

    def test_amount_mismatch(self, payment_service, awaiting):
        result = payment_service.reconcile(awaiting.id, _gateway_result(amount="100.00"))

        assert result.error == ErrorKind.PAYMENT_VERIFICATION_FAILED
        assert result.message == "Payment amount does not match booking total"
        assert payment_service.db.query(Payment).count() == 0

    def test_pending_booking_cannot_be_paid(self, payment_service, space, make_booking):
        booking = make_booking(space, at(10), at(11))

        result = payment_service.reconcile(booking.id, _gateway_result())

        assert result.error == ErrorKind.INVALID_STATE_TRANSITION
        payment_service.db.refresh(booking)
        assert booking.status == BookingStatus.PENDING.value

    def test_cancelled_booking_cannot_be_paid(self, payment_service, space, make_booking):
        booking = make_booking(space, at(10), at(11), status=BookingStatus.CANCELLED.value)

        result = payment_service.reconcile(booking.id, _gateway_result())

        assert result.error == ErrorKind.INVALID_STATE_TRANSITION
        assert result.message == "Cannot pay for booking in Cancelled status"

    def test_other_member_cannot_reconcile(self, payment_service, awaiting):
        result = payment_service.reconcile(awaiting.id, _gateway_result(), OTHER_MEMBER_ID)
        assert result.error == ErrorKind.UNAUTHORIZED

    def test_failed_result_records_decline(self, payment_service, awaiting):
        result = payment_service.reconcile(
            awaiting.id, _gateway_result(success=False, payment_id=None, failure_reason="Insufficient funds")
        )

        assert result.error == ErrorKind.PAYMENT_DECLINED
        assert result.message == "Insufficient funds"
        payment = payment_service.payment_repository.get_by_booking_id(awaiting.id)
        assert payment.status == PaymentStatus.FAILED.value
        assert payment.failure_reason == "Insufficient funds"
        payment_service.db.refresh(awaiting)
        assert awaiting.status == BookingStatus.AWAITING_PAYMENT.value


class TestProcessPayment:
    def test_successful_charge_confirms_booking(self, payment_service, awaiting):
        result = payment_service.process_payment(awaiting.id, MEMBER_ID)

        assert result.success
        assert result.value.status == PaymentStatus.COMPLETED.value
        assert result.value.transaction_id.startswith("pay_mock_")
        assert awaiting.status == BookingStatus.CONFIRMED.value

    def test_charge_reuses_open_order(self, payment_service, awaiting):
        order = payment_service.create_payment_order(awaiting.id, MEMBER_ID).unwrap()

        payment = payment_service.process_payment(awaiting.id, MEMBER_ID).unwrap()

        assert payment.id == order.payment_id
        assert payment.gateway_reference == order.order_id

    def test_declined_charge(self, db, cache, dispatcher, clock, awaiting):
        service = PaymentService(
            db, cache, payment_gateway=MockPaymentGateway(decline=True), dispatcher=dispatcher, clock=clock
        )

        result = service.process_payment(awaiting.id, MEMBER_ID)

        assert result.error == ErrorKind.PAYMENT_DECLINED
        assert result.message == "Card declined"
        payment = service.payment_repository.get_by_booking_id(awaiting.id)
        assert payment.status == PaymentStatus.FAILED.value
        db.refresh(awaiting)
        assert awaiting.status == BookingStatus.AWAITING_PAYMENT.value

    def test_retry_after_decline_succeeds(self, db, cache, dispatcher, clock, awaiting):
        declining = MockPaymentGateway(decline=True)
        service = PaymentService(db, cache, payment_gateway=declining, dispatcher=dispatcher, clock=clock)
        service.process_payment(awaiting.id, MEMBER_ID)

        declining.decline = False
        result = service.process_payment(awaiting.id, MEMBER_ID)

        assert result.success
        assert result.value.failure_reason is None
        assert db.query(Payment).count() == 1

    def test_paid_booking_replays(self, payment_service, awaiting):
        first = payment_service.process_payment(awaiting.id, MEMBER_ID)
        second = payment_service.process_payment(awaiting.id, MEMBER_ID)
        assert second.already_processed
        assert second.value.id == first.value.id


class TestRefund:
    @pytest.fixture
    def settled(self, space, make_booking, make_payment):
        booking = make_booking(
            space,
            at(10),
            at(14),
            status=BookingStatus.CONFIRMED.value,
            base_amount=Decimal("813.01"),
            tax_amount=Decimal("146.34"),
            service_fee=Decimal("40.65"),
            total_amount=Decimal("1000.00"),
        )
        return booking, make_payment(booking)

    def test_partial_refunds_accumulate(self, payment_service, settled, gateway, dispatcher):
        _, payment = settled

        first = payment_service.refund(payment.id, OWNER_ID, Decimal("300.00"), "Late gate")
        assert first.value.status == PaymentStatus.PARTIAL_REFUND.value
        assert first.value.refund_amount == Decimal("300.00")

        second = payment_service.refund(payment.id, OWNER_ID, Decimal("700.00"))
        assert second.value.status == PaymentStatus.REFUNDED.value
        assert second.value.refund_amount == Decimal("1000.00")

        assert len(gateway.refunds) == 2
        assert [event.total_refunded for event in dispatcher.of_type(PaymentRefunded)] == [
            "300.00",
            "1000.00",
        ]

    def test_refund_above_balance_is_rejected(self, payment_service, settled, gateway):
        _, payment = settled
        payment_service.refund(payment.id, OWNER_ID, Decimal("600.00"))

        result = payment_service.refund(payment.id, OWNER_ID, Decimal("500.00"))

        assert result.error == ErrorKind.VALIDATION_ERROR
        assert len(gateway.refunds) == 1

    def test_fully_refunded_payment_rejects_more(self, booking_service, payment_service, settled, gateway):
        """Owner cancels a paid booking in full, then tries a further refund."""
        booking, payment = settled

        cancelled = booking_service.cancel_booking(booking.id, OWNER_ID, "Gate broken")
        assert cancelled.value.status == BookingStatus.CANCELLED.value
        payment_service.db.refresh(payment)
        assert payment.status == PaymentStatus.REFUNDED.value
        assert payment.refund_amount == Decimal("1000.00")
        assert len(gateway.refunds) == 1

        result = payment_service.refund(payment.id, OWNER_ID, Decimal("500.00"))

        assert result.error == ErrorKind.INVALID_STATE_TRANSITION
        assert result.message == "Cannot refund payment in Refunded status"
        assert len(gateway.refunds) == 1

    def test_payer_can_refund(self, payment_service, settled):
        _, payment = settled

        result = payment_service.refund(payment.id, MEMBER_ID, Decimal("500.00"))

        assert result.success
        assert result.value.status == PaymentStatus.PARTIAL_REFUND.value
        assert result.value.refund_amount == Decimal("500.00")

    def test_other_member_cannot_refund(self, payment_service, settled, gateway):
        _, payment = settled

        result = payment_service.refund(payment.id, OTHER_MEMBER_ID, Decimal("10.00"))

        assert result.error == ErrorKind.UNAUTHORIZED
        assert result.message == "Only the payer or the parking space owner can issue refunds"
        assert gateway.refunds == []

    def test_non_positive_amount(self, payment_service, settled):
        _, payment = settled
        result = payment_service.refund(payment.id, OWNER_ID, Decimal("0"))
        assert result.error == ErrorKind.VALIDATION_ERROR

    def test_unknown_payment(self, payment_service):
        assert payment_service.refund("missing", OWNER_ID, Decimal("1")).error == ErrorKind.NOT_FOUND

    def test_pending_payment_cannot_be_refunded(self, payment_service, awaiting):
        order = payment_service.create_payment_order(awaiting.id, MEMBER_ID).unwrap()

        result = payment_service.refund(order.payment_id, OWNER_ID, Decimal("10.00"))

        assert result.error == ErrorKind.INVALID_STATE_TRANSITION
