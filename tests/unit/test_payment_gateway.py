# tests/unit/test_payment_gateway.py
"""
Unit tests for the payment gateway adapters.

The Stripe SDK is patched; no network calls are made.
"""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from parkspot.core.exceptions import ExternalServiceException
from parkspot.schemas.payment import PaymentRequest, RefundRequest
from parkspot.services.payment_gateway import (
    MockPaymentGateway,
    StripePaymentGateway,
    from_minor_units,
    sign_payment,
    to_minor_units,
)


def test_minor_unit_conversion():
    assert to_minor_units(Decimal("369.00")) == 36900
    assert to_minor_units(Decimal("0.005")) == 1
    assert from_minor_units(36900) == Decimal("369.00")


def test_signature_is_hmac_over_order_and_payment():
    first = sign_payment("secret", "order_1", "pay_1")
    assert first == sign_payment("secret", "order_1", "pay_1")
    assert first != sign_payment("secret", "order_1", "pay_2")
    assert first != sign_payment("other", "order_1", "pay_1")
    assert len(first) == 64


class TestMockPaymentGateway:
    def test_signature_verification(self):
        gateway = MockPaymentGateway()
        assert gateway.verify_signature("pay_1", "order_1", "anything")
        assert not gateway.verify_signature("pay_1", "order_1", "invalid_signature")
        assert not gateway.verify_signature("", "order_1", "anything")

    def test_declining_gateway(self):
        gateway = MockPaymentGateway(decline=True)
        result = gateway.process_payment(PaymentRequest(booking_id="b1", amount=Decimal("10")))
        assert not result.success
        assert result.failure_reason == "Card declined"

    def test_refunds_are_recorded(self):
        gateway = MockPaymentGateway()
        refund = gateway.process_refund(
            RefundRequest(payment_id="p1", transaction_id="pay_1", amount=Decimal("50"))
        )
        assert refund.refund_id.startswith("rfn_mock_")
        assert gateway.refunds == [refund]


class TestStripePaymentGateway:
    @pytest.fixture
    def gateway(self):
        return StripePaymentGateway(
            secret_key="sk_test_123", signature_secret="whsec", timeout_seconds=3
        )

    def test_configures_bounded_http_client(self, gateway):
        assert stripe.api_key == "sk_test_123"
        assert stripe.max_network_retries == 1

    def test_create_order_maps_payment_intent(self, gateway):
        intent = SimpleNamespace(id="pi_123", amount=36900, currency="inr", status="requires_payment_method")
        with patch("stripe.PaymentIntent.create", return_value=intent) as create:
            order = gateway.create_order(Decimal("369.00"), "INR", {"booking_id": "b1"})

        assert create.call_args.kwargs["amount"] == 36900
        assert create.call_args.kwargs["currency"] == "inr"
        assert order.order_id == "pi_123"
        assert order.amount == Decimal("369.00")

    def test_stripe_errors_become_external_service_errors(self, gateway):
        with patch("stripe.PaymentIntent.create", side_effect=stripe.StripeError("boom")):
            with pytest.raises(ExternalServiceException) as exc_info:
                gateway.create_order(Decimal("10"), "INR")
        assert exc_info.value.message.startswith("stripe: Failed to create order")

    def test_successful_charge_is_signed(self, gateway):
        intent = SimpleNamespace(
            id="pi_123", amount=1000, currency="inr", status="succeeded", latest_charge="ch_1"
        )
        with patch("stripe.PaymentIntent.create", return_value=intent) as create:
            result = gateway.process_payment(PaymentRequest(booking_id="b1", amount=Decimal("10")))

        assert create.call_args.kwargs["idempotency_key"] == "booking-payment:b1"
        assert result.success
        assert result.payment_id == "ch_1"
        assert gateway.verify_signature("ch_1", "pi_123", result.signature)

    def test_refund_targets_charge(self, gateway):
        refund = SimpleNamespace(id="re_1", amount=500, status="succeeded")
        with patch("stripe.Refund.create", return_value=refund) as create:
            result = gateway.process_refund(
                RefundRequest(payment_id="p1", transaction_id="ch_1", amount=Decimal("5"))
            )

        assert create.call_args.kwargs["charge"] == "ch_1"
        assert result.amount == Decimal("5.00")
