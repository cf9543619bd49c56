# parkspot/services/payment_gateway.py
"""
Payment gateway adapters.

``PaymentGateway`` is the boundary the payment orchestrator talks to. The
Stripe adapter maps orders onto PaymentIntents; the mock adapter is used in
development and tests and never leaves the process.

Gateway failures surface as ``ExternalServiceException`` so the caller can
report EXTERNAL_SERVICE_ERROR without touching booking state.
"""

from decimal import ROUND_HALF_UP, Decimal
import hashlib
import hmac
import logging
import secrets
from typing import Dict, List, Optional, Protocol

import stripe

from ..core.config import settings
from ..core.exceptions import ExternalServiceException
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..schemas.payment import (
    GatewayOrder,
    GatewayPaymentResult,
    GatewayRefund,
    PaymentRequest,
    RefundRequest,
)

logger = logging.getLogger(__name__)


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount (rupees) into minor units (paise)."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def sign_payment(secret: str, order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 over ``order_id|payment_id``, hex encoded."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class PaymentGateway(Protocol):
    """Operations the orchestrators need from a payment provider."""

    name: str

    def create_order(
        self, amount: Decimal, currency: str, notes: Optional[Dict[str, str]] = None
    ) -> GatewayOrder:
        ...

    def verify_signature(self, payment_id: str, order_id: str, signature: str) -> bool:
        ...

    def process_payment(self, request: PaymentRequest) -> GatewayPaymentResult:
        ...

    def process_refund(self, request: RefundRequest) -> GatewayRefund:
        ...


class StripePaymentGateway:
    """Stripe-backed gateway; an order is an unconfirmed PaymentIntent."""

    name = "stripe"

    def __init__(
        self,
        secret_key: Optional[str] = None,
        signature_secret: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.secret_key = secret_key or settings.stripe_secret_key.get_secret_value()
        self.signature_secret = (
            signature_secret or settings.payment_signature_secret.get_secret_value()
        )
        self.timeout_seconds = timeout_seconds or settings.gateway_timeout_seconds
        if not self.secret_key:
            logger.warning("Stripe secret key not configured - gateway calls will fail")
        stripe.api_key = self.secret_key
        # Bounded network time; one retry for transient failures
        stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout_seconds)
        stripe.max_network_retries = 1

    def create_order(
        self, amount: Decimal, currency: str, notes: Optional[Dict[str, str]] = None
    ) -> GatewayOrder:
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=currency.lower(),
                metadata=notes or {},
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            prometheus_metrics.inc_gateway_call(self.name, "create_order", "error")
            logger.error(f"Stripe error creating order: {str(e)}")
            raise ExternalServiceException("stripe", f"Failed to create order: {str(e)}")
        prometheus_metrics.inc_gateway_call(self.name, "create_order", "success")
        return GatewayOrder(
            order_id=intent.id,
            amount=from_minor_units(intent.amount),
            currency=str(intent.currency).upper(),
            status=intent.status,
        )

    def verify_signature(self, payment_id: str, order_id: str, signature: str) -> bool:
        if not (payment_id and order_id and signature):
            return False
        expected = sign_payment(self.signature_secret, order_id, payment_id)
        return hmac.compare_digest(expected, signature)

    def process_payment(self, request: PaymentRequest) -> GatewayPaymentResult:
        payment_method_id = request.metadata.get("payment_method_id")
        try:
            if request.order_id:
                intent = stripe.PaymentIntent.confirm(
                    request.order_id, payment_method=payment_method_id
                )
            else:
                intent = stripe.PaymentIntent.create(
                    amount=to_minor_units(request.amount),
                    currency=request.currency.lower(),
                    payment_method=payment_method_id,
                    confirm=True,
                    description=request.description,
                    metadata={"booking_id": request.booking_id, **request.metadata},
                    idempotency_key=f"booking-payment:{request.booking_id}",
                )
        except stripe.CardError as e:
            prometheus_metrics.inc_gateway_call(self.name, "process_payment", "declined")
            return GatewayPaymentResult(
                order_id=request.order_id or "",
                amount=request.amount,
                currency=request.currency,
                success=False,
                failure_reason=str(e.user_message or e),
                payment_method=request.payment_method,
            )
        except stripe.StripeError as e:
            prometheus_metrics.inc_gateway_call(self.name, "process_payment", "error")
            logger.error(f"Stripe error processing payment: {str(e)}")
            raise ExternalServiceException("stripe", f"Failed to process payment: {str(e)}")

        succeeded = intent.status == "succeeded"
        prometheus_metrics.inc_gateway_call(
            self.name, "process_payment", "success" if succeeded else "declined"
        )
        charge_id = getattr(intent, "latest_charge", None)
        return GatewayPaymentResult(
            order_id=intent.id,
            payment_id=str(charge_id or intent.id),
            signature=sign_payment(self.signature_secret, intent.id, str(charge_id or intent.id)),
            amount=from_minor_units(intent.amount),
            currency=str(intent.currency).upper(),
            success=succeeded,
            failure_reason=None if succeeded else f"Payment status {intent.status}",
            payment_method=request.payment_method,
        )

    def process_refund(self, request: RefundRequest) -> GatewayRefund:
        # transaction_id is the charge id, or the intent id when no charge was exposed
        target_key = "payment_intent" if request.transaction_id.startswith("pi_") else "charge"
        try:
            refund = stripe.Refund.create(
                **{target_key: request.transaction_id},
                amount=to_minor_units(request.amount),
                reason="requested_by_customer",
                metadata={"payment_id": request.payment_id, "reason": request.reason or ""},
            )
        except stripe.StripeError as e:
            prometheus_metrics.inc_gateway_call(self.name, "process_refund", "error")
            logger.error(f"Stripe error processing refund: {str(e)}")
            raise ExternalServiceException("stripe", f"Failed to process refund: {str(e)}")
        prometheus_metrics.inc_gateway_call(self.name, "process_refund", "success")
        return GatewayRefund(
            refund_id=refund.id,
            amount=from_minor_units(refund.amount),
            status=refund.status,
        )


class MockPaymentGateway:
    """
    In-process gateway for development and tests.

    Any signature except ``"invalid_signature"`` verifies. ``decline=True``
    makes ``process_payment`` report a failed charge.
    """

    name = "mock"
    INVALID_SIGNATURE = "invalid_signature"

    def __init__(self, decline: bool = False) -> None:
        self.decline = decline
        self.orders: Dict[str, GatewayOrder] = {}
        self.refunds: List[GatewayRefund] = []

    def create_order(
        self, amount: Decimal, currency: str, notes: Optional[Dict[str, str]] = None
    ) -> GatewayOrder:
        order = GatewayOrder(
            order_id=f"order_mock_{secrets.token_hex(8)}",
            amount=Decimal(amount),
            currency=currency.upper(),
        )
        self.orders[order.order_id] = order
        logger.debug("Mock order created: %s", order.order_id)
        return order

    def verify_signature(self, payment_id: str, order_id: str, signature: str) -> bool:
        if not (payment_id and order_id and signature):
            return False
        return signature != self.INVALID_SIGNATURE

    def process_payment(self, request: PaymentRequest) -> GatewayPaymentResult:
        order_id = request.order_id or f"order_mock_{secrets.token_hex(8)}"
        if self.decline:
            return GatewayPaymentResult(
                order_id=order_id,
                amount=request.amount,
                currency=request.currency,
                success=False,
                failure_reason="Card declined",
                payment_method=request.payment_method,
            )
        return GatewayPaymentResult(
            order_id=order_id,
            payment_id=f"pay_mock_{secrets.token_hex(8)}",
            signature=f"mock_signature_{secrets.token_hex(8)}",
            amount=request.amount,
            currency=request.currency,
            success=True,
            payment_method=request.payment_method,
            receipt_url=f"https://payments.example.test/receipts/{order_id}",
        )

    def process_refund(self, request: RefundRequest) -> GatewayRefund:
        refund = GatewayRefund(
            refund_id=f"rfn_mock_{secrets.token_hex(8)}",
            amount=Decimal(request.amount),
        )
        self.refunds.append(refund)
        return refund


def get_payment_gateway() -> PaymentGateway:
    """Gateway selected by ``PARKSPOT_PAYMENT_GATEWAY``."""
    if settings.payment_gateway == "stripe":
        return StripePaymentGateway()
    return MockPaymentGateway()
