# parkspot/schemas/payment.py
"""Payment gateway payloads and payment command schemas."""

from decimal import Decimal
from typing import Dict, Optional

from pydantic import Field, field_validator

from ..core.enums import PaymentMethod
from ._strict_base import StrictModel, StrictRequestModel


class GatewayPaymentResult(StrictRequestModel):
    """
    Outcome reported by the gateway for one payment attempt.

    Arrives from the client callback or a webhook; the signature proves that
    ``payment_id`` settled ``order_id``. ``success=False`` carries the
    gateway's ``failure_reason``.
    """

    order_id: str = Field(..., min_length=1)
    payment_id: Optional[str] = None
    signature: Optional[str] = None
    amount: Decimal = Field(..., ge=0)
    currency: str = "INR"
    success: bool = True
    failure_reason: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    receipt_url: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class PaymentRequest(StrictRequestModel):
    """Direct server-side charge."""

    booking_id: str
    order_id: Optional[str] = None
    amount: Decimal = Field(..., gt=0)
    currency: str = "INR"
    payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD
    description: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class RefundRequest(StrictRequestModel):
    payment_id: str
    transaction_id: str = Field(..., min_length=1, description="Gateway payment id")
    amount: Decimal = Field(..., gt=0)
    currency: str = "INR"
    reason: Optional[str] = None


class GatewayOrder(StrictModel):
    order_id: str
    amount: Decimal
    currency: str
    status: str = "created"


class GatewayRefund(StrictModel):
    refund_id: str
    amount: Decimal
    status: str = "processed"


class PaymentOrder(StrictModel):
    """Order handed to the client to start a gateway checkout."""

    payment_id: str
    booking_id: str
    order_id: str
    amount: Decimal
    currency: str
