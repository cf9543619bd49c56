"""
Payment model.

One row per booking. The row is created lazily on the first payment attempt
(order creation or reconciliation); later reconciliations, failures and
refunds all mutate the same row, which is what makes completion idempotent.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Optional

import ulid
from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.enums import REFUNDABLE_PAYMENT_STATUSES, PaymentStatus
from ..core.exceptions import InvalidStateTransitionException, ValidationException
from ..core.timezone_utils import ensure_utc
from ..database import Base

if TYPE_CHECKING:
    from .booking import Booking


class Payment(Base):
    """Gateway payment for a booking, including cumulative refunds."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id"), nullable=False, unique=True
    )
    user_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )
    payment_method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Gateway identifiers
    gateway_name: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    gateway_reference: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, comment="Gateway order id"
    )
    transaction_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    receipt_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    invoice_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, unique=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Refunds accumulate on the same row
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_transaction_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    booking: Mapped["Booking"] = relationship("Booking", back_populates="payment")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
        CheckConstraint("refund_amount >= 0", name="ck_payments_refund_non_negative"),
        CheckConstraint("refund_amount <= amount", name="ck_payments_refund_within_amount"),
    )

    def __repr__(self) -> str:
        return f"<Payment(booking_id={self.booking_id}, amount={self.amount}, status={self.status})>"

    @property
    def current_status(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def is_completed(self) -> bool:
        return self.current_status == PaymentStatus.COMPLETED

    @property
    def is_refundable(self) -> bool:
        return self.current_status in REFUNDABLE_PAYMENT_STATUSES

    @property
    def refundable_balance(self) -> Decimal:
        return Decimal(self.amount) - Decimal(self.refund_amount or 0)

    def mark_completed(
        self,
        *,
        transaction_id: Optional[str],
        gateway_reference: str,
        invoice_number: str,
        paid_at: datetime,
        receipt_url: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> None:
        self.status = PaymentStatus.COMPLETED.value
        self.transaction_id = transaction_id
        self.gateway_reference = gateway_reference
        self.invoice_number = invoice_number
        self.paid_at = paid_at
        self.failure_reason = None
        if receipt_url:
            self.receipt_url = receipt_url
        if payment_method:
            self.payment_method = payment_method

    def mark_failed(self, reason: Optional[str]) -> None:
        self.status = PaymentStatus.FAILED.value
        self.failure_reason = reason or "Payment failed"

    def validate_refund(self, amount: Decimal) -> Decimal:
        """Return ``amount`` rounded to cents if it may be refunded now."""
        if not self.is_refundable:
            raise InvalidStateTransitionException(
                self.status,
                "refund",
                f"Cannot refund payment in {self.status} status",
            )
        value = Decimal(amount).quantize(Decimal("0.01"))
        if value <= 0:
            raise ValidationException("Refund amount must be positive")
        if value > self.refundable_balance:
            raise ValidationException(
                "Refund amount exceeds the refundable balance",
                details={"requested": str(value), "refundable": str(self.refundable_balance)},
            )
        return value

    def record_refund(
        self,
        amount: Decimal,
        *,
        refund_transaction_id: Optional[str],
        reason: Optional[str],
        refunded_at: datetime,
    ) -> Decimal:
        """
        Add ``amount`` to the cumulative refund and settle the status.

        Returns the new cumulative refund.

        Raises:
            InvalidStateTransitionException: payment is not refundable
            ValidationException: amount is not positive or exceeds the balance
        """
        value = self.validate_refund(amount)
        total_refunded = Decimal(self.refund_amount or 0) + value
        self.refund_amount = total_refunded
        self.refund_reason = reason
        self.refund_transaction_id = refund_transaction_id
        self.refunded_at = refunded_at
        if total_refunded >= Decimal(self.amount):
            self.status = PaymentStatus.REFUNDED.value
        else:
            self.status = PaymentStatus.PARTIAL_REFUND.value
        return total_refunded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "user_id": self.user_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "status": self.status,
            "payment_method": self.payment_method,
            "gateway_name": self.gateway_name,
            "gateway_reference": self.gateway_reference,
            "transaction_id": self.transaction_id,
            "receipt_url": self.receipt_url,
            "invoice_number": self.invoice_number,
            "failure_reason": self.failure_reason,
            "paid_at": ensure_utc(self.paid_at).isoformat() if self.paid_at else None,
            "refund_amount": str(self.refund_amount),
            "refund_reason": self.refund_reason,
            "refund_transaction_id": self.refund_transaction_id,
            "refunded_at": ensure_utc(self.refunded_at).isoformat() if self.refunded_at else None,
        }
