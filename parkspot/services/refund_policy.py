"""Refund policy applied when a paid booking is cancelled."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from ..core.config import settings
from ..core.enums import BookingStatus
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.booking import Booking
from ..models.payment import Payment
from .booking_lifecycle import coerce_status
from .pricing_service import ZERO, quantize_money


@dataclass(frozen=True)
class RefundDecision:
    eligible: bool
    amount: Decimal = ZERO
    policy_basis: str = ""
    reason: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "eligible": self.eligible,
            "amount": str(self.amount),
            "policy_basis": self.policy_basis,
            "reason": self.reason,
        }


class RefundPolicyEngine:
    """
    Decides how much of a completed payment goes back on cancellation.

    - owner cancels: full refund of the remaining balance
    - user cancels at least ``full_refund_cutoff_hours`` before start: full refund
    - user cancels later but before check-in: ``late_cancellation_refund_ratio``
    - user cancels after check-in: nothing
    """

    def __init__(
        self,
        full_refund_cutoff: Optional[timedelta] = None,
        late_ratio: Optional[Decimal] = None,
    ) -> None:
        self.full_refund_cutoff = full_refund_cutoff or timedelta(
            hours=settings.full_refund_cutoff_hours
        )
        self.late_ratio = late_ratio if late_ratio is not None else settings.late_cancellation_refund_ratio

    def evaluate(
        self,
        booking: Booking,
        payment: Optional[Payment],
        *,
        cancelled_by_owner: bool,
        now: Optional[datetime] = None,
    ) -> RefundDecision:
        if payment is None or not payment.is_refundable:
            return RefundDecision(
                eligible=False,
                reason="No completed payment to refund",
                policy_basis="Payment not refundable in current status",
            )

        balance = quantize_money(payment.refundable_balance)
        if balance <= ZERO:
            return RefundDecision(
                eligible=False,
                reason="Payment already fully refunded",
                policy_basis="Nothing left to refund",
            )

        if cancelled_by_owner:
            return RefundDecision(
                eligible=True,
                amount=balance,
                policy_basis="Cancelled by owner: full refund",
            )

        if coerce_status(booking.status) == BookingStatus.IN_PROGRESS:
            return RefundDecision(
                eligible=False,
                reason="Bookings already checked in are not refundable",
                policy_basis="Cancelled after check-in: no refund",
            )

        moment = ensure_utc(now or utc_now())
        lead_time = ensure_utc(booking.start_time) - moment
        if lead_time >= self.full_refund_cutoff:
            hours = int(self.full_refund_cutoff.total_seconds() // 3600)
            return RefundDecision(
                eligible=True,
                amount=balance,
                policy_basis=f">={hours} hours before start: full refund",
            )

        amount = quantize_money(balance * self.late_ratio)
        if amount <= ZERO:
            return RefundDecision(
                eligible=False,
                reason="Late cancellation is not refundable",
                policy_basis="Late cancellation: no refund",
            )
        return RefundDecision(
            eligible=True,
            amount=amount,
            policy_basis=f"Late cancellation: {self.late_ratio * 100:.0f}% refund",
        )
