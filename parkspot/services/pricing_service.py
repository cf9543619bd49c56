# parkspot/services/pricing_service.py
"""
Pricing engine for parking bookings.

``calculate_price`` is deterministic and side-effect free: the same rates,
window, mode, discount and policy always produce the same breakdown. It is
re-run on create, on window changes and on discount application, so it never
touches the database or the clock.

Billable rounding lives only here: the duration is rounded up to whole units
of the pricing mode (1 hour, 24 hours, 7 days, 30 days) with a minimum of
one unit.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping, Optional

from ..core.config import settings
from ..core.enums import DiscountType, PricingMode
from ..core.exceptions import InvalidDiscountException, ValidationException
from ..core.timezone_utils import ensure_utc

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

BILLING_UNITS: Dict[PricingMode, timedelta] = {
    PricingMode.HOURLY: timedelta(hours=1),
    PricingMode.DAILY: timedelta(hours=24),
    PricingMode.WEEKLY: timedelta(days=7),
    PricingMode.MONTHLY: timedelta(days=30),
}


def quantize_money(value: Decimal) -> Decimal:
    """Round a monetary amount to cents, half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingPolicy:
    """Platform-wide rates applied on top of the base amount."""

    tax_rate: Decimal = Decimal("0.18")
    service_fee_rate: Decimal = Decimal("0.05")
    currency: str = "INR"

    @classmethod
    def from_settings(cls) -> "PricingPolicy":
        return cls(
            tax_rate=settings.tax_rate,
            service_fee_rate=settings.service_fee_rate,
            currency=settings.currency,
        )


@dataclass(frozen=True)
class DiscountSpec:
    """A resolved discount code."""

    code: str
    discount_type: DiscountType
    value: Decimal
    max_amount: Optional[Decimal] = None

    def amount_for(self, base_amount: Decimal) -> Decimal:
        if self.value < 0:
            raise InvalidDiscountException(
                "Invalid discount amount", details={"discount_code": self.code}
            )
        if DiscountType(self.discount_type) == DiscountType.PERCENTAGE:
            amount = base_amount * Decimal(self.value) / HUNDRED
            if self.max_amount is not None:
                amount = min(amount, Decimal(self.max_amount))
        else:
            amount = Decimal(self.value)
        return quantize_money(amount)


@dataclass(frozen=True)
class PriceBreakdown:
    base_amount: Decimal
    tax_amount: Decimal
    service_fee: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    billable_units: int
    pricing_mode: PricingMode
    unit_rate: Decimal
    currency: str = "INR"
    discount_code: Optional[str] = None

    @property
    def pre_discount_total(self) -> Decimal:
        return self.base_amount + self.tax_amount + self.service_fee

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Decimal):
                data[key] = str(value)
        data["pricing_mode"] = self.pricing_mode.value
        return data


def billable_units(start: datetime, end: datetime, pricing_mode: PricingMode) -> int:
    """
    Number of whole billing units covering ``[start, end)``.

    Any partial unit counts as a full one; the result is at least 1.
    """
    duration = ensure_utc(end) - ensure_utc(start)
    if duration <= timedelta(0):
        raise ValidationException(
            "Start time must be before end time",
            details={"start_time": start.isoformat(), "end_time": end.isoformat()},
        )
    unit = BILLING_UNITS[PricingMode(pricing_mode)]
    units = duration // unit
    if duration % unit:
        units += 1
    return max(units, 1)


def calculate_price(
    rates: Mapping[PricingMode, Optional[Decimal]],
    start: datetime,
    end: datetime,
    pricing_mode: PricingMode,
    discount: Optional[DiscountSpec] = None,
    policy: Optional[PricingPolicy] = None,
) -> PriceBreakdown:
    """
    Compute the price breakdown for a window.

    Raises:
        ValidationException: empty window, or the mode has no rate
        InvalidDiscountException: discount exceeds base + tax + fee
    """
    policy = policy or PricingPolicy()
    mode = PricingMode(pricing_mode)
    rate = rates.get(mode)
    if rate is None:
        raise ValidationException(
            f"{mode.value.capitalize()} pricing is not available for this parking space",
            details={"pricing_mode": mode.value},
        )

    units = billable_units(start, end, mode)
    unit_rate = quantize_money(Decimal(rate))
    base = quantize_money(unit_rate * units)
    tax = quantize_money(base * policy.tax_rate)
    fee = quantize_money(base * policy.service_fee_rate)
    pre_discount_total = base + tax + fee

    discount_amount = ZERO
    if discount is not None:
        discount_amount = discount.amount_for(base)
        if discount_amount > pre_discount_total:
            raise InvalidDiscountException(
                "Discount exceeds booking total",
                details={
                    "discount_code": discount.code,
                    "discount_amount": str(discount_amount),
                    "pre_discount_total": str(pre_discount_total),
                },
            )

    return PriceBreakdown(
        base_amount=base,
        tax_amount=tax,
        service_fee=fee,
        discount_amount=discount_amount,
        total_amount=pre_discount_total - discount_amount,
        billable_units=units,
        pricing_mode=mode,
        unit_rate=unit_rate,
        currency=policy.currency,
        discount_code=discount.code if discount is not None else None,
    )
