"""Discount codes redeemable against a booking's price."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

import ulid
from sqlalchemy import Boolean, CheckConstraint, DateTime, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.enums import DiscountType
from ..core.timezone_utils import ensure_utc
from ..database import Base


class DiscountCode(Base):
    """Fixed or percentage-of-base reduction, optionally capped and time boxed."""

    __tablename__ = "discount_codes"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    discount_type: Mapped[str] = mapped_column(String(20), nullable=False, default=DiscountType.FIXED.value)
    value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    max_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True, comment="Cap for percentage discounts"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    valid_from: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    valid_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("value >= 0", name="ck_discount_codes_value_non_negative"),
        CheckConstraint("discount_type IN ('fixed', 'percentage')", name="ck_discount_codes_type"),
    )

    def __repr__(self) -> str:
        return f"<DiscountCode(code={self.code}, type={self.discount_type}, value={self.value})>"

    def is_redeemable_at(self, moment: datetime) -> bool:
        if not self.is_active:
            return False
        now = ensure_utc(moment)
        if self.valid_from is not None and now < ensure_utc(self.valid_from):
            return False
        if self.valid_until is not None and now >= ensure_utc(self.valid_until):
            return False
        return True
