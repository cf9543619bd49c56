# parkspot/services/payment_service.py
"""
Payment Service for the ParkSpot booking core

Payment orchestrator: turns gateway outcomes into booking confirmations and
issues refunds. Every gateway network call happens outside a database
transaction; the row locks are only held while state is written.

Reconciliation is idempotent. A booking has at most one Payment row
(``booking_id`` is unique), and once that row is Completed every further
reconciliation of the same booking returns the recorded success with
``already_processed=True``.
"""

from datetime import datetime
from decimal import Decimal
import logging
import secrets
import string
from typing import TYPE_CHECKING, Callable, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import BookingStatus, PaymentMethod, PaymentStatus
from ..core.exceptions import (
    InvalidStateTransitionException,
    NotFoundException,
    PaymentDeclinedException,
    PaymentVerificationException,
    ServiceException,
    UnauthorizedException,
)
from ..core.result import ServiceResult, service_result
from ..core.timezone_utils import ensure_utc, utc_now
from ..events.booking_events import PaymentCompleted, PaymentRefunded
from ..events.dispatcher import EventDispatcher
from ..models.booking import Booking
from ..models.payment import Payment
from ..repositories.factory import RepositoryFactory
from ..schemas.payment import GatewayPaymentResult, PaymentOrder, PaymentRequest, RefundRequest
from .base import BaseService
from .cache_invalidation import CacheInvalidationCoordinator, InvalidationTargets
from .payment_gateway import PaymentGateway, get_payment_gateway
from .pricing_service import quantize_money

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)

_INVOICE_ALPHABET = string.ascii_uppercase + string.digits
_INVOICE_ATTEMPTS = 5

# Payments that have been settled at least once; replays of these are no-ops
_SETTLED_STATUSES = frozenset(
    {PaymentStatus.COMPLETED, PaymentStatus.PARTIAL_REFUND, PaymentStatus.REFUNDED}
)


class PaymentService(BaseService):
    """Payment orchestrator for parking bookings."""

    def __init__(
        self,
        db: Session,
        cache: Optional["CacheService"] = None,
        *,
        payment_gateway: Optional[PaymentGateway] = None,
        invalidation: Optional[CacheInvalidationCoordinator] = None,
        dispatcher: Optional[EventDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(db, cache, dispatcher)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.payment_gateway = payment_gateway or get_payment_gateway()
        self.invalidation = invalidation or CacheInvalidationCoordinator(cache)
        self.clock = clock or utc_now

    # ------------------------------------------------------------------
    # Orders and charges
    # ------------------------------------------------------------------

    @BaseService.measure_operation("create_payment_order")
    @service_result
    def create_payment_order(
        self, booking_id: str, user_id: str, timeout_seconds: Optional[float] = None
    ) -> PaymentOrder:
        """
        Open a gateway order for an approved booking.

        The Pending Payment row is created on the first call and reused on
        later ones, so repeated checkouts never produce a second payment.
        """
        booking = self._load_booking(booking_id)
        self._require_member(booking, user_id)

        existing = self.payment_repository.get_by_booking_id(booking.id)
        if existing is not None and self._is_settled(existing):
            return ServiceResult.ok(
                self._order_for(existing, existing.gateway_reference or ""),
                "Payment already processed",
                already_processed=True,
            )
        self._require_awaiting_payment(booking)

        order = self.payment_gateway.create_order(
            Decimal(booking.total_amount),
            existing.currency if existing is not None else settings.currency,
            notes={"booking_id": booking.id, "booking_reference": booking.booking_reference},
        )

        with self.transaction(timeout_seconds):
            booking = self._load_booking(booking_id, for_update=True)
            self._require_awaiting_payment(booking)
            payment = self.payment_repository.get_by_booking_id(booking.id, for_update=True)
            if payment is None:
                payment = self.payment_repository.create(
                    booking_id=booking.id,
                    user_id=booking.user_id,
                    amount=quantize_money(Decimal(booking.total_amount)),
                    currency=order.currency,
                    status=PaymentStatus.PENDING.value,
                    gateway_name=self.payment_gateway.name,
                    gateway_reference=order.order_id,
                )
            else:
                payment.amount = quantize_money(Decimal(booking.total_amount))
                payment.status = PaymentStatus.PENDING.value
                payment.gateway_name = self.payment_gateway.name
                payment.gateway_reference = order.order_id
                payment.failure_reason = None

        self.log_operation("create_payment_order", booking_id=booking.id, order_id=order.order_id)
        return self._order_for(payment, order.order_id)

    @BaseService.measure_operation("process_payment")
    @service_result
    def process_payment(
        self,
        booking_id: str,
        user_id: str,
        payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD,
        payment_method_id: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> Payment:
        """
        Charge the booking total server-side and settle the result.

        The gateway result is trusted as-is (it came from our own call), so
        only the amount is re-verified before the booking is confirmed.
        """
        booking = self._load_booking(booking_id)
        self._require_member(booking, user_id)

        existing = self.payment_repository.get_by_booking_id(booking.id)
        if existing is not None and self._is_settled(existing):
            return ServiceResult.ok(existing, "Payment already processed", already_processed=True)
        self._require_awaiting_payment(booking)

        metadata = {"booking_reference": booking.booking_reference}
        if payment_method_id:
            metadata["payment_method_id"] = payment_method_id
        request = PaymentRequest(
            booking_id=booking.id,
            order_id=existing.gateway_reference if existing is not None else None,
            amount=quantize_money(Decimal(booking.total_amount)),
            currency=existing.currency if existing is not None else settings.currency,
            payment_method=payment_method,
            description=f"Parking booking {booking.booking_reference}",
            metadata=metadata,
        )
        gateway_result = self.payment_gateway.process_payment(request)
        return self._settle(booking_id, gateway_result, timeout_seconds, verify_signature=False)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    @BaseService.measure_operation("reconcile_payment")
    @service_result
    def reconcile(
        self,
        booking_id: str,
        result: GatewayPaymentResult,
        user_id: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> Payment:
        """
        Apply a gateway payment outcome to a booking.

        Args:
            booking_id: Booking being paid
            result: Outcome reported by the gateway (callback or webhook)
            user_id: Paying member, when the call comes from the client
            timeout_seconds: Statement timeout for the write transaction

        Returns:
            ServiceResult with the Payment; ``already_processed`` is set when
            an earlier reconciliation already settled it
        """
        booking = self._load_booking(booking_id)
        if user_id is not None:
            self._require_member(booking, user_id)
        return self._settle(booking_id, result, timeout_seconds, verify_signature=True)

    def _settle(
        self,
        booking_id: str,
        result: GatewayPaymentResult,
        timeout_seconds: Optional[float],
        verify_signature: bool,
    ) -> Union[ServiceResult[Payment], Payment]:
        existing = self.payment_repository.get_by_booking_id(booking_id)
        if existing is not None and self._is_settled(existing):
            self.logger.info("Payment for booking %s already processed", booking_id)
            return ServiceResult.ok(existing, "Payment already processed", already_processed=True)

        if not result.success:
            return self._record_failure(booking_id, result, timeout_seconds)

        booking = self._load_booking(booking_id)
        if verify_signature and not self.payment_gateway.verify_signature(
            result.payment_id or "", result.order_id, result.signature or ""
        ):
            raise PaymentVerificationException(
                "Invalid payment signature",
                details={"booking_id": booking_id, "order_id": result.order_id},
            )
        self._verify_amount(booking, result.amount)
        self._require_awaiting_payment(booking)
        self._verify_order(existing, result.order_id)

        now = self.clock()
        try:
            with self.transaction(timeout_seconds):
                booking = self._load_booking(booking_id, for_update=True)
                payment = self.payment_repository.get_by_booking_id(booking.id, for_update=True)
                if payment is not None and self._is_settled(payment):
                    replay = True
                else:
                    replay = False
                    self._require_awaiting_payment(booking)
                    self._verify_amount(booking, result.amount)
                    self._verify_order(payment, result.order_id)
                    if payment is None:
                        payment = self._create_payment(booking, result)
                    payment.mark_completed(
                        transaction_id=result.payment_id,
                        gateway_reference=result.order_id,
                        invoice_number=self._generate_invoice_number(now),
                        paid_at=now,
                        receipt_url=result.receipt_url,
                        payment_method=result.payment_method.value if result.payment_method else None,
                    )
                    booking.confirm(now)
                    self.record_event(
                        PaymentCompleted(
                            payment_id=payment.id,
                            booking_id=booking.id,
                            amount=str(payment.amount),
                            transaction_id=payment.transaction_id,
                            invoice_number=payment.invoice_number,
                        )
                    )
        except ServiceException as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            # A concurrent reconciliation inserted the payment first
            winner = self.payment_repository.get_by_booking_id(booking_id)
            if winner is not None and self._is_settled(winner):
                return ServiceResult.ok(winner, "Payment already processed", already_processed=True)
            raise

        if replay:
            return ServiceResult.ok(payment, "Payment already processed", already_processed=True)

        self.log_operation(
            "payment_completed",
            booking_id=booking.id,
            payment_id=payment.id,
            invoice_number=payment.invoice_number,
        )
        self._invalidate(booking)
        return payment

    def _record_failure(
        self,
        booking_id: str,
        result: GatewayPaymentResult,
        timeout_seconds: Optional[float],
    ) -> Payment:
        """Store the decline on the payment row; the booking keeps its status."""
        reason = result.failure_reason or "Payment declined"
        with self.transaction(timeout_seconds):
            booking = self._load_booking(booking_id, for_update=True)
            payment = self.payment_repository.get_by_booking_id(booking.id, for_update=True)
            if payment is None:
                payment = self._create_payment(booking, result)
            if not self._is_settled(payment):
                payment.gateway_reference = result.order_id
                payment.mark_failed(reason)

        self.logger.warning("Payment declined for booking %s: %s", booking_id, reason)
        raise PaymentDeclinedException(
            reason, details={"booking_id": booking_id, "payment_id": payment.id}
        )

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    @BaseService.measure_operation("refund_payment")
    @service_result
    def refund(
        self,
        payment_id: str,
        user_id: str,
        amount: Decimal,
        reason: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> Payment:
        """
        Refund part or all of a settled payment for its payer or the space owner.

        ``refund_amount`` accumulates across calls; the payment becomes
        Refunded once the original amount has been returned.
        """
        payment = self.payment_repository.get_by_id(payment_id)
        if payment is None:
            raise NotFoundException.for_resource("Payment", payment_id)
        booking = self._load_booking(payment.booking_id)
        owner_id = booking.parking_space.owner_id if booking.parking_space else None
        if user_id not in (payment.user_id, owner_id):
            raise UnauthorizedException(
                "Only the payer or the parking space owner can issue refunds",
                details={"payment_id": payment_id},
            )
        value = payment.validate_refund(amount)

        gateway_refund = self.payment_gateway.process_refund(
            RefundRequest(
                payment_id=payment.id,
                transaction_id=payment.transaction_id or payment.gateway_reference or payment.id,
                amount=value,
                currency=payment.currency,
                reason=reason,
            )
        )

        with self.transaction(timeout_seconds):
            payment = self.payment_repository.get_by_booking_id(booking.id, for_update=True)
            if payment is None:
                raise NotFoundException.for_resource("Payment", payment_id)
            total_refunded = payment.record_refund(
                value,
                refund_transaction_id=gateway_refund.refund_id,
                reason=reason,
                refunded_at=self.clock(),
            )
            self.record_event(
                PaymentRefunded(
                    payment_id=payment.id,
                    booking_id=booking.id,
                    refund_amount=str(value),
                    total_refunded=str(total_refunded),
                    status=payment.status,
                )
            )

        self.log_operation(
            "refund_payment",
            payment_id=payment.id,
            refund_amount=str(value),
            status=payment.status,
        )
        self._invalidate(booking)
        return payment

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_booking(self, booking_id: str, for_update: bool = False) -> Booking:
        if for_update:
            booking = self.booking_repository.get_for_update(booking_id)
        else:
            booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException.for_resource("Booking", booking_id)
        return booking

    @staticmethod
    def _require_member(booking: Booking, user_id: str) -> None:
        if not booking.is_owned_by(user_id):
            raise UnauthorizedException(
                "Only the booking's member can pay for it", details={"booking_id": booking.id}
            )

    @staticmethod
    def _require_awaiting_payment(booking: Booking) -> None:
        if booking.current_status != BookingStatus.AWAITING_PAYMENT:
            raise InvalidStateTransitionException(
                booking.status,
                "pay",
                "Booking must be approved by the owner before payment"
                if booking.current_status == BookingStatus.PENDING
                else f"Cannot pay for booking in {booking.current_status.value} status",
            )

    @staticmethod
    def _verify_amount(booking: Booking, amount: Decimal) -> None:
        expected = quantize_money(Decimal(booking.total_amount))
        if quantize_money(Decimal(amount)) != expected:
            raise PaymentVerificationException(
                "Payment amount does not match booking total",
                details={"expected": str(expected), "received": str(amount)},
            )

    @staticmethod
    def _verify_order(payment: Optional[Payment], order_id: str) -> None:
        """An open order only settles with a result for that same order."""
        if (
            payment is not None
            and payment.current_status == PaymentStatus.PENDING
            and payment.gateway_reference
            and payment.gateway_reference != order_id
        ):
            raise PaymentVerificationException(
                "Payment order does not match the open order for this booking",
                details={"expected": payment.gateway_reference, "received": order_id},
            )

    @staticmethod
    def _is_settled(payment: Payment) -> bool:
        return payment.current_status in _SETTLED_STATUSES

    def _create_payment(self, booking: Booking, result: GatewayPaymentResult) -> Payment:
        return self.payment_repository.create(
            booking_id=booking.id,
            user_id=booking.user_id,
            amount=quantize_money(Decimal(booking.total_amount)),
            currency=result.currency,
            status=PaymentStatus.PENDING.value,
            payment_method=result.payment_method.value if result.payment_method else None,
            gateway_name=self.payment_gateway.name,
            gateway_reference=result.order_id,
        )

    def _generate_invoice_number(self, now: datetime) -> str:
        for _ in range(_INVOICE_ATTEMPTS):
            suffix = "".join(secrets.choice(_INVOICE_ALPHABET) for _ in range(6))
            invoice_number = f"INV-{ensure_utc(now):%Y%m%d}-{suffix}"
            if not self.payment_repository.invoice_number_exists(invoice_number):
                return invoice_number
        raise ServiceException("Could not allocate a unique invoice number")

    @staticmethod
    def _order_for(payment: Payment, order_id: str) -> PaymentOrder:
        return PaymentOrder(
            payment_id=payment.id,
            booking_id=payment.booking_id,
            order_id=order_id,
            amount=Decimal(payment.amount),
            currency=payment.currency,
        )

    def _invalidate(self, booking: Booking) -> None:
        owner_id = booking.parking_space.owner_id if booking.parking_space else None
        self.invalidation.invalidate(InvalidationTargets.for_booking_entity(booking, owner_id))
