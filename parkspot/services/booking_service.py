# parkspot/services/booking_service.py
"""
Booking Service for the ParkSpot booking core

Reservation orchestrator. Every command follows the same shape:
load the booking/space, authorize the caller, ask the state machine (via
the model) whether the transition is legal, persist inside one
transaction, dispatch events after commit, then invalidate caches.

Commands return ``ServiceResult``; validation, authorization, capacity and
state errors come back as failures with a stable ``ErrorKind`` rather than
exceptions.

Capacity safety on create:
1. the space row is locked (``SELECT ... FOR UPDATE`` on PostgreSQL)
2. overlapping capacity-consuming bookings are counted
3. the booking is inserted and flushed, then the count is repeated
4. a recount above ``total_spots`` (or a serialization/deadlock error)
   rolls the attempt back and retries once with a fresh check
"""

from datetime import datetime, timedelta
from decimal import Decimal
import logging
import secrets
import string
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import BookingStatus, DiscountType, PaymentStatus, PricingMode
from ..core.exceptions import (
    CapacityConflictException,
    CapacityExceededException,
    InvalidDiscountException,
    InvalidStateTransitionException,
    NotFoundException,
    RepositoryException,
    ServiceException,
    UnauthorizedException,
    ValidationException,
)
from ..core.result import service_result
from ..core.timezone_utils import ensure_utc, utc_now
from ..events.booking_events import (
    BookingApproved,
    BookingCancelled,
    BookingCheckedIn,
    BookingCheckedOut,
    BookingCreated,
    BookingRejected,
    PaymentRefunded,
    RefundUnrecorded,
)
from ..events.dispatcher import EventDispatcher
from ..models.booking import Booking
from ..models.parking_space import ParkingSpace
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import (
    AvailabilityView,
    BookingCreate,
    BookingPatch,
    MemberDashboard,
    OwnerDashboard,
)
from ..schemas.payment import RefundRequest
from .availability_service import AvailabilityService
from .base import BaseService, is_retryable_db_error
from .booking_lifecycle import BookingEvent, BookingStateMachine, coerce_status
from .cache_invalidation import CacheInvalidationCoordinator, InvalidationTargets
from .cache_service import CacheKeys
from .payment_gateway import PaymentGateway, get_payment_gateway
from .pricing_service import (
    ZERO,
    DiscountSpec,
    PriceBreakdown,
    PricingPolicy,
    calculate_price,
    quantize_money,
)
from .refund_policy import RefundPolicyEngine

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
_REFERENCE_ATTEMPTS = 5

_UPCOMING_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.AWAITING_PAYMENT, BookingStatus.CONFIRMED}
)
_PAID_STATUSES = frozenset(
    {BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED}
)


class BookingService(BaseService):
    """Reservation orchestrator for parking bookings."""

    def __init__(
        self,
        db: Session,
        cache: Optional["CacheService"] = None,
        *,
        payment_gateway: Optional[PaymentGateway] = None,
        availability_service: Optional[AvailabilityService] = None,
        invalidation: Optional[CacheInvalidationCoordinator] = None,
        refund_policy: Optional[RefundPolicyEngine] = None,
        pricing_policy: Optional[PricingPolicy] = None,
        dispatcher: Optional[EventDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize booking service.

        Args:
            db: Database session
            cache: Optional cache service for read models
            payment_gateway: Gateway used for refunds on cancellation
            availability_service: Capacity checker (shares ``db``)
            invalidation: Cache invalidation coordinator
            refund_policy: Cancellation refund rules
            pricing_policy: Tax/fee rates
            dispatcher: Post-commit event dispatcher
            clock: Source of "now" (UTC)
        """
        super().__init__(db, cache, dispatcher)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.parking_space_repository = RepositoryFactory.create_parking_space_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.discount_repository = RepositoryFactory.create_discount_repository(db)
        self.availability_service = availability_service or AvailabilityService(db, cache)
        self.payment_gateway = payment_gateway or get_payment_gateway()
        self.invalidation = invalidation or CacheInvalidationCoordinator(cache)
        self.refund_policy = refund_policy or RefundPolicyEngine()
        self.pricing_policy = pricing_policy or PricingPolicy.from_settings()
        self.clock = clock or utc_now
        self.check_in_window = timedelta(minutes=settings.check_in_window_minutes)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    @BaseService.measure_operation("create_booking")
    @service_result
    def create_booking(
        self,
        user_id: str,
        booking_data: BookingCreate,
        timeout_seconds: Optional[float] = None,
    ) -> Booking:
        """
        Create a Pending booking after validating capacity and pricing.

        Args:
            user_id: Member making the reservation
            booking_data: Window, mode, vehicle and optional discount code
            timeout_seconds: Statement timeout for the create transaction

        Returns:
            ServiceResult carrying the new Booking
        """
        now = self.clock()
        self.log_operation(
            "create_booking", user_id=user_id, parking_space_id=booking_data.parking_space_id
        )

        space = self._load_space(booking_data.parking_space_id)
        self._ensure_space_active(space)
        start, end = self._validate_window(booking_data.start_time, booking_data.end_time, now)

        discount = self._resolve_discount(booking_data.discount_code, now)
        breakdown = calculate_price(
            space.rates, start, end, booking_data.pricing_mode, discount, self.pricing_policy
        )

        attempts = max(settings.capacity_conflict_retries, 0) + 1
        booking: Optional[Booking] = None
        for attempt in range(1, attempts + 1):
            try:
                booking = self._reserve(
                    user_id, booking_data, start, end, breakdown, now, timeout_seconds
                )
                break
            except CapacityConflictException as exc:
                if attempt < attempts:
                    prometheus_metrics.inc_capacity_conflict("retried")
                    self.logger.warning(
                        "Capacity recount conflict on space %s, retrying (attempt %s)",
                        space.id,
                        attempt,
                    )
                    continue
                prometheus_metrics.inc_capacity_conflict("exhausted")
                raise CapacityExceededException(details=exc.details)
            except (ServiceException, RepositoryException) as exc:
                if not is_retryable_db_error(exc):
                    raise
                if attempt < attempts:
                    prometheus_metrics.inc_capacity_conflict("retried")
                    self.logger.warning(
                        "Serialization failure creating booking on space %s, retrying", space.id
                    )
                    continue
                prometheus_metrics.inc_capacity_conflict("exhausted")
                raise CapacityExceededException(details={"parking_space_id": space.id})

        assert booking is not None
        self._invalidate(booking, space.owner_id)
        return booking

    def _reserve(
        self,
        user_id: str,
        booking_data: BookingCreate,
        start: datetime,
        end: datetime,
        breakdown: PriceBreakdown,
        now: datetime,
        timeout_seconds: Optional[float],
    ) -> Booking:
        """One check-insert-recount attempt inside a single transaction."""
        with self.transaction(timeout_seconds):
            space = self.parking_space_repository.get_for_update(booking_data.parking_space_id)
            if space is None:
                raise NotFoundException.for_resource("Parking space", booking_data.parking_space_id)
            self._ensure_space_active(space)

            availability = self.availability_service.count_for_space(space, start, end)
            if not availability.available:
                raise CapacityExceededException(
                    details={
                        "parking_space_id": space.id,
                        "active_count": availability.active_count,
                        "total_spots": availability.total_spots,
                    }
                )

            booking = self.booking_repository.create(
                user_id=user_id,
                parking_space_id=space.id,
                booking_reference=self._generate_reference(now),
                start_time=start,
                end_time=end,
                pricing_mode=PricingMode(booking_data.pricing_mode).value,
                vehicle_type=booking_data.vehicle_type.value if booking_data.vehicle_type else None,
                vehicle_number=booking_data.vehicle_number,
                vehicle_model=booking_data.vehicle_model,
                special_requests=booking_data.special_requests,
                base_amount=breakdown.base_amount,
                tax_amount=breakdown.tax_amount,
                service_fee=breakdown.service_fee,
                discount_amount=breakdown.discount_amount,
                discount_code=breakdown.discount_code,
                total_amount=breakdown.total_amount,
                status=BookingStatus.PENDING.value,
            )

            recount = self.booking_repository.get_active_bookings_count(space.id, start, end)
            if recount > int(space.total_spots):
                raise CapacityConflictException(
                    details={
                        "parking_space_id": space.id,
                        "active_count": recount,
                        "total_spots": int(space.total_spots),
                    }
                )

            self.record_event(
                BookingCreated(
                    booking_id=booking.id,
                    booking_reference=booking.booking_reference,
                    user_id=user_id,
                    parking_space_id=space.id,
                    start_time=start,
                    end_time=end,
                    total_amount=str(booking.total_amount),
                )
            )
        return booking

    # ------------------------------------------------------------------
    # Owner decisions
    # ------------------------------------------------------------------

    @BaseService.measure_operation("approve_booking")
    @service_result
    def approve_booking(
        self, booking_id: str, owner_id: str, timeout_seconds: Optional[float] = None
    ) -> Booking:
        """Owner approval: Pending -> AwaitingPayment (Confirmed when nothing is owed)."""
        with self.transaction(timeout_seconds):
            booking = self._load_booking(booking_id, for_update=True)
            space = self._space_of(booking)
            self._require_owner(space, owner_id, "approve")
            booking.approve(self.clock())
            self.record_event(BookingApproved(booking.id, owner_id, booking.status))

        prometheus_metrics.inc_booking_transition(BookingEvent.APPROVE.value)
        self.log_operation("approve_booking", booking_id=booking.id, status=booking.status)
        self._invalidate(booking, space.owner_id)
        return booking

    @BaseService.measure_operation("reject_booking")
    @service_result
    def reject_booking(
        self,
        booking_id: str,
        owner_id: str,
        reason: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> Booking:
        with self.transaction(timeout_seconds):
            booking = self._load_booking(booking_id, for_update=True)
            space = self._space_of(booking)
            self._require_owner(space, owner_id, "reject")
            booking.reject(reason)
            self.record_event(BookingRejected(booking.id, owner_id, reason))

        prometheus_metrics.inc_booking_transition(BookingEvent.REJECT.value)
        self._invalidate(booking, space.owner_id)
        return booking

    # ------------------------------------------------------------------
    # Cancellation (three-phase: validate, call gateway, write)
    # ------------------------------------------------------------------

    @BaseService.measure_operation("cancel_booking")
    @service_result
    def cancel_booking(
        self,
        booking_id: str,
        user_id: str,
        reason: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> Booking:
        """
        Cancel a booking on behalf of its member or the space owner.

        A completed payment is refunded according to ``RefundPolicyEngine``.
        The gateway is called between two short transactions so no row lock
        is held across the network call; the refund and the cancellation are
        then written together.
        """
        now = self.clock()

        # Phase 1: validate
        with self.transaction(timeout_seconds):
            booking = self._load_booking(booking_id)
            space = self._space_of(booking)
            role = self._require_participant(booking, space, user_id)
            if not BookingStateMachine.can_transition(booking.status, BookingEvent.CANCEL):
                raise InvalidStateTransitionException(booking.status, BookingEvent.CANCEL.verb)
            payment = self.payment_repository.get_by_booking_id(booking.id)
            decision = self.refund_policy.evaluate(
                booking, payment, cancelled_by_owner=(role == "owner"), now=now
            )

        # Phase 2: gateway refund, no transaction held
        gateway_refund = None
        if decision.eligible and payment is not None and decision.amount > ZERO:
            gateway_refund = self.payment_gateway.process_refund(
                RefundRequest(
                    payment_id=payment.id,
                    transaction_id=payment.transaction_id or payment.gateway_reference or payment.id,
                    amount=decision.amount,
                    currency=payment.currency,
                    reason=reason or "Booking cancelled",
                )
            )

        # Phase 3: persist cancellation and refund together
        with self.transaction(timeout_seconds):
            booking = self._load_booking(booking_id, for_update=True)
            try:
                booking.cancel(user_id, reason, now)
            except InvalidStateTransitionException:
                if gateway_refund is not None:
                    self.logger.error(
                        "Booking %s changed state after refund %s was issued",
                        booking_id,
                        gateway_refund.refund_id,
                    )
                raise

            refunded: Optional[Decimal] = None
            if gateway_refund is not None:
                locked_payment = self.payment_repository.get_by_booking_id(booking.id, for_update=True)
                if locked_payment is None:
                    raise NotFoundException.for_resource("Payment", payment.id)
                try:
                    locked_payment.validate_refund(decision.amount)
                except (InvalidStateTransitionException, ValidationException) as exc:
                    # The money already left; cancel anyway and flag the refund
                    self.logger.error(
                        "Refund %s for booking %s could not be recorded: %s",
                        gateway_refund.refund_id,
                        booking_id,
                        exc.message,
                    )
                    self.record_event(
                        RefundUnrecorded(
                            payment_id=locked_payment.id,
                            booking_id=booking.id,
                            refund_id=gateway_refund.refund_id,
                            amount=str(decision.amount),
                            reason=exc.message,
                        )
                    )
                else:
                    total_refunded = locked_payment.record_refund(
                        decision.amount,
                        refund_transaction_id=gateway_refund.refund_id,
                        reason=reason or "Booking cancelled",
                        refunded_at=now,
                    )
                    refunded = decision.amount
                    self.record_event(
                        PaymentRefunded(
                            payment_id=locked_payment.id,
                            booking_id=booking.id,
                            refund_amount=str(decision.amount),
                            total_refunded=str(total_refunded),
                            status=locked_payment.status,
                        )
                    )

            self.record_event(
                BookingCancelled(
                    booking_id=booking.id,
                    cancelled_by=role,
                    reason=reason,
                    refund_amount=str(refunded) if refunded is not None else None,
                )
            )

        prometheus_metrics.inc_booking_transition(BookingEvent.CANCEL.value)
        self.log_operation(
            "cancel_booking",
            booking_id=booking.id,
            cancelled_by=role,
            refund_basis=decision.policy_basis,
        )
        self._invalidate(booking, space.owner_id)
        return booking

    # ------------------------------------------------------------------
    # Occupancy
    # ------------------------------------------------------------------

    @BaseService.measure_operation("check_in")
    @service_result
    def check_in(
        self, booking_id: str, user_id: str, timeout_seconds: Optional[float] = None
    ) -> Booking:
        """Confirmed -> InProgress, allowed from one hour before start until the end."""
        with self.transaction(timeout_seconds):
            booking = self._load_booking(booking_id, for_update=True)
            space = self._space_of(booking)
            self._require_participant(booking, space, user_id)
            booking.check_in(self.clock(), self.check_in_window)
            self.record_event(BookingCheckedIn(booking.id, ensure_utc(booking.check_in_time)))

        prometheus_metrics.inc_booking_transition(BookingEvent.CHECK_IN.value)
        self._invalidate(booking, space.owner_id)
        return booking

    @BaseService.measure_operation("check_out")
    @service_result
    def check_out(
        self, booking_id: str, user_id: str, timeout_seconds: Optional[float] = None
    ) -> Booking:
        with self.transaction(timeout_seconds):
            booking = self._load_booking(booking_id, for_update=True)
            space = self._space_of(booking)
            self._require_participant(booking, space, user_id)
            booking.check_out(self.clock())
            self.record_event(BookingCheckedOut(booking.id, ensure_utc(booking.check_out_time)))

        prometheus_metrics.inc_booking_transition(BookingEvent.CHECK_OUT.value)
        self._invalidate(booking, space.owner_id)
        return booking

    # ------------------------------------------------------------------
    # Price changes
    # ------------------------------------------------------------------

    @BaseService.measure_operation("apply_discount")
    @service_result
    def apply_discount(
        self,
        booking_id: str,
        user_id: str,
        code: str,
        timeout_seconds: Optional[float] = None,
    ) -> Booking:
        """Apply a discount code; discount and total change together or not at all."""
        now = self.clock()
        with self.transaction(timeout_seconds):
            booking = self._load_booking(booking_id, for_update=True)
            space = self._space_of(booking)
            if not booking.is_owned_by(user_id):
                raise UnauthorizedException("Only the booking's member can apply a discount")
            discount = self._resolve_discount(code, now)
            if discount is None:
                raise InvalidDiscountException(
                    "Invalid or expired discount code", details={"discount_code": code}
                )
            booking.apply_discount(discount.code, discount.amount_for(Decimal(booking.base_amount)))
            self._sync_pending_payment(booking)
            # Nothing left to pay on an approved booking
            if (
                booking.current_status == BookingStatus.AWAITING_PAYMENT
                and Decimal(booking.total_amount) == ZERO
            ):
                booking.confirm(now)

        self._invalidate(booking, space.owner_id)
        return booking

    @BaseService.measure_operation("update_booking")
    @service_result
    def update_booking(
        self,
        booking_id: str,
        user_id: str,
        patch: BookingPatch,
        timeout_seconds: Optional[float] = None,
    ) -> Booking:
        """
        Apply a partial update to a Pending booking.

        Only fields present in ``patch`` change. A new window or pricing mode
        is re-checked for capacity (ignoring this booking) and repriced with
        the booking's discount code re-applied.
        """
        now = self.clock()
        changes = patch.changes()
        with self.transaction(timeout_seconds):
            booking = self._load_booking(booking_id, for_update=True)
            if not booking.is_owned_by(user_id):
                raise UnauthorizedException("Only the booking's member can update it")
            if booking.current_status != BookingStatus.PENDING:
                raise InvalidStateTransitionException(booking.status, "update")

            space = self.parking_space_repository.get_for_update(booking.parking_space_id)
            if space is None:
                raise NotFoundException.for_resource("Parking space", booking.parking_space_id)

            if patch.touches_window:
                start, end = self._validate_window(
                    changes.get("start_time", booking.start_time),
                    changes.get("end_time", booking.end_time),
                    now,
                )
                mode = PricingMode(changes.get("pricing_mode", booking.pricing_mode))
                availability = self.availability_service.count_for_space(
                    space, start, end, exclude_booking_id=booking.id
                )
                if not availability.available:
                    raise CapacityExceededException(
                        details={
                            "parking_space_id": space.id,
                            "active_count": availability.active_count,
                            "total_spots": availability.total_spots,
                        }
                    )
                discount = self._resolve_discount(booking.discount_code, now)
                breakdown = calculate_price(space.rates, start, end, mode, discount, self.pricing_policy)
                booking.start_time = start
                booking.end_time = end
                booking.pricing_mode = mode.value
                booking.apply_price(breakdown)
                booking.discount_code = breakdown.discount_code

            for field_name in ("vehicle_type", "vehicle_number", "vehicle_model", "special_requests"):
                if field_name in changes:
                    value = changes[field_name]
                    setattr(booking, field_name, getattr(value, "value", value))

            self.booking_repository.flush()
            if patch.touches_window:
                recount = self.booking_repository.get_active_bookings_count(
                    space.id, booking.start_time, booking.end_time
                )
                if recount > int(space.total_spots):
                    raise CapacityConflictException(
                        details={"parking_space_id": space.id, "active_count": recount}
                    )

        self.log_operation("update_booking", booking_id=booking.id, fields=sorted(changes))
        self._invalidate(booking, space.owner_id)
        return booking

    # ------------------------------------------------------------------
    # Read side (cached)
    # ------------------------------------------------------------------

    @BaseService.measure_operation("get_booking")
    @service_result
    def get_booking(self, booking_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        data = self._cached(
            CacheKeys.booking(booking_id), lambda: self._booking_snapshot(booking_id=booking_id)
        )
        if data is None:
            raise NotFoundException.for_resource("Booking", booking_id)
        self._require_snapshot_access(data, user_id)
        return data

    @BaseService.measure_operation("get_booking_by_reference")
    @service_result
    def get_booking_by_reference(
        self, booking_reference: str, user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        data = self._cached(
            CacheKeys.booking_reference(booking_reference),
            lambda: self._booking_snapshot(reference=booking_reference),
        )
        if data is None:
            raise NotFoundException(
                f"Booking not found (reference: {booking_reference})",
                details={"resource_type": "Booking", "booking_reference": booking_reference},
            )
        self._require_snapshot_access(data, user_id)
        return data

    @BaseService.measure_operation("get_member_dashboard")
    @service_result
    def get_member_dashboard(self, user_id: str) -> Dict[str, Any]:
        return self._cached(
            CacheKeys.member_dashboard(user_id),
            lambda: self._build_member_dashboard(user_id),
            tier="hot",
        )

    @BaseService.measure_operation("get_owner_dashboard")
    @service_result
    def get_owner_dashboard(self, owner_id: str) -> Dict[str, Any]:
        return self._cached(
            CacheKeys.owner_dashboard(owner_id),
            lambda: self._build_owner_dashboard(owner_id),
            tier="hot",
        )

    @BaseService.measure_operation("check_availability")
    @service_result
    def check_availability(
        self,
        parking_space_id: str,
        start_time: datetime,
        end_time: datetime,
    ) -> Dict[str, Any]:
        start = ensure_utc(start_time)
        end = ensure_utc(end_time)

        def _load() -> Dict[str, Any]:
            result = self.availability_service.check_availability(parking_space_id, start, end)
            return AvailabilityView(
                parking_space_id=parking_space_id,
                start_time=start,
                end_time=end,
                available=result.available,
                active_count=result.active_count,
                total_spots=result.total_spots,
                available_spots=result.available_spots,
            ).model_dump(mode="json")

        return self._cached(CacheKeys.availability(parking_space_id, start, end), _load, tier="hot")

    @BaseService.measure_operation("preview_price")
    @service_result
    def preview_price(
        self,
        parking_space_id: str,
        start_time: datetime,
        end_time: datetime,
        pricing_mode: PricingMode = PricingMode.HOURLY,
        discount_code: Optional[str] = None,
    ) -> PriceBreakdown:
        """Price a window without reserving anything."""
        space = self._cached(
            CacheKeys.parking(parking_space_id), lambda: self._space_snapshot(parking_space_id)
        )
        if space is None:
            raise NotFoundException.for_resource("Parking space", parking_space_id)
        rates = {
            PricingMode(mode): Decimal(space[f"{mode.value}_rate"])
            if space.get(f"{mode.value}_rate") is not None
            else None
            for mode in PricingMode
        }
        discount = self._resolve_discount(discount_code, self.clock())
        return calculate_price(rates, start_time, end_time, pricing_mode, discount, self.pricing_policy)

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

    def _load_space(self, parking_space_id: str) -> ParkingSpace:
        space = self.parking_space_repository.get_by_id(parking_space_id)
        if space is None:
            raise NotFoundException.for_resource("Parking space", parking_space_id)
        return space

    def _space_of(self, booking: Booking) -> ParkingSpace:
        space = booking.parking_space
        if space is None:
            space = self._load_space(booking.parking_space_id)
        return space

    @staticmethod
    def _ensure_space_active(space: ParkingSpace) -> None:
        if not space.is_active:
            raise ValidationException(
                "Parking space is not available", details={"parking_space_id": space.id}
            )

    @staticmethod
    def _validate_window(
        start_time: datetime, end_time: datetime, now: datetime
    ) -> Tuple[datetime, datetime]:
        start = ensure_utc(start_time)
        end = ensure_utc(end_time)
        if start >= end:
            raise ValidationException(
                "Start time must be before end time",
                details={"start_time": start.isoformat(), "end_time": end.isoformat()},
            )
        if end <= ensure_utc(now):
            raise ValidationException(
                "Booking window must end in the future", details={"end_time": end.isoformat()}
            )
        return start, end

    @staticmethod
    def _require_owner(space: ParkingSpace, owner_id: str, action: str) -> None:
        if not space.is_owned_by(owner_id):
            raise UnauthorizedException(
                f"Only the parking space owner can {action} bookings",
                details={"parking_space_id": space.id},
            )

    @staticmethod
    def _require_participant(booking: Booking, space: ParkingSpace, user_id: str) -> str:
        """Return 'user' or 'owner' for the caller, or raise."""
        if booking.is_owned_by(user_id):
            return "user"
        if space.is_owned_by(user_id):
            return "owner"
        raise UnauthorizedException(details={"booking_id": booking.id})

    @staticmethod
    def _require_snapshot_access(data: Dict[str, Any], user_id: Optional[str]) -> None:
        if user_id is None:
            return
        if user_id not in (data.get("user_id"), data.get("owner_id")):
            raise UnauthorizedException(details={"booking_id": data.get("id")})

    def _resolve_discount(self, code: Optional[str], now: datetime) -> Optional[DiscountSpec]:
        if not code:
            return None
        record = self.discount_repository.get_by_code(code)
        if record is None or not record.is_redeemable_at(now):
            raise InvalidDiscountException(
                "Invalid or expired discount code", details={"discount_code": code}
            )
        return DiscountSpec(
            code=record.code,
            discount_type=DiscountType(record.discount_type),
            value=Decimal(record.value),
            max_amount=Decimal(record.max_amount) if record.max_amount is not None else None,
        )

    def _generate_reference(self, now: datetime) -> str:
        """Human readable reference such as ``PK-20250101-7QX2KD``."""
        prefix = settings.booking_reference_prefix
        for _ in range(_REFERENCE_ATTEMPTS):
            suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(6))
            reference = f"{prefix}-{ensure_utc(now):%Y%m%d}-{suffix}"
            if not self.booking_repository.reference_exists(reference):
                return reference
        raise ServiceException("Could not allocate a unique booking reference")

    def _sync_pending_payment(self, booking: Booking) -> None:
        """Keep a not-yet-settled payment row in step with the booking total."""
        payment = self.payment_repository.get_by_booking_id(booking.id)
        if payment is not None and payment.status == PaymentStatus.PENDING.value:
            payment.amount = quantize_money(Decimal(booking.total_amount))

    def _invalidate(self, booking: Booking, owner_id: Optional[str]) -> None:
        self.invalidation.invalidate(InvalidationTargets.for_booking_entity(booking, owner_id))

    def _cached(self, key: str, loader: Callable[[], Any], tier: str = "warm") -> Any:
        if self.cache is None:
            return loader()
        return self.cache.get_or_set(key, loader, tier=tier)

    def _booking_snapshot(
        self, booking_id: Optional[str] = None, reference: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        if reference is not None:
            booking = self.booking_repository.get_by_reference(reference)
        else:
            booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            return None
        data = booking.to_dict()
        data["owner_id"] = self._space_of(booking).owner_id
        return data

    def _space_snapshot(self, parking_space_id: str) -> Optional[Dict[str, Any]]:
        space = self.parking_space_repository.get_by_id(parking_space_id, load_relationships=False)
        return space.to_dict() if space is not None else None

    def _build_member_dashboard(self, user_id: str) -> Dict[str, Any]:
        now = self.clock()
        dashboard = MemberDashboard(user_id=user_id)
        total_spent = ZERO
        for booking in self.booking_repository.get_user_bookings(user_id):
            status = coerce_status(booking.status)
            entry = booking.to_dict()
            if status == BookingStatus.IN_PROGRESS:
                dashboard.in_progress.append(entry)
            elif status in _UPCOMING_STATUSES and ensure_utc(booking.end_time) > now:
                dashboard.upcoming.append(entry)
            else:
                dashboard.past.append(entry)
            if status in _PAID_STATUSES:
                total_spent += Decimal(booking.total_amount)
        dashboard.upcoming.sort(key=lambda item: item["start_time"])
        dashboard.total_spent = str(quantize_money(total_spent))
        return dashboard.model_dump(mode="json")

    def _build_owner_dashboard(self, owner_id: str) -> Dict[str, Any]:
        space_ids = self.parking_space_repository.get_ids_by_owner(owner_id)
        dashboard = OwnerDashboard(owner_id=owner_id, parking_space_ids=space_ids)
        counts: Dict[str, int] = {}
        earnings = ZERO
        for booking in self.booking_repository.get_bookings_for_spots(space_ids):
            status = coerce_status(booking.status)
            counts[status.value] = counts.get(status.value, 0) + 1
            if status == BookingStatus.PENDING:
                dashboard.pending_approval.append(booking.to_dict())
            elif BookingStateMachine.consumes_capacity(status):
                dashboard.active.append(booking.to_dict())
            if status in _PAID_STATUSES:
                earnings += Decimal(booking.base_amount)
        dashboard.status_counts = counts
        dashboard.total_earnings = str(quantize_money(earnings))
        return dashboard.model_dump(mode="json")

    def list_allowed_events(self, booking: Booking) -> List[str]:
        """Lifecycle events currently legal for ``booking`` (for UI affordances)."""
        return [event.value for event in BookingStateMachine.allowed_events(booking.status)]

