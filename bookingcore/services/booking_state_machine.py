"""
Booking State Machine  (orchestrator)
=====================================

Every lifecycle change goes through ``request_transition``:

1. load the booking (optionally checking the caller's ``expected_version``)
2. validate the edge against ``BOOKING_TRANSITIONS`` and the actor table
3. load the current ``PolicyConfig`` snapshot once
4. run the edge's effects (claim, fee, no-show, completion bookkeeping)
5. write the booking with ``UPDATE ... WHERE version = :expected``
6. append one ``booking_status_history`` row
7. settle the driver (release, trip / fee credit)

All writes of one call share the caller's session; any raised
``BookingError`` leaves the unit of work to be rolled back by the caller
(the API dependency and the sweeper both do so).

Operations that do not change status (arrival, ratings, disputes) use the
same version guard but append no history entry.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bookingcore.config import settings
from bookingcore.domain.entities import (
    Booking,
    Dispute,
    Driver,
    Location,
    RatingRecord,
    StatusHistoryEntry,
)
from bookingcore.domain.enums import (
    DRIVER_HELD_STATUSES,
    TRANSITION_ACTORS,
    Actor,
    BookingStatus,
    CancellationReason,
    DisputeReason,
    DisputeStatus,
    DriverStatus,
    FeeStatus,
    PaymentMethod,
    PaymentStatus,
    RatingReason,
    RatingType,
)
from bookingcore.domain.errors import (
    BookingError,
    ConcurrencyConflict,
    Forbidden,
    InvalidTransition,
    NotFound,
    PolicyViolation,
)
from bookingcore.domain.fees import (
    ZERO,
    FeeDecision,
    NoShowDecision,
    compute_booking_no_show,
    compute_cancellation_fee,
    dispute_window_ends_at,
    is_within_dispute_window,
    to_ms,
)
from bookingcore.domain.policy import PolicyConfig
from bookingcore.domain.rating import bayesian_rating
from bookingcore.infrastructure.repositories import (
    BookingRepository,
    CustomerRepository,
    DisputeRepository,
    DriverRepository,
    PolicyConfigRepository,
)
from bookingcore.services.assignment import DriverAssignmentCoordinator

logger = logging.getLogger(__name__)

S = BookingStatus

NO_SHOW_GUARD = "no_show"

MAX_TIP = Decimal("10000")
LOW_SCORE_THRESHOLD = 3
MAX_COMMENT_LENGTH = 500
MIN_DESCRIPTION_LENGTH = 10
MAX_DESCRIPTION_LENGTH = 1000
MAX_EVIDENCE_ITEMS = 5

_TAG_RE = re.compile(r"<[^>]+>")

_DEFAULT_NOTES: dict[tuple[BookingStatus, BookingStatus], str] = {
    (S.PENDING, S.CONFIRMED): "Booking confirmed",
    (S.CONFIRMED, S.DRIVER_ASSIGNED): "Driver assigned",
    (S.DRIVER_ASSIGNED, S.DRIVER_EN_ROUTE): "Driver accepted and is en route",
    (S.DRIVER_EN_ROUTE, S.IN_PROGRESS): "Trip started",
    (S.IN_PROGRESS, S.COMPLETED): "Trip completed",
    (S.DRIVER_EN_ROUTE, S.CANCELLED): "Customer did not show up",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def strip_html(text: Optional[str]) -> str:
    return _TAG_RE.sub("", text or "").strip()


@dataclass
class TransitionContext:
    """Caller-supplied facts for one transition request."""

    now: Optional[datetime] = None
    # Driver to assign, or the driver performing the action
    driver_id: Optional[int] = None
    # Customer performing the action (ownership check)
    customer_id: Optional[int] = None
    expected_version: Optional[int] = None
    reason: Optional[str] = None
    note: str = ""
    guard: Optional[str] = None


@dataclass(frozen=True)
class TransitionResult:
    booking: Booking
    previous_status: BookingStatus
    policy_version: int
    fee: Optional[FeeDecision] = None
    no_show: Optional[NoShowDecision] = None


class BookingStateMachine:
    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
        business_timezone: Optional[str] = None,
    ):
        self.session = session
        self.bookings = BookingRepository(session)
        self.drivers = DriverRepository(session)
        self.customers = CustomerRepository(session)
        self.disputes = DisputeRepository(session)
        self.policies = PolicyConfigRepository(session)
        self.coordinator = DriverAssignmentCoordinator(self.drivers)
        self.clock = clock
        self.tz = ZoneInfo(business_timezone or settings.business_timezone)

    # ── Core ──────────────────────────────────────────────────────────

    async def request_transition(
        self,
        booking_id: int,
        target: BookingStatus,
        actor: Actor,
        context: Optional[TransitionContext] = None,
    ) -> TransitionResult:
        ctx = context or TransitionContext()
        now = ctx.now or self.clock()
        try:
            booking = await self._load(booking_id, ctx.expected_version)
            previous = booking.status
            booking.check_transition(target, ctx.guard)
            self._authorize(booking, target, actor, ctx)

            policy = await self.policies.get_current()
            expected_version = booking.version
            held_driver_id = booking.driver.driver_id if booking.driver else None

            fee, no_show = await self._apply_effects(
                booking, target, actor, ctx, policy, now
            )
            booking.transition_to(target, ctx.guard)
            entry = self._history_entry(
                booking,
                actor,
                ctx.note or self._default_note(previous, target, actor),
                now,
            )

            if not await self.bookings.save(booking, expected_version):
                raise ConcurrencyConflict(
                    f"Booking {booking_id} changed while moving to {target.value}",
                    details={"expected_version": expected_version},
                )
            await self.bookings.append_history(booking.id, entry)
            booking.status_history.append(entry)

            await self._settle_driver(
                held_driver_id, previous, target, booking, fee, no_show
            )
        except BookingError as exc:
            logger.info(
                "Booking %s -> %s by %s rejected: %s",
                booking_id,
                target.value,
                actor.value,
                exc.code,
            )
            raise

        charged = no_show or fee
        if charged is not None:
            logger.info(
                "Booking %s: %s -> %s by %s (fee=%s reason=%s)",
                booking_id,
                previous.value,
                target.value,
                actor.value,
                charged.fee,
                charged.reason.value,
            )
        else:
            logger.info(
                "Booking %s: %s -> %s by %s",
                booking_id,
                previous.value,
                target.value,
                actor.value,
            )
        return TransitionResult(
            booking=booking,
            previous_status=previous,
            policy_version=policy.version,
            fee=fee,
            no_show=no_show,
        )

    async def _load(
        self, booking_id: int, expected_version: Optional[int] = None
    ) -> Booking:
        booking = await self.bookings.get(booking_id)
        if booking is None:
            raise NotFound(
                f"Booking {booking_id} not found", details={"booking_id": booking_id}
            )
        if expected_version is not None and expected_version != booking.version:
            raise ConcurrencyConflict(
                f"Booking {booking_id} was modified by another request",
                details={
                    "expected_version": expected_version,
                    "current_version": booking.version,
                },
            )
        return booking

    def _authorize(
        self,
        booking: Booking,
        target: BookingStatus,
        actor: Actor,
        ctx: TransitionContext,
    ) -> None:
        allowed = TRANSITION_ACTORS.get((booking.status, target), frozenset())
        if actor not in allowed:
            raise Forbidden(
                f"{actor.value} may not move a booking from "
                f"{booking.status.value} to {target.value}",
                details={
                    "actor": actor.value,
                    "from": booking.status.value,
                    "to": target.value,
                },
            )
        self._check_party(booking, actor, ctx.customer_id, ctx.driver_id)

    @staticmethod
    def _check_party(
        booking: Booking,
        actor: Actor,
        customer_id: Optional[int],
        driver_id: Optional[int],
    ) -> None:
        if actor == Actor.CUSTOMER and customer_id is not None:
            if customer_id != booking.customer_id:
                raise Forbidden(
                    "Booking belongs to another customer", code="not_booking_owner"
                )
        if actor == Actor.DRIVER:
            assigned = booking.driver.driver_id if booking.driver else None
            if driver_id is None or driver_id != assigned:
                raise Forbidden(
                    "Only the assigned driver may act on this booking",
                    code="driver_mismatch",
                    details={"driver_id": driver_id, "assigned_driver_id": assigned},
                )

    async def _apply_effects(
        self,
        booking: Booking,
        target: BookingStatus,
        actor: Actor,
        ctx: TransitionContext,
        policy: PolicyConfig,
        now: datetime,
    ) -> tuple[Optional[FeeDecision], Optional[NoShowDecision]]:
        edge = (booking.status, target)
        fee: Optional[FeeDecision] = None
        no_show: Optional[NoShowDecision] = None

        if target == S.DRIVER_ASSIGNED:
            await self._assign(booking, ctx, now)
        elif edge == (S.DRIVER_ASSIGNED, S.DRIVER_EN_ROUTE):
            booking.driver_en_route_at = now
        elif edge == (S.DRIVER_ASSIGNED, S.CONFIRMED):
            self._revert_assignment(booking, actor, policy, now)
        elif edge == (S.DRIVER_EN_ROUTE, S.IN_PROGRESS):
            booking.trip_started_at = now
        elif target == S.COMPLETED:
            booking.completed_at = now
            if booking.payment_method == PaymentMethod.CASH:
                booking.payment_status = PaymentStatus.PAID
        elif edge == (S.DRIVER_EN_ROUTE, S.CANCELLED):
            no_show = self._record_no_show(booking, actor, policy, now)
        elif target == S.CANCELLED:
            fee = await self._record_cancellation(booking, actor, ctx, policy, now)
        return fee, no_show

    async def _assign(
        self, booking: Booking, ctx: TransitionContext, now: datetime
    ) -> None:
        if ctx.driver_id is None:
            raise PolicyViolation(
                "A driver id is required for assignment", code="driver_required"
            )
        driver = await self.drivers.get(ctx.driver_id)
        if driver is None:
            raise NotFound(
                f"Driver {ctx.driver_id} not found",
                details={"driver_id": ctx.driver_id},
            )
        if driver.customer_id is not None and driver.customer_id == booking.customer_id:
            raise PolicyViolation(
                "A driver cannot be assigned to their own booking", code="own_booking"
            )

        driver = await self.coordinator.claim(driver.id, booking.id, now)
        booking.driver = driver.snapshot()
        booking.driver_assigned_at = now
        booking.driver_en_route_at = None
        booking.driver_arrived_at = None

    @staticmethod
    def _revert_assignment(
        booking: Booking, actor: Actor, policy: PolicyConfig, now: datetime
    ) -> None:
        # Rejection and timeout are treated the same; neither carries a fee
        if actor == Actor.SYSTEM and booking.driver_assigned_at is not None:
            elapsed = now - booking.driver_assigned_at
            if elapsed < policy.assignment_timeout:
                raise PolicyViolation(
                    "Assignment has not timed out yet",
                    code="assignment_not_expired",
                    details={"remaining_ms": to_ms(policy.assignment_timeout - elapsed)},
                )
        if booking.driver is not None:
            booking.rejected_driver_ids.append(booking.driver.driver_id)
        booking.driver = None
        booking.driver_assigned_at = None

    async def _record_cancellation(
        self,
        booking: Booking,
        actor: Actor,
        ctx: TransitionContext,
        policy: PolicyConfig,
        now: datetime,
    ) -> FeeDecision:
        if actor == Actor.CUSTOMER:
            await self._check_daily_cancellations(booking.customer_id, policy, now)

        decision = compute_cancellation_fee(booking, policy, now)
        booking.cancelled_at = now
        booking.cancelled_by = actor
        booking.cancellation_reason = ctx.reason
        booking.cancellation_fee = decision.fee
        booking.cancellation_fee_reason = decision.reason.value
        booking.cancellation_fee_status = decision.fee_status
        return decision

    async def _check_daily_cancellations(
        self, customer_id: int, policy: PolicyConfig, now: datetime
    ) -> None:
        if not policy.enable_cancellation_limit:
            return
        await self.customers.lock(customer_id)
        since = self._start_of_day(now)
        count = await self.bookings.count_customer_cancellations_since(
            customer_id, since
        )
        if count >= policy.max_cancellations_per_day:
            raise PolicyViolation(
                "Daily cancellation limit reached",
                code="cancellation_limit_reached",
                details={"limit": policy.max_cancellations_per_day, "count": count},
            )

    def _start_of_day(self, now: datetime) -> datetime:
        local = now.astimezone(self.tz)
        midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight.astimezone(timezone.utc)

    @staticmethod
    def _record_no_show(
        booking: Booking, actor: Actor, policy: PolicyConfig, now: datetime
    ) -> NoShowDecision:
        if booking.driver_arrived_at is None:
            raise PolicyViolation(
                "Driver arrival has not been recorded", code="driver_not_arrived"
            )
        decision = compute_booking_no_show(booking, policy, now)
        if not decision.eligible:
            raise PolicyViolation(
                f"Customer can be reported as a no-show in "
                f"{decision.remaining_ms // 1000} seconds",
                code="wait_time_not_met",
                details={
                    "waited_ms": decision.waited_ms,
                    "required_ms": decision.required_ms,
                    "remaining_ms": decision.remaining_ms,
                },
            )
        booking.is_no_show = True
        booking.no_show_fee = decision.fee
        booking.no_show_reported_at = now
        booking.cancelled_at = now
        booking.cancelled_by = actor
        booking.cancellation_reason = CancellationReason.CUSTOMER_NO_SHOW.value
        booking.cancellation_fee_reason = decision.reason.value
        booking.cancellation_fee_status = (
            FeeStatus.PENDING if decision.fee > ZERO else FeeStatus.WAIVED
        )
        return decision

    async def _settle_driver(
        self,
        driver_id: Optional[int],
        previous: BookingStatus,
        target: BookingStatus,
        booking: Booking,
        fee: Optional[FeeDecision],
        no_show: Optional[NoShowDecision],
    ) -> None:
        if driver_id is None or previous not in DRIVER_HELD_STATUSES:
            return
        if target in (S.DRIVER_EN_ROUTE, S.IN_PROGRESS):
            return

        if target == S.COMPLETED:
            await self.drivers.record_trip(driver_id, booking.fare)
        elif target == S.CANCELLED:
            decision = no_show or fee
            if decision is not None and decision.driver_share > ZERO:
                await self.drivers.add_earnings(driver_id, decision.driver_share)
        await self.coordinator.release(driver_id)

    @staticmethod
    def _history_entry(
        booking: Booking, actor: Actor, note: str, now: datetime
    ) -> StatusHistoryEntry:
        last = booking.last_transition_at
        stamp = max(now, last) if last is not None else now
        return StatusHistoryEntry(
            sequence=booking.version + 1,
            status=booking.status,
            timestamp=stamp,
            actor=actor,
            note=note,
        )

    @staticmethod
    def _default_note(
        previous: BookingStatus, target: BookingStatus, actor: Actor
    ) -> str:
        if (previous, target) == (S.DRIVER_ASSIGNED, S.CONFIRMED):
            if actor == Actor.SYSTEM:
                return "Assignment timed out"
            if actor == Actor.DRIVER:
                return "Driver rejected the assignment"
            return "Assignment revoked"
        if target == S.CANCELLED and previous != S.DRIVER_EN_ROUTE:
            return f"Cancelled by {actor.value}"
        return _DEFAULT_NOTES.get((previous, target), "")

    # ── Lifecycle operations ──────────────────────────────────────────

    async def create_booking(
        self,
        *,
        customer_id: int,
        pickup_location: str,
        dropoff_location: str,
        pickup_at: datetime,
        fare: Decimal,
        pickup: Optional[Location] = None,
        dropoff: Optional[Location] = None,
        vehicle_name: str = "",
        payment_method: PaymentMethod = PaymentMethod.CASH,
        now: Optional[datetime] = None,
    ) -> Booking:
        now = now or self.clock()
        if await self.customers.get(customer_id) is None:
            raise NotFound(
                f"Customer {customer_id} not found",
                details={"customer_id": customer_id},
            )
        if fare <= ZERO:
            raise PolicyViolation("Fare must be positive", code="invalid_fare")

        policy = await self.policies.get_current()
        if policy.enable_active_booking_limit:
            active = await self.bookings.count_active_for_customer(customer_id)
            if active >= policy.max_active_bookings:
                logger.info(
                    "Customer %s refused a new booking (%d active)", customer_id, active
                )
                raise PolicyViolation(
                    "Too many active bookings",
                    code="active_booking_limit",
                    details={"limit": policy.max_active_bookings, "active": active},
                )

        booking = Booking(
            customer_id=customer_id,
            pickup_location=pickup_location,
            dropoff_location=dropoff_location,
            pickup=pickup,
            dropoff=dropoff,
            pickup_at=pickup_at,
            vehicle_name=vehicle_name,
            fare=fare,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            status=S.PENDING,
            created_at=now,
        )
        booking = await self.bookings.create(booking)
        entry = StatusHistoryEntry(
            sequence=booking.version,
            status=S.PENDING,
            timestamp=now,
            actor=Actor.CUSTOMER,
            note="Booking created",
        )
        await self.bookings.append_history(booking.id, entry)
        booking.status_history.append(entry)
        logger.info("Booking %s created for customer %s", booking.id, customer_id)
        return booking

    @staticmethod
    def _with(context: Optional[TransitionContext], **values: Any) -> TransitionContext:
        ctx = context or TransitionContext()
        changes = {k: v for k, v in values.items() if v is not None}
        return replace(ctx, **changes)

    async def confirm(
        self,
        booking_id: int,
        actor: Actor = Actor.ADMIN,
        context: Optional[TransitionContext] = None,
    ) -> TransitionResult:
        return await self.request_transition(booking_id, S.CONFIRMED, actor, context)

    async def assign_driver(
        self,
        booking_id: int,
        driver_id: int,
        actor: Actor = Actor.ADMIN,
        context: Optional[TransitionContext] = None,
    ) -> TransitionResult:
        ctx = self._with(context, driver_id=driver_id)
        return await self.request_transition(booking_id, S.DRIVER_ASSIGNED, actor, ctx)

    async def accept_assignment(
        self,
        booking_id: int,
        driver_id: int,
        context: Optional[TransitionContext] = None,
    ) -> TransitionResult:
        ctx = self._with(context, driver_id=driver_id)
        return await self.request_transition(
            booking_id, S.DRIVER_EN_ROUTE, Actor.DRIVER, ctx
        )

    async def reject_assignment(
        self,
        booking_id: int,
        driver_id: int,
        context: Optional[TransitionContext] = None,
    ) -> TransitionResult:
        ctx = self._with(context, driver_id=driver_id)
        return await self.request_transition(booking_id, S.CONFIRMED, Actor.DRIVER, ctx)

    async def expire_assignment(
        self,
        booking_id: int,
        actor: Actor = Actor.SYSTEM,
        context: Optional[TransitionContext] = None,
    ) -> TransitionResult:
        return await self.request_transition(booking_id, S.CONFIRMED, actor, context)

    async def start_trip(
        self,
        booking_id: int,
        driver_id: int,
        context: Optional[TransitionContext] = None,
    ) -> TransitionResult:
        ctx = self._with(context, driver_id=driver_id)
        return await self.request_transition(booking_id, S.IN_PROGRESS, Actor.DRIVER, ctx)

    async def complete_trip(
        self,
        booking_id: int,
        actor: Actor = Actor.DRIVER,
        driver_id: Optional[int] = None,
        context: Optional[TransitionContext] = None,
    ) -> TransitionResult:
        ctx = self._with(context, driver_id=driver_id)
        return await self.request_transition(booking_id, S.COMPLETED, actor, ctx)

    async def cancel(
        self,
        booking_id: int,
        actor: Actor,
        reason: Optional[str] = None,
        customer_id: Optional[int] = None,
        context: Optional[TransitionContext] = None,
    ) -> TransitionResult:
        ctx = self._with(context, reason=reason, customer_id=customer_id)
        return await self.request_transition(booking_id, S.CANCELLED, actor, ctx)

    async def report_no_show(
        self,
        booking_id: int,
        driver_id: int,
        context: Optional[TransitionContext] = None,
    ) -> TransitionResult:
        ctx = self._with(context, driver_id=driver_id, guard=NO_SHOW_GUARD)
        return await self.request_transition(booking_id, S.CANCELLED, Actor.DRIVER, ctx)

    async def cancellation_quote(
        self, booking_id: int, now: Optional[datetime] = None
    ) -> FeeDecision:
        """Fee a cancellation would carry right now; nothing is written."""
        now = now or self.clock()
        booking = await self._load(booking_id)
        booking.check_transition(S.CANCELLED)
        policy = await self.policies.get_current()
        return compute_cancellation_fee(booking, policy, now)

    async def mark_arrived(
        self,
        booking_id: int,
        driver_id: Optional[int] = None,
        actor: Actor = Actor.DRIVER,
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Booking:
        now = now or self.clock()
        booking = await self._load(booking_id, expected_version)
        if actor not in (Actor.DRIVER, Actor.ADMIN):
            raise Forbidden("Only the driver may record arrival")
        self._check_party(booking, actor, None, driver_id)
        if booking.status != S.DRIVER_EN_ROUTE:
            raise InvalidTransition(
                f"Cannot record arrival while booking is {booking.status.value}",
                code="arrival_not_allowed",
                details={"status": booking.status.value},
            )
        if booking.driver_arrived_at is not None:
            raise PolicyViolation(
                "Arrival already recorded",
                code="already_arrived",
                details={"arrived_at": booking.driver_arrived_at.isoformat()},
            )

        booking.driver_arrived_at = now
        await self._save(booking)
        logger.info("Booking %s: driver arrived at pickup", booking_id)
        return booking

    async def _save(self, booking: Booking) -> None:
        if not await self.bookings.save(booking, booking.version):
            raise ConcurrencyConflict(
                f"Booking {booking.id} was modified by another request"
            )

    # ── Ratings ───────────────────────────────────────────────────────

    async def submit_rating(
        self,
        booking_id: int,
        *,
        rating_type: RatingType,
        stars: int,
        actor: Actor,
        party_id: Optional[int] = None,
        tip: Decimal = ZERO,
        reasons: Iterable[str] = (),
        comment: str = "",
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Booking:
        """Record one rating on a completed booking and fold it into the rated party."""
        now = now or self.clock()
        booking = await self._load(booking_id, expected_version)
        if booking.status != S.COMPLETED:
            raise PolicyViolation(
                "Only completed bookings can be rated", code="booking_not_completed"
            )
        if not 1 <= stars <= 5:
            raise PolicyViolation("Score must be between 1 and 5", code="invalid_score")
        try:
            reason_codes = tuple(dict.fromkeys(RatingReason(r).value for r in reasons))
        except ValueError as exc:
            raise PolicyViolation(str(exc), code="invalid_reason") from exc
        if stars <= LOW_SCORE_THRESHOLD and not reason_codes:
            raise PolicyViolation(
                "A reason is required for scores of 3 or below",
                code="reasons_required",
            )

        record = RatingRecord(
            stars=stars,
            rated_at=now,
            tip=tip,
            reasons=reason_codes,
            comment=strip_html(comment)[:MAX_COMMENT_LENGTH],
        )
        driver_id = booking.driver.driver_id if booking.driver else None

        if rating_type == RatingType.CUSTOMER_TO_DRIVER:
            if actor != Actor.CUSTOMER:
                raise Forbidden("Only the customer rates the driver")
            self._check_party(booking, actor, party_id, None)
            if booking.customer_rating is not None:
                raise PolicyViolation("Booking already rated", code="already_rated")
            if tip < ZERO or tip > MAX_TIP:
                raise PolicyViolation(
                    f"Tip must be between 0 and {MAX_TIP}", code="invalid_tip"
                )
            booking.customer_rating = record
        else:
            if actor != Actor.DRIVER:
                raise Forbidden("Only the driver rates the customer")
            self._check_party(booking, actor, None, party_id)
            if booking.driver_rating is not None:
                raise PolicyViolation("Booking already rated", code="already_rated")
            if tip != ZERO:
                raise PolicyViolation("Only customers can tip", code="invalid_tip")
            booking.driver_rating = record

        await self._save(booking)

        if rating_type == RatingType.CUSTOMER_TO_DRIVER:
            await self._rate_driver(driver_id, stars)
            if tip > ZERO:
                await self.drivers.add_tip(driver_id, tip)
        else:
            await self._rate_customer(booking.customer_id, stars)

        logger.info(
            "Booking %s rated (%s, %d stars, tip=%s)",
            booking_id,
            rating_type.value,
            stars,
            tip,
        )
        return booking

    async def _rate_driver(self, driver_id: int, stars: int) -> None:
        driver = await self.get_driver(driver_id)
        rating, count = bayesian_rating(driver.rating, driver.rating_count, stars)
        if not await self.drivers.update_rating(
            driver_id, driver.rating_count, rating, count
        ):
            raise ConcurrencyConflict(f"Rating of driver {driver_id} changed concurrently")

    async def _rate_customer(self, customer_id: int, stars: int) -> None:
        customer = await self.customers.get(customer_id)
        if customer is None:
            raise NotFound(f"Customer {customer_id} not found")
        rating, count = bayesian_rating(customer.rating, customer.rating_count, stars)
        if not await self.customers.update_rating(
            customer_id, customer.rating_count, rating, count
        ):
            raise ConcurrencyConflict(
                f"Rating of customer {customer_id} changed concurrently"
            )

    # ── Disputes ──────────────────────────────────────────────────────

    async def submit_dispute(
        self,
        booking_id: int,
        *,
        actor: Actor,
        reason: DisputeReason,
        description: str,
        party_id: Optional[int] = None,
        evidence: Iterable[str] = (),
        now: Optional[datetime] = None,
    ) -> Dispute:
        now = now or self.clock()
        booking = await self._load(booking_id)
        policy = await self.policies.get_current()

        if not policy.enable_dispute:
            raise PolicyViolation("Disputes are disabled", code="dispute_disabled")
        if actor == Actor.CUSTOMER:
            self._check_party(booking, actor, party_id, None)
        elif actor == Actor.DRIVER:
            self._check_party(booking, actor, None, party_id)
        else:
            raise Forbidden("Disputes are raised by the customer or the driver")

        if booking.status == S.COMPLETED:
            closed_at = booking.completed_at
        elif booking.status == S.CANCELLED:
            closed_at = booking.cancelled_at
        else:
            raise PolicyViolation(
                "Only completed or cancelled bookings can be disputed",
                code="booking_not_closed",
                details={"status": booking.status.value},
            )
        closed_at = closed_at or booking.last_transition_at or now

        if not is_within_dispute_window(closed_at, now, policy):
            raise PolicyViolation(
                "Dispute window has expired",
                code="dispute_window_expired",
                details={
                    "window_ends_at": dispute_window_ends_at(closed_at, policy).isoformat()
                },
            )
        if booking.has_dispute:
            raise PolicyViolation(
                "A dispute already exists for this booking",
                code="dispute_exists",
                details={"dispute_id": booking.dispute_id},
            )

        text = strip_html(description)
        if len(text) < MIN_DESCRIPTION_LENGTH:
            raise PolicyViolation(
                f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters",
                code="description_too_short",
            )

        try:
            dispute = await self.disputes.create(
                Dispute(
                    booking_id=booking.id,
                    customer_id=booking.customer_id,
                    driver_id=booking.driver.driver_id if booking.driver else None,
                    raised_by=actor,
                    reason=reason,
                    description=text[:MAX_DESCRIPTION_LENGTH],
                    evidence=[e for e in evidence if e][:MAX_EVIDENCE_ITEMS],
                    status=DisputeStatus.OPEN,
                    created_at=now,
                    updated_at=now,
                )
            )
        except IntegrityError as exc:
            # Another request opened one after our read
            raise PolicyViolation(
                "A dispute already exists for this booking",
                code="dispute_exists",
                details={"booking_id": booking_id},
            ) from exc
        booking.dispute_id = dispute.id
        await self._save(booking)
        logger.info(
            "Dispute %s opened on booking %s (%s)", dispute.id, booking_id, reason.value
        )
        return dispute

    async def get_dispute(self, dispute_id: int) -> Dispute:
        dispute = await self.disputes.get(dispute_id)
        if dispute is None:
            raise NotFound(
                f"Dispute {dispute_id} not found", details={"dispute_id": dispute_id}
            )
        return dispute

    async def get_booking_dispute(self, booking_id: int) -> Dispute:
        await self._load(booking_id)
        dispute = await self.disputes.get_by_booking(booking_id)
        if dispute is None:
            raise NotFound(
                f"Booking {booking_id} has no dispute",
                details={"booking_id": booking_id},
            )
        return dispute

    async def resolve_dispute(
        self,
        dispute_id: int,
        status: DisputeStatus,
        resolution: Optional[str] = None,
        resolved_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dispute:
        now = now or self.clock()
        dispute = await self.get_dispute(dispute_id)
        previous = dispute.status
        dispute.transition_to(status)
        if resolution is not None:
            dispute.resolution = strip_html(resolution)[:MAX_DESCRIPTION_LENGTH]
        dispute.resolved_by = resolved_by
        dispute.updated_at = now
        if not await self.disputes.update_status(dispute, previous):
            raise ConcurrencyConflict(
                f"Dispute {dispute_id} was modified by another request"
            )
        logger.info(
            "Dispute %s: %s -> %s", dispute_id, previous.value, status.value
        )
        return dispute

    # ── Drivers & reads ───────────────────────────────────────────────

    async def get_booking(self, booking_id: int) -> Booking:
        return await self._load(booking_id)

    async def get_driver(self, driver_id: int) -> Driver:
        driver = await self.drivers.get(driver_id)
        if driver is None:
            raise NotFound(
                f"Driver {driver_id} not found", details={"driver_id": driver_id}
            )
        return driver

    async def set_driver_availability(self, driver_id: int, available: bool) -> Driver:
        driver = await self.get_driver(driver_id)
        if available:
            if driver.status == DriverStatus.AVAILABLE:
                return driver
            changed = await self.drivers.change_status(
                driver_id, DriverStatus.OFFLINE, DriverStatus.AVAILABLE
            )
        else:
            if driver.status == DriverStatus.OFFLINE:
                return driver
            changed = await self.drivers.change_status(
                driver_id, DriverStatus.AVAILABLE, DriverStatus.OFFLINE
            )
        if not changed:
            raise PolicyViolation(
                "Driver is on a booking", code="driver_busy",
                details={"status": driver.status.value},
            )
        logger.info("Driver %s is now %s", driver_id, "available" if available else "offline")
        return await self.get_driver(driver_id)

    # ── Policy ────────────────────────────────────────────────────────

    async def get_policy(self) -> PolicyConfig:
        return await self.policies.get_current()

    async def publish_policy(
        self, changes: Mapping[str, Any], created_by: Optional[str] = None
    ) -> PolicyConfig:
        """Store a new policy version built from the current one plus *changes*."""
        known = {f.name for f in fields(PolicyConfig)} - {"version"}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise PolicyViolation(
                "Unknown policy fields", code="unknown_policy_field",
                details={"fields": unknown},
            )
        missing = sorted(key for key, value in changes.items() if value is None)
        if missing:
            raise PolicyViolation(
                "Policy fields cannot be null", code="invalid_policy_value",
                details={"fields": missing},
            )
        current = await self.policies.get_current()
        values = dict(changes)
        for key in ("late_cancellation_fee", "no_show_fee"):
            if key in values:
                values[key] = Decimal(str(values[key]))
        policy = current.next_version(**values)
        try:
            await self.policies.publish(policy, created_by=created_by)
        except IntegrityError as exc:
            raise ConcurrencyConflict(
                "Policy was updated by another request",
                details={"version": policy.version},
            ) from exc
        logger.info("Policy version %d published by %s", policy.version, created_by)
        return policy

