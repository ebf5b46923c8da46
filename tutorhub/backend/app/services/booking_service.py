from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..core.clock import ensure_utc, utc_now
from ..db import models
from ..db.models import BookingStatus, PaymentProvider, PaymentStatus, SlotStatus
from ..db.session import unit_of_work
from . import events, wallet_service
from .currency_service import ExchangeRateSource
from .payment_service import PaymentIntent, quote_charge
from .wallet_service import InsufficientCredit

logger = logging.getLogger(__name__)


class BookingError(Exception):
    pass


class SlotNotFound(BookingError):
    pass


class SlotFull(BookingError):
    pass


class BookingNotFound(BookingError):
    pass


class BookingForbidden(BookingError):
    pass


class InvalidTransition(BookingError):
    pass


ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.pending_payment: frozenset({BookingStatus.confirmed}),
    BookingStatus.confirmed: frozenset(
        {
            BookingStatus.completed,
            BookingStatus.cancelled,
            BookingStatus.unattended,
            BookingStatus.reschedule_requested,
        }
    ),
    BookingStatus.reschedule_requested: frozenset({BookingStatus.confirmed}),
    BookingStatus.completed: frozenset(),
    BookingStatus.cancelled: frozenset(),
    BookingStatus.unattended: frozenset(),
}


def transition(booking: models.Booking, target: BookingStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[booking.status]:
        raise InvalidTransition(
            f"Booking cannot move from {booking.status.value} to {target.value}"
        )
    booking.status = target


@dataclass(slots=True)
class Allocation:
    booking: models.Booking
    payment: models.Payment


def _slot_has_seat(slot: models.AvailabilitySlot) -> bool:
    if slot.status in (SlotStatus.full, SlotStatus.booked):
        return False
    return slot.current_students < slot.max_students


def allocate_slot(
    db: Session,
    slot_id: int,
    student_id: int,
    intent: PaymentIntent,
    rate_source: ExchangeRateSource | None = None,
) -> Allocation:
    """Take one seat on a slot and create its booking and payment atomically.

    The slot row is locked with SELECT ... FOR UPDATE for the duration of the
    transaction, so concurrent allocations against the same slot run one after
    another and each sees the seat count left by the previous one.

    Wallet credit settles inside the same transaction. External providers leave
    the booking ``pending_payment`` and the payment ``pending``; the provider is
    called by the caller after this returns.
    """
    priced = db.execute(
        select(models.AvailabilitySlot)
        .options(selectinload(models.AvailabilitySlot.language))
        .where(models.AvailabilitySlot.id == slot_id)
    ).scalar_one_or_none()
    if priced is None:
        raise SlotNotFound("Availability slot not found")
    price = priced.language.price_per_session
    currency = priced.language.currency
    amount, charge_currency = quote_charge(price, currency, intent.provider, rate_source)

    produced: list[events.DomainEvent] = []
    with unit_of_work(db):
        slot = db.execute(
            select(models.AvailabilitySlot)
            .where(models.AvailabilitySlot.id == slot_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if slot is None:
            raise SlotNotFound("Availability slot not found")
        if not _slot_has_seat(slot):
            raise SlotFull("This slot is no longer available")
        if ensure_utc(slot.start_time) <= utc_now():
            raise BookingError("This slot has already started")

        booking = models.Booking(
            student_id=student_id,
            teacher_id=slot.teacher_id,
            availability_slot_id=slot.id,
            price=price,
            currency=currency,
            status=BookingStatus.pending_payment,
        )
        payment = models.Payment(
            booking=booking,
            amount=amount,
            currency=charge_currency,
            provider=intent.provider,
            status=PaymentStatus.pending,
        )
        if intent.is_credit:
            wallet_service.debit_credit(db, student_id, price)
            transition(booking, BookingStatus.confirmed)
            payment.status = PaymentStatus.succeeded

        slot.current_students += 1
        slot.refresh_status()
        db.add_all([booking, payment])
        db.flush()
        if intent.is_credit:
            produced.append(events.BookingConfirmed(booking_id=booking.id, paid_with_credit=True))

    logger.info(
        "Slot allocated",
        extra={
            "slot_id": slot_id,
            "booking_id": booking.id,
            "payment_id": payment.id,
            "provider": intent.provider.value,
        },
    )
    events.publish(produced)
    return Allocation(booking=booking, payment=payment)


def _lock_booking(db: Session, booking_id: int) -> models.Booking:
    booking = db.execute(
        select(models.Booking)
        .where(models.Booking.id == booking_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if booking is None:
        raise BookingNotFound("Booking not found")
    return booking


def complete_booking(db: Session, booking_id: int, teacher_id: int) -> models.Booking:
    """Mark a finished class complete and accrue the teacher's earnings once."""
    with unit_of_work(db):
        booking = _lock_booking(db, booking_id)
        if booking.teacher_id != teacher_id:
            raise BookingForbidden("You are not authorized to complete this booking")
        if booking.status != BookingStatus.confirmed:
            raise InvalidTransition("Only confirmed bookings can be marked as complete")
        if ensure_utc(booking.slot.end_time) > utc_now():
            raise BookingError("Cannot complete a class that has not ended yet")
        transition(booking, BookingStatus.completed)
        earnings = wallet_service.accrue_earnings(db, teacher_id, booking.price)
    logger.info("Booking completed", extra={"booking_id": booking.id, "earnings": str(earnings)})
    events.publish([events.BookingCompleted(booking_id=booking.id, earnings=earnings)])
    return booking


def request_reschedule(
    db: Session,
    booking_id: int,
    student_id: int,
    proposed_start: datetime,
    proposed_end: datetime,
) -> models.Booking:
    proposed_start = ensure_utc(proposed_start)
    proposed_end = ensure_utc(proposed_end)
    if proposed_start <= utc_now():
        raise BookingError("Proposed start time must be in the future")
    if proposed_end <= proposed_start:
        raise BookingError("Proposed end time must be after the start time")
    with unit_of_work(db):
        booking = _lock_booking(db, booking_id)
        if booking.student_id != student_id:
            raise BookingForbidden("You can only reschedule your own bookings")
        transition(booking, BookingStatus.reschedule_requested)
        booking.proposed_start_time = proposed_start
        booking.proposed_end_time = proposed_end
    events.publish([events.RescheduleRequested(booking_id=booking.id)])
    return booking


def process_reschedule(
    db: Session, booking_id: int, teacher_id: int, approve: bool
) -> models.Booking:
    with unit_of_work(db):
        booking = _lock_booking(db, booking_id)
        if booking.teacher_id != teacher_id:
            raise BookingForbidden("You are not authorized to process this request")
        if booking.status != BookingStatus.reschedule_requested:
            raise InvalidTransition("No pending reschedule request for this booking")
        if approve:
            slot = db.execute(
                select(models.AvailabilitySlot)
                .where(models.AvailabilitySlot.id == booking.availability_slot_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one()
            slot.start_time = booking.proposed_start_time
            slot.end_time = booking.proposed_end_time
        transition(booking, BookingStatus.confirmed)
        booking.proposed_start_time = None
        booking.proposed_end_time = None
    events.publish([events.RescheduleProcessed(booking_id=booking.id, approved=approve)])
    return booking


def list_student_bookings(db: Session, student_id: int) -> list[models.Booking]:
    return list(
        db.scalars(
            select(models.Booking)
            .options(selectinload(models.Booking.slot), selectinload(models.Booking.payment))
            .where(models.Booking.student_id == student_id)
            .order_by(models.Booking.created_at.desc())
        )
    )


def list_teacher_bookings(db: Session, teacher_id: int) -> list[models.Booking]:
    return list(
        db.scalars(
            select(models.Booking)
            .options(selectinload(models.Booking.slot), selectinload(models.Booking.payment))
            .where(models.Booking.teacher_id == teacher_id)
            .order_by(models.Booking.created_at.desc())
        )
    )


def mark_unattended(db: Session, grace: timedelta, now: datetime | None = None) -> int:
    """Close confirmed bookings whose class ended more than ``grace`` ago."""
    cutoff = (now or utc_now()) - grace
    with unit_of_work(db):
        stale = db.scalars(
            select(models.Booking)
            .join(models.Booking.slot)
            .where(
                models.Booking.status == BookingStatus.confirmed,
                models.AvailabilitySlot.end_time <= cutoff,
            )
            .with_for_update(of=models.Booking)
            .execution_options(populate_existing=True)
        ).all()
        for booking in stale:
            transition(booking, BookingStatus.unattended)
    if stale:
        logger.info("Marked bookings as unattended", extra={"count": len(stale)})
    return len(stale)


def release_expired_reservations(db: Session, max_age: timedelta, now: datetime | None = None) -> int:
    """Fail stale pending external payments and give their seats back.

    The booking itself stays ``pending_payment``; a late success callback for
    such a payment is rejected by the reconciler.
    """
    cutoff = (now or utc_now()) - max_age
    with unit_of_work(db):
        expired = db.scalars(
            select(models.Payment)
            .where(
                models.Payment.status == PaymentStatus.pending,
                models.Payment.provider != PaymentProvider.credit,
                models.Payment.booking_id.is_not(None),
                models.Payment.created_at <= cutoff,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).all()
        for payment in expired:
            payment.status = PaymentStatus.failed
            slot = db.execute(
                select(models.AvailabilitySlot)
                .where(models.AvailabilitySlot.id == payment.booking.availability_slot_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one()
            slot.current_students = max(slot.current_students - 1, 0)
            slot.refresh_status()
    if expired:
        logger.info("Released expired reservations", extra={"count": len(expired)})
    return len(expired)


__all__ = [
    "ALLOWED_TRANSITIONS",
    "Allocation",
    "BookingError",
    "BookingForbidden",
    "BookingNotFound",
    "InsufficientCredit",
    "InvalidTransition",
    "SlotFull",
    "SlotNotFound",
    "allocate_slot",
    "complete_booking",
    "list_student_bookings",
    "list_teacher_bookings",
    "mark_unattended",
    "process_reschedule",
    "release_expired_reservations",
    "request_reschedule",
]
