from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..core.clock import ensure_utc, utc_now
from ..db import models
from ..db.models import BookingStatus, PaymentProvider, PaymentStatus, RefundStatus
from ..db.session import unit_of_work
from . import events, wallet_service
from .booking_service import BookingForbidden, BookingNotFound, transition

logger = logging.getLogger(__name__)


class RefundError(Exception):
    pass


class RefundNotFound(RefundError):
    pass


def _lock_payment(db: Session, payment_id: int) -> models.Payment:
    payment = db.execute(
        select(models.Payment)
        .where(models.Payment.id == payment_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if payment is None:
        raise RefundNotFound("Payment not found")
    return payment


def request_refund(
    db: Session, booking_id: int, student_id: int, reason: str
) -> models.Payment:
    with unit_of_work(db):
        booking = db.get(models.Booking, booking_id)
        if booking is None:
            raise BookingNotFound("Booking not found")
        if booking.student_id != student_id:
            raise BookingForbidden("You can only request refunds for your own bookings")
        if booking.status != BookingStatus.confirmed:
            raise RefundError("Only confirmed bookings can be refunded")
        if ensure_utc(booking.slot.start_time) <= utc_now():
            raise RefundError("Cannot request a refund for a class that has already started")
        if booking.payment is None:
            raise RefundNotFound("Payment for this booking not found")
        payment = _lock_payment(db, booking.payment.id)
        if payment.status != PaymentStatus.succeeded:
            raise RefundError("Only successful payments can be refunded")
        if payment.refund_status is not None:
            raise RefundError("A refund has already been requested for this booking")
        payment.refund_status = RefundStatus.requested
        payment.refund_reason = reason
    logger.info("Refund requested", extra={"payment_id": payment.id, "booking_id": booking_id})
    return payment


def approve_refund(db: Session, payment_id: int) -> models.Payment:
    """Cancel the booking, free its seat and, for wallet payments, restore credit.

    Payments collected by an external provider are returned outside the system;
    only the internal bookkeeping changes here.
    """
    with unit_of_work(db):
        payment = _lock_payment(db, payment_id)
        if payment.status != PaymentStatus.succeeded or payment.refund_status != RefundStatus.requested:
            raise RefundError("Payment has no pending refund request")
        if payment.booking_id is None:
            raise RefundError("Only booking payments can be refunded")
        booking = db.execute(
            select(models.Booking)
            .where(models.Booking.id == payment.booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        transition(booking, BookingStatus.cancelled)

        slot = db.execute(
            select(models.AvailabilitySlot)
            .where(models.AvailabilitySlot.id == booking.availability_slot_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        slot.current_students = max(slot.current_students - 1, 0)
        slot.refresh_status()

        if payment.provider == PaymentProvider.credit:
            wallet_service.credit_student(db, booking.student_id, booking.price)

        payment.status = PaymentStatus.refunded
        payment.refund_status = RefundStatus.approved
    logger.info(
        "Refund approved",
        extra={"payment_id": payment.id, "booking_id": booking.id, "provider": payment.provider.value},
    )
    events.publish([events.RefundApproved(payment_id=payment.id, booking_id=booking.id)])
    return payment


def reject_refund(db: Session, payment_id: int) -> models.Payment:
    with unit_of_work(db):
        payment = _lock_payment(db, payment_id)
        if payment.refund_status != RefundStatus.requested:
            raise RefundError("Payment has no pending refund request")
        payment.refund_status = RefundStatus.rejected
    logger.info("Refund rejected", extra={"payment_id": payment.id})
    events.publish([events.RefundRejected(payment_id=payment.id, booking_id=payment.booking_id)])
    return payment


def list_refund_requests(db: Session) -> list[models.Payment]:
    return list(
        db.scalars(
            select(models.Payment)
            .options(selectinload(models.Payment.booking))
            .where(models.Payment.refund_status == RefundStatus.requested)
            .order_by(models.Payment.updated_at)
        )
    )
