"""Apply provider settlement verdicts to payments exactly once.

Providers retry callbacks and may deliver them concurrently. The payment row is
locked for the whole check-and-set, so of two deliveries of the same success
event one applies it and the other observes ``succeeded`` and does nothing.
"""
from __future__ import annotations

import logging
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.clock import utc_now
from ..db import models
from ..db.session import unit_of_work
from . import events
from .payments import SettlementEvent

logger = logging.getLogger(__name__)


class ReconcileResult(str, Enum):
    applied = "applied"
    already_applied = "already_applied"
    not_found = "not_found"
    rejected = "rejected"


def _lock_payment(db: Session, event: SettlementEvent) -> models.Payment | None:
    query = (
        select(models.Payment)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if event.payment_id is not None:
        query = query.where(models.Payment.id == event.payment_id)
    elif event.provider_order_id:
        query = query.where(models.Payment.provider_order_id == event.provider_order_id)
    elif event.merchant_request_id:
        query = query.where(models.Payment.merchant_request_id == event.merchant_request_id)
    else:
        return None
    return db.execute(query).scalar_one_or_none()


def _confirm_targets(db: Session, payment: models.Payment) -> list[events.DomainEvent]:
    produced: list[events.DomainEvent] = []
    if payment.booking_id is not None:
        booking = db.execute(
            select(models.Booking)
            .where(models.Booking.id == payment.booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        if booking.status == models.BookingStatus.pending_payment:
            booking.status = models.BookingStatus.confirmed
            produced.append(events.BookingConfirmed(booking_id=booking.id))
        student_id = booking.student_id
    else:
        student_bundle = db.execute(
            select(models.StudentBundle)
            .where(models.StudentBundle.id == payment.student_bundle_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        if student_bundle.status == models.StudentBundleStatus.pending_payment:
            student_bundle.status = models.StudentBundleStatus.active
            student_bundle.purchase_date = utc_now()
            produced.append(events.BundleActivated(student_bundle_id=student_bundle.id))
        student_id = student_bundle.student_id
    produced.append(events.PaymentSettled(payment_id=payment.id, student_id=student_id))
    return produced


def reconcile(db: Session, event: SettlementEvent) -> ReconcileResult:
    produced: list[events.DomainEvent] = []
    with unit_of_work(db):
        payment = _lock_payment(db, event)
        if payment is None:
            result = ReconcileResult.not_found
        elif payment.provider != event.provider:
            result = ReconcileResult.rejected
        elif payment.status in (models.PaymentStatus.succeeded, models.PaymentStatus.refunded):
            # Settled payments never change, whatever the verdict of a later delivery.
            result = ReconcileResult.already_applied
        elif payment.status == models.PaymentStatus.pending:
            if event.succeeded:
                payment.status = models.PaymentStatus.succeeded
                if event.provider_txn_id:
                    payment.provider_txn_id = event.provider_txn_id
                if event.merchant_request_id and not payment.merchant_request_id:
                    payment.merchant_request_id = event.merchant_request_id
                produced = _confirm_targets(db, payment)
            else:
                # The booking stays pending_payment as an abandoned reservation.
                payment.status = models.PaymentStatus.failed
            result = ReconcileResult.applied
        elif not event.succeeded:
            result = ReconcileResult.already_applied
        else:
            result = ReconcileResult.rejected

    log_extra = {
        "payment_id": event.payment_id,
        "provider": event.provider.value,
        "succeeded": event.succeeded,
        "result": result.value,
    }
    if result == ReconcileResult.rejected:
        logger.warning(
            "Settlement event not applied to payment in state %s",
            payment.status.value,
            extra=log_extra,
        )
    elif result == ReconcileResult.not_found:
        logger.warning("Settlement event for unknown payment", extra=log_extra)
    else:
        logger.info("Settlement event reconciled", extra=log_extra)

    events.publish(produced)
    return result
