from datetime import datetime, timedelta, timezone

import pytest
from app.db import models
from app.services import booking_service, events, settlement_service, slot_service
from app.services.payment_service import PaymentIntent
from app.services.payments import SettlementEvent
from app.services.settlement_service import ReconcileResult

from factories import create_slot, create_teacher

CREDIT = PaymentIntent(models.PaymentProvider.credit)
MPESA = PaymentIntent(models.PaymentProvider.mpesa, phone_number="0712345678")


def test_create_slot_defaults_to_single_student(db_session, teacher, language):
    start = datetime.now(timezone.utc) + timedelta(days=1)

    slot = slot_service.create_slot(db_session, teacher.id, language.id, start, start + timedelta(hours=1))

    assert slot.max_students == 1
    assert slot.current_students == 0
    assert slot.status == models.SlotStatus.available


def test_create_slot_requires_start_before_end(db_session, teacher, language):
    start = datetime.now(timezone.utc) + timedelta(days=1)

    with pytest.raises(slot_service.SlotError):
        slot_service.create_slot(db_session, teacher.id, language.id, start, start)


def test_delete_slot_rules(db_session, slot, teacher, student):
    other_teacher = create_teacher(db_session, email="other.teacher@example.com")
    with pytest.raises(slot_service.SlotForbidden):
        slot_service.delete_slot(db_session, slot.id, other_teacher.id)
    db_session.rollback()

    booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)
    with pytest.raises(slot_service.SlotError):
        slot_service.delete_slot(db_session, slot.id, teacher.id)


def test_slot_with_cancelled_booking_is_kept(db_session, slot, teacher, student):
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)
    allocation.booking.status = models.BookingStatus.cancelled
    slot.current_students = 0
    slot.refresh_status()
    db_session.commit()
    assert slot.status == models.SlotStatus.available

    with pytest.raises(slot_service.SlotError, match="history"):
        slot_service.delete_slot(db_session, slot.id, teacher.id)
    db_session.rollback()

    assert db_session.get(models.AvailabilitySlot, slot.id) is not None
    assert db_session.get(models.Payment, allocation.payment.id) is not None


def test_delete_available_slot(db_session, slot, teacher):
    slot_service.delete_slot(db_session, slot.id, teacher.id)

    assert db_session.get(models.AvailabilitySlot, slot.id) is None
    with pytest.raises(slot_service.SlotNotFound):
        slot_service.delete_slot(db_session, slot.id, teacher.id)


def test_reschedule_approved_moves_slot(db_session, slot, student, teacher, dispatcher):
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)
    new_start = datetime.now(timezone.utc) + timedelta(days=4)

    booking = booking_service.request_reschedule(
        db_session, allocation.booking.id, student.id, new_start, new_start + timedelta(hours=1)
    )
    assert booking.status == models.BookingStatus.reschedule_requested

    booking = booking_service.process_reschedule(db_session, booking.id, teacher.id, approve=True)

    db_session.refresh(slot)
    assert booking.status == models.BookingStatus.confirmed
    assert booking.proposed_start_time is None
    assert slot.start_time.replace(tzinfo=timezone.utc) == new_start
    assert dispatcher.of_type(events.RescheduleProcessed) == [
        events.RescheduleProcessed(booking_id=booking.id, approved=True)
    ]


def test_reschedule_rejected_keeps_slot(db_session, slot, student, teacher):
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)
    original_start = slot.start_time
    new_start = datetime.now(timezone.utc) + timedelta(days=4)
    booking_service.request_reschedule(
        db_session, allocation.booking.id, student.id, new_start, new_start + timedelta(hours=1)
    )

    booking = booking_service.process_reschedule(db_session, allocation.booking.id, teacher.id, approve=False)

    db_session.refresh(slot)
    assert booking.status == models.BookingStatus.confirmed
    assert slot.start_time.replace(tzinfo=timezone.utc) == original_start.replace(tzinfo=timezone.utc)


def test_reschedule_needs_future_time(db_session, slot, student):
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)
    past = datetime.now(timezone.utc) - timedelta(hours=1)

    with pytest.raises(booking_service.BookingError):
        booking_service.request_reschedule(db_session, allocation.booking.id, student.id, past, past + timedelta(hours=1))


def test_pending_booking_cannot_be_rescheduled(db_session, slot, student, rate_source):
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, MPESA, rate_source=rate_source)
    start = datetime.now(timezone.utc) + timedelta(days=4)

    with pytest.raises(booking_service.InvalidTransition):
        booking_service.request_reschedule(db_session, allocation.booking.id, student.id, start, start + timedelta(hours=1))


def test_unattended_sweep(db_session, teacher, language, student):
    slot = create_slot(db_session, teacher, language)
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)
    slot.start_time = datetime.now(timezone.utc) - timedelta(hours=2)
    slot.end_time = datetime.now(timezone.utc) - timedelta(hours=1)
    db_session.commit()

    assert booking_service.mark_unattended(db_session, grace=timedelta(minutes=5)) == 1
    db_session.refresh(allocation.booking)
    assert allocation.booking.status == models.BookingStatus.unattended
    assert booking_service.mark_unattended(db_session, grace=timedelta(minutes=5)) == 0


def test_unattended_sweep_respects_grace(db_session, slot, student):
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)
    now = slot.end_time.replace(tzinfo=timezone.utc) + timedelta(minutes=2)

    assert booking_service.mark_unattended(db_session, grace=timedelta(minutes=5), now=now) == 0
    db_session.refresh(allocation.booking)
    assert allocation.booking.status == models.BookingStatus.confirmed


def test_expired_reservation_releases_seat(db_session, slot, student, rate_source):
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, MPESA, rate_source=rate_source)
    allocation.payment.created_at = datetime.now(timezone.utc) - timedelta(hours=1)
    db_session.commit()

    released = booking_service.release_expired_reservations(db_session, max_age=timedelta(minutes=30))

    assert released == 1
    db_session.refresh(slot)
    db_session.refresh(allocation.payment)
    db_session.refresh(allocation.booking)
    assert slot.current_students == 0
    assert allocation.payment.status == models.PaymentStatus.failed
    assert allocation.booking.status == models.BookingStatus.pending_payment

    late = settlement_service.reconcile(
        db_session,
        SettlementEvent(provider=models.PaymentProvider.mpesa, succeeded=True, payment_id=allocation.payment.id),
    )
    assert late == ReconcileResult.rejected


def test_transition_graph_is_one_way():
    booking = models.Booking(status=models.BookingStatus.completed)

    for target in models.BookingStatus:
        with pytest.raises(booking_service.InvalidTransition):
            booking_service.transition(booking, target)
