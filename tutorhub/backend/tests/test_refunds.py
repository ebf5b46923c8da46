from datetime import timedelta
from decimal import Decimal

import pytest
from app.db import models
from app.services import booking_service, events, refund_service, settlement_service
from app.services.payment_service import PaymentIntent
from app.services.payments import SettlementEvent

from factories import create_slot, create_user

CREDIT = PaymentIntent(models.PaymentProvider.credit)


def test_approved_wallet_refund_restores_balance_and_seat(db_session, slot, student, dispatcher):
    balance_before = student.credit_balance
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)
    refund_service.request_refund(db_session, allocation.booking.id, student.id, "Cannot attend")

    payment = refund_service.approve_refund(db_session, allocation.payment.id)

    db_session.refresh(student)
    db_session.refresh(slot)
    db_session.refresh(allocation.booking)
    assert student.credit_balance == balance_before
    assert slot.current_students == 0
    assert slot.status == models.SlotStatus.available
    assert allocation.booking.status == models.BookingStatus.cancelled
    assert payment.status == models.PaymentStatus.refunded
    assert payment.refund_status == models.RefundStatus.approved
    assert dispatcher.of_type(events.RefundApproved) == [
        events.RefundApproved(payment_id=payment.id, booking_id=allocation.booking.id)
    ]


def test_external_refund_only_fixes_bookkeeping(db_session, slot, student, rate_source):
    allocation = booking_service.allocate_slot(
        db_session,
        slot.id,
        student.id,
        PaymentIntent(models.PaymentProvider.mpesa, phone_number="0712345678"),
        rate_source=rate_source,
    )
    settlement_service.reconcile(
        db_session,
        SettlementEvent(provider=models.PaymentProvider.mpesa, succeeded=True, payment_id=allocation.payment.id),
    )
    refund_service.request_refund(db_session, allocation.booking.id, student.id, "Sick")

    refund_service.approve_refund(db_session, allocation.payment.id)

    db_session.refresh(student)
    db_session.refresh(slot)
    assert student.credit_balance == Decimal("20.00")
    assert slot.current_students == 0


def test_refund_releases_only_its_own_seat(db_session, teacher, language, student):
    slot = create_slot(db_session, teacher, language, max_students=3)
    other = create_user(db_session, "other@example.com", credit_balance="20.00")
    mine = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)
    booking_service.allocate_slot(db_session, slot.id, other.id, CREDIT)
    refund_service.request_refund(db_session, mine.booking.id, student.id, "Conflict")

    refund_service.approve_refund(db_session, mine.payment.id)

    db_session.refresh(slot)
    assert slot.current_students == 1


def test_approve_requires_pending_request(db_session, slot, student):
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)

    with pytest.raises(refund_service.RefundError):
        refund_service.approve_refund(db_session, allocation.payment.id)


def test_refund_cannot_be_approved_twice(db_session, slot, student):
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)
    refund_service.request_refund(db_session, allocation.booking.id, student.id, "Travel")
    refund_service.approve_refund(db_session, allocation.payment.id)

    with pytest.raises(refund_service.RefundError):
        refund_service.approve_refund(db_session, allocation.payment.id)
    db_session.rollback()

    db_session.refresh(student)
    assert student.credit_balance == Decimal("20.00")


def test_rejected_refund_changes_nothing_else(db_session, slot, student, dispatcher):
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)
    refund_service.request_refund(db_session, allocation.booking.id, student.id, "Changed my mind")

    payment = refund_service.reject_refund(db_session, allocation.payment.id)

    db_session.refresh(allocation.booking)
    db_session.refresh(student)
    assert payment.refund_status == models.RefundStatus.rejected
    assert payment.status == models.PaymentStatus.succeeded
    assert allocation.booking.status == models.BookingStatus.confirmed
    assert student.credit_balance == Decimal("5.00")
    assert len(dispatcher.of_type(events.RefundRejected)) == 1


def test_refund_request_rules(db_session, teacher, language, student, rate_source):
    stranger = create_user(db_session, "stranger@example.com")
    slot = create_slot(db_session, teacher, language)
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)

    with pytest.raises(booking_service.BookingForbidden):
        refund_service.request_refund(db_session, allocation.booking.id, stranger.id, "Not mine")
    db_session.rollback()

    refund_service.request_refund(db_session, allocation.booking.id, student.id, "First")
    with pytest.raises(refund_service.RefundError):
        refund_service.request_refund(db_session, allocation.booking.id, student.id, "Again")
    db_session.rollback()

    pending = booking_service.allocate_slot(
        db_session,
        create_slot(db_session, teacher, language).id,
        student.id,
        PaymentIntent(models.PaymentProvider.mpesa, phone_number="0712345678"),
        rate_source=rate_source,
    )
    with pytest.raises(refund_service.RefundError):
        refund_service.request_refund(db_session, pending.booking.id, student.id, "Unpaid")


def test_refund_not_possible_after_class_started(db_session, slot, student):
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)
    slot.start_time = slot.start_time - timedelta(days=3)
    slot.end_time = slot.end_time - timedelta(days=3)
    db_session.commit()

    with pytest.raises(refund_service.RefundError):
        refund_service.request_refund(db_session, allocation.booking.id, student.id, "Too late")


def test_list_refund_requests(db_session, slot, student):
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)
    refund_service.request_refund(db_session, allocation.booking.id, student.id, "Reason")

    requests = refund_service.list_refund_requests(db_session)

    assert [p.id for p in requests] == [allocation.payment.id]
