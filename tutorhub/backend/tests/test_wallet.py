from datetime import timedelta
from decimal import Decimal

import pytest
from app.db import models
from app.services import booking_service, events, referral_service, wallet_service
from app.services.payment_service import PaymentIntent

from factories import create_teacher, create_user

CREDIT = PaymentIntent(models.PaymentProvider.credit)


def finish_class(db_session, slot):
    slot.start_time = slot.start_time - timedelta(days=3)
    slot.end_time = slot.end_time - timedelta(days=3)
    db_session.commit()


def test_teacher_earnings_after_commission():
    assert wallet_service.teacher_earnings(Decimal("15.00"), Decimal("0.20")) == Decimal("12.00")
    assert wallet_service.teacher_earnings(Decimal("10.05"), Decimal("0.15")) == Decimal("8.54")


def test_completion_accrues_earnings_once(db_session, slot, student, teacher, dispatcher):
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)
    finish_class(db_session, slot)

    booking = booking_service.complete_booking(db_session, allocation.booking.id, teacher.id)

    assert booking.status == models.BookingStatus.completed
    assert wallet_service.get_teacher_balance(db_session, teacher.id) == Decimal("12.00")
    assert dispatcher.of_type(events.BookingCompleted) == [
        events.BookingCompleted(booking_id=booking.id, earnings=Decimal("12.00"))
    ]

    with pytest.raises(booking_service.InvalidTransition):
        booking_service.complete_booking(db_session, allocation.booking.id, teacher.id)
    db_session.rollback()
    assert wallet_service.get_teacher_balance(db_session, teacher.id) == Decimal("12.00")


def test_only_owning_teacher_completes_after_class(db_session, slot, student, teacher):
    allocation = booking_service.allocate_slot(db_session, slot.id, student.id, CREDIT)
    intruder = create_teacher(db_session, email="intruder@example.com")

    with pytest.raises(booking_service.BookingError):
        booking_service.complete_booking(db_session, allocation.booking.id, teacher.id)
    db_session.rollback()

    finish_class(db_session, slot)
    with pytest.raises(booking_service.BookingForbidden):
        booking_service.complete_booking(db_session, allocation.booking.id, intruder.id)


def test_payout_debits_immediately(db_session):
    teacher = create_teacher(db_session, email="earner@example.com", balance="100.00")

    payout = wallet_service.request_payout(db_session, teacher.id, Decimal("60.00"))

    assert payout.status == models.PayoutStatus.pending
    assert wallet_service.get_teacher_balance(db_session, teacher.id) == Decimal("40.00")
    with pytest.raises(wallet_service.InsufficientBalance):
        wallet_service.request_payout(db_session, teacher.id, Decimal("40.01"))
    db_session.rollback()
    assert wallet_service.get_teacher_balance(db_session, teacher.id) == Decimal("40.00")


def test_rejected_payout_is_credited_back_once(db_session, dispatcher):
    teacher = create_teacher(db_session, email="earner@example.com", balance="100.00")
    payout = wallet_service.request_payout(db_session, teacher.id, Decimal("60.00"))

    processed = wallet_service.process_payout(db_session, payout.id, approve=False, admin_notes="Bank details missing")

    assert processed.status == models.PayoutStatus.rejected
    assert processed.admin_notes == "Bank details missing"
    assert processed.processed_at is not None
    assert wallet_service.get_teacher_balance(db_session, teacher.id) == Decimal("100.00")
    assert dispatcher.of_type(events.PayoutProcessed) == [
        events.PayoutProcessed(payout_request_id=payout.id, approved=False)
    ]

    with pytest.raises(wallet_service.WalletError):
        wallet_service.process_payout(db_session, payout.id, approve=False)
    db_session.rollback()
    assert wallet_service.get_teacher_balance(db_session, teacher.id) == Decimal("100.00")


def test_completed_payout_keeps_debit(db_session):
    teacher = create_teacher(db_session, email="earner@example.com", balance="100.00")
    payout = wallet_service.request_payout(db_session, teacher.id, Decimal("25.00"))

    wallet_service.process_payout(db_session, payout.id, approve=True)

    assert wallet_service.get_teacher_balance(db_session, teacher.id) == Decimal("75.00")
    assert wallet_service.list_payouts(db_session, status=models.PayoutStatus.pending) == []


def test_referral_rewarded_once(db_session, dispatcher):
    referrer = create_user(db_session, "referrer@example.com", credit_balance="1.00")
    referred = create_user(db_session, "newbie@example.com")
    referral = models.Referral(referrer_id=referrer.id, referred_user_id=referred.id)
    db_session.add(referral)
    db_session.commit()

    completed = referral_service.complete_referral(db_session, referred.id)
    again = referral_service.complete_referral(db_session, referred.id)

    assert completed.status == models.ReferralStatus.completed
    assert completed.reward_amount == Decimal("5.00")
    assert again is None
    db_session.refresh(referrer)
    assert referrer.credit_balance == Decimal("6.00")
    assert len(dispatcher.of_type(events.ReferralRewarded)) == 1


def test_referral_handler_reacts_to_settlement(session_factory):
    with session_factory() as db:
        referrer = create_user(db, "referrer@example.com")
        referred = create_user(db, "newbie@example.com")
        db.add(models.Referral(referrer_id=referrer.id, referred_user_id=referred.id))
        db.commit()
        referrer_id, referred_id = referrer.id, referred.id

    handler = referral_service.make_referral_handler(session_factory)
    handler(events.BookingConfirmed(booking_id=1))
    handler(events.PaymentSettled(payment_id=1, student_id=referred_id))

    with session_factory() as db:
        assert db.get(models.User, referrer_id).credit_balance == Decimal("5.00")
