from __future__ import annotations

import logging
from decimal import ROUND_HALF_EVEN, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import get_settings
from ..core.clock import utc_now
from ..core.constants import MONEY_QUANT
from ..db import models
from ..db.session import unit_of_work
from . import events

logger = logging.getLogger(__name__)


class WalletError(Exception):
    pass


class InsufficientCredit(WalletError):
    pass


class InsufficientBalance(WalletError):
    pass


class TeacherProfileNotFound(WalletError):
    pass


class PayoutNotFound(WalletError):
    pass


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_EVEN)


def _lock_user(db: Session, user_id: int) -> models.User | None:
    return db.execute(
        select(models.User)
        .where(models.User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _lock_teacher_profile(db: Session, teacher_id: int) -> models.TeacherProfile:
    profile = db.execute(
        select(models.TeacherProfile)
        .where(models.TeacherProfile.user_id == teacher_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if profile is None:
        raise TeacherProfileNotFound("Teacher profile not found")
    return profile


# The helpers below expect to run inside the caller's unit of work.


def debit_credit(db: Session, student_id: int, amount: Decimal) -> models.User:
    student = _lock_user(db, student_id)
    if student is None:
        raise WalletError("Student not found")
    if student.credit_balance < amount:
        raise InsufficientCredit("Insufficient credit balance")
    student.credit_balance = _money(student.credit_balance - amount)
    return student


def credit_student(db: Session, student_id: int, amount: Decimal) -> models.User:
    student = _lock_user(db, student_id)
    if student is None:
        raise WalletError("Student not found")
    student.credit_balance = _money(student.credit_balance + amount)
    return student


def teacher_earnings(price: Decimal, commission_rate: Decimal | None = None) -> Decimal:
    if commission_rate is None:
        commission_rate = get_settings().platform_commission_rate
    return _money(Decimal(price) * (Decimal("1") - Decimal(commission_rate)))


def accrue_earnings(db: Session, teacher_id: int, price: Decimal) -> Decimal:
    profile = _lock_teacher_profile(db, teacher_id)
    earnings = teacher_earnings(price)
    profile.current_balance = _money(profile.current_balance + earnings)
    return earnings


def get_teacher_balance(db: Session, teacher_id: int) -> Decimal:
    profile = db.get(models.TeacherProfile, teacher_id)
    if profile is None:
        raise TeacherProfileNotFound("Teacher profile not found")
    return profile.current_balance


def request_payout(db: Session, teacher_id: int, amount: Decimal) -> models.PayoutRequest:
    """Debit the teacher balance now and record the pending request.

    The request row is the record that the amount has left the balance, so a
    rejection later credits exactly that amount back.
    """
    amount = _money(amount)
    if amount <= 0:
        raise WalletError("Payout amount must be positive")
    with unit_of_work(db):
        profile = _lock_teacher_profile(db, teacher_id)
        if amount > profile.current_balance:
            raise InsufficientBalance("Requested amount exceeds current balance")
        profile.current_balance = _money(profile.current_balance - amount)
        payout = models.PayoutRequest(
            teacher_id=teacher_id,
            amount=amount,
            status=models.PayoutStatus.pending,
            requested_at=utc_now(),
        )
        db.add(payout)
    logger.info("Payout requested", extra={"teacher_id": teacher_id, "payout_id": payout.id})
    return payout


def process_payout(
    db: Session,
    payout_id: int,
    approve: bool,
    admin_notes: str | None = None,
) -> models.PayoutRequest:
    with unit_of_work(db):
        payout = db.execute(
            select(models.PayoutRequest)
            .where(models.PayoutRequest.id == payout_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if payout is None:
            raise PayoutNotFound("Payout request not found")
        if payout.status != models.PayoutStatus.pending:
            raise WalletError("Payout request has already been processed")
        if approve:
            payout.status = models.PayoutStatus.complete
        else:
            profile = _lock_teacher_profile(db, payout.teacher_id)
            profile.current_balance = _money(profile.current_balance + payout.amount)
            payout.status = models.PayoutStatus.rejected
        payout.admin_notes = admin_notes
        payout.processed_at = utc_now()
    logger.info(
        "Payout processed",
        extra={"payout_id": payout.id, "status": payout.status.value},
    )
    events.publish([events.PayoutProcessed(payout_request_id=payout.id, approved=approve)])
    return payout


def list_payouts(
    db: Session,
    teacher_id: int | None = None,
    status: models.PayoutStatus | None = None,
) -> list[models.PayoutRequest]:
    query = select(models.PayoutRequest).order_by(models.PayoutRequest.requested_at)
    if teacher_id is not None:
        query = query.where(models.PayoutRequest.teacher_id == teacher_id)
    if status is not None:
        query = query.where(models.PayoutRequest.status == status)
    return list(db.scalars(query))
