from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..core.clock import utc_now
from ..db import models
from ..db.models import PaymentStatus, StudentBundleStatus
from ..db.session import unit_of_work
from . import events, wallet_service
from .currency_service import ExchangeRateSource
from .payment_service import PaymentIntent, quote_charge

logger = logging.getLogger(__name__)


class BundleError(Exception):
    pass


class BundleNotFound(BundleError):
    pass


@dataclass(slots=True)
class Purchase:
    student_bundle: models.StudentBundle
    payment: models.Payment


def list_bundles(db: Session) -> list[models.Bundle]:
    return list(
        db.scalars(
            select(models.Bundle)
            .where(models.Bundle.is_active.is_(True))
            .order_by(models.Bundle.price)
        )
    )


def purchase_bundle(
    db: Session,
    bundle_id: int,
    student_id: int,
    intent: PaymentIntent,
    rate_source: ExchangeRateSource | None = None,
) -> Purchase:
    """Create a student bundle and its payment in one transaction.

    Same shape as slot allocation without the seat: wallet credit activates the
    bundle immediately, external providers leave it ``pending_payment``.
    """
    bundle = db.get(models.Bundle, bundle_id)
    if bundle is None or not bundle.is_active:
        raise BundleNotFound("Bundle not found or is not active")
    amount, charge_currency = quote_charge(bundle.price, bundle.currency, intent.provider, rate_source)

    produced: list[events.DomainEvent] = []
    with unit_of_work(db):
        student_bundle = models.StudentBundle(
            student_id=student_id,
            bundle_id=bundle.id,
            purchase_date=utc_now(),
            remaining_classes=bundle.number_of_classes,
            status=StudentBundleStatus.pending_payment,
        )
        payment = models.Payment(
            student_bundle=student_bundle,
            amount=amount,
            currency=charge_currency,
            provider=intent.provider,
            status=PaymentStatus.pending,
        )
        if intent.is_credit:
            wallet_service.debit_credit(db, student_id, bundle.price)
            student_bundle.status = StudentBundleStatus.active
            payment.status = PaymentStatus.succeeded
        db.add_all([student_bundle, payment])
        db.flush()
        if intent.is_credit:
            produced.append(
                events.BundleActivated(student_bundle_id=student_bundle.id, paid_with_credit=True)
            )
    logger.info(
        "Bundle purchase recorded",
        extra={
            "student_bundle_id": student_bundle.id,
            "payment_id": payment.id,
            "provider": intent.provider.value,
        },
    )
    events.publish(produced)
    return Purchase(student_bundle=student_bundle, payment=payment)


def list_student_bundles(db: Session, student_id: int) -> list[models.StudentBundle]:
    return list(
        db.scalars(
            select(models.StudentBundle)
            .options(selectinload(models.StudentBundle.bundle))
            .where(
                models.StudentBundle.student_id == student_id,
                models.StudentBundle.status == StudentBundleStatus.active,
            )
            .order_by(models.StudentBundle.purchase_date.desc())
        )
    )
