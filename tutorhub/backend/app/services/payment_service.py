from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.constants import MOBILE_MONEY_CURRENCY, MOBILE_MONEY_QUANT, MONEY_QUANT
from ..db import models
from ..db.session import unit_of_work
from . import settlement_service
from .currency_service import ExchangeRateSource, get_rate_source
from .payments import GatewayError, ProviderHandle, SettlementEvent, get_gateway

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    pass


class PaymentNotFound(PaymentError):
    pass


class PaymentForbidden(PaymentError):
    pass


class PaymentNotCompleted(PaymentError):
    pass


@dataclass(frozen=True, slots=True)
class PaymentIntent:
    """How the student wants to pay. ``phone_number`` is only read for mobile money."""

    provider: models.PaymentProvider
    phone_number: str | None = None

    @property
    def is_credit(self) -> bool:
        return self.provider == models.PaymentProvider.credit


def quote_charge(
    price: Decimal,
    currency: str,
    provider: models.PaymentProvider,
    rate_source: ExchangeRateSource | None = None,
) -> tuple[Decimal, str]:
    """Amount and currency the provider will be asked to collect."""
    if provider == models.PaymentProvider.mpesa:
        source = rate_source or get_rate_source()
        amount = source.convert(price, currency, MOBILE_MONEY_CURRENCY, MOBILE_MONEY_QUANT)
        return amount, MOBILE_MONEY_CURRENCY
    return Decimal(price).quantize(MONEY_QUANT, rounding=ROUND_HALF_EVEN), currency.upper()


def payment_owner_id(payment: models.Payment) -> int:
    if payment.booking is not None:
        return payment.booking.student_id
    return payment.student_bundle.student_id


def get_payment(db: Session, payment_id: int, student_id: int | None = None) -> models.Payment:
    payment = db.get(models.Payment, payment_id)
    if payment is None:
        raise PaymentNotFound("Payment not found")
    if student_id is not None and payment_owner_id(payment) != student_id:
        raise PaymentForbidden("Payment belongs to another student")
    return payment


def _record_handle(db: Session, payment_id: int, handle: ProviderHandle) -> None:
    with unit_of_work(db):
        payment = db.get(models.Payment, payment_id)
        if payment.provider == models.PaymentProvider.mpesa:
            payment.merchant_request_id = handle.reference or None
        else:
            payment.provider_order_id = handle.reference


def start_external_checkout(
    db: Session,
    payment: models.Payment,
    intent: PaymentIntent,
) -> ProviderHandle | None:
    """Ask the provider to collect a payment whose reservation is already committed.

    Must not be called inside an open unit of work. A gateway failure leaves the
    reservation and the pending payment in place.
    """
    if intent.is_credit or payment.status != models.PaymentStatus.pending:
        return None
    gateway = get_gateway(payment.provider)
    try:
        handle = gateway.initiate(
            amount=payment.amount,
            currency=payment.currency,
            payer_ref=intent.phone_number,
            correlation_id=payment.id,
        )
    except GatewayError as exc:
        logger.error(
            "External payment initiation failed; reservation left pending",
            extra={"payment_id": payment.id, "provider": payment.provider.value, "error": str(exc)},
        )
        raise
    _record_handle(db, payment.id, handle)
    return handle


def create_redirect_order(db: Session, payment_id: int, student_id: int) -> ProviderHandle:
    payment = get_payment(db, payment_id, student_id)
    if payment.provider != models.PaymentProvider.paypal:
        raise PaymentError("Payment is not a PayPal payment")
    if payment.status != models.PaymentStatus.pending:
        raise PaymentError("Payment is not pending")
    return start_external_checkout(db, payment, PaymentIntent(models.PaymentProvider.paypal))


def capture_redirect_order(
    db: Session, order_id: str, student_id: int
) -> tuple[settlement_service.ReconcileResult, models.Payment]:
    payment = db.scalars(
        select(models.Payment).where(models.Payment.provider_order_id == order_id)
    ).first()
    if payment is None:
        raise PaymentNotFound("Payment record for this order not found")
    if payment_owner_id(payment) != student_id:
        raise PaymentForbidden("Payment belongs to another student")
    if payment.status in (models.PaymentStatus.succeeded, models.PaymentStatus.refunded):
        db.commit()
        return settlement_service.ReconcileResult.already_applied, payment
    if payment.status != models.PaymentStatus.pending:
        raise PaymentError("Payment is no longer pending")
    # Release the read transaction before the network call.
    db.commit()

    result = get_gateway(models.PaymentProvider.paypal).capture(order_id)
    if not result.completed:
        logger.warning(
            "PayPal capture did not complete",
            extra={"order_id": order_id, "status": result.status},
        )
        raise PaymentNotCompleted("Payment not completed")

    outcome = settlement_service.reconcile(
        db,
        SettlementEvent(
            provider=models.PaymentProvider.paypal,
            succeeded=True,
            payment_id=payment.id,
            provider_order_id=order_id,
            provider_txn_id=result.transaction_id,
            description=result.status,
        ),
    )
    db.refresh(payment)
    return outcome, payment
