from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db import models
from ..db.models import ReferralStatus
from ..db.session import unit_of_work
from . import events, wallet_service

logger = logging.getLogger(__name__)


def complete_referral(
    db: Session, referred_user_id: int, reward: Decimal | None = None
) -> models.Referral | None:
    """Reward the referrer the first time a referred user pays for something."""
    if reward is None:
        reward = get_settings().referral_reward_amount
    with unit_of_work(db):
        referral = db.execute(
            select(models.Referral)
            .where(
                models.Referral.referred_user_id == referred_user_id,
                models.Referral.status == ReferralStatus.pending,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if referral is None:
            return None
        wallet_service.credit_student(db, referral.referrer_id, reward)
        referral.status = ReferralStatus.completed
        referral.reward_amount = reward
    logger.info(
        "Referral completed",
        extra={"referral_id": referral.id, "referrer_id": referral.referrer_id},
    )
    events.publish(
        [
            events.ReferralRewarded(
                referral_id=referral.id,
                referrer_id=referral.referrer_id,
                amount=reward,
            )
        ]
    )
    return referral


def make_referral_handler(session_factory: Callable[[], Session]) -> events.Handler:
    def check_referral(event: events.DomainEvent) -> None:
        if not isinstance(event, events.PaymentSettled):
            return
        with session_factory() as db:
            complete_referral(db, event.student_id)

    return check_referral
