from datetime import timedelta
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..config import get_settings
from ..db.session import SessionLocal
from ..services import booking_service

logger = logging.getLogger(__name__)


def sweep_unattended() -> None:
    settings = get_settings()
    with SessionLocal() as db:
        count = booking_service.mark_unattended(
            db, grace=timedelta(minutes=settings.unattended_grace_minutes)
        )
    logger.info("Unattended sweep finished", extra={"updated": count})


def sweep_expired_reservations() -> None:
    settings = get_settings()
    with SessionLocal() as db:
        count = booking_service.release_expired_reservations(
            db, max_age=timedelta(minutes=settings.reservation_expiry_minutes)
        )
    logger.info("Reservation expiry sweep finished", extra={"released": count})


def get_scheduler() -> AsyncIOScheduler:
    settings = get_settings()
    scheduler = AsyncIOScheduler()
    scheduler.add_job(sweep_unattended, "interval", minutes=15)
    if settings.reservation_expiry_minutes > 0:
        scheduler.add_job(sweep_expired_reservations, "interval", minutes=1)
    return scheduler
