from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.clock import ensure_utc, utc_now
from ..db import models
from ..db.models import SlotStatus
from ..db.session import unit_of_work

logger = logging.getLogger(__name__)


class SlotError(Exception):
    pass


class SlotNotFound(SlotError):
    pass


class SlotForbidden(SlotError):
    pass


def create_slot(
    db: Session,
    teacher_id: int,
    language_id: int,
    start_time: datetime,
    end_time: datetime,
    max_students: int = 1,
) -> models.AvailabilitySlot:
    start_time = ensure_utc(start_time)
    end_time = ensure_utc(end_time)
    if start_time >= end_time:
        raise SlotError("Start time must be before end time")
    if max_students < 1:
        raise SlotError("A slot must allow at least one student")
    if db.get(models.Language, language_id) is None:
        raise SlotError("Language not found")
    with unit_of_work(db):
        slot = models.AvailabilitySlot(
            teacher_id=teacher_id,
            language_id=language_id,
            start_time=start_time,
            end_time=end_time,
            max_students=max_students,
            current_students=0,
            status=SlotStatus.available,
        )
        db.add(slot)
    logger.info("Availability slot created", extra={"slot_id": slot.id, "teacher_id": teacher_id})
    return slot


def delete_slot(db: Session, slot_id: int, teacher_id: int) -> None:
    with unit_of_work(db):
        slot = db.execute(
            select(models.AvailabilitySlot)
            .where(models.AvailabilitySlot.id == slot_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if slot is None:
            raise SlotNotFound("Slot not found")
        if slot.teacher_id != teacher_id:
            raise SlotForbidden("You can only delete your own slots")
        if slot.status != SlotStatus.available or slot.current_students > 0:
            raise SlotError("Cannot delete a slot that is already booked")
        if slot.bookings:
            raise SlotError("Cannot delete a slot with booking history")
        db.delete(slot)


def list_teacher_slots(
    db: Session, teacher_id: int, upcoming_only: bool = False
) -> list[models.AvailabilitySlot]:
    query = (
        select(models.AvailabilitySlot)
        .where(models.AvailabilitySlot.teacher_id == teacher_id)
        .order_by(models.AvailabilitySlot.start_time)
    )
    if upcoming_only:
        query = query.where(
            models.AvailabilitySlot.start_time > utc_now(),
            models.AvailabilitySlot.status == SlotStatus.available,
        )
    return list(db.scalars(query))
