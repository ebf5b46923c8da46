from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from ...api import deps
from ...core.auth import Principal
from ...db.models import UserRole
from ...db.session import get_db
from ...db import schemas
from ...services import slot_service

router = APIRouter(prefix="/slots", tags=["slots"])

teacher_only = deps.require_roles(UserRole.teacher)


@router.post("", response_model=schemas.AvailabilitySlot, status_code=status.HTTP_201_CREATED)
def create_slot(
    payload: schemas.AvailabilitySlotCreate,
    db: Session = Depends(get_db),
    teacher: Principal = Depends(teacher_only),
):
    try:
        return slot_service.create_slot(
            db,
            teacher_id=teacher.user_id,
            language_id=payload.language_id,
            start_time=payload.start_time,
            end_time=payload.end_time,
            max_students=payload.max_students,
        )
    except slot_service.SlotError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.get("/mine", response_model=list[schemas.AvailabilitySlot])
def list_my_slots(
    db: Session = Depends(get_db),
    teacher: Principal = Depends(teacher_only),
):
    return slot_service.list_teacher_slots(db, teacher.user_id)


@router.get("/teacher/{teacher_id}", response_model=list[schemas.AvailabilitySlot])
def list_teacher_slots(teacher_id: int, db: Session = Depends(get_db)):
    return slot_service.list_teacher_slots(db, teacher_id, upcoming_only=True)


@router.delete("/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_slot(
    slot_id: int,
    db: Session = Depends(get_db),
    teacher: Principal = Depends(teacher_only),
):
    try:
        slot_service.delete_slot(db, slot_id, teacher.user_id)
    except slot_service.SlotNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except slot_service.SlotForbidden as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except slot_service.SlotError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
