from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from ...api import deps
from ...core.auth import Principal
from ...db.models import UserRole
from ...db.session import get_db
from ...db import schemas
from ...services import wallet_service

router = APIRouter(prefix="/payouts", tags=["payouts"])

teacher_only = deps.require_roles(UserRole.teacher)


@router.get("/earnings", response_model=schemas.Earnings)
def get_earnings(
    db: Session = Depends(get_db),
    teacher: Principal = Depends(teacher_only),
):
    try:
        balance = wallet_service.get_teacher_balance(db, teacher.user_id)
    except wallet_service.TeacherProfileNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return schemas.Earnings(teacher_id=teacher.user_id, current_balance=balance)


@router.get("/mine", response_model=list[schemas.PayoutRequest])
def list_my_payouts(
    db: Session = Depends(get_db),
    teacher: Principal = Depends(teacher_only),
):
    return wallet_service.list_payouts(db, teacher_id=teacher.user_id)


@router.post("", response_model=schemas.PayoutRequest, status_code=status.HTTP_201_CREATED)
def request_payout(
    payload: schemas.PayoutCreate,
    db: Session = Depends(get_db),
    teacher: Principal = Depends(teacher_only),
):
    try:
        return wallet_service.request_payout(db, teacher.user_id, payload.amount)
    except wallet_service.TeacherProfileNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except wallet_service.WalletError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
