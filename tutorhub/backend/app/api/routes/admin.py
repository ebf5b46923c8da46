from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from ...api import deps
from ...core.auth import Principal
from ...db.models import PayoutStatus, UserRole
from ...db.session import get_db
from ...db import schemas
from ...services import booking_service, refund_service, wallet_service

router = APIRouter(prefix="/admin", tags=["admin"])

admin_only = deps.require_roles(UserRole.admin)


@router.get("/refunds", response_model=list[schemas.Payment])
def list_refund_requests(
    db: Session = Depends(get_db),
    _: Principal = Depends(admin_only),
):
    return refund_service.list_refund_requests(db)


@router.post("/refunds/{payment_id}/approve", response_model=schemas.Payment)
def approve_refund(
    payment_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(admin_only),
):
    try:
        return refund_service.approve_refund(db, payment_id)
    except refund_service.RefundNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (refund_service.RefundError, booking_service.InvalidTransition) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc


@router.post("/refunds/{payment_id}/reject", response_model=schemas.Payment)
def reject_refund(
    payment_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(admin_only),
):
    try:
        return refund_service.reject_refund(db, payment_id)
    except refund_service.RefundNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except refund_service.RefundError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc


@router.get("/payouts", response_model=list[schemas.PayoutRequest])
def list_payouts(
    status_filter: PayoutStatus | None = PayoutStatus.pending,
    db: Session = Depends(get_db),
    _: Principal = Depends(admin_only),
):
    return wallet_service.list_payouts(db, status=status_filter)


@router.post("/payouts/{payout_id}/process", response_model=schemas.PayoutRequest)
def process_payout(
    payout_id: int,
    payload: schemas.PayoutDecision,
    db: Session = Depends(get_db),
    _: Principal = Depends(admin_only),
):
    try:
        return wallet_service.process_payout(
            db, payout_id, approve=payload.decision == "complete", admin_notes=payload.admin_notes
        )
    except wallet_service.PayoutNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except wallet_service.WalletError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
