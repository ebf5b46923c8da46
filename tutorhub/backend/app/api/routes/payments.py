import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from ...api import deps
from ...core.auth import Principal
from ...db.models import UserRole
from ...db.session import get_db
from ...db import schemas
from ...services import payment_service, settlement_service
from ...services.payments import GatewayError, MalformedCallback, parse_stk_callback

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

student_only = deps.require_roles(UserRole.student)


@router.post("/webhook")
def payments_webhook(payload: dict, db: Session = Depends(get_db)):
    """Push-provider result callback.

    Anything the provider should not retry is acknowledged with 200, including
    late or invalid events that were not applied.
    """
    try:
        event = parse_stk_callback(payload)
    except MalformedCallback as exc:
        logger.warning("Rejected malformed webhook payload: %s", exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot parse webhook payload") from exc
    result = settlement_service.reconcile(db, event)
    if result == settlement_service.ReconcileResult.not_found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return {"status": result.value}


@router.post("/{payment_id}/paypal-order", response_model=schemas.CheckoutHandle)
def create_paypal_order(
    payment_id: int,
    db: Session = Depends(get_db),
    student: Principal = Depends(student_only),
):
    try:
        handle = payment_service.create_redirect_order(db, payment_id, student.user_id)
    except payment_service.PaymentNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except payment_service.PaymentForbidden as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except payment_service.PaymentError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except GatewayError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to create PayPal order") from exc
    return schemas.CheckoutHandle(provider=handle.provider.value, reference=handle.reference)


@router.post("/paypal/capture")
def capture_paypal_order(
    payload: schemas.PayPalCapture,
    db: Session = Depends(get_db),
    student: Principal = Depends(student_only),
):
    try:
        result, payment = payment_service.capture_redirect_order(db, payload.order_id, student.user_id)
    except payment_service.PaymentNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except payment_service.PaymentForbidden as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except payment_service.PaymentNotCompleted as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except payment_service.PaymentError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except GatewayError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to capture payment") from exc
    return {"status": result.value, "payment": schemas.Payment.model_validate(payment)}
