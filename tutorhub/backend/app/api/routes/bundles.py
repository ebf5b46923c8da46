from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from ...api import deps
from ...api.checkout import intent_from, start_checkout
from ...core.auth import Principal
from ...db.models import UserRole
from ...db.session import get_db
from ...db import schemas
from ...services import bundle_service
from ...services.currency_service import CurrencyConversionError
from ...services.wallet_service import InsufficientCredit

router = APIRouter(prefix="/bundles", tags=["bundles"])

student_only = deps.require_roles(UserRole.student)


@router.get("", response_model=list[schemas.Bundle])
def list_bundles(db: Session = Depends(get_db)):
    return bundle_service.list_bundles(db)


@router.get("/mine", response_model=list[schemas.StudentBundle])
def list_my_bundles(
    db: Session = Depends(get_db),
    student: Principal = Depends(student_only),
):
    return bundle_service.list_student_bundles(db, student.user_id)


@router.post(
    "/{bundle_id}/purchase",
    response_model=schemas.BundleCheckout,
    status_code=status.HTTP_201_CREATED,
)
def purchase_bundle(
    bundle_id: int,
    payload: schemas.BundlePurchase,
    db: Session = Depends(get_db),
    student: Principal = Depends(student_only),
):
    intent = intent_from(payload)
    try:
        purchase = bundle_service.purchase_bundle(db, bundle_id, student.user_id, intent)
    except bundle_service.BundleNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InsufficientCredit as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except CurrencyConversionError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not get currency conversion rate",
        ) from exc

    checkout = start_checkout(
        db, purchase.payment, intent, student_bundle_id=purchase.student_bundle.id
    )
    return schemas.BundleCheckout(
        student_bundle=schemas.StudentBundle.model_validate(purchase.student_bundle),
        payment_id=purchase.payment.id,
        payment_status=purchase.payment.status,
        checkout=checkout,
    )
