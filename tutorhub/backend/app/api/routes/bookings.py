from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from ...api import deps
from ...api.checkout import intent_from, start_checkout
from ...core.auth import Principal
from ...db.models import UserRole
from ...db.session import get_db
from ...db import schemas
from ...services import booking_service, refund_service
from ...services.currency_service import CurrencyConversionError

router = APIRouter(prefix="/bookings", tags=["bookings"])

student_only = deps.require_roles(UserRole.student)
teacher_only = deps.require_roles(UserRole.teacher)


def _booking_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, (booking_service.BookingNotFound, booking_service.SlotNotFound)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, booking_service.BookingForbidden):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, (booking_service.SlotFull, booking_service.InvalidTransition)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.post("", response_model=schemas.BookingCheckout, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: schemas.BookingCreate,
    db: Session = Depends(get_db),
    student: Principal = Depends(student_only),
):
    intent = intent_from(payload)
    try:
        allocation = booking_service.allocate_slot(
            db, payload.availability_slot_id, student.user_id, intent
        )
    except CurrencyConversionError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not get currency conversion rate",
        ) from exc
    except (booking_service.BookingError, booking_service.InsufficientCredit) as exc:
        raise _booking_http_error(exc) from exc

    checkout = start_checkout(
        db, allocation.payment, intent, booking_id=allocation.booking.id
    )
    return schemas.BookingCheckout(
        booking=schemas.Booking.model_validate(allocation.booking),
        payment_id=allocation.payment.id,
        payment_status=allocation.payment.status,
        checkout=checkout,
    )


@router.get("/mine", response_model=list[schemas.Booking])
def list_my_bookings(
    db: Session = Depends(get_db),
    student: Principal = Depends(student_only),
):
    return booking_service.list_student_bookings(db, student.user_id)


@router.get("/teaching", response_model=list[schemas.Booking])
def list_teaching_bookings(
    db: Session = Depends(get_db),
    teacher: Principal = Depends(teacher_only),
):
    return booking_service.list_teacher_bookings(db, teacher.user_id)


@router.post("/{booking_id}/complete", response_model=schemas.Booking)
def complete_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    teacher: Principal = Depends(teacher_only),
):
    try:
        return booking_service.complete_booking(db, booking_id, teacher.user_id)
    except booking_service.BookingError as exc:
        raise _booking_http_error(exc) from exc


@router.post("/{booking_id}/reschedule", response_model=schemas.Booking)
def request_reschedule(
    booking_id: int,
    payload: schemas.RescheduleRequest,
    db: Session = Depends(get_db),
    student: Principal = Depends(student_only),
):
    try:
        return booking_service.request_reschedule(
            db, booking_id, student.user_id, payload.new_start_time, payload.new_end_time
        )
    except booking_service.BookingError as exc:
        raise _booking_http_error(exc) from exc


@router.post("/{booking_id}/reschedule/decision", response_model=schemas.Booking)
def process_reschedule(
    booking_id: int,
    payload: schemas.RescheduleDecision,
    db: Session = Depends(get_db),
    teacher: Principal = Depends(teacher_only),
):
    try:
        return booking_service.process_reschedule(db, booking_id, teacher.user_id, payload.approve)
    except booking_service.BookingError as exc:
        raise _booking_http_error(exc) from exc


@router.post("/{booking_id}/refund", response_model=schemas.Payment)
def request_refund(
    booking_id: int,
    payload: schemas.RefundRequest,
    db: Session = Depends(get_db),
    student: Principal = Depends(student_only),
):
    try:
        return refund_service.request_refund(db, booking_id, student.user_id, payload.reason)
    except booking_service.BookingError as exc:
        raise _booking_http_error(exc) from exc
    except refund_service.RefundNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except refund_service.RefundError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
