"""Provider hand-off shared by the booking and bundle checkout endpoints."""
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from ..db import models, schemas
from ..services import payment_service
from ..services.payments import GatewayError, InvalidPhoneNumber


def intent_from(payload: schemas.CheckoutRequest) -> payment_service.PaymentIntent:
    return payment_service.PaymentIntent(
        provider=payload.provider,
        phone_number=payload.mpesa_phone_number,
    )


def start_checkout(
    db: Session,
    payment: models.Payment,
    intent: payment_service.PaymentIntent,
    **reservation: int,
) -> schemas.CheckoutHandle | None:
    """Call the provider for a committed reservation.

    On failure the reservation stays, and its ids are returned in the error so
    the client can retry payment for it.
    """
    try:
        handle = payment_service.start_external_checkout(db, payment, intent)
    except InvalidPhoneNumber as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "payment_id": payment.id, **reservation},
        ) from exc
    except GatewayError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": "Failed to initiate payment", "payment_id": payment.id, **reservation},
        ) from exc
    if handle is None:
        return None
    return schemas.CheckoutHandle(
        provider=handle.provider.value,
        reference=handle.reference,
        customer_message=handle.customer_message,
    )
