from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field

from ..models import PaymentProvider, PaymentStatus, RefundStatus


class Payment(BaseModel):
    id: int
    booking_id: int | None = None
    student_bundle_id: int | None = None
    amount: Decimal
    currency: str
    provider: PaymentProvider
    status: PaymentStatus
    refund_status: RefundStatus | None = None
    refund_reason: str | None = None
    provider_order_id: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class PayPalCapture(BaseModel):
    order_id: str = Field(alias="orderID", min_length=1)

    class Config:
        populate_by_name = True


class RefundRequest(BaseModel):
    reason: str = Field(min_length=1)
