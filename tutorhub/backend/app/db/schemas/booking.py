from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel

from ..models import BookingStatus, PaymentStatus

from .checkout import CheckoutHandle, CheckoutRequest
from .slot import AvailabilitySlot


class BookingCreate(CheckoutRequest):
    availability_slot_id: int


class Booking(BaseModel):
    id: int
    student_id: int
    teacher_id: int
    availability_slot_id: int
    status: BookingStatus
    price: Decimal
    currency: str
    meeting_link: str | None = None
    proposed_start_time: datetime | None = None
    proposed_end_time: datetime | None = None
    created_at: datetime | None = None
    slot: AvailabilitySlot | None = None

    class Config:
        from_attributes = True


class BookingCheckout(BaseModel):
    booking: Booking
    payment_id: int
    payment_status: PaymentStatus
    checkout: CheckoutHandle | None = None


class RescheduleRequest(BaseModel):
    new_start_time: datetime
    new_end_time: datetime


class RescheduleDecision(BaseModel):
    approve: bool
