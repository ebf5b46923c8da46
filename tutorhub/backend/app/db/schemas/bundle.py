from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel

from ..models import PaymentStatus, StudentBundleStatus

from .checkout import CheckoutHandle, CheckoutRequest


class Bundle(BaseModel):
    id: int
    name: str
    language_id: int
    number_of_classes: int
    price: Decimal
    currency: str
    is_active: bool

    class Config:
        from_attributes = True


class BundlePurchase(CheckoutRequest):
    pass


class StudentBundle(BaseModel):
    id: int
    student_id: int
    bundle_id: int
    purchase_date: datetime
    remaining_classes: int
    status: StudentBundleStatus

    class Config:
        from_attributes = True


class BundleCheckout(BaseModel):
    student_bundle: StudentBundle
    payment_id: int
    payment_status: PaymentStatus
    checkout: CheckoutHandle | None = None
