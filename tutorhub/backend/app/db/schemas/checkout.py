from typing import Literal

from pydantic import BaseModel, model_validator

from ..models import PaymentProvider


class CheckoutRequest(BaseModel):
    use_credit: bool = False
    payment_provider: Literal["mpesa", "paypal"] | None = None
    mpesa_phone_number: str | None = None

    @model_validator(mode="after")
    def check_payment_method(self):
        if self.use_credit:
            return self
        if self.payment_provider is None:
            raise ValueError("payment_provider is required unless use_credit is set")
        if self.payment_provider == "mpesa" and not (self.mpesa_phone_number or "").strip():
            raise ValueError("mpesa_phone_number is required for M-Pesa payments")
        return self

    @property
    def provider(self) -> PaymentProvider:
        if self.use_credit:
            return PaymentProvider.credit
        return PaymentProvider(self.payment_provider)


class CheckoutHandle(BaseModel):
    provider: str
    reference: str
    customer_message: str | None = None
