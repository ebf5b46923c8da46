from __future__ import annotations

import logging
import re
import time
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from ...config import Settings
from ...core.cache import ExpiringValue
from ...core.constants import (
    INVOICE_REFERENCE_SEPARATOR,
    MAX_PAYMENT_ID,
    MOBILE_MONEY_QUANT,
    TOKEN_EXPIRY_MARGIN_SECONDS,
)
from ...db.models import PaymentProvider
from .gateway import (
    BasePaymentGateway,
    GatewayError,
    InvalidPhoneNumber,
    MalformedCallback,
    ProviderHandle,
    SettlementEvent,
)

logger = logging.getLogger(__name__)

_NON_NUMERIC = re.compile(r"[^0-9]")
RECEIPT_ITEM_NAME = "MpesaReceiptNumber"


def normalize_phone_number(phone: str) -> str:
    """Return the number as 2547XXXXXXXX / 2541XXXXXXXX or raise InvalidPhoneNumber."""
    digits = _NON_NUMERIC.sub("", phone or "")
    if digits.startswith(("07", "01")) and len(digits) == 10:
        return "254" + digits[1:]
    if digits.startswith(("7", "1")) and len(digits) == 9:
        return "254" + digits
    if digits.startswith("254") and len(digits) == 12:
        return digits
    raise InvalidPhoneNumber("invalid M-Pesa phone number format")


def build_invoice_reference(account_number: str, payment_id: int) -> str:
    return f"{account_number}{INVOICE_REFERENCE_SEPARATOR}{payment_id}"


def payment_id_from_reference(reference: str) -> int:
    _, _, tail = reference.rpartition(INVOICE_REFERENCE_SEPARATOR)
    try:
        payment_id = int(tail)
    except ValueError as exc:
        raise MalformedCallback(f"Unrecognised invoice reference {reference!r}") from exc
    if not 0 < payment_id <= MAX_PAYMENT_ID:
        raise MalformedCallback(f"Payment id out of range in invoice reference {reference!r}")
    return payment_id


class CallbackItem(BaseModel):
    name: str = Field(alias="Name")
    value: Any = Field(default=None, alias="Value")


class CallbackMetadata(BaseModel):
    items: list[CallbackItem] = Field(default_factory=list, alias="Item")


class StkCallback(BaseModel):
    merchant_request_id: str = Field(default="", alias="MerchantRequestID")
    checkout_request_id: str = Field(default="", alias="CheckoutRequestID")
    result_code: int = Field(alias="ResultCode")
    result_desc: str = Field(default="", alias="ResultDesc")
    callback_metadata: CallbackMetadata | None = Field(default=None, alias="CallbackMetadata")
    reference: str = Field(alias="Reference")

    def receipt_number(self) -> str | None:
        if not self.callback_metadata:
            return None
        for item in self.callback_metadata.items:
            if item.name == RECEIPT_ITEM_NAME and isinstance(item.value, str):
                return item.value
        return None


class CallbackBody(BaseModel):
    stk_callback: StkCallback = Field(alias="stkCallback")


class StkWebhookPayload(BaseModel):
    body: CallbackBody = Field(alias="Body")


class MpesaGateway(BasePaymentGateway):
    """KCB Buni STK push: the payer confirms on their handset, the result
    arrives later on the webhook."""

    provider = PaymentProvider.mpesa

    def __init__(self, settings: Settings, transport: httpx.BaseTransport | None = None) -> None:
        super().__init__(settings, transport)
        self._token: ExpiringValue[str] = ExpiringValue(self._fetch_token, name="KCB access token")

    def _fetch_token(self) -> tuple[str, float]:
        try:
            with self._client() as client:
                response = client.post(
                    self.settings.kcb_token_url,
                    content="grant_type=client_credentials",
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    auth=(self.settings.kcb_api_key, self.settings.kcb_api_secret),
                )
        except httpx.HTTPError as exc:
            raise GatewayError("failed to get KCB access token") from exc
        if response.status_code != httpx.codes.OK:
            raise GatewayError(f"KCB token API returned non-200 status: {response.status_code}")
        data = response.json()
        expires_in = float(data.get("expires_in", 0))
        logger.info("Fetched KCB access token")
        return data["access_token"], expires_in - TOKEN_EXPIRY_MARGIN_SECONDS

    def access_token(self) -> str:
        return self._token.get_or_refresh()

    def initiate(
        self,
        *,
        amount: Decimal,
        currency: str,
        payer_ref: str | None,
        correlation_id: int,
    ) -> ProviderHandle:
        phone = normalize_phone_number(payer_ref or "")
        if not self.settings.kcb_account_number:
            raise GatewayError("KCB_ACCOUNT_NUMBER is not configured")
        token = self.access_token()

        whole_amount = Decimal(amount).quantize(MOBILE_MONEY_QUANT, rounding=ROUND_HALF_EVEN)
        payload = {
            "phoneNumber": phone,
            "amount": format(whole_amount, "f"),
            "invoiceNumber": build_invoice_reference(self.settings.kcb_account_number, correlation_id),
            "sharedShortCode": True,
            "orgShortCode": "",
            "orgPassKey": "",
            "callbackUrl": self.settings.webhook_base_url.rstrip("/") + "/api/v1/payments/webhook",
            "transactionDescription": self.settings.kcb_transaction_desc,
        }
        headers = {
            "Content-Type": "application/json",
            "routeCode": self.settings.kcb_route_code,
            "operation": "STKPush",
            "messageId": f"{correlation_id}_{time.time_ns()}",
            "Authorization": f"Bearer {token}",
        }
        try:
            with self._client() as client:
                response = client.post(
                    self.settings.kcb_base_url.rstrip("/") + "/stkpush",
                    json=payload,
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise GatewayError("failed to send STK request") from exc

        if response.status_code != httpx.codes.OK:
            logger.error("KCB API error", extra={"status_code": response.status_code, "body": response.text})
            raise GatewayError(f"KCB Buni API returned non-200 status: {response.status_code}")
        data = response.json()
        body = data.get("response") or {}
        if str(body.get("ResponseCode")) != "0":
            logger.error("KCB STK push initiation failed: %s", body.get("ResponseDescription"))
            raise GatewayError(f"KCB STK Push failed: {body.get('ResponseDescription')}")

        logger.info("STK push initiated", extra={"payment_id": correlation_id})
        return ProviderHandle(
            provider=self.provider,
            reference=body.get("MerchantRequestID", ""),
            customer_message=body.get("CustomerMessage"),
            raw=data,
        )


def parse_stk_callback(data: dict[str, Any]) -> SettlementEvent:
    """Translate the push provider's result callback into a settlement event."""
    try:
        callback = StkWebhookPayload.model_validate(data).body.stk_callback
    except ValidationError as exc:
        raise MalformedCallback("Cannot parse webhook payload") from exc
    return SettlementEvent(
        provider=PaymentProvider.mpesa,
        succeeded=callback.result_code == 0,
        payment_id=payment_id_from_reference(callback.reference),
        provider_txn_id=callback.receipt_number(),
        merchant_request_id=callback.merchant_request_id or None,
        description=callback.result_desc,
    )
