from __future__ import annotations

import logging
from decimal import ROUND_HALF_EVEN, Decimal

import httpx

from ...config import Settings
from ...core.cache import ExpiringValue
from ...core.constants import MONEY_QUANT, TOKEN_EXPIRY_MARGIN_SECONDS
from ...db.models import PaymentProvider
from .gateway import BasePaymentGateway, CaptureResult, GatewayError, ProviderHandle

logger = logging.getLogger(__name__)

_ACCEPTED = (httpx.codes.OK, httpx.codes.CREATED)


class PayPalGateway(BasePaymentGateway):
    """Orders API: create an order, let the client approve it, then capture."""

    provider = PaymentProvider.paypal

    def __init__(self, settings: Settings, transport: httpx.BaseTransport | None = None) -> None:
        super().__init__(settings, transport)
        self._token: ExpiringValue[str] = ExpiringValue(self._fetch_token, name="PayPal access token")

    @property
    def _base(self) -> str:
        return self.settings.paypal_api_base_url.rstrip("/")

    def _fetch_token(self) -> tuple[str, float]:
        try:
            with self._client() as client:
                response = client.post(
                    f"{self._base}/v1/oauth2/token",
                    content="grant_type=client_credentials",
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    auth=(self.settings.paypal_client_id, self.settings.paypal_client_secret),
                )
        except httpx.HTTPError as exc:
            raise GatewayError("failed to get PayPal access token") from exc
        if response.status_code != httpx.codes.OK:
            raise GatewayError(f"failed to get access token, status: {response.status_code}")
        data = response.json()
        return data["access_token"], float(data.get("expires_in", 0)) - TOKEN_EXPIRY_MARGIN_SECONDS

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._token.get_or_refresh()}",
        }

    def initiate(
        self,
        *,
        amount: Decimal,
        currency: str,
        payer_ref: str | None,
        correlation_id: int,
    ) -> ProviderHandle:
        value = Decimal(amount).quantize(MONEY_QUANT, rounding=ROUND_HALF_EVEN)
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [
                {"amount": {"currency_code": currency, "value": format(value, "f")}},
            ],
        }
        headers = self._headers()
        try:
            with self._client() as client:
                response = client.post(f"{self._base}/v2/checkout/orders", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise GatewayError("failed to create order") from exc
        if response.status_code not in _ACCEPTED:
            raise GatewayError(f"failed to create order: {response.text}")
        data = response.json()
        logger.info("PayPal order created", extra={"payment_id": correlation_id, "order_id": data.get("id")})
        return ProviderHandle(provider=self.provider, reference=data["id"], raw=data)

    def capture(self, order_handle: str) -> CaptureResult:
        headers = self._headers()
        try:
            with self._client() as client:
                response = client.post(
                    f"{self._base}/v2/checkout/orders/{order_handle}/capture",
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise GatewayError("failed to capture order") from exc
        if response.status_code not in _ACCEPTED:
            raise GatewayError(f"failed to capture order: {response.text}")
        data = response.json()
        transaction_id = data.get("id", order_handle)
        for unit in data.get("purchase_units") or []:
            captures = (unit.get("payments") or {}).get("captures") or []
            if captures and captures[0].get("id"):
                transaction_id = captures[0]["id"]
                break
        return CaptureResult(order_id=data.get("id", order_handle), status=data.get("status", ""), transaction_id=transaction_id)
