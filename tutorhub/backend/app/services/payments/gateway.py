from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache
from typing import Any

import httpx

from ...config import Settings, get_settings
from ...db.models import PaymentProvider


class GatewayError(Exception):
    """The provider refused the request or could not be reached."""


class InvalidPhoneNumber(GatewayError):
    """Payer input rejected before any network call."""


class MalformedCallback(GatewayError):
    pass


@dataclass(slots=True)
class ProviderHandle:
    """Proof that the provider accepted a charge request, not that money moved."""

    provider: PaymentProvider
    reference: str
    customer_message: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CaptureResult:
    order_id: str
    status: str
    transaction_id: str

    @property
    def completed(self) -> bool:
        return self.status == "COMPLETED"


@dataclass(slots=True)
class SettlementEvent:
    """A provider's verdict on a charge, correlated to one payment row."""

    provider: PaymentProvider
    succeeded: bool
    payment_id: int | None = None
    provider_order_id: str | None = None
    provider_txn_id: str | None = None
    merchant_request_id: str | None = None
    description: str = ""


class BasePaymentGateway(ABC):
    provider: PaymentProvider

    def __init__(self, settings: Settings, transport: httpx.BaseTransport | None = None) -> None:
        self.settings = settings
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.settings.gateway_timeout_seconds, transport=self._transport)

    @abstractmethod
    def initiate(
        self,
        *,
        amount: Decimal,
        currency: str,
        payer_ref: str | None,
        correlation_id: int,
    ) -> ProviderHandle:
        raise NotImplementedError

    def capture(self, order_handle: str) -> CaptureResult:
        raise GatewayError(f"{self.provider.value} does not support capture")


@lru_cache(maxsize=None)
def _gateway_for(provider: PaymentProvider) -> BasePaymentGateway:
    settings = get_settings()
    if provider == PaymentProvider.mpesa:
        from .mpesa import MpesaGateway

        return MpesaGateway(settings)
    if provider == PaymentProvider.paypal:
        from .paypal import PayPalGateway

        return PayPalGateway(settings)
    raise ValueError(f"Unsupported payment provider {provider.value}")


def get_gateway(provider: PaymentProvider) -> BasePaymentGateway:
    """Return the process-wide gateway for an external provider.

    Instances are shared so that their token caches are shared too.
    """
    return _gateway_for(PaymentProvider(provider))
