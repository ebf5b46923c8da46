from .gateway import (
    BasePaymentGateway,
    CaptureResult,
    GatewayError,
    InvalidPhoneNumber,
    MalformedCallback,
    ProviderHandle,
    SettlementEvent,
    get_gateway,
)
from .mpesa import MpesaGateway, normalize_phone_number, parse_stk_callback
from .paypal import PayPalGateway

__all__ = [
    "BasePaymentGateway",
    "CaptureResult",
    "GatewayError",
    "InvalidPhoneNumber",
    "MalformedCallback",
    "ProviderHandle",
    "SettlementEvent",
    "get_gateway",
    "MpesaGateway",
    "normalize_phone_number",
    "parse_stk_callback",
    "PayPalGateway",
]
