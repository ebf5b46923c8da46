from . import (
    booking_service,
    bundle_service,
    currency_service,
    events,
    notification_service,
    payment_service,
    referral_service,
    refund_service,
    settlement_service,
    slot_service,
    wallet_service,
)
__all__ = [
    "booking_service",
    "bundle_service",
    "currency_service",
    "events",
    "notification_service",
    "payment_service",
    "referral_service",
    "refund_service",
    "settlement_service",
    "slot_service",
    "wallet_service",
]
