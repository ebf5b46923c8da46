from . import (
    admin,
    bookings,
    bundles,
    misc,
    payments,
    payouts,
    slots,
)

__all__ = [
    "admin",
    "bookings",
    "bundles",
    "misc",
    "payments",
    "payouts",
    "slots",
]
