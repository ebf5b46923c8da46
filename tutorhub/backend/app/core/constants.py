"""Common application-wide constants."""

from decimal import Decimal

# Money columns are stored with two decimal places
MONEY_QUANT = Decimal("0.01")

# The push provider settles in whole shillings only
MOBILE_MONEY_CURRENCY = "KES"
MOBILE_MONEY_QUANT = Decimal("1")

# Provider tokens are treated as expired this long before the stated expiry
TOKEN_EXPIRY_MARGIN_SECONDS = 300

# Payment ids are PostgreSQL INTEGER keys
MAX_PAYMENT_ID = 2**31 - 1

# Invoice reference format echoed back by the push provider: "<account>-<payment id>"
INVOICE_REFERENCE_SEPARATOR = "-"


__all__ = [
    "MONEY_QUANT",
    "MOBILE_MONEY_CURRENCY",
    "MOBILE_MONEY_QUANT",
    "TOKEN_EXPIRY_MARGIN_SECONDS",
    "INVOICE_REFERENCE_SEPARATOR",
    "MAX_PAYMENT_ID",
]
