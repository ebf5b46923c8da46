from __future__ import annotations

import logging
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from functools import lru_cache

import httpx

from ..config import Settings, get_settings
from ..core.cache import ExpiringValue

logger = logging.getLogger(__name__)

BASE_CURRENCY = "USD"


class CurrencyConversionError(Exception):
    pass


class ExchangeRateSource:
    """USD-based exchange rates, cached process-wide for the configured TTL.

    A failed refresh is an error for the caller; stale rates are never served.
    """

    def __init__(self, settings: Settings, transport: httpx.BaseTransport | None = None) -> None:
        self.settings = settings
        self._transport = transport
        self._rates: ExpiringValue[dict[str, Decimal]] = ExpiringValue(
            self._fetch_rates, name="exchange rates"
        )

    def _fetch_rates(self) -> tuple[dict[str, Decimal], float]:
        if not self.settings.exchange_rate_api_key:
            raise CurrencyConversionError("Exchange rate API key not configured")
        url = self.settings.exchange_rate_api_url.format(api_key=self.settings.exchange_rate_api_key)
        try:
            with httpx.Client(
                timeout=self.settings.gateway_timeout_seconds, transport=self._transport
            ) as client:
                response = client.get(url)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise CurrencyConversionError("Could not fetch exchange rates") from exc
        if data.get("result") != "success":
            raise CurrencyConversionError("Currency API returned an error")
        try:
            rates = {code: Decimal(str(value)) for code, value in data["conversion_rates"].items()}
        except (KeyError, AttributeError, InvalidOperation) as exc:
            raise CurrencyConversionError("Malformed exchange rate payload") from exc
        logger.info("Updated currency exchange rate cache", extra={"currencies": len(rates)})
        return rates, self.settings.exchange_rate_ttl_hours * 3600

    def rate(self, quote_currency: str) -> Decimal:
        rates = self._rates.get_or_refresh()
        code = quote_currency.upper()
        if code == BASE_CURRENCY:
            return Decimal("1")
        try:
            return rates[code]
        except KeyError as exc:
            raise CurrencyConversionError(f"{code} exchange rate not found") from exc

    def convert(self, amount: Decimal, from_currency: str, to_currency: str, quantum: Decimal) -> Decimal:
        """Convert through USD and round half-to-even to ``quantum``."""
        if from_currency.upper() == to_currency.upper():
            return Decimal(amount).quantize(quantum, rounding=ROUND_HALF_EVEN)
        in_usd = Decimal(amount) / self.rate(from_currency)
        converted = in_usd * self.rate(to_currency)
        return converted.quantize(quantum, rounding=ROUND_HALF_EVEN)


@lru_cache(maxsize=1)
def get_rate_source() -> ExchangeRateSource:
    return ExchangeRateSource(get_settings())


__all__ = ["CurrencyConversionError", "ExchangeRateSource", "get_rate_source"]
