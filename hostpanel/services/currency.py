# hostpanel/services/currency.py
"""
Approximate cross-currency conversion with USD as the pivot.

The static table covers fiat only; crypto assets are priced from live USD
rates (CryptoPay's exchange-rate lookup), which also take precedence for fiat.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP

from hostpanel.errors import ExchangeRateUnavailable

logger = logging.getLogger(__name__)

STATIC_RATES = {
    ("USD", "RUB"): Decimal("90"),
    ("RUB", "USD"): Decimal("0.011"),
    ("EUR", "RUB"): Decimal("98"),
    ("RUB", "EUR"): Decimal("0.010"),
    ("EUR", "USD"): Decimal("1.08"),
    ("USD", "EUR"): Decimal("0.92"),
    ("GBP", "USD"): Decimal("1.27"),
    ("USD", "GBP"): Decimal("0.79"),
}

Q = Decimal("0.00000001")


def _to_usd(code: str, live: dict) -> Decimal | None:
    if code == "USD":
        return Decimal("1")
    if code in live:
        return live[code]
    return STATIC_RATES.get((code, "USD"))


def _from_usd(code: str, live: dict) -> Decimal | None:
    if code == "USD":
        return Decimal("1")
    if code in live and live[code] > 0:
        return Decimal("1") / live[code]
    return STATIC_RATES.get(("USD", code))


def convert_currency(amount, from_currency: str, to_currency: str, usd_rates: dict | None = None) -> Decimal:
    """
    Convert `amount` between currencies.

    `usd_rates` maps a currency/asset to its price in USD (CryptoPay rows
    with a USD target). A side found there is priced live; everything else
    goes through the static table, directly when both sides are static,
    otherwise via USD. Raises ExchangeRateUnavailable when a side has no
    rate at all.
    """
    amount = Decimal(str(amount))
    src = from_currency.upper()
    dst = to_currency.upper()

    if src == dst:
        return amount

    live = {k.upper(): Decimal(str(v)) for k, v in (usd_rates or {}).items()}

    direct = STATIC_RATES.get((src, dst))
    if direct is not None and src not in live and dst not in live:
        return (amount * direct).quantize(Q, rounding=ROUND_HALF_UP)

    to_usd = _to_usd(src, live)
    from_usd = _from_usd(dst, live)
    if to_usd is None or from_usd is None:
        missing = src if to_usd is None else dst
        raise ExchangeRateUnavailable(f"No exchange rate for {missing}", currency=missing)
    return (amount * to_usd * from_usd).quantize(Q, rounding=ROUND_HALF_UP)


def live_usd_rates() -> dict | None:
    """USD rates from the crypto rail, or None when it is unavailable."""
    from hostpanel.services.providers import get_provider

    adapter = get_provider("cryptopay")
    if adapter is None or not adapter.is_configured():
        return None

    rates = adapter.get_exchange_rates()
    if not rates:
        logger.info("Live exchange rates unavailable, using static table")
        return None
    return rates
