from decimal import Decimal

import pytest

from hostpanel.errors import ExchangeRateUnavailable
from hostpanel.services.currency import convert_currency

# getExchangeRates rows reduced to USD prices, as CryptoPayProvider.get_exchange_rates returns them
CRYPTO_USD = {"USDT": Decimal("1"), "BTC": Decimal("60000"), "TON": Decimal("5")}


def test_same_currency_is_identity():
    assert convert_currency("100", "rub", "RUB") == Decimal("100")


def test_direct_static_rate():
    assert convert_currency("1000", "RUB", "USD") == Decimal("11.00000000")


def test_static_pivot_through_usd():
    assert convert_currency("10", "GBP", "RUB") == Decimal("1143.00000000")


def test_live_rates_take_precedence():
    rates = {"TON": "5", "RUB": "0.0125"}

    assert convert_currency("1000", "RUB", "TON", usd_rates=rates) == Decimal("2.50000000")
    assert convert_currency("2", "TON", "USD", usd_rates=rates) == Decimal("10.00000000")


def test_live_rates_without_both_legs_fall_back_to_table():
    assert convert_currency("100", "USD", "RUB", usd_rates={"TON": "5"}) == Decimal("9000.00000000")


def test_fiat_to_crypto_uses_static_fiat_leg_and_live_asset_price():
    # 1000 RUB -> 11 USD -> 11 / 60000 BTC
    assert convert_currency("1000", "RUB", "BTC", usd_rates=CRYPTO_USD) == Decimal("0.00018333")
    assert convert_currency("1000", "RUB", "TON", usd_rates=CRYPTO_USD) == Decimal("2.20000000")
    assert convert_currency("1000", "RUB", "USDT", usd_rates=CRYPTO_USD) == Decimal("11.00000000")


@pytest.mark.parametrize("rates", [None, {}, {"USDT": "1", "TON": "5"}])
def test_crypto_asset_without_rate_is_refused(rates):
    with pytest.raises(ExchangeRateUnavailable) as exc:
        convert_currency("1000", "RUB", "BTC", usd_rates=rates)

    assert exc.value.context == {"currency": "BTC"}


def test_unknown_fiat_is_refused():
    with pytest.raises(ExchangeRateUnavailable):
        convert_currency("10", "CHF", "RUB")
