# hostpanel/services/providers/cryptopay.py
import hashlib
import hmac
import json
import logging
from decimal import Decimal, InvalidOperation

import requests

from .base import CANCELLED, COMPLETED, PENDING, PaymentProvider, PaymentResult, ProviderAPIError

logger = logging.getLogger(__name__)

CRYPTO_ASSETS = ("USDT", "TON", "BTC", "ETH", "LTC", "BNB", "TRX", "USDC")
DEFAULT_ASSETS = ["USDT", "TON", "BTC"]
DEFAULT_INVOICE_TTL_SECONDS = 3600


class CryptoPayProvider(PaymentProvider):
    """Crypto rail (Crypto Pay API). Invoices are priced in the crypto asset."""

    name = "cryptopay"
    label = "Cryptocurrency"
    currencies = ("USDT", "BTC", "ETH", "TON")

    def __init__(self, config: dict, session: requests.Session | None = None):
        super().__init__(config, session)
        self.api_url = (config.get("CRYPTOPAY_API_URL") or "https://pay.send.tg/api").rstrip("/")

    def is_configured(self) -> bool:
        return bool(self.config.get("CRYPTOPAY_API_TOKEN"))

    def _headers(self) -> dict:
        token = self.config.get("CRYPTOPAY_API_TOKEN")
        if not token:
            raise RuntimeError("CryptoPay API token not configured")
        return {"Crypto-Pay-API-Token": token, "Content-Type": "application/json"}

    def _call(self, method: str, http_method: str = "GET", **kwargs):
        response = self.session.request(
            http_method,
            f"{self.api_url}/{method}",
            headers=self._headers(),
            timeout=self.timeout,
            **kwargs,
        )
        data = self._json(response)
        if not data.get("ok") or "result" not in data:
            error = (data.get("error") or {}).get("name") or f"CryptoPay {method} error"
            raise ProviderAPIError(error)
        return data["result"]

    def _create(self, amount, currency, user_id, description, return_url, metadata) -> PaymentResult:
        asset = currency if currency in CRYPTO_ASSETS else "USDT"
        payload = {
            "currency_type": "crypto",
            "asset": asset,
            "amount": str(amount),
            "description": description or "Balance Top-up",
            "paid_btn_name": "callback",
            "paid_btn_url": self._success_url(return_url),
            "payload": json.dumps({"userId": str(user_id), **metadata}),
            "allow_comments": False,
            "allow_anonymous": True,
            "expires_in": DEFAULT_INVOICE_TTL_SECONDS,
        }

        invoice = self._call("createInvoice", "POST", json=payload)
        return PaymentResult(
            success=True,
            payment_id=str(invoice["invoice_id"]),
            payment_url=invoice.get("mini_app_invoice_url") or invoice.get("pay_url"),
            status=PENDING,
        )

    def _fetch(self, payment_id: str) -> dict | None:
        result = self._call("getInvoices", params={"invoice_ids": payment_id})
        items = (result or {}).get("items") or []
        return items[0] if items else None

    def normalize_status(self, remote: dict) -> str:
        status = (remote or {}).get("status")
        if status == "paid":
            return COMPLETED
        if status == "expired":
            return CANCELLED
        return PENDING

    def get_exchange_rates(self) -> dict[str, Decimal] | None:
        """Rates to USD keyed by source asset/currency, e.g. {"TON": Decimal("5.1")}."""
        try:
            rows = self._call("getExchangeRates")
        except (requests.RequestException, ProviderAPIError, RuntimeError) as e:
            logger.error("CryptoPay get exchange rates error: %s", e)
            return None

        rates = {}
        for row in rows:
            if row.get("target") != "USD" or row.get("is_valid") is False:
                continue
            try:
                rates[row["source"]] = Decimal(str(row["rate"]))
            except (InvalidOperation, KeyError):
                continue
        return rates

    def get_balance(self) -> dict[str, str] | None:
        try:
            rows = self._call("getBalance")
        except (requests.RequestException, ProviderAPIError, RuntimeError) as e:
            logger.error("CryptoPay get balance error: %s", e)
            return None
        return {row["currency_code"]: row["available"] for row in rows}

    def get_currencies(self) -> list[str]:
        try:
            rows = self._call("getCurrencies")
        except (requests.RequestException, ProviderAPIError, RuntimeError):
            return list(DEFAULT_ASSETS)
        return [row["code"] for row in rows if row.get("code")]

    def verify_webhook(self, body: bytes, headers, remote_addr: str | None = None) -> bool:
        """crypto-pay-api-signature = HMAC-SHA256(body) keyed by SHA256(api token)."""
        token = self.config.get("CRYPTOPAY_API_TOKEN") or ""
        if not token:
            logger.error("CryptoPay API token not configured")
            return False

        secret = hashlib.sha256(token.encode("utf-8")).digest()
        expected = hmac.new(secret, body, hashlib.sha256).hexdigest()
        return self._safe_compare(headers.get("Crypto-Pay-Api-Signature", ""), expected)
