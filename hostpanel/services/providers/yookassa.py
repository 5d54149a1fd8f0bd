# hostpanel/services/providers/yookassa.py
import hashlib
import hmac
import ipaddress
import logging
import uuid

import requests

from .base import CANCELLED, COMPLETED, PENDING, PaymentProvider, PaymentResult, ProviderAPIError

logger = logging.getLogger(__name__)

YOOKASSA_API_URL = "https://api.yookassa.ru/v3"

# Published notification source addresses
YOOKASSA_NETWORKS = [
    ipaddress.ip_network(net)
    for net in (
        "185.71.76.0/27",
        "185.71.77.0/27",
        "77.75.153.0/25",
        "77.75.154.128/25",
        "77.75.156.11/32",
        "77.75.156.35/32",
        "2a02:5180::/32",
    )
]


class YooKassaProvider(PaymentProvider):
    """Russian card rail. Amounts travel as decimal strings ("150.00")."""

    name = "yookassa"
    label = "YooKassa (RU cards)"
    currencies = ("RUB",)

    def is_configured(self) -> bool:
        return bool(self.config.get("YOOKASSA_SHOP_ID") and self.config.get("YOOKASSA_SECRET_KEY"))

    def _auth(self):
        if not self.is_configured():
            raise RuntimeError("YooKassa credentials not configured")
        return (self.config["YOOKASSA_SHOP_ID"], self.config["YOOKASSA_SECRET_KEY"])

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Idempotence-Key": str(uuid.uuid4()),
        }

    def _create(self, amount, currency, user_id, description, return_url, metadata) -> PaymentResult:
        payload = {
            "amount": {"value": f"{amount:.2f}", "currency": currency},
            "capture": True,
            "confirmation": {"type": "redirect", "return_url": self._success_url(return_url)},
            "description": description or "Balance top-up",
            "metadata": {"userId": str(user_id), **metadata},
        }

        response = self.session.post(
            f"{YOOKASSA_API_URL}/payments",
            json=payload,
            auth=self._auth(),
            headers=self._headers(),
            timeout=self.timeout,
        )
        data = self._json(response)
        if not response.ok:
            raise ProviderAPIError(data.get("description") or "YooKassa payment error")

        return PaymentResult(
            success=True,
            payment_id=data["id"],
            payment_url=(data.get("confirmation") or {}).get("confirmation_url"),
            status=self.normalize_status(data),
        )

    def _fetch(self, payment_id: str) -> dict | None:
        response = self.session.get(
            f"{YOOKASSA_API_URL}/payments/{payment_id}",
            auth=self._auth(),
            timeout=self.timeout,
        )
        if not response.ok:
            return None
        return self._json(response)

    def cancel_payment(self, payment_id: str) -> bool:
        try:
            response = self.session.post(
                f"{YOOKASSA_API_URL}/payments/{payment_id}/cancel",
                auth=self._auth(),
                headers=self._headers(),
                timeout=self.timeout,
            )
        except (requests.RequestException, RuntimeError) as e:
            logger.error("YooKassa cancel payment %s error: %s", payment_id, e)
            return False
        return response.ok

    def normalize_status(self, remote: dict) -> str:
        status = (remote or {}).get("status")
        if status == "succeeded":
            return COMPLETED
        if status == "canceled":
            return CANCELLED
        return PENDING

    def verify_webhook(self, body: bytes, headers, remote_addr: str | None = None) -> bool:
        """
        YooKassa authenticates notifications by source address. When a shared
        secret is configured the X-Webhook-Signature HMAC-SHA256 is required too.
        """
        try:
            addr = ipaddress.ip_address((remote_addr or "").strip())
        except ValueError:
            return False

        if not any(addr in net for net in YOOKASSA_NETWORKS):
            logger.warning("YooKassa webhook from unexpected address %s", remote_addr)
            return False

        secret = self.config.get("YOOKASSA_WEBHOOK_SECRET") or ""
        if not secret:
            return True

        expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return self._safe_compare(headers.get("X-Webhook-Signature", ""), expected)
