# hostpanel/services/providers/paypal.py
import json
import logging
import threading
import time
from dataclasses import dataclass

import requests

from .base import CANCELLED, COMPLETED, PENDING, PaymentProvider, PaymentResult, ProviderAPIError

logger = logging.getLogger(__name__)

PAYPAL_LIVE_URL = "https://api-m.paypal.com"
PAYPAL_SANDBOX_URL = "https://api-m.sandbox.paypal.com"

# Refresh this long before PayPal's own expiry
TOKEN_EXPIRY_MARGIN_SECONDS = 300

_WEBHOOK_HEADERS = {
    "auth_algo": "PAYPAL-AUTH-ALGO",
    "cert_url": "PAYPAL-CERT-URL",
    "transmission_id": "PAYPAL-TRANSMISSION-ID",
    "transmission_sig": "PAYPAL-TRANSMISSION-SIG",
    "transmission_time": "PAYPAL-TRANSMISSION-TIME",
}


@dataclass
class AccessToken:
    token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class PayPalProvider(PaymentProvider):
    """Wallet rail (Orders v2). The OAuth token is cached on the instance."""

    name = "paypal"
    label = "PayPal"
    currencies = ("USD", "EUR", "GBP")

    def __init__(self, config: dict, session: requests.Session | None = None, clock=time.time):
        super().__init__(config, session)
        self.api_url = PAYPAL_LIVE_URL if config.get("PAYPAL_MODE") == "live" else PAYPAL_SANDBOX_URL
        self._clock = clock
        self._token: AccessToken | None = None
        self._token_lock = threading.Lock()

    def is_configured(self) -> bool:
        return bool(self.config.get("PAYPAL_CLIENT_ID") and self.config.get("PAYPAL_CLIENT_SECRET"))

    def access_token(self) -> str:
        with self._token_lock:
            now = self._clock()
            if self._token is not None and self._token.is_valid(now):
                return self._token.token

            if not self.is_configured():
                raise RuntimeError("PayPal credentials not configured")

            response = self.session.post(
                f"{self.api_url}/v1/oauth2/token",
                auth=(self.config["PAYPAL_CLIENT_ID"], self.config["PAYPAL_CLIENT_SECRET"]),
                data={"grant_type": "client_credentials"},
                timeout=self.timeout,
            )
            if not response.ok:
                raise ProviderAPIError("Failed to get PayPal access token")

            data = self._json(response)
            self._token = AccessToken(
                token=data["access_token"],
                expires_at=now + int(data.get("expires_in", 0)) - TOKEN_EXPIRY_MARGIN_SECONDS,
            )
            return self._token.token

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.access_token()}",
            "Content-Type": "application/json",
        }

    def _create(self, amount, currency, user_id, description, return_url, metadata) -> PaymentResult:
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "amount": {"currency_code": currency, "value": f"{amount:.2f}"},
                "description": description or "Balance Top-up",
                "custom_id": str(user_id),
                "reference_id": json.dumps({"userId": str(user_id), **metadata})[:256],
            }],
            "application_context": {
                "brand_name": self.config.get("INVOICE_ISSUER_NAME") or "Hosting Service",
                "landing_page": "LOGIN",
                "user_action": "PAY_NOW",
                "return_url": self._success_url(return_url),
                "cancel_url": self._cancel_url(),
            },
        }

        response = self.session.post(
            f"{self.api_url}/v2/checkout/orders",
            json=payload,
            headers=self._headers(),
            timeout=self.timeout,
        )
        data = self._json(response)
        if not response.ok:
            raise ProviderAPIError(data.get("message") or "PayPal payment error")

        approve = next((link["href"] for link in data.get("links", []) if link.get("rel") == "approve"), None)
        return PaymentResult(success=True, payment_id=data["id"], payment_url=approve, status=PENDING)

    def _fetch(self, payment_id: str) -> dict | None:
        response = self.session.get(
            f"{self.api_url}/v2/checkout/orders/{payment_id}",
            headers=self._headers(),
            timeout=self.timeout,
        )
        if not response.ok:
            return None
        return self._json(response)

    def capture_order(self, order_id: str) -> bool:
        try:
            response = self.session.post(
                f"{self.api_url}/v2/checkout/orders/{order_id}/capture",
                headers=self._headers(),
                timeout=self.timeout,
            )
            if not response.ok:
                return False
            return self._json(response).get("status") == "COMPLETED"
        except (requests.RequestException, ProviderAPIError, RuntimeError, KeyError) as e:
            logger.error("PayPal capture %s error: %s", order_id, e)
            return False

    def normalize_status(self, remote: dict) -> str:
        status = (remote or {}).get("status")
        if status == "COMPLETED":
            return COMPLETED
        if status == "VOIDED":
            return CANCELLED
        return PENDING

    def verify_webhook(self, body: bytes, headers, remote_addr: str | None = None) -> bool:
        """Ask PayPal's verify-webhook-signature API to validate the delivery."""
        webhook_id = self.config.get("PAYPAL_WEBHOOK_ID") or ""
        if not webhook_id:
            logger.error("PayPal webhook id not configured")
            return False

        payload = {key: headers.get(header, "") for key, header in _WEBHOOK_HEADERS.items()}
        if not all(payload.values()):
            return False

        try:
            payload["webhook_id"] = webhook_id
            payload["webhook_event"] = json.loads(body or b"{}")
            response = self.session.post(
                f"{self.api_url}/v1/notifications/verify-webhook-signature",
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
            if not response.ok:
                return False
            return self._json(response).get("verification_status") == "SUCCESS"
        except (requests.RequestException, ProviderAPIError, RuntimeError, ValueError, KeyError) as e:
            logger.error("PayPal webhook verification error: %s", e)
            return False
