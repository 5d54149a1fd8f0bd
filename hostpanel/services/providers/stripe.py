# hostpanel/services/providers/stripe.py
import hashlib
import hmac
import logging
import time
from decimal import Decimal, ROUND_HALF_UP

import requests

from .base import CANCELLED, COMPLETED, PENDING, PaymentProvider, PaymentResult, ProviderAPIError

logger = logging.getLogger(__name__)

STRIPE_API_URL = "https://api.stripe.com/v1"
SIGNATURE_TOLERANCE_SECONDS = 300


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeProvider(PaymentProvider):
    """International card rail via Checkout Sessions. Amounts in minor units."""

    name = "stripe"
    label = "Stripe (international cards)"
    currencies = ("USD", "EUR", "GBP")

    def is_configured(self) -> bool:
        return bool(self.config.get("STRIPE_SECRET_KEY"))

    def _headers(self) -> dict:
        secret_key = self.config.get("STRIPE_SECRET_KEY")
        if not secret_key:
            raise RuntimeError("Stripe credentials not configured")
        return {"Authorization": f"Bearer {secret_key}"}

    def _create(self, amount, currency, user_id, description, return_url, metadata) -> PaymentResult:
        form = {
            "mode": "payment",
            "success_url": return_url or f"{self.app_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": self._cancel_url(),
            "line_items[0][price_data][currency]": currency.lower(),
            "line_items[0][price_data][product_data][name]": description or "Balance Top-up",
            "line_items[0][price_data][unit_amount]": to_minor_units(amount),
            "line_items[0][quantity]": 1,
            "metadata[userId]": str(user_id),
        }
        for key, value in metadata.items():
            form[f"metadata[{key}]"] = str(value)

        # requests form-encodes the dict, matching Stripe's bracket notation
        response = self.session.post(
            f"{STRIPE_API_URL}/checkout/sessions",
            data=form,
            headers=self._headers(),
            timeout=self.timeout,
        )
        data = self._json(response)
        if not response.ok:
            raise ProviderAPIError((data.get("error") or {}).get("message") or "Stripe payment error")

        return PaymentResult(
            success=True,
            payment_id=data["id"],
            payment_url=data.get("url"),
            status=self.normalize_status(data),
        )

    def _fetch(self, payment_id: str) -> dict | None:
        response = self.session.get(
            f"{STRIPE_API_URL}/checkout/sessions/{payment_id}",
            headers=self._headers(),
            timeout=self.timeout,
        )
        if not response.ok:
            return None
        return self._json(response)

    def session_for_payment_intent(self, intent_id: str) -> str | None:
        """Checkout Session id that created `intent_id`; pending rows are keyed by it."""
        try:
            response = self.session.get(
                f"{STRIPE_API_URL}/checkout/sessions",
                params={"payment_intent": intent_id, "limit": 1},
                headers=self._headers(),
                timeout=self.timeout,
            )
            data = self._json(response)
        except (requests.RequestException, ProviderAPIError, RuntimeError) as e:
            logger.error("Stripe session lookup for %s error: %s", intent_id, e)
            return None

        if not response.ok:
            logger.error("Stripe session lookup for %s failed: HTTP %s", intent_id, response.status_code)
            return None
        sessions = data.get("data") or []
        return sessions[0].get("id") if sessions else None

    def normalize_status(self, remote: dict) -> str:
        remote = remote or {}
        if remote.get("payment_status") == "paid":
            return COMPLETED
        if remote.get("status") == "expired":
            return CANCELLED
        return PENDING

    def verify_webhook(self, body: bytes, headers, remote_addr: str | None = None, now: float | None = None) -> bool:
        """Check a `Stripe-Signature: t=...,v1=...` header (HMAC-SHA256 over "t.body")."""
        secret = self.config.get("STRIPE_WEBHOOK_SECRET") or ""
        if not secret:
            logger.error("Stripe webhook secret not configured")
            return False

        signature = headers.get("Stripe-Signature", "")
        timestamp = None
        candidates = []
        for element in signature.split(","):
            key, _, value = element.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                candidates.append(value)

        if not timestamp or not candidates:
            return False

        try:
            signed_at = int(timestamp)
        except ValueError:
            return False

        current = time.time() if now is None else now
        if abs(current - signed_at) > SIGNATURE_TOLERANCE_SECONDS:
            logger.warning("Stripe webhook timestamp outside tolerance")
            return False

        signed_payload = timestamp.encode("utf-8") + b"." + body
        expected = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
        return any(self._safe_compare(candidate, expected) for candidate in candidates)
