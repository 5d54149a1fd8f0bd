import hmac
import logging
from dataclasses import asdict, dataclass
from decimal import Decimal

import requests

logger = logging.getLogger(__name__)

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"


class ProviderAPIError(Exception):
    """Remote API replied with an error. Never leaves an adapter."""


@dataclass
class PaymentResult:
    success: bool
    payment_id: str = ""
    payment_url: str | None = None
    status: str = PENDING
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class PaymentProvider:
    """
    One external payment rail.

    create_payment / get_payment never raise: network and API failures are
    logged and turned into a failed PaymentResult (or None for lookups).
    """

    name = ""
    label = ""
    currencies: tuple[str, ...] = ()

    def __init__(self, config: dict, session: requests.Session | None = None):
        self.config = config
        self.timeout = config.get("PAYMENT_HTTP_TIMEOUT", 15)
        self.app_url = (config.get("APP_URL") or "").rstrip("/")
        self.session = session or requests.Session()

    # ------------------------------------------------------------------
    # to be implemented per rail
    # ------------------------------------------------------------------
    def is_configured(self) -> bool:
        raise NotImplementedError

    def _create(self, amount: Decimal, currency: str, user_id, description, return_url, metadata) -> PaymentResult:
        raise NotImplementedError

    def _fetch(self, payment_id: str) -> dict | None:
        raise NotImplementedError

    def normalize_status(self, remote: dict) -> str:
        raise NotImplementedError

    def verify_webhook(self, body: bytes, headers, remote_addr: str | None = None) -> bool:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # uniform boundary
    # ------------------------------------------------------------------
    def create_payment(
        self,
        amount,
        currency: str | None = None,
        user_id=None,
        description: str | None = None,
        return_url: str | None = None,
        metadata: dict | None = None,
    ) -> PaymentResult:
        currency = (currency or self.currencies[0]).upper()
        try:
            return self._create(Decimal(str(amount)), currency, user_id, description, return_url, metadata or {})
        except (requests.RequestException, ProviderAPIError, ValueError, KeyError, RuntimeError) as e:
            logger.error("%s payment error: %s", self.name, e)
            return PaymentResult(success=False, status=FAILED, error=str(e) or "Unknown error")

    def get_payment(self, payment_id: str) -> dict | None:
        try:
            return self._fetch(payment_id)
        except (requests.RequestException, ProviderAPIError, ValueError, RuntimeError) as e:
            logger.error("%s get payment %s error: %s", self.name, payment_id, e)
            return None

    def payment_status(self, payment_id: str) -> str | None:
        remote = self.get_payment(payment_id)
        if remote is None:
            return None
        return self.normalize_status(remote)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _success_url(self, return_url: str | None) -> str:
        return return_url or f"{self.app_url}/billing/success"

    def _cancel_url(self) -> str:
        return f"{self.app_url}/billing/cancel"

    def _json(self, response: requests.Response) -> dict:
        try:
            return response.json()
        except ValueError:
            raise ProviderAPIError(f"{self.name} returned non-JSON response (HTTP {response.status_code})")

    @staticmethod
    def _safe_compare(a: str, b: str) -> bool:
        if not a or not b:
            return False
        return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
