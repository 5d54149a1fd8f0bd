"""
Payment provider registry.

Adapters are built once per application from its config and kept in
app.extensions, so credential caches (PayPal's OAuth token) live with the
adapter instance rather than in module globals.
"""

from flask import current_app

from .base import CANCELLED, COMPLETED, FAILED, PENDING, PaymentProvider, PaymentResult
from .cryptopay import CryptoPayProvider
from .paypal import PayPalProvider
from .stripe import StripeProvider
from .yookassa import YooKassaProvider

PROVIDER_CLASSES = {
    YooKassaProvider.name: YooKassaProvider,
    StripeProvider.name: StripeProvider,
    PayPalProvider.name: PayPalProvider,
    CryptoPayProvider.name: CryptoPayProvider,
}

PROVIDERS = tuple(PROVIDER_CLASSES)

_EXTENSION_KEY = "payment_providers"


def _registry() -> dict:
    return current_app.extensions.setdefault(_EXTENSION_KEY, {})


def get_provider(name: str) -> PaymentProvider | None:
    cls = PROVIDER_CLASSES.get(name)
    if cls is None:
        return None

    registry = _registry()
    if name not in registry:
        registry[name] = cls(current_app.config)
    return registry[name]


def register_provider(provider: PaymentProvider) -> None:
    """Swap in a pre-built adapter (e.g. one with a custom requests session)."""
    _registry()[provider.name] = provider


def provider_label(name: str) -> str:
    cls = PROVIDER_CLASSES.get(name)
    return cls.label if cls else name


def create_payment(
    provider: str,
    amount,
    currency: str | None = None,
    user_id=None,
    description: str | None = None,
    return_url: str | None = None,
    metadata: dict | None = None,
) -> PaymentResult:
    adapter = get_provider(provider)
    if adapter is None:
        return PaymentResult(success=False, status=FAILED, error=f"Unknown payment provider: {provider}")

    return adapter.create_payment(
        amount,
        currency=currency,
        user_id=user_id,
        description=description,
        return_url=return_url,
        metadata=metadata,
    )


def available_payment_methods() -> list[dict]:
    methods = []
    for name in PROVIDERS:
        adapter = get_provider(name)
        methods.append({
            "provider": name,
            "name": adapter.label,
            "enabled": adapter.is_configured(),
            "currencies": list(adapter.currencies),
        })
    return methods


__all__ = [
    "CANCELLED",
    "COMPLETED",
    "FAILED",
    "PENDING",
    "PROVIDERS",
    "PaymentProvider",
    "PaymentResult",
    "available_payment_methods",
    "create_payment",
    "get_provider",
    "provider_label",
    "register_provider",
]
