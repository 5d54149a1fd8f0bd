# config.py
import os


def _env(key: str, default: str | None = None) -> str | None:
    """Environment lookup where an empty string counts as unset."""
    value = os.getenv(key)
    return default if value in (None, "") else value


def _env_bool(key: str, default: bool = False) -> bool:
    value = _env(key)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(key: str, default: int) -> int:
    value = _env(key)
    return default if value is None else int(value)


def _env_money(key: str, default: str) -> str:
    # kept as a string; services quantize through utils.money()
    return _env(key, default)


def _database_url() -> str:
    url = _env("DATABASE_URL", "sqlite:///instance/billing.db")
    # Render/Heroku hand out "postgres://"; SQLAlchemy 2 only accepts "postgresql://"
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


class BaseConfig:
    # --- Flask ---
    ENV = _env("FLASK_ENV", "development")
    DEBUG = _env_bool("FLASK_DEBUG", default=(ENV != "production"))
    TESTING = False
    SECRET_KEY = _env("SECRET_KEY", "dev-secret-key")
    LOG_LEVEL = _env("LOG_LEVEL", "INFO")

    # Public base URL for provider return links and referral links
    APP_URL = _env("APP_URL", "http://localhost:5000")

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = _env("SESSION_COOKIE_SAMESITE", "Lax")

    # Number of reverse proxies whose X-Forwarded-* headers are trusted (0 = none)
    PROXY_FIX_HOPS = _env_int("PROXY_FIX_HOPS", 0)

    # --- Database ---
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # --- Email (SendGrid) ---
    SENDGRID_API_KEY = _env("SENDGRID_API_KEY", "")
    MAIL_DEFAULT_SENDER = _env("MAIL_DEFAULT_SENDER", "")

    # --- Balance and top-ups ---
    BALANCE_CURRENCY = _env("BALANCE_CURRENCY", "RUB")
    PAYMENT_MIN_AMOUNT = _env_money("PAYMENT_MIN_AMOUNT", "10.00")
    PAYMENT_MAX_AMOUNT = _env_money("PAYMENT_MAX_AMOUNT", "1000000.00")
    PAYMENT_HTTP_TIMEOUT = _env_int("PAYMENT_HTTP_TIMEOUT", 15)
    PAYMENT_RECONCILE_AFTER_MINUTES = _env_int("PAYMENT_RECONCILE_AFTER_MINUTES", 10)

    # --- Payment providers ---
    YOOKASSA_SHOP_ID = _env("YOOKASSA_SHOP_ID", "")
    YOOKASSA_SECRET_KEY = _env("YOOKASSA_SECRET_KEY", "")
    YOOKASSA_WEBHOOK_SECRET = _env("YOOKASSA_WEBHOOK_SECRET", "")

    STRIPE_SECRET_KEY = _env("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = _env("STRIPE_WEBHOOK_SECRET", "")

    PAYPAL_CLIENT_ID = _env("PAYPAL_CLIENT_ID", "")
    PAYPAL_CLIENT_SECRET = _env("PAYPAL_CLIENT_SECRET", "")
    PAYPAL_WEBHOOK_ID = _env("PAYPAL_WEBHOOK_ID", "")
    PAYPAL_MODE = _env("PAYPAL_MODE", "sandbox")  # sandbox | live

    CRYPTOPAY_API_TOKEN = _env("CRYPTOPAY_API_TOKEN", "")
    CRYPTOPAY_API_URL = _env("CRYPTOPAY_API_URL", "https://pay.send.tg/api")

    # --- Referrals: percent of the first confirmed payment, clamped ---
    REFERRAL_BONUS_PERCENT = _env_money("REFERRAL_BONUS_PERCENT", "10")
    REFERRAL_BONUS_MIN = _env_money("REFERRAL_BONUS_MIN", "50.00")
    REFERRAL_BONUS_MAX = _env_money("REFERRAL_BONUS_MAX", "500.00")

    # --- Servers and the renewal sweep ---
    CRON_SECRET = _env("CRON_SECRET", "")
    SERVER_RENEWAL_DAYS = _env_int("SERVER_RENEWAL_DAYS", 30)
    SERVER_EXPIRY_WARNING_DAYS = _env_int("SERVER_EXPIRY_WARNING_DAYS", 3)
    SERVER_TERMINATION_GRACE_DAYS = _env_int("SERVER_TERMINATION_GRACE_DAYS", 7)

    # --- Invoices ---
    INVOICE_DUE_DAYS = _env_int("INVOICE_DUE_DAYS", 7)
    INVOICE_CURRENCY_SYMBOL = _env("INVOICE_CURRENCY_SYMBOL", "₽")
    INVOICE_ISSUER_NAME = _env("INVOICE_ISSUER_NAME", "Hosting Service")
    INVOICE_ISSUER_SITE = _env("INVOICE_ISSUER_SITE", "hosting.example.com")
    INVOICE_ISSUER_LEGAL = _env("INVOICE_ISSUER_LEGAL", "")
    INVOICE_ISSUER_TAX_ID = _env("INVOICE_ISSUER_TAX_ID", "")
    INVOICE_ISSUER_EMAIL = _env("INVOICE_ISSUER_EMAIL", "support@hosting.example.com")


class DevelopmentConfig(BaseConfig):
    ENV = "development"
    DEBUG = True


class TestingConfig(BaseConfig):
    ENV = "testing"
    DEBUG = False
    TESTING = True

    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    PROXY_FIX_HOPS = 0

    SENDGRID_API_KEY = ""
    MAIL_DEFAULT_SENDER = "billing@test.local"
    CRON_SECRET = "test-cron-secret"
    APP_URL = "http://localhost:5000"

    YOOKASSA_SHOP_ID = "shop"
    YOOKASSA_SECRET_KEY = "secret"
    YOOKASSA_WEBHOOK_SECRET = ""
    STRIPE_SECRET_KEY = "sk_test_123"
    STRIPE_WEBHOOK_SECRET = "whsec_test"
    PAYPAL_CLIENT_ID = "paypal-client"
    PAYPAL_CLIENT_SECRET = "paypal-secret"
    PAYPAL_WEBHOOK_ID = "WH-TEST"
    PAYPAL_MODE = "sandbox"
    CRYPTOPAY_API_TOKEN = "12345:test-token"
    CRYPTOPAY_API_URL = "https://pay.send.tg/api"

    INVOICE_CURRENCY_SYMBOL = "₽"
    INVOICE_ISSUER_NAME = "Hosting Service"


class ProductionConfig(BaseConfig):
    ENV = "production"
    DEBUG = False

    # HTTPS only
    SESSION_COOKIE_SECURE = True
