import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest
import requests

from hostpanel.services import providers
from hostpanel.services.providers.cryptopay import CryptoPayProvider
from hostpanel.services.providers.paypal import PayPalProvider
from hostpanel.services.providers.stripe import StripeProvider, to_minor_units
from hostpanel.services.providers.yookassa import YooKassaProvider
from tests.conftest import make_response


def _stripe_header(body: bytes, secret="whsec_test", timestamp=None):
    timestamp = str(int(time.time()) if timestamp is None else timestamp)
    sig = hmac.new(secret.encode(), timestamp.encode() + b"." + body, hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={timestamp},v1={sig}"}


class TestYooKassa:
    def test_create_payment_sends_decimal_string_amount(self, app, mock_session):
        mock_session.post.return_value = make_response(200, {
            "id": "yk_1",
            "status": "pending",
            "confirmation": {"confirmation_url": "https://yoomoney.ru/pay/yk_1"},
        })
        adapter = YooKassaProvider(app.config, session=mock_session)

        result = adapter.create_payment(Decimal("150"), user_id=7)

        assert result.success
        assert result.payment_id == "yk_1"
        kwargs = mock_session.post.call_args.kwargs
        assert kwargs["json"]["amount"] == {"value": "150.00", "currency": "RUB"}
        assert kwargs["json"]["metadata"]["userId"] == "7"
        assert kwargs["auth"] == ("shop", "secret")
        assert kwargs["headers"]["Idempotence-Key"]

    def test_network_error_becomes_failed_result(self, app, mock_session):
        mock_session.post.side_effect = requests.ConnectionError("connection refused")
        adapter = YooKassaProvider(app.config, session=mock_session)

        result = adapter.create_payment("100")

        assert not result.success
        assert result.status == providers.FAILED
        assert "connection refused" in result.error

    @pytest.mark.parametrize("remote, expected", [
        ("succeeded", providers.COMPLETED),
        ("canceled", providers.CANCELLED),
        ("waiting_for_capture", providers.PENDING),
    ])
    def test_normalize_status(self, app, remote, expected):
        adapter = YooKassaProvider(app.config)
        assert adapter.normalize_status({"status": remote}) == expected

    def test_webhook_is_accepted_only_from_published_networks(self, app):
        adapter = YooKassaProvider(app.config)

        assert adapter.verify_webhook(b"{}", {}, remote_addr="185.71.76.1")
        assert adapter.verify_webhook(b"{}", {}, remote_addr="77.75.156.11")
        assert not adapter.verify_webhook(b"{}", {}, remote_addr="10.0.0.1")
        assert not adapter.verify_webhook(b"{}", {}, remote_addr="not-an-ip")

    def test_webhook_secret_requires_signature(self, app):
        app.config["YOOKASSA_WEBHOOK_SECRET"] = "hook-secret"
        adapter = YooKassaProvider(app.config)
        body = b'{"event": "payment.succeeded"}'
        good = hmac.new(b"hook-secret", body, hashlib.sha256).hexdigest()

        assert adapter.verify_webhook(body, {"X-Webhook-Signature": good}, remote_addr="185.71.76.1")
        assert not adapter.verify_webhook(body, {"X-Webhook-Signature": "bad"}, remote_addr="185.71.76.1")


class TestStripe:
    def test_amount_is_sent_in_minor_units(self, app, mock_session):
        mock_session.post.return_value = make_response(200, {
            "id": "cs_test_1",
            "url": "https://checkout.stripe.com/c/pay/cs_test_1",
            "payment_status": "unpaid",
        })
        adapter = StripeProvider(app.config, session=mock_session)

        result = adapter.create_payment("12.34", currency="usd", user_id=3, metadata={"source": "web"})

        assert result.success
        assert result.payment_url.startswith("https://checkout.stripe.com/")
        form = mock_session.post.call_args.kwargs["data"]
        assert form["line_items[0][price_data][unit_amount]"] == 1234
        assert form["line_items[0][price_data][currency]"] == "usd"
        assert form["metadata[userId]"] == "3"
        assert form["metadata[source]"] == "web"
        assert mock_session.post.call_args.kwargs["headers"] == {"Authorization": "Bearer sk_test_123"}

    def test_api_error_message_is_reported(self, app, mock_session):
        mock_session.post.return_value = make_response(400, {"error": {"message": "Invalid currency"}})
        adapter = StripeProvider(app.config, session=mock_session)

        result = adapter.create_payment("10", currency="USD")

        assert not result.success
        assert result.error == "Invalid currency"

    def test_to_minor_units_rounds_half_up(self):
        assert to_minor_units(Decimal("0.015")) == 2
        assert to_minor_units(Decimal("99.99")) == 9999

    def test_signature_verification(self, app):
        adapter = StripeProvider(app.config)
        body = b'{"type": "checkout.session.completed"}'

        assert adapter.verify_webhook(body, _stripe_header(body))
        assert not adapter.verify_webhook(body + b" ", _stripe_header(body))
        assert not adapter.verify_webhook(body, _stripe_header(body, secret="whsec_other"))
        assert not adapter.verify_webhook(body, {})

    def test_stale_signature_is_rejected(self, app):
        adapter = StripeProvider(app.config)
        body = b"{}"
        header = _stripe_header(body, timestamp=1_000_000)

        assert not adapter.verify_webhook(body, header, now=1_000_000 + 301)
        assert adapter.verify_webhook(body, header, now=1_000_000 + 299)

    def test_session_for_payment_intent(self, app, mock_session):
        mock_session.get.return_value = make_response(200, {"object": "list", "data": [{"id": "cs_test_7"}]})
        adapter = StripeProvider(app.config, session=mock_session)

        assert adapter.session_for_payment_intent("pi_7") == "cs_test_7"
        assert mock_session.get.call_args.args[0] == "https://api.stripe.com/v1/checkout/sessions"

    def test_session_lookup_errors_return_none(self, app, mock_session):
        adapter = StripeProvider(app.config, session=mock_session)

        mock_session.get.return_value = make_response(401, {"error": {"message": "Invalid API Key"}})
        assert adapter.session_for_payment_intent("pi_7") is None

        mock_session.get.side_effect = requests.ConnectionError("down")
        assert adapter.session_for_payment_intent("pi_7") is None


class TestPayPal:
    def _token_response(self, token="A21AA", expires_in=32400):
        return make_response(200, {"access_token": token, "expires_in": expires_in})

    def _order_response(self):
        return make_response(201, {
            "id": "ORDER-1",
            "status": "CREATED",
            "links": [
                {"rel": "self", "href": "https://api.sandbox.paypal.com/v2/checkout/orders/ORDER-1"},
                {"rel": "approve", "href": "https://www.sandbox.paypal.com/checkoutnow?token=ORDER-1"},
            ],
        })

    def test_create_order_returns_approve_link(self, app, mock_session):
        mock_session.post.side_effect = [self._token_response(), self._order_response()]
        adapter = PayPalProvider(app.config, session=mock_session)

        result = adapter.create_payment("25", currency="USD", user_id=1)

        assert result.success
        assert result.payment_id == "ORDER-1"
        assert result.payment_url == "https://www.sandbox.paypal.com/checkoutnow?token=ORDER-1"
        order_call = mock_session.post.call_args_list[1]
        assert order_call.kwargs["json"]["purchase_units"][0]["amount"] == {"currency_code": "USD", "value": "25.00"}
        assert order_call.kwargs["headers"]["Authorization"] == "Bearer A21AA"

    def test_access_token_is_cached_until_margin(self, app, mock_session):
        clock = [1000.0]
        mock_session.post.side_effect = [
            self._token_response("first", expires_in=3600),
            self._token_response("second", expires_in=3600),
        ]
        adapter = PayPalProvider(app.config, session=mock_session, clock=lambda: clock[0])

        assert adapter.access_token() == "first"
        clock[0] += 3000
        assert adapter.access_token() == "first"
        # 3600s lifetime minus the 300s refresh margin
        clock[0] += 301
        assert adapter.access_token() == "second"
        assert mock_session.post.call_count == 2

    def test_token_failure_becomes_failed_result(self, app, mock_session):
        mock_session.post.return_value = make_response(401, {"error": "invalid_client"})
        adapter = PayPalProvider(app.config, session=mock_session)

        result = adapter.create_payment("25", currency="USD")

        assert not result.success
        assert result.error == "Failed to get PayPal access token"

    def test_capture_order(self, app, mock_session):
        mock_session.post.side_effect = [
            self._token_response(),
            make_response(201, {"id": "ORDER-1", "status": "COMPLETED"}),
        ]
        adapter = PayPalProvider(app.config, session=mock_session)

        assert adapter.capture_order("ORDER-1")
        assert mock_session.post.call_args.args[0].endswith("/v2/checkout/orders/ORDER-1/capture")

    def test_webhook_verification_delegates_to_paypal(self, app, mock_session):
        mock_session.post.side_effect = [
            self._token_response(),
            make_response(200, {"verification_status": "SUCCESS"}),
        ]
        adapter = PayPalProvider(app.config, session=mock_session)
        headers = {
            "PAYPAL-AUTH-ALGO": "SHA256withRSA",
            "PAYPAL-CERT-URL": "https://api.paypal.com/cert",
            "PAYPAL-TRANSMISSION-ID": "t-1",
            "PAYPAL-TRANSMISSION-SIG": "sig",
            "PAYPAL-TRANSMISSION-TIME": "2026-10-18T10:00:00Z",
        }

        assert adapter.verify_webhook(b'{"event_type": "CHECKOUT.ORDER.APPROVED"}', headers)
        payload = mock_session.post.call_args.kwargs["json"]
        assert payload["webhook_id"] == "WH-TEST"
        assert payload["webhook_event"] == {"event_type": "CHECKOUT.ORDER.APPROVED"}

    def test_webhook_without_transmission_headers_is_rejected(self, app, mock_session):
        adapter = PayPalProvider(app.config, session=mock_session)

        assert not adapter.verify_webhook(b"{}", {})
        mock_session.post.assert_not_called()


class TestCryptoPay:
    def test_create_invoice(self, app, mock_session):
        mock_session.request.return_value = make_response(200, {"ok": True, "result": {
            "invoice_id": 501,
            "pay_url": "https://t.me/CryptoBot?start=IV501",
        }})
        adapter = CryptoPayProvider(app.config, session=mock_session)

        result = adapter.create_payment("12.5", currency="TON", user_id=9)

        assert result.payment_id == "501"
        assert result.payment_url == "https://t.me/CryptoBot?start=IV501"
        method, url = mock_session.request.call_args.args
        assert (method, url) == ("POST", "https://pay.send.tg/api/createInvoice")
        payload = mock_session.request.call_args.kwargs["json"]
        assert payload["asset"] == "TON"
        assert payload["amount"] == "12.5"
        assert json.loads(payload["payload"]) == {"userId": "9"}
        assert mock_session.request.call_args.kwargs["headers"]["Crypto-Pay-API-Token"] == "12345:test-token"

    def test_api_error_becomes_failed_result(self, app, mock_session):
        mock_session.request.return_value = make_response(400, {"ok": False, "error": {"name": "AMOUNT_TOO_SMALL"}})
        adapter = CryptoPayProvider(app.config, session=mock_session)

        result = adapter.create_payment("0.01", currency="USDT")

        assert not result.success
        assert result.error == "AMOUNT_TOO_SMALL"

    def test_exchange_rates_keep_valid_usd_rows(self, app, mock_session):
        mock_session.request.return_value = make_response(200, {"ok": True, "result": [
            {"source": "TON", "target": "USD", "rate": "5.25", "is_valid": True},
            {"source": "TON", "target": "EUR", "rate": "4.80", "is_valid": True},
            {"source": "BTC", "target": "USD", "rate": "60000", "is_valid": False},
        ]})
        adapter = CryptoPayProvider(app.config, session=mock_session)

        assert adapter.get_exchange_rates() == {"TON": Decimal("5.25")}

    def test_webhook_signature(self, app):
        adapter = CryptoPayProvider(app.config)
        body = b'{"update_type": "invoice_paid"}'
        secret = hashlib.sha256(b"12345:test-token").digest()
        good = hmac.new(secret, body, hashlib.sha256).hexdigest()

        assert adapter.verify_webhook(body, {"Crypto-Pay-Api-Signature": good})
        assert not adapter.verify_webhook(body, {"Crypto-Pay-Api-Signature": good[:-1] + "0"})
        assert not adapter.verify_webhook(body, {})


class TestRegistry:
    def test_unknown_provider(self, app):
        result = providers.create_payment("cash", "10")

        assert not result.success
        assert result.error == "Unknown payment provider: cash"

    def test_available_methods_report_configuration(self, app):
        app.config["PAYPAL_CLIENT_ID"] = ""
        methods = {m["provider"]: m for m in providers.available_payment_methods()}

        assert set(methods) == {"yookassa", "stripe", "paypal", "cryptopay"}
        assert methods["yookassa"]["enabled"] is True
        assert methods["paypal"]["enabled"] is False
        assert methods["stripe"]["currencies"] == ["USD", "EUR", "GBP"]

    def test_registered_adapter_is_reused(self, app, mock_session):
        adapter = StripeProvider(app.config, session=mock_session)
        providers.register_provider(adapter)

        assert providers.get_provider("stripe") is adapter
