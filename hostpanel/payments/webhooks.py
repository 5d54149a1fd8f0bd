from flask import current_app, jsonify, request

from hostpanel.errors import TransactionNotFound
from hostpanel.services import payments, providers
from . import payments_bp


def _verified(name: str):
    """The adapter when the request is authentic, else None."""
    adapter = providers.get_provider(name)
    raw_body = request.get_data(cache=True, as_text=False)
    # forwarded addresses only count once ProxyFix (PROXY_FIX_HOPS) has rewritten remote_addr
    remote_addr = request.remote_addr

    if adapter is None or not adapter.verify_webhook(raw_body, request.headers, remote_addr):
        current_app.logger.warning("Rejected %s webhook from %s: invalid signature", name, remote_addr)
        return None
    return adapter


def _invalid():
    return jsonify({"error": "invalid_signature"}), 401


def _ignored(reason: str):
    return jsonify({"status": "ignored", "reason": reason}), 200


def _confirm(provider: str, payment_id: str | None):
    if not payment_id:
        return _ignored("missing_payment_id")

    try:
        result = payments.confirm_payment(str(payment_id), provider)
    except TransactionNotFound:
        # unknown payment or a re-delivery of one already settled
        current_app.logger.info("%s webhook for %s ignored: no pending transaction", provider, payment_id)
        return _ignored("no_pending_transaction")

    payments.on_payment_confirmed(result, provider)
    return jsonify({"status": "ok"}), 200


def _fail(provider: str, payment_id: str | None, reason: str | None):
    if not payment_id:
        return _ignored("missing_payment_id")

    count = payments.fail_payment(str(payment_id), provider, reason)
    if not count:
        current_app.logger.info("%s failure webhook for %s ignored: no pending transaction", provider, payment_id)
        return _ignored("no_pending_transaction")

    payments.on_payment_failed(str(payment_id), provider, reason, count)
    return jsonify({"status": "ok"}), 200


@payments_bp.route("/webhooks/stripe", methods=["POST"])
def stripe_webhook():
    adapter = _verified("stripe")
    if adapter is None:
        return _invalid()

    payload = request.get_json(silent=True) or {}
    event = payload.get("type") or ""
    obj = (payload.get("data") or {}).get("object") or {}

    if event == "checkout.session.completed":
        if obj.get("payment_status") != "paid":
            return _ignored("not_paid")
        return _confirm("stripe", obj.get("id"))

    if event == "checkout.session.expired":
        return _fail("stripe", obj.get("id"), "Session expired")

    if event == "payment_intent.payment_failed":
        reason = (obj.get("last_payment_error") or {}).get("message") or "Payment failed"
        session_id = adapter.session_for_payment_intent(obj["id"]) if obj.get("id") else None
        if session_id is None:
            current_app.logger.info("Stripe intent %s has no checkout session", obj.get("id"))
            return _ignored("no_checkout_session")
        return _fail("stripe", session_id, reason)

    current_app.logger.info("Stripe webhook event %s not handled", event)
    return _ignored("unhandled_event")


@payments_bp.route("/webhooks/yookassa", methods=["POST"])
def yookassa_webhook():
    if _verified("yookassa") is None:
        return _invalid()

    payload = request.get_json(silent=True) or {}
    event = payload.get("event") or ""
    obj = payload.get("object") or {}

    if event == "payment.succeeded":
        return _confirm("yookassa", obj.get("id"))

    if event == "payment.canceled":
        reason = (obj.get("cancellation_details") or {}).get("reason") or "Payment cancelled"
        return _fail("yookassa", obj.get("id"), reason)

    current_app.logger.info("YooKassa webhook event %s not handled", event)
    return _ignored("unhandled_event")


@payments_bp.route("/webhooks/paypal", methods=["POST"])
def paypal_webhook():
    adapter = _verified("paypal")
    if adapter is None:
        return _invalid()

    payload = request.get_json(silent=True) or {}
    event = payload.get("event_type") or ""
    resource = payload.get("resource") or {}
    related_order = ((resource.get("supplementary_data") or {}).get("related_ids") or {}).get("order_id")

    if event == "CHECKOUT.ORDER.APPROVED":
        order_id = resource.get("id")
        if not order_id:
            return _ignored("missing_payment_id")
        if not adapter.capture_order(order_id):
            current_app.logger.warning("PayPal order %s approved but capture failed", order_id)
            return _ignored("capture_failed")
        return _confirm("paypal", order_id)

    if event == "PAYMENT.CAPTURE.COMPLETED":
        return _confirm("paypal", related_order)

    if event in {"PAYMENT.CAPTURE.DENIED", "PAYMENT.CAPTURE.DECLINED"}:
        return _fail("paypal", related_order, "Payment declined")

    current_app.logger.info("PayPal webhook event %s not handled", event)
    return _ignored("unhandled_event")


@payments_bp.route("/webhooks/cryptopay", methods=["POST"])
def cryptopay_webhook():
    if _verified("cryptopay") is None:
        return _invalid()

    payload = request.get_json(silent=True) or {}
    update_type = payload.get("update_type") or ""
    invoice = payload.get("payload") or {}
    invoice_id = invoice.get("invoice_id")

    if update_type == "invoice_paid":
        return _confirm("cryptopay", invoice_id)

    if update_type == "invoice_expired":
        return _fail("cryptopay", invoice_id, "Invoice expired")

    current_app.logger.info("CryptoPay webhook update %s not handled", update_type)
    return _ignored("unhandled_event")
