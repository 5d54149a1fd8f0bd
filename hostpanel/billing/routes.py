# hostpanel/billing/routes.py
from flask import abort, current_app, jsonify, request
from flask_login import current_user, login_required

from hostpanel.services import gift_certificates, ledger, payments, promocodes, providers, referral, renewal
from hostpanel.services import invoices as invoice_service
from hostpanel.utils import money

from . import billing_bp
from .forms import AutoRenewForm, GiftCertificateRedeemForm, PaymentForm, PromocodeForm, ReferralCodeForm


def _form_errors(form):
    return jsonify({"error": "validation_error", "details": form.errors}), 400


@billing_bp.route("/balance", methods=["GET"])
@login_required
def balance():
    return jsonify({
        "balance": str(money(current_user.balance)),
        "referral_balance": str(money(current_user.referral_balance)),
        "currency": current_app.config.get("BALANCE_CURRENCY"),
    })


@billing_bp.route("/methods", methods=["GET"])
@login_required
def payment_methods():
    return jsonify({"methods": providers.available_payment_methods()})


@billing_bp.route("/payment", methods=["POST"])
@login_required
def create_payment():
    form = PaymentForm()
    if not form.validate():
        return _form_errors(form)

    result = payments.start_payment(
        current_user.id,
        form.provider.data,
        form.amount.data,
        currency=form.currency.data or None,
        return_url=form.return_url.data or None,
    )
    if not result.success:
        current_app.logger.warning("Payment creation failed for user %s: %s", current_user.id, result.error)
        return jsonify({"error": "payment_failed", "message": result.error or "Payment could not be created"}), 502

    return jsonify({
        "payment_id": result.payment_id,
        "payment_url": result.payment_url,
        "status": result.status,
    }), 201


@billing_bp.route("/promocode", methods=["POST"])
@login_required
def redeem_promocode():
    form = PromocodeForm()
    if not form.validate():
        return _form_errors(form)

    outcome = promocodes.redeem_promocode(current_user.id, form.code.data, form.amount.data)
    return jsonify({"success": True, **outcome})


@billing_bp.route("/gift-certificate", methods=["POST"])
@login_required
def redeem_gift_certificate():
    form = GiftCertificateRedeemForm()
    if not form.validate():
        return _form_errors(form)

    entry = gift_certificates.redeem_gift_certificate(current_user.id, form.code.data)
    return jsonify({
        "success": True,
        "amount": str(entry.amount),
        "new_balance": str(entry.balance_after),
        "transaction_id": entry.id,
    })


@billing_bp.route("/promocode", methods=["GET"])
@login_required
def check_promocode():
    code = (request.args.get("code") or "").strip()
    if not code:
        return jsonify({"error": "validation_error", "details": {"code": ["This field is required."]}}), 400

    amount = request.args.get("amount")
    check = promocodes.validate_promocode(code, current_user.id, money(amount) if amount else None)
    return jsonify({
        "valid": check.valid,
        "error": check.error,
        "discount": str(check.discount),
        "promocode": check.promocode.to_dict() if check.valid else None,
    })


@billing_bp.route("/transactions", methods=["GET"])
@login_required
def transactions():
    page = request.args.get("page", 1, type=int)
    limit = request.args.get("limit", 20, type=int)
    history = ledger.get_transaction_history(current_user.id, page=page, limit=limit)
    return jsonify({
        "transactions": [tx.to_dict() for tx in history["transactions"]],
        "pagination": history["pagination"],
    })


@billing_bp.route("/invoices", methods=["GET"])
@login_required
def invoices():
    items = invoice_service.get_user_invoices(current_user.id)
    return jsonify({"invoices": [inv.to_dict() for inv in items]})


@billing_bp.route("/invoices/<string:number>", methods=["GET"])
@login_required
def invoice_document(number):
    invoice = invoice_service.get_invoice_by_number(number)
    if invoice is None or (invoice.user_id != current_user.id and not current_user.is_admin):
        abort(404)

    html = invoice_service.render_invoice_html(invoice)
    return html, 200, {"Content-Type": "text/html; charset=utf-8"}


@billing_bp.route("/servers/<int:server_id>/auto-renew", methods=["POST"])
@login_required
def auto_renew(server_id):
    form = AutoRenewForm()
    if not form.validate():
        return _form_errors(form)

    server = renewal.toggle_auto_renew(server_id, current_user.id, form.enabled.data)
    return jsonify({"server": server.to_dict()})


@billing_bp.route("/referral", methods=["GET"])
@login_required
def referral_info():
    return jsonify(referral.get_referral_info(current_user.id))


@billing_bp.route("/referral", methods=["POST"])
@login_required
def apply_referral():
    form = ReferralCodeForm()
    if not form.validate():
        return _form_errors(form)

    referral.apply_referral_code(current_user.id, form.code.data)
    return jsonify({"success": True})
