# hostpanel/admin/routes.py
from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from hostpanel.models import PromocodeType
from hostpanel.services import gift_certificates, invoices, ledger, promocodes
from hostpanel.utils import admin_required

from . import admin_bp
from .forms import (
    BalanceAdjustmentForm,
    GiftCertificateForm,
    InvoiceForm,
    MassBonusForm,
    PromocodeCreateForm,
    RefundForm,
)


def _form_errors(form):
    return jsonify({"error": "validation_error", "details": form.errors}), 400


@admin_bp.route("/users/<int:user_id>/balance", methods=["POST"])
@login_required
@admin_required
def adjust_balance(user_id: int):
    form = BalanceAdjustmentForm()
    if not form.validate():
        return _form_errors(form)

    description = form.description.data or f"Manual adjustment by admin #{current_user.id}"
    if form.operation.data == "deposit":
        entry = ledger.deposit(
            user_id,
            form.amount.data,
            description,
            payment_method="admin",
            metadata={"admin_id": current_user.id},
        )
    elif form.operation.data == "bonus":
        entry = ledger.bonus(user_id, form.amount.data, description, metadata={"admin_id": current_user.id})
    else:
        entry = ledger.withdraw(user_id, form.amount.data, description)

    current_app.logger.info(
        "Admin %s %s %s for user %s", current_user.id, form.operation.data, form.amount.data, user_id
    )
    return jsonify({"transaction": entry.to_dict(), "new_balance": str(entry.balance_after)})


@admin_bp.route("/bonus", methods=["POST"])
@login_required
@admin_required
def mass_bonus():
    form = MassBonusForm()
    if not form.validate():
        return _form_errors(form)

    user_ids = (request.get_json(silent=True) or {}).get("user_ids")
    if (
        not isinstance(user_ids, list)
        or not user_ids
        or not all(isinstance(uid, int) and not isinstance(uid, bool) for uid in user_ids)
    ):
        return jsonify({"error": "validation_error", "details": {"user_ids": ["Select at least one user."]}}), 400

    result = ledger.mass_bonus(
        user_ids,
        form.amount.data,
        form.reason.data or "Bonus from administration",
        metadata={"admin_id": current_user.id, "mass_bonus": True},
        notify=form.send_email.data,
    )
    current_app.logger.info(
        "Admin %s mass bonus %s to %s users: success=%s failed=%s",
        current_user.id, form.amount.data, len(user_ids), result.success, result.failed,
    )
    return jsonify(result.to_dict())


@admin_bp.route("/transactions/<int:transaction_id>/refund", methods=["POST"])
@login_required
@admin_required
def refund_transaction(transaction_id: int):
    form = RefundForm()
    if not form.validate():
        return _form_errors(form)

    entry = ledger.refund(transaction_id, form.reason.data or None)
    current_app.logger.info("Admin %s refunded transaction %s", current_user.id, transaction_id)
    return jsonify({"transaction": entry.to_dict(), "new_balance": str(entry.balance_after)})


@admin_bp.route("/invoices", methods=["POST"])
@login_required
@admin_required
def create_invoice():
    form = InvoiceForm()
    if not form.validate():
        return _form_errors(form)

    items = (request.get_json(silent=True) or {}).get("items")
    if not isinstance(items, list) or not items:
        return jsonify({"error": "validation_error", "details": {"items": ["At least one item is required."]}}), 400

    invoice = invoices.create_invoice(
        form.user_id.data,
        items,
        description=form.description.data or None,
        due_date=form.due_date.data,
        tax=form.tax.data or 0,
    )
    return jsonify({"invoice": invoice.to_dict()}), 201


@admin_bp.route("/invoices/<int:invoice_id>/paid", methods=["POST"])
@login_required
@admin_required
def mark_invoice_paid(invoice_id: int):
    invoice = invoices.mark_paid(invoice_id)
    return jsonify({"invoice": invoice.to_dict()})


@admin_bp.route("/invoices/<int:invoice_id>/cancel", methods=["POST"])
@login_required
@admin_required
def cancel_invoice(invoice_id: int):
    invoice = invoices.cancel_invoice(invoice_id)
    return jsonify({"invoice": invoice.to_dict()})


@admin_bp.route("/invoices/<int:invoice_id>/send", methods=["POST"])
@login_required
@admin_required
def send_invoice(invoice_id: int):
    sent = invoices.send_invoice_email(invoice_id)
    return jsonify({"sent": sent})


@admin_bp.route("/promocodes", methods=["POST"])
@login_required
@admin_required
def create_promocode():
    form = PromocodeCreateForm()
    if not form.validate():
        return _form_errors(form)

    promo = promocodes.create_promocode(
        form.code.data,
        PromocodeType(form.type.data),
        form.value.data,
        min_amount=form.min_amount.data,
        max_uses=form.max_uses.data,
        max_uses_per_user=form.max_uses_per_user.data or 1,
        valid_from=form.valid_from.data,
        valid_until=form.valid_until.data,
    )
    return jsonify({"promocode": promo.to_dict()}), 201


@admin_bp.route("/promocodes/<int:promocode_id>/deactivate", methods=["POST"])
@login_required
@admin_required
def deactivate_promocode(promocode_id: int):
    promo = promocodes.deactivate_promocode(promocode_id)
    return jsonify({"promocode": promo.to_dict(), "is_active": promo.is_active})


@admin_bp.route("/gift-certificates", methods=["POST"])
@login_required
@admin_required
def create_gift_certificate():
    form = GiftCertificateForm()
    if not form.validate():
        return _form_errors(form)

    certificate = gift_certificates.create_gift_certificate(
        form.amount.data,
        code=form.code.data or None,
        expires_at=form.expires_at.data,
    )
    return jsonify({"certificate": certificate.to_dict()}), 201


@admin_bp.route("/gift-certificates/<int:certificate_id>/deactivate", methods=["POST"])
@login_required
@admin_required
def deactivate_gift_certificate(certificate_id: int):
    certificate = gift_certificates.deactivate_gift_certificate(certificate_id)
    return jsonify({"certificate": certificate.to_dict()})
