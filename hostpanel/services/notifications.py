# hostpanel/services/notifications.py
"""
Email notifications.

Subscribes to the billing events and mails the owner through SendGrid.
Delivery problems are logged and reported as False; they never reach the
operation that emitted the event.
"""

import base64
import logging

from flask import current_app, render_template
from jinja2 import TemplateError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Attachment, Disposition, FileContent, FileName, FileType, Mail

from hostpanel import events
from hostpanel.extensions import db
from hostpanel.models import User
from hostpanel.utils import money

logger = logging.getLogger(__name__)

SUBJECTS = {
    "welcome": "Welcome to {site_name}",
    "balance-topup": "Balance topped up: +{amount}",
    "bonus": "You received a bonus: +{amount}",
    "server-renewed": 'Server "{server_name}" renewed',
    "server-expiring": 'Server "{server_name}" expires in {days_left} day(s)',
    "server-suspended": 'Server "{server_name}" suspended',
    "invoice": "Invoice {invoice_number} for {amount}",
    "ticket-reply": "New reply to ticket #{ticket_id}",
    "ticket-closed": "Ticket #{ticket_id} closed",
    "login-notification": "New sign-in to your account",
}

SUSPEND_REASONS = {
    "insufficient_balance": "Insufficient balance",
    "auto_renew_off": "Auto-renewal is off",
    "renewal_error": "Renewal failed",
}


def _resolve(recipient):
    """-> (email, user or None)"""
    if isinstance(recipient, User):
        return recipient.email, recipient
    if isinstance(recipient, int):
        user = db.session.get(User, recipient)
        return (user.email if user else None), user
    return recipient, None


def _amount(value) -> str:
    symbol = current_app.config.get("INVOICE_CURRENCY_SYMBOL", "")
    return f"{money(value):,.2f} {symbol}".replace(",", " ").strip()


def _date(value) -> str:
    return value.strftime("%d.%m.%Y") if value else ""


def _attachment(item: dict) -> Attachment:
    content = item["content"]
    if isinstance(content, str):
        content = content.encode("utf-8")
    return Attachment(
        FileContent(base64.b64encode(content).decode("ascii")),
        FileName(item["filename"]),
        FileType(item.get("content_type", "text/html")),
        Disposition("attachment"),
    )


def send_notification(recipient, template: str, data: dict, attachments: list | None = None) -> bool:
    """
    Render `email/<template>.html` and send it.

    `recipient` is a User, a user id or an email address. Users who turned
    email notifications off are skipped.
    """
    if template not in SUBJECTS:
        logger.error("Unknown email template: %s", template)
        return False

    email, user = _resolve(recipient)
    if not email:
        logger.warning("No email address for notification %s", template)
        return False
    if user is not None and not user.notify_email:
        logger.info("User %s opted out of email; skipping %s", user.id, template)
        return False

    api_key = current_app.config.get("SENDGRID_API_KEY")
    sender = current_app.config.get("MAIL_DEFAULT_SENDER")
    if not api_key or not sender:
        logger.warning("SendGrid not configured; %s to %s not sent", template, email)
        return False

    context = {
        "site_name": current_app.config.get("INVOICE_ISSUER_NAME"),
        "app_url": (current_app.config.get("APP_URL") or "").rstrip("/"),
        "user_name": (user.display_name if user else None) or email,
        **data,
    }

    try:
        html = render_template(f"email/{template}.html", **context)
        subject = SUBJECTS[template].format(**context)
    except (TemplateError, KeyError) as e:
        logger.error("Email template %s failed to render: %s", template, e)
        return False

    message = Mail(from_email=sender, to_emails=email, subject=subject, html_content=html)
    for item in attachments or []:
        message.add_attachment(_attachment(item))

    try:
        resp = SendGridAPIClient(api_key).send(message)
    except Exception as e:
        # SendGrid raises HTTPError subclasses and plain network errors alike
        body = getattr(e, "body", None)
        status = getattr(e, "status_code", None)
        logger.error("SendGrid error: template=%s status=%s body=%s error=%s", template, status, body, e)
        return False

    if resp.status_code not in (200, 202):
        logger.error("SendGrid rejected %s to %s: status=%s body=%s", template, email, resp.status_code, resp.body)
        return False

    logger.info("Email %s sent to %s", template, email)
    return True


# ----------------------------------------------------------------------
# event receivers
# ----------------------------------------------------------------------
def on_payment_confirmed(user_id, transaction_id=None, amount=None, new_balance=None, provider=None, **kwargs):
    from hostpanel.models import Transaction
    from hostpanel.services.providers import provider_label

    tx = db.session.get(Transaction, transaction_id) if transaction_id else None
    return send_notification(user_id, "balance-topup", {
        "amount": _amount(amount),
        "new_balance": _amount(new_balance),
        "payment_method": provider_label(provider) if provider else "",
        "date": _date(tx.created_at if tx else None),
    })


def on_bonus_credited(user_id, transaction_id=None, amount=None, new_balance=None, reason=None, **kwargs):
    return send_notification(user_id, "bonus", {
        "amount": _amount(amount),
        "new_balance": _amount(new_balance),
        "reason": reason or "",
    })


def on_server_renewed(server, amount=None, new_expires_at=None, transaction_id=None, **kwargs):
    return send_notification(server.user, "server-renewed", {
        "server_name": server.name,
        "plan_name": server.plan.name,
        "amount": _amount(amount),
        "new_expires_at": _date(new_expires_at),
        "renewal_days": current_app.config.get("SERVER_RENEWAL_DAYS", 30),
    })


def on_server_expiring(server, days_left=None, can_auto_renew=False, required_amount=None,
                       current_balance=None, **kwargs):
    return send_notification(server.user, "server-expiring", {
        "server_name": server.name,
        "plan_name": server.plan.name,
        "expires_at": _date(server.expires_at),
        "days_left": days_left,
        "auto_renew": server.auto_renew,
        "can_auto_renew": can_auto_renew,
        "required_amount": _amount(required_amount),
        "current_balance": _amount(current_balance),
    })


def on_server_suspended(server, reason=None, required_amount=None, current_balance=None, **kwargs):
    return send_notification(server.user, "server-suspended", {
        "server_name": server.name,
        "reason": SUSPEND_REASONS.get(reason, reason or ""),
        "required_amount": _amount(required_amount) if required_amount else None,
        "current_balance": _amount(current_balance),
        "grace_days": current_app.config.get("SERVER_TERMINATION_GRACE_DAYS", 7),
    })


def on_invoice_issued(invoice, html=None, **kwargs):
    return send_notification(
        invoice.user,
        "invoice",
        {
            "invoice_number": invoice.number,
            "amount": _amount(invoice.total),
            "due_date": _date(invoice.due_date),
        },
        attachments=[{"filename": f"{invoice.number}.html", "content": html or "", "content_type": "text/html"}],
    )


def init_app(app):
    events.payment_confirmed.connect(on_payment_confirmed)
    events.bonus_credited.connect(on_bonus_credited)
    events.server_renewed.connect(on_server_renewed)
    events.server_expiring.connect(on_server_expiring)
    events.server_suspended.connect(on_server_suspended)
    events.invoice_issued.connect(on_invoice_issued)
    app.logger.debug("Billing notification receivers connected")
