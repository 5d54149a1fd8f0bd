# hostpanel/services/invoices.py
"""
Invoices: numbering, lifecycle and the printable HTML document.

Invoices are documents only. Marking one paid never touches the ledger.
"""

import logging
from datetime import timedelta
from decimal import Decimal

from flask import current_app, render_template
from sqlalchemy import func

from hostpanel import events
from hostpanel.errors import InvalidAmount, InvalidInvoiceTransition, InvoiceNotFound, UserNotFound
from hostpanel.extensions import atomic, db
from hostpanel.models import Invoice, InvoiceSequence, InvoiceStatus, User
from hostpanel.utils import money, utcnow

logger = logging.getLogger(__name__)

NUMBER_DIGITS = 5

STATUS_COLORS = {
    InvoiceStatus.UNPAID: "#f59e0b",
    InvoiceStatus.PAID: "#22c55e",
    InvoiceStatus.OVERDUE: "#ef4444",
    InvoiceStatus.CANCELLED: "#6b7280",
}

STATUS_LABELS = {
    InvoiceStatus.UNPAID: "Unpaid",
    InvoiceStatus.PAID: "Paid",
    InvoiceStatus.OVERDUE: "Overdue",
    InvoiceStatus.CANCELLED: "Cancelled",
}


def _prefix(year: int) -> str:
    return f"INV-{year}-"


def _last_issued(year: int) -> int:
    prefix = _prefix(year)
    last = (
        db.session.query(func.max(Invoice.number))
        .filter(Invoice.number.like(f"{prefix}%"))
        .scalar()
    )
    if not last:
        return 0
    try:
        return int(last[len(prefix):])
    except ValueError:
        return 0


def _allocate_number(year: int) -> str:
    """Next number for `year`. Runs inside the caller's unit of work."""
    seq = (
        db.session.query(InvoiceSequence)
        .filter(InvoiceSequence.year == year)
        .with_for_update()
        .one_or_none()
    )
    if seq is None:
        seq = InvoiceSequence(year=year, last_value=_last_issued(year))
        db.session.add(seq)

    seq.last_value += 1
    db.session.flush()
    return f"{_prefix(year)}{seq.last_value:0{NUMBER_DIGITS}d}"


def generate_invoice_number(year: int | None = None) -> str:
    year = year or utcnow().year
    with atomic():
        number = _allocate_number(year)
    return number


def _normalize_items(items) -> list[dict]:
    if not items:
        raise InvalidAmount("An invoice needs at least one item")

    normalized = []
    for item in items:
        quantity = int(item.get("quantity") or 1)
        unit_price = money(item.get("unit_price", item.get("unitPrice")))
        total = item.get("total")
        total = money(total) if total is not None else money(unit_price * quantity)
        normalized.append({
            "name": str(item.get("name") or "Service"),
            "description": item.get("description") or None,
            "quantity": quantity,
            "unit_price": str(unit_price),
            "total": str(total),
        })
    return normalized


def create_invoice(user_id: int, items, description: str | None = None, due_date=None, tax=0) -> Invoice:
    items = _normalize_items(items)
    amount = sum((money(i["total"]) for i in items), Decimal("0.00"))
    if amount <= 0:
        raise InvalidAmount(amount=str(amount))

    now = utcnow()
    due_days = current_app.config.get("INVOICE_DUE_DAYS", 7)

    with atomic():
        if db.session.get(User, user_id) is None:
            raise UserNotFound(user_id=user_id)

        invoice = Invoice(
            number=_allocate_number(now.year),
            user_id=user_id,
            amount=amount,
            tax=money(tax),
            description=description,
            items=items,
            status=InvoiceStatus.UNPAID,
            due_date=due_date or now + timedelta(days=due_days),
            created_at=now,
        )
        db.session.add(invoice)

    logger.info("Invoice %s created user=%s amount=%s", invoice.number, user_id, amount)
    return invoice


def _get(invoice_id: int) -> Invoice:
    invoice = (
        db.session.query(Invoice)
        .filter(Invoice.id == invoice_id)
        .with_for_update()
        .one_or_none()
    )
    if invoice is None:
        raise InvoiceNotFound(invoice_id=invoice_id)
    return invoice


def mark_paid(invoice_id: int, now=None) -> Invoice:
    with atomic():
        invoice = _get(invoice_id)
        if invoice.is_final:
            raise InvalidInvoiceTransition(
                f"Invoice {invoice.number} is already {invoice.status.value.lower()}",
                invoice_id=invoice_id,
            )
        invoice.status = InvoiceStatus.PAID
        invoice.paid_at = now or utcnow()

    logger.info("Invoice %s marked paid", invoice.number)
    return invoice


def cancel_invoice(invoice_id: int) -> Invoice:
    with atomic():
        invoice = _get(invoice_id)
        if invoice.is_final:
            raise InvalidInvoiceTransition(
                f"Invoice {invoice.number} is already {invoice.status.value.lower()}",
                invoice_id=invoice_id,
            )
        invoice.status = InvoiceStatus.CANCELLED

    logger.info("Invoice %s cancelled", invoice.number)
    return invoice


def check_overdue_invoices(now=None) -> int:
    now = now or utcnow()
    with atomic():
        count = (
            Invoice.query
            .filter(Invoice.status == InvoiceStatus.UNPAID, Invoice.due_date < now)
            .update({Invoice.status: InvoiceStatus.OVERDUE}, synchronize_session=False)
        )

    if count:
        logger.info("%s invoice(s) marked overdue", count)
    return count


def get_user_invoices(user_id: int) -> list[Invoice]:
    return (
        Invoice.query.filter_by(user_id=user_id)
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .all()
    )


def get_invoice_by_number(number: str) -> Invoice | None:
    return Invoice.query.filter_by(number=number).first()


def format_money(value) -> str:
    symbol = current_app.config.get("INVOICE_CURRENCY_SYMBOL", "")
    text = f"{money(value):,.2f}".replace(",", " ")
    return f"{text} {symbol}".strip()


def render_invoice_html(invoice: Invoice) -> str:
    cfg = current_app.config
    issuer = {
        "name": cfg.get("INVOICE_ISSUER_NAME"),
        "site": cfg.get("INVOICE_ISSUER_SITE"),
        "legal": cfg.get("INVOICE_ISSUER_LEGAL"),
        "tax_id": cfg.get("INVOICE_ISSUER_TAX_ID"),
        "email": cfg.get("INVOICE_ISSUER_EMAIL"),
    }
    return render_template(
        "invoices/invoice.html",
        invoice=invoice,
        customer=invoice.user,
        issuer=issuer,
        items=invoice.items or [],
        subtotal=invoice.subtotal,
        total=invoice.total,
        status_color=STATUS_COLORS[invoice.status],
        status_label=STATUS_LABELS[invoice.status],
        show_due=invoice.status in (InvoiceStatus.UNPAID, InvoiceStatus.OVERDUE),
        show_paid=invoice.status == InvoiceStatus.PAID and invoice.paid_at is not None,
        fmt=format_money,
    )


def send_invoice_email(invoice_id: int) -> bool:
    """Hand the rendered invoice to whoever listens for invoice_issued."""
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise InvoiceNotFound(invoice_id=invoice_id)

    html = render_invoice_html(invoice)
    results = events.invoice_issued.send(invoice, html=html)
    if not results:
        logger.warning("Invoice %s rendered but nobody is subscribed to deliver it", invoice.number)
    return any(delivered for _, delivered in results)
