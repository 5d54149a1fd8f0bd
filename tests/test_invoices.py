from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from hostpanel import events
from hostpanel.errors import InvalidAmount, InvalidInvoiceTransition, InvoiceNotFound, UserNotFound
from hostpanel.models import Invoice, InvoiceStatus, Transaction
from hostpanel.services import invoices
from hostpanel.utils import utcnow

ITEMS = [
    {"name": "VPS-2", "description": "October", "quantity": 1, "unit_price": "500"},
    {"name": "Backup", "quantity": 2, "unitPrice": "150.50"},
]


def test_numbers_are_sequential_per_year(app):
    assert invoices.generate_invoice_number(2026) == "INV-2026-00001"
    assert invoices.generate_invoice_number(2026) == "INV-2026-00002"
    assert invoices.generate_invoice_number(2027) == "INV-2027-00001"


def test_numbering_continues_from_existing_invoices(db, make_user):
    user = make_user()
    db.session.add(Invoice(
        number="INV-2025-00041",
        user_id=user.id,
        amount=Decimal("10.00"),
        items=[],
        due_date=datetime(2025, 12, 31),
    ))
    db.session.commit()

    assert invoices.generate_invoice_number(2025) == "INV-2025-00042"


def test_create_invoice_computes_totals(make_user):
    user = make_user()

    invoice = invoices.create_invoice(user.id, ITEMS, description="October services", tax="80")

    assert invoice.number == f"INV-{utcnow().year}-00001"
    assert invoice.status == InvoiceStatus.UNPAID
    assert invoice.amount == Decimal("801.00")
    assert invoice.items[1] == {
        "name": "Backup",
        "description": None,
        "quantity": 2,
        "unit_price": "150.50",
        "total": "301.00",
    }
    assert invoice.total == Decimal("881.00")
    assert (invoice.due_date - invoice.created_at) == timedelta(days=7)


def test_create_invoice_validation(make_user):
    with pytest.raises(InvalidAmount):
        invoices.create_invoice(make_user().id, [])
    with pytest.raises(UserNotFound):
        invoices.create_invoice(999, ITEMS)


def test_mark_paid_does_not_touch_ledger(make_user):
    user = make_user()
    invoice = invoices.create_invoice(user.id, ITEMS)
    paid_at = datetime(2026, 10, 18, 12, 0)

    invoices.mark_paid(invoice.id, now=paid_at)

    assert invoice.status == InvoiceStatus.PAID
    assert invoice.paid_at == paid_at
    assert Transaction.query.count() == 0
    assert user.balance == Decimal("0.00")


def test_final_invoices_cannot_change(make_user):
    user = make_user()
    paid = invoices.create_invoice(user.id, ITEMS)
    cancelled = invoices.create_invoice(user.id, ITEMS)
    invoices.mark_paid(paid.id)
    invoices.cancel_invoice(cancelled.id)

    with pytest.raises(InvalidInvoiceTransition):
        invoices.cancel_invoice(paid.id)
    with pytest.raises(InvalidInvoiceTransition):
        invoices.mark_paid(cancelled.id)
    with pytest.raises(InvoiceNotFound):
        invoices.mark_paid(12345)


def test_overdue_sweep(db, make_user):
    user = make_user()
    now = utcnow()
    late = invoices.create_invoice(user.id, ITEMS, due_date=now - timedelta(days=1))
    current = invoices.create_invoice(user.id, ITEMS, due_date=now + timedelta(days=1))
    settled = invoices.create_invoice(user.id, ITEMS, due_date=now - timedelta(days=1))
    invoices.mark_paid(settled.id)

    assert invoices.check_overdue_invoices(now=now) == 1
    assert invoices.check_overdue_invoices(now=now) == 0

    db.session.expire_all()
    assert late.status == InvoiceStatus.OVERDUE
    assert current.status == InvoiceStatus.UNPAID
    assert settled.status == InvoiceStatus.PAID


def test_overdue_invoice_can_still_be_paid(db, make_user):
    user = make_user()
    invoice = invoices.create_invoice(user.id, ITEMS, due_date=utcnow() - timedelta(days=3))
    invoices.check_overdue_invoices()
    db.session.expire_all()

    invoices.mark_paid(invoice.id)

    assert invoice.status == InvoiceStatus.PAID


def test_lookup_helpers(make_user):
    owner, other = make_user(), make_user()
    first = invoices.create_invoice(owner.id, ITEMS)
    second = invoices.create_invoice(owner.id, ITEMS)
    invoices.create_invoice(other.id, ITEMS)

    assert [i.id for i in invoices.get_user_invoices(owner.id)] == [second.id, first.id]
    assert invoices.get_invoice_by_number(first.number).id == first.id
    assert invoices.get_invoice_by_number("INV-1999-00001") is None


def test_format_money(app):
    assert invoices.format_money("1234.5") == "1 234.50 ₽"
    assert invoices.format_money(0) == "0.00 ₽"


def test_render_unpaid_invoice(make_user):
    user = make_user(name="Ivan Petrov", company="Petrov LLC")
    invoice = invoices.create_invoice(user.id, ITEMS, due_date=datetime(2026, 11, 1))

    html = invoices.render_invoice_html(invoice)

    assert invoice.number in html
    assert "Ivan Petrov" in html
    assert "Petrov LLC" in html
    assert "Backup" in html
    assert "801.00 ₽" in html
    assert "Unpaid" in html
    assert "Due date:" in html
    assert "01.11.2026" in html
    assert "Invoice paid" not in html


def test_render_paid_invoice(make_user):
    user = make_user()
    invoice = invoices.create_invoice(user.id, ITEMS)
    invoices.mark_paid(invoice.id, now=datetime(2026, 10, 20, 9, 30))

    html = invoices.render_invoice_html(invoice)

    assert "Invoice paid" in html
    assert "20.10.2026" in html
    assert "Due date:" not in html


def test_send_invoice_email_reports_delivery(make_user):
    user = make_user()
    invoice = invoices.create_invoice(user.id, ITEMS)
    seen = []

    def deliver(sender, html=None, **kwargs):
        seen.append((sender.number, html))
        return True

    with events.invoice_issued.connected_to(deliver):
        assert invoices.send_invoice_email(invoice.id) is True

    assert seen[0][0] == invoice.number
    assert invoice.number in seen[0][1]


def test_send_invoice_email_without_mail_config(make_user):
    invoice = invoices.create_invoice(make_user().id, ITEMS)

    # SendGrid key is empty under TestingConfig, so nobody delivers
    assert invoices.send_invoice_email(invoice.id) is False


def test_send_missing_invoice(app):
    with pytest.raises(InvoiceNotFound):
        invoices.send_invoice_email(42)
