import enum
from decimal import Decimal

from hostpanel.extensions import db
from hostpanel.utils import money, utcnow


class InvoiceStatus(str, enum.Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    OVERDUE = "OVERDUE"


class Invoice(db.Model):
    __tablename__ = "invoices"

    id = db.Column(db.Integer, primary_key=True)
    # INV-<yyyy>-<nnnnn>
    number = db.Column(db.String(20), unique=True, nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    description = db.Column(db.String(255))
    # [{"name", "description", "quantity", "unit_price", "total"}], money as strings
    items = db.Column(db.JSON, nullable=False, default=list)

    status = db.Column(
        db.Enum(InvoiceStatus, native_enum=False, length=20),
        nullable=False,
        default=InvoiceStatus.UNPAID,
        index=True,
    )
    due_date = db.Column(db.DateTime, nullable=False)
    paid_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    user = db.relationship("User", backref=db.backref("invoices", lazy="dynamic"))

    def __repr__(self) -> str:
        return f"<Invoice {self.number} amount={self.amount} status={self.status}>"

    @property
    def subtotal(self) -> Decimal:
        return sum((money(item.get("total")) for item in self.items or []), Decimal("0.00"))

    @property
    def total(self) -> Decimal:
        return money(self.subtotal + money(self.tax))

    @property
    def is_final(self) -> bool:
        return self.status in {InvoiceStatus.PAID, InvoiceStatus.CANCELLED}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "amount": str(self.amount),
            "tax": str(self.tax),
            "total": str(self.total),
            "description": self.description,
            "items": self.items or [],
            "status": self.status.value,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class InvoiceSequence(db.Model):
    """Per-year invoice counter, row-locked while a number is allocated."""

    __tablename__ = "invoice_sequences"

    year = db.Column(db.Integer, primary_key=True, autoincrement=False)
    last_value = db.Column(db.Integer, nullable=False, default=0)
