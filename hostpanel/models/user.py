from decimal import Decimal

from flask_login import UserMixin

from hostpanel.extensions import db
from hostpanel.utils import utcnow


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(120))
    company = db.Column(db.String(120))
    phone = db.Column(db.String(40))

    # Derived cache of the ledger; only services.ledger writes these
    balance = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    referral_balance = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    referral_code = db.Column(db.String(10), unique=True)
    referred_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)

    notify_email = db.Column(db.Boolean, nullable=False, default=True)
    is_admin = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    referred_by = db.relationship("User", remote_side=[id], backref="referred_users")

    transactions = db.relationship(
        "Transaction",
        backref="user",
        lazy="dynamic",
        order_by="Transaction.created_at.desc()",
    )

    servers = db.relationship("Server", backref="user", lazy=True)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} balance={self.balance}>"

    @property
    def display_name(self) -> str:
        return self.name or self.email
