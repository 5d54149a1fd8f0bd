from hostpanel.extensions import db
from hostpanel.utils import utcnow


class GiftCertificate(db.Model):
    __tablename__ = "gift_certificates"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), unique=True, nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    # Unredeemed value; zero once credited
    balance = db.Column(db.Numeric(12, 2), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    expires_at = db.Column(db.DateTime)

    redeemed_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True)
    redeemed_at = db.Column(db.DateTime)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"))
    created_at = db.Column(db.DateTime, default=utcnow)

    redeemed_by = db.relationship("User", foreign_keys=[redeemed_by_id])

    def __repr__(self) -> str:
        return f"<GiftCertificate {self.code} balance={self.balance}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "amount": str(self.amount),
            "balance": str(self.balance),
            "is_active": self.is_active,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "redeemed_by_id": self.redeemed_by_id,
            "redeemed_at": self.redeemed_at.isoformat() if self.redeemed_at else None,
        }
