from hostpanel.extensions import db
from hostpanel.utils import utcnow


class ReferralEarning(db.Model):
    id = db.Column(db.Integer, primary_key=True)

    referrer_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    # One bonus per referred user
    referred_user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, unique=True)

    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    referrer = db.relationship("User", foreign_keys=[referrer_id], backref="referrals_given")
    referred_user = db.relationship("User", foreign_keys=[referred_user_id], backref="referrals_received")
    transaction = db.relationship("Transaction")
