import enum

from hostpanel.extensions import db
from hostpanel.utils import utcnow


class PromocodeType(str, enum.Enum):
    BALANCE = "BALANCE"  # credited to the balance on redemption
    FIXED = "FIXED"      # fixed discount on an order
    PERCENT = "PERCENT"  # percentage discount on an order


class Promocode(db.Model):
    __tablename__ = "promocodes"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(40), unique=True, nullable=False, index=True)
    type = db.Column(db.Enum(PromocodeType, native_enum=False, length=20), nullable=False)
    value = db.Column(db.Numeric(12, 2), nullable=False)

    min_amount = db.Column(db.Numeric(12, 2))
    max_uses = db.Column(db.Integer)
    # Redemption is single-use per user regardless of this value (see PromocodeUsage)
    max_uses_per_user = db.Column(db.Integer, nullable=False, default=1)
    used_count = db.Column(db.Integer, nullable=False, default=0)

    valid_from = db.Column(db.DateTime, nullable=False, default=utcnow)
    valid_until = db.Column(db.DateTime)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    usages = db.relationship("PromocodeUsage", backref="promocode", lazy="dynamic")

    def __repr__(self) -> str:
        return f"<Promocode {self.code} type={self.type} value={self.value} used={self.used_count}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "type": self.type.value,
            "value": str(self.value),
            "min_amount": str(self.min_amount) if self.min_amount is not None else None,
        }


class PromocodeUsage(db.Model):
    __tablename__ = "promocode_usages"
    __table_args__ = (
        db.UniqueConstraint("user_id", "promocode_id", name="uq_promocode_usage_user_code"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    promocode_id = db.Column(db.Integer, db.ForeignKey("promocodes.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2))
    created_at = db.Column(db.DateTime, default=utcnow)
