# hostpanel/models/server.py
import enum

from hostpanel.extensions import db
from hostpanel.utils import utcnow


class ServerStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    EXPIRED = "EXPIRED"
    TERMINATED = "TERMINATED"


class Plan(db.Model):
    __tablename__ = "plans"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    # Monthly renewal price
    price = db.Column(db.Numeric(12, 2), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    servers = db.relationship("Server", backref="plan", lazy=True)

    def __repr__(self) -> str:
        return f"<Plan id={self.id} name={self.name} price={self.price}>"


class Server(db.Model):
    """
    Hosted server. Provisioning owns its lifecycle; billing only moves
    status / expires_at / suspended_at.
    """

    __tablename__ = "servers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=False)

    status = db.Column(
        db.Enum(ServerStatus, native_enum=False, length=20),
        nullable=False,
        default=ServerStatus.ACTIVE,
        index=True,
    )
    auto_renew = db.Column(db.Boolean, nullable=False, default=True)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    suspended_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<Server id={self.id} name={self.name} status={self.status} expires_at={self.expires_at}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "plan_id": self.plan_id,
            "status": self.status.value,
            "auto_renew": self.auto_renew,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "suspended_at": self.suspended_at.isoformat() if self.suspended_at else None,
        }
