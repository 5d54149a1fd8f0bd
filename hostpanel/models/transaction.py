import enum

from sqlalchemy import event, inspect

from hostpanel.errors import ImmutableTransactionError
from hostpanel.extensions import db
from hostpanel.utils import money, utcnow


class TransactionType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    PURCHASE = "PURCHASE"
    REFUND = "REFUND"
    BONUS = "BONUS"
    REFERRAL = "REFERRAL"
    PROMOCODE = "PROMOCODE"
    WITHDRAWAL = "WITHDRAWAL"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class Transaction(db.Model):
    """Immutable ledger entry. Rows are never deleted."""

    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_payment", "payment_id", "payment_method", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)

    type = db.Column(db.Enum(TransactionType, native_enum=False, length=20), nullable=False)
    # active_history: old values are loaded for _transaction_before_update
    amount = db.column_property(db.Column(db.Numeric(12, 2), nullable=False), active_history=True)  # signed
    balance_before = db.column_property(db.Column(db.Numeric(12, 2), nullable=False), active_history=True)
    balance_after = db.column_property(db.Column(db.Numeric(12, 2), nullable=False), active_history=True)
    description = db.Column(db.String(255))

    # External correlation key: (payment_id, payment_method)
    payment_method = db.Column(db.String(20))
    payment_id = db.Column(db.String(120))

    status = db.column_property(
        db.Column(
            db.Enum(PaymentStatus, native_enum=False, length=20),
            nullable=False,
            default=PaymentStatus.COMPLETED,
            index=True,
        ),
        active_history=True,
    )
    meta = db.Column("metadata", db.JSON)

    # Set on REFUND rows; unique so an original can be refunded once
    refund_of_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), unique=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

    refund_of = db.relationship("Transaction", remote_side=[id], backref=db.backref("refund", uselist=False))

    def __repr__(self) -> str:
        return (
            f"<Transaction id={self.id} user_id={self.user_id} type={self.type} "
            f"amount={self.amount} status={self.status}>"
        )

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "amount": str(self.amount),
            "balance_before": str(self.balance_before),
            "balance_after": str(self.balance_after),
            "description": self.description,
            "payment_method": self.payment_method,
            "payment_id": self.payment_id,
            "status": self.status.value,
            "metadata": self.meta or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _check_snapshot(target):
    # PENDING and FAILED rows never moved the balance
    if target.status != PaymentStatus.COMPLETED:
        return
    if money(target.balance_after) != money(target.balance_before) + money(target.amount):
        raise ImmutableTransactionError(
            "balance_after must equal balance_before + amount",
            transaction_id=target.id,
        )


@event.listens_for(Transaction, "before_insert")
def _transaction_before_insert(mapper, connection, target):
    _check_snapshot(target)


@event.listens_for(Transaction, "before_update")
def _transaction_before_update(mapper, connection, target):
    state = inspect(target)

    if state.attrs.amount.history.deleted:
        raise ImmutableTransactionError("amount is write-once", transaction_id=target.id)

    status_history = state.attrs.status.history
    previous_status = status_history.deleted[0] if status_history.deleted else target.status

    snapshot_changed = (
        state.attrs.balance_before.history.deleted
        or state.attrs.balance_after.history.deleted
    )
    if snapshot_changed and previous_status != PaymentStatus.PENDING:
        raise ImmutableTransactionError(
            "balance snapshots are frozen once a transaction is settled",
            transaction_id=target.id,
        )

    _check_snapshot(target)
