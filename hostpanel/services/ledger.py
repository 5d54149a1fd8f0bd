# hostpanel/services/ledger.py
"""
Balance ledger.

Every balance change is one atomic unit: lock the user row, compute the new
balance, insert one Transaction carrying both snapshots, write the balance
back. The Transaction rows are the source of truth; User.balance is a cache
of their running sum.
"""

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import func

from hostpanel import events
from hostpanel.errors import (
    AlreadyRefunded,
    BillingError,
    InsufficientFunds,
    InvalidAmount,
    NotRefundable,
    TransactionNotFound,
    UserNotFound,
)
from hostpanel.extensions import atomic, db
from hostpanel.models import PaymentStatus, ReferralEarning, Transaction, TransactionType, User
from hostpanel.utils import money

logger = logging.getLogger(__name__)


def _positive(amount) -> Decimal:
    value = money(amount)
    if value <= Decimal("0.00"):
        raise InvalidAmount(amount=str(amount))
    return value


def lock_user(user_id: int) -> User:
    """Load the user row with a row lock for the rest of the current unit."""
    user = (
        db.session.query(User)
        .filter(User.id == user_id)
        .with_for_update()
        .one_or_none()
    )
    if user is None:
        raise UserNotFound(user_id=user_id)
    return user


def post_entry(
    user: User,
    type: TransactionType,
    amount,
    description: str | None = None,
    *,
    payment_method: str | None = None,
    payment_id: str | None = None,
    metadata: dict | None = None,
    refund_of: Transaction | None = None,
) -> Transaction:
    """
    Append one COMPLETED entry and move the user's balance by `amount`.

    Caller owns the unit of work and must already hold the user row lock
    (see lock_user). Nothing is committed here.
    """
    amount = money(amount)
    balance_before = money(user.balance)
    balance_after = balance_before + amount

    entry = Transaction(
        user_id=user.id,
        type=type,
        amount=amount,
        balance_before=balance_before,
        balance_after=balance_after,
        description=description,
        payment_method=payment_method,
        payment_id=payment_id,
        status=PaymentStatus.COMPLETED,
        meta=metadata,
        refund_of=refund_of,
    )
    user.balance = balance_after

    db.session.add(entry)
    db.session.flush()
    return entry


def deposit(
    user_id: int,
    amount,
    description: str | None = None,
    payment_method: str | None = None,
    payment_id: str | None = None,
    metadata: dict | None = None,
) -> Transaction:
    amount = _positive(amount)

    with atomic():
        user = lock_user(user_id)
        entry = post_entry(
            user,
            TransactionType.DEPOSIT,
            amount,
            description or "Balance top-up",
            payment_method=payment_method,
            payment_id=payment_id,
            metadata=metadata,
        )

    logger.info("Deposit user=%s amount=%s balance=%s tx=%s", user_id, amount, entry.balance_after, entry.id)
    return entry


def withdraw(
    user_id: int,
    amount,
    description: str | None = None,
    type: TransactionType = TransactionType.PURCHASE,
) -> Transaction:
    amount = _positive(amount)

    with atomic():
        user = lock_user(user_id)
        balance = money(user.balance)
        if balance < amount:
            raise InsufficientFunds(user_id=user_id, required=str(amount), available=str(balance))

        entry = post_entry(user, type, -amount, description or "Charge")

    logger.info("Withdraw user=%s amount=%s balance=%s tx=%s", user_id, amount, entry.balance_after, entry.id)
    return entry


def refund(transaction_id: int, reason: str | None = None) -> Transaction:
    """
    Credit back a PURCHASE.

    An original can be refunded once: the REFUND row references it through
    the unique refund_of_id column.
    """
    with atomic():
        original = (
            db.session.query(Transaction)
            .filter(Transaction.id == transaction_id)
            .with_for_update()
            .one_or_none()
        )
        if original is None:
            raise TransactionNotFound(transaction_id=transaction_id)
        if original.type != TransactionType.PURCHASE:
            raise NotRefundable(transaction_id=transaction_id, type=original.type.value)
        if original.refund is not None:
            raise AlreadyRefunded(transaction_id=transaction_id, refund_id=original.refund.id)

        user = lock_user(original.user_id)
        entry = post_entry(
            user,
            TransactionType.REFUND,
            abs(money(original.amount)),
            reason or "Refund",
            metadata={"original_transaction_id": original.id},
            refund_of=original,
        )

    logger.info("Refund tx=%s of original=%s amount=%s", entry.id, transaction_id, entry.amount)
    return entry


def referral_bonus(user_id: int, amount, referred_user_id: int) -> Transaction:
    """
    Credit a referrer. The ReferralEarning row is written in the same unit;
    its unique referred_user_id makes a second bonus fail with IntegrityError.
    """
    amount = _positive(amount)

    with atomic():
        user = lock_user(user_id)
        entry = post_entry(
            user,
            TransactionType.REFERRAL,
            amount,
            "Referral bonus",
            metadata={"referred_user_id": referred_user_id},
        )
        user.referral_balance = money(user.referral_balance) + amount
        db.session.add(ReferralEarning(
            referrer_id=user.id,
            referred_user_id=referred_user_id,
            transaction_id=entry.id,
            amount=amount,
        ))

    logger.info("Referral bonus user=%s referred=%s amount=%s", user_id, referred_user_id, amount)
    return entry


def bonus(user_id: int, amount, description: str | None = None, metadata: dict | None = None) -> Transaction:
    """Credit a BONUS entry (admin grants, gift certificates)."""
    amount = _positive(amount)

    with atomic():
        user = lock_user(user_id)
        entry = post_entry(user, TransactionType.BONUS, amount, description or "Bonus", metadata=metadata)

    logger.info("Bonus user=%s amount=%s balance=%s tx=%s", user_id, amount, entry.balance_after, entry.id)
    return entry


@dataclass
class MassBonusResult:
    success: int = 0
    failed: int = 0
    total_amount: Decimal = Decimal("0.00")
    transaction_ids: list[int] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "failed": self.failed,
            "total_amount": str(self.total_amount),
            "transaction_ids": self.transaction_ids,
            "errors": self.errors,
        }


def mass_bonus(
    user_ids,
    amount,
    description: str | None = None,
    metadata: dict | None = None,
    notify: bool = False,
) -> MassBonusResult:
    """
    Credit the same BONUS to many users.

    Each user is its own unit of work, so one unknown id does not undo the
    credits already made; failures are collected per user. Repeated ids are
    credited once. With `notify`, bonus_credited is sent after each commit.
    """
    amount = _positive(amount)
    result = MassBonusResult()

    for user_id in dict.fromkeys(user_ids):
        try:
            entry = bonus(user_id, amount, description, metadata=metadata)
        except BillingError as e:
            logger.warning("Mass bonus skipped user=%s: %s", user_id, e.code)
            result.failed += 1
            result.errors.append({"user_id": user_id, "error": e.code})
            continue

        result.success += 1
        result.transaction_ids.append(entry.id)
        if notify:
            events.emit(
                events.bonus_credited,
                user_id,
                transaction_id=entry.id,
                amount=entry.amount,
                new_balance=entry.balance_after,
                reason=description,
            )

    result.total_amount = money(amount * result.success)
    logger.info("Mass bonus amount=%s success=%s failed=%s", amount, result.success, result.failed)
    return result


def get_transaction_history(user_id: int, page: int = 1, limit: int = 20) -> dict:
    page = max(int(page), 1)
    limit = max(min(int(limit), 100), 1)

    query = Transaction.query.filter_by(user_id=user_id)
    total = query.count()
    items = (
        query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "transactions": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if total else 0,
        },
    }


def ledger_balance(user_id: int) -> Decimal:
    """Sum of completed entries; equals User.balance when the ledger is consistent."""
    total = db.session.query(
        func.coalesce(func.sum(Transaction.amount), 0)
    ).filter(
        Transaction.user_id == user_id,
        Transaction.status == PaymentStatus.COMPLETED,
    ).scalar()
    return money(total)
