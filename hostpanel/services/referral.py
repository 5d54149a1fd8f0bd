# hostpanel/services/referral.py
import logging
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy.exc import IntegrityError

from hostpanel.errors import ReferralError, UserNotFound
from hostpanel.extensions import atomic, db
from hostpanel.models import ReferralEarning, User
from hostpanel.services import ledger
from hostpanel.utils import Q, generate_code, money

logger = logging.getLogger(__name__)


def _bonus_for(payment_amount) -> Decimal:
    percent = Decimal(str(current_app.config.get("REFERRAL_BONUS_PERCENT", 10)))
    low = money(current_app.config.get("REFERRAL_BONUS_MIN", 50))
    high = money(current_app.config.get("REFERRAL_BONUS_MAX", 500))

    bonus = (money(payment_amount) * percent / Decimal("100")).quantize(Q, rounding=ROUND_HALF_UP)
    return max(low, min(high, bonus))


def generate_referral_code() -> str:
    """8 chars, unique among users."""
    while True:
        code = generate_code(8)
        if not User.query.filter_by(referral_code=code).first():
            return code


def regenerate_referral_code(user_id: int) -> str:
    with atomic():
        user = db.session.get(User, user_id)
        if user is None:
            raise UserNotFound(user_id=user_id)
        user.referral_code = generate_referral_code()
    return user.referral_code


def apply_referral_code(user_id: int, referral_code: str) -> User:
    code = (referral_code or "").strip().upper()

    with atomic():
        user = db.session.get(User, user_id)
        if user is None:
            raise UserNotFound(user_id=user_id)

        referrer = User.query.filter_by(referral_code=code).first() if code else None
        if referrer is None:
            raise ReferralError("Referral code not found", code=code)
        if referrer.id == user.id:
            raise ReferralError("You cannot use your own referral code")
        if user.referred_by_id is not None:
            raise ReferralError("A referral code has already been applied")

        user.referred_by_id = referrer.id

    logger.info("Referral code %s applied: user=%s referrer=%s", code, user_id, referrer.id)
    return user


def process_referral_bonus(referred_user_id: int, payment_amount):
    """
    Credit the referrer of `referred_user_id` for a confirmed payment.

    10% of the payment clamped to [50, 500]; paid once per referred user.
    Returns the REFERRAL transaction, or None when nothing is due.
    """
    user = db.session.get(User, referred_user_id)
    if user is None or not user.referred_by_id:
        return None

    if user.referred_by_id == user.id:
        return None

    if ReferralEarning.query.filter_by(referred_user_id=user.id).first():
        return None

    bonus = _bonus_for(payment_amount)
    try:
        entry = ledger.referral_bonus(user.referred_by_id, bonus, referred_user_id=user.id)
    except IntegrityError:
        # Another confirmation paid it first
        logger.info("Referral bonus for user=%s already paid", referred_user_id)
        return None

    return entry


def get_referral_info(user_id: int) -> dict:
    user = db.session.get(User, user_id)
    if user is None:
        raise UserNotFound(user_id=user_id)

    if not user.referral_code:
        regenerate_referral_code(user.id)

    referrals = sorted(user.referred_users, key=lambda u: u.id, reverse=True)
    earned = sum((money(e.amount) for e in user.referrals_given), Decimal("0.00"))
    base = (current_app.config.get("APP_URL") or "").rstrip("/")

    return {
        "referral_code": user.referral_code,
        "referral_link": f"{base}/register?ref={user.referral_code}",
        "referral_balance": str(money(user.referral_balance)),
        "total_earned": str(earned),
        "total_referrals": len(referrals),
        "referred_by": (
            {"id": user.referred_by.id, "name": user.referred_by.display_name}
            if user.referred_by else None
        ),
        "referrals": [
            {
                "id": u.id,
                "name": u.display_name,
                "created_at": u.created_at.isoformat() if u.created_at else None,
            }
            for u in referrals
        ],
    }
