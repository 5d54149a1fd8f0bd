# hostpanel/services/promocodes.py
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from hostpanel.errors import AlreadyUsed, InvalidAmount, PromocodeError
from hostpanel.extensions import atomic, db
from hostpanel.models import Promocode, PromocodeType, PromocodeUsage, TransactionType
from hostpanel.services.ledger import lock_user, post_entry
from hostpanel.utils import Q, money, utcnow

logger = logging.getLogger(__name__)


@dataclass
class PromocodeCheck:
    valid: bool
    error: str | None = None
    promocode: Promocode | None = None
    discount: Decimal = Decimal("0.00")
    reason: str | None = None


def _normalize(code: str) -> str:
    return (code or "").strip().upper()


def _discount(promo: Promocode, order_amount: Decimal | None) -> Decimal:
    value = money(promo.value)
    if promo.type == PromocodeType.BALANCE:
        return value
    if order_amount is None:
        return Decimal("0.00")
    if promo.type == PromocodeType.FIXED:
        return min(value, order_amount)
    return (order_amount * value / Decimal("100")).quantize(Q)


def validate_promocode(code: str, user_id: int, order_amount=None, now=None) -> PromocodeCheck:
    """Checks a code for this user; never raises for an unusable code."""
    now = now or utcnow()
    promo = Promocode.query.filter_by(code=_normalize(code)).first()

    if promo is None:
        return PromocodeCheck(False, "Promocode not found", reason="not_found")
    if not promo.is_active:
        return PromocodeCheck(False, "Promocode is no longer active", promo, reason="inactive")
    if promo.valid_from and now < promo.valid_from:
        return PromocodeCheck(False, "Promocode is not active yet", promo, reason="not_started")
    if promo.valid_until and now > promo.valid_until:
        return PromocodeCheck(False, "Promocode has expired", promo, reason="expired")
    if promo.max_uses is not None and promo.used_count >= promo.max_uses:
        return PromocodeCheck(False, "Promocode usage limit reached", promo, reason="exhausted")

    used = PromocodeUsage.query.filter_by(user_id=user_id, promocode_id=promo.id).first()
    if used is not None:
        return PromocodeCheck(False, "You have already used this promocode", promo, reason="already_used")

    amount = money(order_amount) if order_amount is not None else None
    if promo.min_amount is not None and amount is not None and amount < money(promo.min_amount):
        return PromocodeCheck(False, f"Minimum order amount is {money(promo.min_amount)}", promo, reason="min_amount")

    return PromocodeCheck(True, None, promo, _discount(promo, amount))


def apply_promocode_to_balance(user_id: int, promocode_id: int, amount):
    """
    Credit `amount` and record the usage in one unit.

    (user_id, promocode_id) is unique in storage, so a concurrent second
    redemption fails on commit and is reported as AlreadyUsed.
    """
    amount = money(amount)
    if amount <= 0:
        raise InvalidAmount(amount=str(amount))

    if PromocodeUsage.query.filter_by(user_id=user_id, promocode_id=promocode_id).first():
        raise AlreadyUsed(user_id=user_id, promocode_id=promocode_id)

    try:
        with atomic():
            promo = (
                db.session.query(Promocode)
                .filter(Promocode.id == promocode_id)
                .with_for_update()
                .one_or_none()
            )
            if promo is None:
                raise PromocodeError("Promocode not found", promocode_id=promocode_id)

            user = lock_user(user_id)
            entry = post_entry(
                user,
                TransactionType.PROMOCODE,
                amount,
                f"Promocode {promo.code}",
                metadata={"promocode_id": promo.id},
            )
            db.session.add(PromocodeUsage(user_id=user_id, promocode_id=promo.id, amount=amount))
            promo.used_count = (promo.used_count or 0) + 1
    except IntegrityError:
        raise AlreadyUsed(user_id=user_id, promocode_id=promocode_id)

    logger.info("Promocode %s applied user=%s amount=%s tx=%s", promocode_id, user_id, amount, entry.id)
    return entry


def redeem_promocode(user_id: int, code: str, order_amount=None) -> dict:
    check = validate_promocode(code, user_id, order_amount)
    if not check.valid:
        if check.reason == "already_used":
            raise AlreadyUsed(check.error, code=_normalize(code))
        raise PromocodeError(check.error, code=_normalize(code))

    promo = check.promocode
    if promo.type == PromocodeType.BALANCE:
        entry = apply_promocode_to_balance(user_id, promo.id, promo.value)
        return {
            "type": promo.type.value,
            "amount": str(entry.amount),
            "new_balance": str(entry.balance_after),
            "transaction_id": entry.id,
        }

    return {"type": promo.type.value, "discount": str(check.discount), "promocode": promo.to_dict()}


def create_promocode(
    code: str,
    type: PromocodeType,
    value,
    min_amount=None,
    max_uses: int | None = None,
    max_uses_per_user: int = 1,
    valid_from=None,
    valid_until=None,
) -> Promocode:
    code = _normalize(code)
    if not code:
        raise PromocodeError("Promocode is required")

    value = money(value)
    if value <= 0:
        raise InvalidAmount(amount=str(value))
    if PromocodeType(type) == PromocodeType.PERCENT and value > 100:
        raise PromocodeError("Percent discount cannot exceed 100")
    if Promocode.query.filter_by(code=code).first():
        raise PromocodeError("Promocode already exists", code=code)

    with atomic():
        promo = Promocode(
            code=code,
            type=PromocodeType(type),
            value=value,
            min_amount=money(min_amount) if min_amount is not None else None,
            max_uses=max_uses,
            max_uses_per_user=max_uses_per_user or 1,
            valid_from=valid_from or utcnow(),
            valid_until=valid_until,
            is_active=True,
        )
        db.session.add(promo)

    logger.info("Promocode created code=%s type=%s value=%s", code, promo.type.value, value)
    return promo


def deactivate_promocode(promocode_id: int) -> Promocode:
    with atomic():
        promo = db.session.get(Promocode, promocode_id)
        if promo is None:
            raise PromocodeError("Promocode not found", promocode_id=promocode_id)
        promo.is_active = False

    logger.info("Promocode deactivated id=%s", promocode_id)
    return promo
