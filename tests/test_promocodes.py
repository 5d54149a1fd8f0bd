from datetime import timedelta
from decimal import Decimal

import pytest

from hostpanel.errors import AlreadyUsed, InvalidAmount, PromocodeError
from hostpanel.models import Promocode, PromocodeType, PromocodeUsage, Transaction, TransactionType
from hostpanel.services import promocodes
from hostpanel.utils import utcnow


def test_balance_code_credits_once(db, make_user):
    user = make_user(balance="10.00")
    promo = promocodes.create_promocode("welcome100", PromocodeType.BALANCE, "100")

    outcome = promocodes.redeem_promocode(user.id, " Welcome100 ")

    assert outcome["type"] == "BALANCE"
    assert outcome["amount"] == "100.00"
    assert outcome["new_balance"] == "110.00"
    entry = db.session.get(Transaction, outcome["transaction_id"])
    assert entry.type == TransactionType.PROMOCODE
    assert entry.meta == {"promocode_id": promo.id}
    assert promo.used_count == 1

    with pytest.raises(AlreadyUsed):
        promocodes.redeem_promocode(user.id, "WELCOME100")
    assert user.balance == Decimal("110.00")
    assert PromocodeUsage.query.count() == 1


def test_apply_twice_is_rejected_even_without_validation(make_user):
    user = make_user()
    promo = promocodes.create_promocode("GIFT", PromocodeType.BALANCE, "50")
    promocodes.apply_promocode_to_balance(user.id, promo.id, promo.value)

    with pytest.raises(AlreadyUsed):
        promocodes.apply_promocode_to_balance(user.id, promo.id, promo.value)
    assert user.balance == Decimal("50.00")


def test_different_users_may_redeem_the_same_code(make_user):
    first, second = make_user(), make_user()
    promo = promocodes.create_promocode("SHARED", PromocodeType.BALANCE, "20", max_uses=2)

    promocodes.redeem_promocode(first.id, "SHARED")
    promocodes.redeem_promocode(second.id, "SHARED")

    assert promo.used_count == 2
    check = promocodes.validate_promocode("SHARED", make_user().id)
    assert (check.valid, check.reason) == (False, "exhausted")


@pytest.mark.parametrize("field, value, reason", [
    ("is_active", False, "inactive"),
    ("valid_until", -1, "expired"),
    ("valid_from", 1, "not_started"),
])
def test_unusable_codes(db, make_user, field, value, reason):
    user = make_user()
    promo = promocodes.create_promocode("LIMITED", PromocodeType.BALANCE, "100")
    if isinstance(value, int) and not isinstance(value, bool):
        value = utcnow() + timedelta(days=value)
    setattr(promo, field, value)
    db.session.commit()

    check = promocodes.validate_promocode("LIMITED", user.id)

    assert not check.valid
    assert check.reason == reason
    with pytest.raises(PromocodeError):
        promocodes.redeem_promocode(user.id, "LIMITED")
    assert user.balance == Decimal("0.00")


def test_unknown_code(make_user):
    check = promocodes.validate_promocode("NOPE", make_user().id)

    assert check.reason == "not_found"
    assert check.error == "Promocode not found"


def test_percent_discount(make_user):
    user = make_user()
    promocodes.create_promocode("SALE15", PromocodeType.PERCENT, "15")

    check = promocodes.validate_promocode("sale15", user.id, order_amount="1000")

    assert check.valid
    assert check.discount == Decimal("150.00")


def test_fixed_discount_is_capped_at_order_amount(make_user):
    user = make_user()
    promocodes.create_promocode("MINUS300", PromocodeType.FIXED, "300")

    outcome = promocodes.redeem_promocode(user.id, "MINUS300", order_amount="200")

    assert outcome["discount"] == "200.00"
    # Order discounts are not recorded as balance movements
    assert Transaction.query.count() == 0


def test_minimum_order_amount(make_user):
    user = make_user()
    promocodes.create_promocode("BIG", PromocodeType.FIXED, "100", min_amount="1000")

    assert promocodes.validate_promocode("BIG", user.id, order_amount="999").reason == "min_amount"
    assert promocodes.validate_promocode("BIG", user.id, order_amount="1000").valid


def test_create_rejects_duplicates_and_bad_values(app):
    promocodes.create_promocode("ONCE", PromocodeType.FIXED, "10")

    with pytest.raises(PromocodeError):
        promocodes.create_promocode("once", PromocodeType.FIXED, "10")
    with pytest.raises(PromocodeError):
        promocodes.create_promocode("HALFPLUS", PromocodeType.PERCENT, "101")
    with pytest.raises(InvalidAmount):
        promocodes.create_promocode("ZERO", PromocodeType.BALANCE, "0")
    assert Promocode.query.count() == 1


def test_deactivate(make_user):
    promo = promocodes.create_promocode("OFF", PromocodeType.BALANCE, "10")

    promocodes.deactivate_promocode(promo.id)

    assert promocodes.validate_promocode("OFF", make_user().id).reason == "inactive"
