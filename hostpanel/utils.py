import random
import string
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from functools import wraps

from flask import abort
from flask_login import current_user

Q = Decimal("0.01")


def admin_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            abort(401)
        if not getattr(current_user, "is_admin", False):
            abort(403)
        return fn(*args, **kwargs)
    return wrapper


def money(v) -> Decimal:
    """Convert anything to a 2dp Decimal safely."""
    return Decimal(str(v or 0)).quantize(Q, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    # Naive UTC, matching what the DateTime columns store
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_code(length=8):
    chars = string.ascii_uppercase + string.digits
    return "".join(random.choices(chars, k=length))
