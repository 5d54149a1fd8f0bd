# hostpanel/services/gift_certificates.py
"""
Gift certificates: prepaid codes redeemed into the balance as a BONUS entry.

A certificate is credited whole, once. Redemption locks the certificate row
and the user row in the same unit, so two concurrent redemptions of one code
credit exactly one balance.
"""

import logging

from hostpanel.errors import GiftCertificateError, GiftCertificateNotFound, InvalidAmount
from hostpanel.extensions import atomic, db
from hostpanel.models import GiftCertificate, TransactionType
from hostpanel.services.ledger import lock_user, post_entry
from hostpanel.utils import generate_code, money, utcnow

logger = logging.getLogger(__name__)


def _normalize(code: str) -> str:
    return (code or "").strip().upper()


def generate_certificate_code() -> str:
    while True:
        code = "GIFT-" + generate_code(12)
        if not GiftCertificate.query.filter_by(code=code).first():
            return code


def create_gift_certificate(amount, code: str | None = None, expires_at=None) -> GiftCertificate:
    amount = money(amount)
    if amount <= 0:
        raise InvalidAmount(amount=str(amount))
    code = _normalize(code) or generate_certificate_code()
    if GiftCertificate.query.filter_by(code=code).first():
        raise GiftCertificateError("Gift certificate already exists", code=code)

    with atomic():
        certificate = GiftCertificate(
            code=code,
            amount=amount,
            balance=amount,
            is_active=True,
            expires_at=expires_at,
        )
        db.session.add(certificate)

    logger.info("Gift certificate created code=%s amount=%s", code, amount)
    return certificate


def redeem_gift_certificate(user_id: int, code: str, now=None):
    """Credit the certificate's remaining value to the user. Returns the BONUS entry."""
    now = now or utcnow()
    code = _normalize(code)
    if not code:
        raise GiftCertificateError("Gift certificate code is required")

    with atomic():
        certificate = (
            db.session.query(GiftCertificate)
            .filter(GiftCertificate.code == code)
            .with_for_update()
            .one_or_none()
        )
        if certificate is None:
            raise GiftCertificateNotFound(code=code)
        if not certificate.is_active:
            raise GiftCertificateError("Gift certificate is deactivated", code=code)
        if certificate.redeemed_by_id is not None and certificate.redeemed_by_id != user_id:
            raise GiftCertificateError("Gift certificate was redeemed by another user", code=code)
        if money(certificate.balance) <= 0:
            raise GiftCertificateError("Gift certificate has already been used", code=code)
        if certificate.expires_at is not None and certificate.expires_at < now:
            raise GiftCertificateError("Gift certificate has expired", code=code)

        user = lock_user(user_id)
        entry = post_entry(
            user,
            TransactionType.BONUS,
            money(certificate.balance),
            f"Gift certificate {certificate.code}",
            metadata={"certificate_id": certificate.id, "certificate_code": certificate.code},
        )
        certificate.balance = money(0)
        certificate.redeemed_by_id = user_id
        certificate.redeemed_at = now
        certificate.transaction_id = entry.id

    logger.info("Gift certificate %s redeemed user=%s amount=%s tx=%s", code, user_id, entry.amount, entry.id)
    return entry


def deactivate_gift_certificate(certificate_id: int) -> GiftCertificate:
    with atomic():
        certificate = db.session.get(GiftCertificate, certificate_id)
        if certificate is None:
            raise GiftCertificateNotFound(certificate_id=certificate_id)
        certificate.is_active = False

    logger.info("Gift certificate deactivated id=%s", certificate_id)
    return certificate
