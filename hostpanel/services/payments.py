# hostpanel/services/payments.py
"""
Payment creation and confirmation.

Per external payment: PENDING -> COMPLETED (confirm) or PENDING -> FAILED
(fail), keyed by (payment_id, provider). Lookups only match PENDING rows, so a
re-delivered webhook finds nothing and surfaces TransactionNotFound.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from flask import current_app

from hostpanel import events
from hostpanel.errors import (
    BillingError,
    ExchangeRateUnavailable,
    PaymentError,
    TransactionNotFound,
    UserNotFound,
)
from hostpanel.extensions import atomic, db
from hostpanel.models import PaymentStatus, Transaction, TransactionType, User
from hostpanel.services import providers
from hostpanel.services.currency import convert_currency, live_usd_rates
from hostpanel.services.ledger import lock_user
from hostpanel.utils import money, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ConfirmationResult:
    transaction_id: int
    user_id: int
    amount: Decimal
    new_balance: Decimal


def _charge_amount(amount: Decimal, currency: str, provider: str) -> Decimal:
    balance_currency = current_app.config.get("BALANCE_CURRENCY", "RUB").upper()
    if currency == balance_currency:
        return amount

    # crypto assets have no static rate; without a live quote the top-up is refused
    usd_rates = live_usd_rates() if provider == "cryptopay" else None
    try:
        converted = convert_currency(amount, balance_currency, currency, usd_rates=usd_rates)
    except ExchangeRateUnavailable:
        logger.warning("No exchange rate %s->%s for provider=%s", balance_currency, currency, provider)
        raise
    if provider == "cryptopay":
        return converted
    return money(converted)


def start_payment(
    user_id: int,
    provider: str,
    amount,
    currency: str | None = None,
    return_url: str | None = None,
) -> providers.PaymentResult:
    """
    Create the remote payment, then record a PENDING deposit for it.

    The provider call happens before any database unit is opened; when it
    fails nothing is written and the failed result is returned as-is.
    """
    amount = money(amount)
    min_amount = money(current_app.config.get("PAYMENT_MIN_AMOUNT", 10))
    max_amount = money(current_app.config.get("PAYMENT_MAX_AMOUNT", 1_000_000))

    if amount < min_amount:
        raise PaymentError(f"Minimum top-up amount is {min_amount}")
    if amount > max_amount:
        raise PaymentError(f"Maximum top-up amount is {max_amount}")

    adapter = providers.get_provider(provider)
    if adapter is None or not adapter.is_configured():
        raise PaymentError("Payment method is unavailable", provider=provider)

    currency = (currency or adapter.currencies[0]).upper()
    if currency not in adapter.currencies:
        raise PaymentError(f"{adapter.label} does not accept {currency}", provider=provider)

    if db.session.get(User, user_id) is None:
        raise UserNotFound(user_id=user_id)

    charge = _charge_amount(amount, currency, provider)
    result = adapter.create_payment(
        charge,
        currency=currency,
        user_id=user_id,
        description=f"Balance top-up {amount}",
        return_url=return_url,
        metadata={"source": "web"},
    )

    if not result.success:
        logger.warning("Payment creation failed provider=%s user=%s error=%s", provider, user_id, result.error)
        return result

    create_pending_transaction(
        user_id,
        amount,
        provider,
        result.payment_id,
        metadata={"currency": currency, "charged_amount": str(charge)},
    )
    return result


def create_pending_transaction(
    user_id: int,
    amount,
    provider: str,
    payment_id: str,
    metadata: dict | None = None,
) -> Transaction:
    with atomic():
        user = db.session.get(User, user_id)
        if user is None:
            raise UserNotFound(user_id=user_id)

        balance = money(user.balance)
        entry = Transaction(
            user_id=user_id,
            type=TransactionType.DEPOSIT,
            amount=money(amount),
            # Not applied yet: snapshots are refreshed on confirmation
            balance_before=balance,
            balance_after=balance,
            description=f"Top-up via {providers.provider_label(provider)}",
            payment_method=provider,
            payment_id=payment_id,
            status=PaymentStatus.PENDING,
            meta=metadata,
        )
        db.session.add(entry)

    logger.info("Pending payment recorded provider=%s payment_id=%s user=%s", provider, payment_id, user_id)
    return entry


def confirm_payment(payment_id: str, provider: str) -> ConfirmationResult:
    with atomic():
        entry = (
            db.session.query(Transaction)
            .filter(
                Transaction.payment_id == payment_id,
                Transaction.payment_method == provider,
                Transaction.status == PaymentStatus.PENDING,
            )
            .with_for_update()
            .first()
        )
        if entry is None:
            raise TransactionNotFound(payment_id=payment_id, provider=provider)

        user = lock_user(entry.user_id)
        balance_before = money(user.balance)
        balance_after = balance_before + money(entry.amount)

        entry.status = PaymentStatus.COMPLETED
        entry.balance_before = balance_before
        entry.balance_after = balance_after
        user.balance = balance_after

        result = ConfirmationResult(
            transaction_id=entry.id,
            user_id=entry.user_id,
            amount=money(entry.amount),
            new_balance=balance_after,
        )

    logger.info(
        "Payment confirmed provider=%s payment_id=%s user=%s amount=%s balance=%s",
        provider, payment_id, result.user_id, result.amount, result.new_balance,
    )
    return result


def fail_payment(payment_id: str, provider: str, reason: str | None = None) -> int:
    """Flip matching PENDING rows to FAILED. The balance is never touched."""
    with atomic():
        rows = (
            db.session.query(Transaction)
            .filter(
                Transaction.payment_id == payment_id,
                Transaction.payment_method == provider,
                Transaction.status == PaymentStatus.PENDING,
            )
            .with_for_update()
            .all()
        )
        for row in rows:
            row.status = PaymentStatus.FAILED
            if reason:
                row.description = f"{row.description or ''} (failed: {reason})".strip()[:255]

    if rows:
        logger.info("Payment failed provider=%s payment_id=%s reason=%s", provider, payment_id, reason)
    return len(rows)


def on_payment_confirmed(result: ConfirmationResult, provider: str) -> None:
    """Side effects of a COMPLETED transition; run after the ledger commit."""
    from hostpanel.services.referral import process_referral_bonus

    events.emit(
        events.payment_confirmed,
        result.user_id,
        transaction_id=result.transaction_id,
        amount=result.amount,
        new_balance=result.new_balance,
        provider=provider,
    )

    try:
        process_referral_bonus(result.user_id, result.amount)
    except BillingError as e:
        logger.warning("Referral bonus skipped for user=%s: %s", result.user_id, e.message)


def on_payment_failed(payment_id: str, provider: str, reason: str | None, count: int) -> None:
    if count:
        events.emit(events.payment_failed, provider, payment_id=payment_id, reason=reason, count=count)


def reconcile_pending_payments(older_than_minutes: int | None = None, now=None) -> dict:
    """
    Poll providers for PENDING deposits that no webhook has resolved.

    Each row is handled on its own; one failure never stops the pass.
    """
    if older_than_minutes is None:
        older_than_minutes = current_app.config.get("PAYMENT_RECONCILE_AFTER_MINUTES", 10)
    cutoff = (now or utcnow()) - timedelta(minutes=older_than_minutes)

    pending = (
        Transaction.query
        .filter(
            Transaction.status == PaymentStatus.PENDING,
            Transaction.type == TransactionType.DEPOSIT,
            Transaction.payment_id.isnot(None),
            Transaction.created_at < cutoff,
        )
        .order_by(Transaction.created_at.asc())
        .all()
    )
    keys = [(row.payment_id, row.payment_method) for row in pending]

    summary = {"checked": len(keys), "confirmed": 0, "failed": 0, "pending": 0, "errors": []}

    for payment_id, provider in keys:
        adapter = providers.get_provider(provider)
        if adapter is None:
            summary["errors"].append(f"{provider}:{payment_id}: unknown provider")
            continue

        status = adapter.payment_status(payment_id)
        try:
            if status == providers.COMPLETED:
                result = confirm_payment(payment_id, provider)
                on_payment_confirmed(result, provider)
                summary["confirmed"] += 1
            elif status in (providers.FAILED, providers.CANCELLED):
                count = fail_payment(payment_id, provider, reason=f"provider reported {status}")
                on_payment_failed(payment_id, provider, status, count)
                summary["failed"] += 1
            else:
                summary["pending"] += 1
        except TransactionNotFound:
            # Resolved by a webhook in the meantime
            continue
        except BillingError as e:
            summary["errors"].append(f"{provider}:{payment_id}: {e.message}")

    logger.info("Payment reconciliation: %s", summary)
    return summary
