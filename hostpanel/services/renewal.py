# hostpanel/services/renewal.py
"""
Server renewal sweep.

Run periodically (cron endpoint or `flask billing renew`):
  1. renew or suspend ACTIVE servers whose paid period has ended
  2. warn owners 3 days and 1 day before expiry
  3. terminate servers left suspended past the grace period

Each server is handled in its own unit of work; a failure is recorded in the
summary and the sweep moves on.
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from hostpanel import events
from hostpanel.errors import BillingError, InsufficientBalance, ServerNotFound
from hostpanel.extensions import atomic, db
from hostpanel.models import Server, ServerStatus, Transaction, TransactionType
from hostpanel.services.ledger import lock_user, post_entry
from hostpanel.utils import money, utcnow

logger = logging.getLogger(__name__)

WARNING_DAYS = (3, 1)


@dataclass
class RenewalSummary:
    renewed: int = 0
    suspended: int = 0
    terminated: int = 0
    notifications: int = 0
    errors: list = field(default_factory=list)
    timestamp: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def _renewal_days() -> int:
    return current_app.config.get("SERVER_RENEWAL_DAYS", 30)


def get_expired_servers(now=None) -> list[Server]:
    now = now or utcnow()
    return (
        Server.query
        .filter(Server.status == ServerStatus.ACTIVE, Server.expires_at < now)
        .order_by(Server.expires_at.asc())
        .all()
    )


def get_expiring_servers(days_ahead: int | None = None, now=None) -> list[Server]:
    now = now or utcnow()
    if days_ahead is None:
        days_ahead = current_app.config.get("SERVER_EXPIRY_WARNING_DAYS", 3)

    return (
        Server.query
        .filter(
            Server.status.in_([ServerStatus.ACTIVE, ServerStatus.SUSPENDED]),
            Server.expires_at > now,
            Server.expires_at <= now + timedelta(days=days_ahead),
        )
        .order_by(Server.expires_at.asc())
        .all()
    )


def renew_server(server_id: int, now=None) -> Transaction:
    """
    Charge one period and extend expires_at from the current expiry.

    Charge and extension commit together; InsufficientBalance leaves both
    the balance and the server untouched.
    """
    with atomic():
        server = (
            db.session.query(Server)
            .filter(Server.id == server_id)
            .with_for_update()
            .one_or_none()
        )
        if server is None:
            raise ServerNotFound(server_id=server_id)

        user = lock_user(server.user_id)
        price = money(server.plan.price)
        balance = money(user.balance)
        if balance < price:
            raise InsufficientBalance(
                server_id=server_id,
                required=str(price),
                available=str(balance),
            )

        entry = post_entry(
            user,
            TransactionType.PURCHASE,
            -price,
            f'Auto-renewal of server "{server.name}" ({server.plan.name})',
            metadata={"server_id": server.id, "plan_id": server.plan_id},
        )

        server.expires_at = server.expires_at + timedelta(days=_renewal_days())
        server.status = ServerStatus.ACTIVE
        server.suspended_at = None

    logger.info("Server %s renewed until %s tx=%s", server_id, server.expires_at, entry.id)
    events.emit(
        events.server_renewed,
        server,
        amount=price,
        new_expires_at=server.expires_at,
        transaction_id=entry.id,
    )
    return entry


def suspend_server(server_id: int, now=None) -> Server:
    with atomic():
        server = db.session.get(Server, server_id)
        if server is None:
            raise ServerNotFound(server_id=server_id)
        server.status = ServerStatus.SUSPENDED
        server.suspended_at = now or utcnow()

    logger.info("Server %s suspended", server_id)
    return server


def terminate_abandoned_servers(grace_days: int | None = None, now=None) -> int:
    """SUSPENDED longer than the grace period -> TERMINATED. No ledger access."""
    now = now or utcnow()
    if grace_days is None:
        grace_days = current_app.config.get("SERVER_TERMINATION_GRACE_DAYS", 7)
    cutoff = now - timedelta(days=grace_days)

    servers = (
        Server.query
        .filter(Server.status == ServerStatus.SUSPENDED, Server.suspended_at < cutoff)
        .all()
    )

    with atomic():
        for server in servers:
            server.status = ServerStatus.TERMINATED

    for server in servers:
        logger.info("Server %s terminated after %s days suspended", server.id, grace_days)
        events.emit(events.server_terminated, server)

    return len(servers)


def _days_left(server: Server, now) -> int:
    return math.ceil((server.expires_at - now) / timedelta(days=1))


def _suspend_expired(server: Server, reason: str, now, summary: RenewalSummary) -> None:
    required = money(server.plan.price)
    balance = money(server.user.balance)
    suspend_server(server.id, now=now)
    summary.suspended += 1

    events.emit(
        events.server_suspended,
        server,
        reason=reason,
        required_amount=required,
        current_balance=balance,
    )
    summary.notifications += 1


def process_server_renewals(now=None, grace_days: int | None = None) -> RenewalSummary:
    now = now or utcnow()
    summary = RenewalSummary()

    # 1. expired
    for server in get_expired_servers(now):
        server_id = server.id
        try:
            if not server.auto_renew:
                _suspend_expired(server, "auto_renew_off", now, summary)
                continue

            try:
                renew_server(server_id, now=now)
            except InsufficientBalance as e:
                logger.warning("Server %s not renewed: %s", server_id, e.message)
                _suspend_expired(server, "insufficient_balance", now, summary)
            except BillingError as e:
                logger.error("Server %s renewal error: %s", server_id, e.message)
                summary.errors.append(f"server {server_id}: {e.message}")
                _suspend_expired(server, "renewal_error", now, summary)
            else:
                summary.renewed += 1
                summary.notifications += 1
        except (BillingError, SQLAlchemyError) as e:
            db.session.rollback()
            logger.exception("Server %s could not be processed", server_id)
            summary.errors.append(f"server {server_id}: {e}")

    # 2. expiry warnings
    for server in get_expiring_servers(now=now):
        days_left = _days_left(server, now)
        if days_left not in WARNING_DAYS:
            continue

        price = money(server.plan.price)
        balance = money(server.user.balance)
        events.emit(
            events.server_expiring,
            server,
            days_left=days_left,
            can_auto_renew=bool(server.auto_renew and balance >= price),
            required_amount=price,
            current_balance=balance,
        )
        summary.notifications += 1

    # 3. abandoned
    try:
        summary.terminated = terminate_abandoned_servers(grace_days=grace_days, now=now)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.exception("Terminating abandoned servers failed")
        summary.errors.append(f"terminate: {e}")

    summary.timestamp = now.isoformat()
    logger.info(
        "Renewal sweep: renewed=%s suspended=%s terminated=%s notifications=%s errors=%s",
        summary.renewed, summary.suspended, summary.terminated, summary.notifications, len(summary.errors),
    )
    return summary


def toggle_auto_renew(server_id: int, user_id: int, enabled: bool) -> Server:
    with atomic():
        server = Server.query.filter_by(id=server_id, user_id=user_id).first()
        if server is None:
            raise ServerNotFound(server_id=server_id)
        server.auto_renew = bool(enabled)

    logger.info("Server %s auto_renew=%s", server_id, server.auto_renew)
    return server
