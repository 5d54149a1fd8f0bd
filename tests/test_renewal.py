from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from hostpanel import events
from hostpanel.errors import InsufficientBalance, ServerNotFound
from hostpanel.models import ServerStatus, Transaction, TransactionType
from hostpanel.services import renewal

NOW = datetime(2026, 10, 18, 3, 0)


@pytest.fixture
def captured():
    """Collect renewal events emitted during a test."""
    seen = {"renewed": [], "suspended": [], "expiring": [], "terminated": []}

    def _collector(name):
        def receiver(sender, **kwargs):
            seen[name].append((sender.id, kwargs))
        return receiver

    receivers = {name: _collector(name) for name in seen}
    events.server_renewed.connect(receivers["renewed"])
    events.server_suspended.connect(receivers["suspended"])
    events.server_expiring.connect(receivers["expiring"])
    events.server_terminated.connect(receivers["terminated"])
    yield seen
    events.server_renewed.disconnect(receivers["renewed"])
    events.server_suspended.disconnect(receivers["suspended"])
    events.server_expiring.disconnect(receivers["expiring"])
    events.server_terminated.disconnect(receivers["terminated"])


def test_renew_charges_and_extends_from_current_expiry(make_user, make_server, captured):
    user = make_user(balance="800.00")
    old_expiry = NOW - timedelta(hours=5)
    server = make_server(user, expires_at=old_expiry, name="web-1")

    entry = renewal.renew_server(server.id, now=NOW)

    assert entry.type == TransactionType.PURCHASE
    assert entry.amount == Decimal("-500.00")
    assert entry.description == 'Auto-renewal of server "web-1" (VPS-2)'
    assert user.balance == Decimal("300.00")
    assert server.expires_at == old_expiry + timedelta(days=30)
    assert server.status == ServerStatus.ACTIVE
    assert captured["renewed"][0][1]["transaction_id"] == entry.id


def test_renew_with_short_balance_changes_nothing(make_user, make_server):
    user = make_user(balance="499.99")
    expiry = NOW - timedelta(hours=1)
    server = make_server(user, expires_at=expiry)

    with pytest.raises(InsufficientBalance):
        renewal.renew_server(server.id, now=NOW)

    assert user.balance == Decimal("499.99")
    assert server.expires_at == expiry
    assert Transaction.query.count() == 0


def test_renew_reactivates_suspended_server(make_user, make_server):
    user = make_user(balance="500.00")
    server = make_server(user, status=ServerStatus.SUSPENDED, suspended_at=NOW - timedelta(days=1))

    renewal.renew_server(server.id, now=NOW)

    assert server.status == ServerStatus.ACTIVE
    assert server.suspended_at is None
    assert user.balance == Decimal("0.00")


def test_sweep_renews_or_suspends_expired_servers(make_user, make_server, captured):
    rich = make_user(balance="1000.00")
    poor = make_user(balance="100.00")
    manual = make_user(balance="1000.00")
    renewed = make_server(rich, expires_at=NOW - timedelta(hours=1))
    broke = make_server(poor, expires_at=NOW - timedelta(hours=1))
    opted_out = make_server(manual, expires_at=NOW - timedelta(hours=1), auto_renew=False)

    summary = renewal.process_server_renewals(now=NOW)

    assert (summary.renewed, summary.suspended, summary.terminated) == (1, 2, 0)
    assert summary.notifications == 3
    assert summary.errors == []
    assert summary.timestamp == NOW.isoformat()

    assert renewed.status == ServerStatus.ACTIVE
    assert rich.balance == Decimal("500.00")
    assert broke.status == ServerStatus.SUSPENDED
    assert broke.suspended_at == NOW
    assert poor.balance == Decimal("100.00")
    assert opted_out.status == ServerStatus.SUSPENDED
    assert manual.balance == Decimal("1000.00")

    reasons = {server_id: kwargs["reason"] for server_id, kwargs in captured["suspended"]}
    assert reasons == {broke.id: "insufficient_balance", opted_out.id: "auto_renew_off"}
    assert captured["suspended"][0][1]["required_amount"] == Decimal("500.00")


def test_sweep_is_idempotent(make_user, make_server):
    user = make_user(balance="1000.00")
    make_server(user, expires_at=NOW - timedelta(hours=1))

    renewal.process_server_renewals(now=NOW)
    second = renewal.process_server_renewals(now=NOW)

    assert (second.renewed, second.suspended) == (0, 0)
    assert user.balance == Decimal("500.00")


def test_expiry_warnings_on_day_three_and_one(make_user, make_server, captured):
    user = make_user(balance="100.00")
    three = make_server(user, expires_at=NOW + timedelta(days=3), name="three")
    one = make_server(user, expires_at=NOW + timedelta(hours=20), name="one")
    make_server(user, expires_at=NOW + timedelta(days=2), name="two")
    make_server(user, expires_at=NOW + timedelta(days=10), name="ten")

    summary = renewal.process_server_renewals(now=NOW)

    warned = {server_id: kwargs for server_id, kwargs in captured["expiring"]}
    assert set(warned) == {three.id, one.id}
    assert warned[three.id]["days_left"] == 3
    assert warned[one.id]["days_left"] == 1
    assert warned[one.id]["can_auto_renew"] is False
    assert summary.notifications == 2


def test_abandoned_servers_are_terminated(make_user, make_server, captured):
    user = make_user()
    old = make_server(
        user,
        status=ServerStatus.SUSPENDED,
        suspended_at=NOW - timedelta(days=8),
        expires_at=NOW - timedelta(days=8),
    )
    recent = make_server(
        user,
        status=ServerStatus.SUSPENDED,
        suspended_at=NOW - timedelta(days=2),
        expires_at=NOW - timedelta(days=2),
    )

    summary = renewal.process_server_renewals(now=NOW)

    assert summary.terminated == 1
    assert old.status == ServerStatus.TERMINATED
    assert recent.status == ServerStatus.SUSPENDED
    assert [server_id for server_id, _ in captured["terminated"]] == [old.id]
    assert user.balance == Decimal("0.00")


def test_one_failing_server_does_not_stop_the_sweep(make_user, make_server, monkeypatch):
    user = make_user(balance="2000.00")
    first = make_server(user, expires_at=NOW - timedelta(hours=2))
    second = make_server(user, expires_at=NOW - timedelta(hours=1))
    original = renewal.renew_server

    def flaky(server_id, now=None):
        if server_id == first.id:
            raise ServerNotFound(server_id=server_id)
        return original(server_id, now=now)

    monkeypatch.setattr(renewal, "renew_server", flaky)

    summary = renewal.process_server_renewals(now=NOW)

    assert summary.renewed == 1
    assert summary.suspended == 1
    assert len(summary.errors) == 1
    assert first.status == ServerStatus.SUSPENDED
    assert second.status == ServerStatus.ACTIVE


def test_summary_to_dict(app):
    summary = renewal.RenewalSummary(renewed=2, errors=["x"], timestamp="t")

    assert summary.to_dict() == {
        "renewed": 2,
        "suspended": 0,
        "terminated": 0,
        "notifications": 0,
        "errors": ["x"],
        "timestamp": "t",
    }


def test_toggle_auto_renew_requires_ownership(make_user, make_server):
    owner, stranger = make_user(), make_user()
    server = make_server(owner)

    renewal.toggle_auto_renew(server.id, owner.id, False)
    assert server.auto_renew is False

    with pytest.raises(ServerNotFound):
        renewal.toggle_auto_renew(server.id, stranger.id, True)
    assert server.auto_renew is False
