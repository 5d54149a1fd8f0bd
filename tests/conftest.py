import itertools
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from flask import g

from config import TestingConfig
from hostpanel import create_app
from hostpanel.extensions import db as _db
from hostpanel.models import Plan, Server, ServerStatus, User
from hostpanel.services.providers import register_provider
from hostpanel.utils import utcnow


@pytest.fixture
def app(request):
    # tests may pass another config class with parametrize(..., indirect=True)
    app = create_app(getattr(request, "param", TestingConfig))
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(balance="0.00", **kwargs):
        n = next(counter)
        kwargs.setdefault("username", f"user{n}")
        kwargs.setdefault("email", f"user{n}@example.com")
        kwargs.setdefault("name", f"User {n}")
        user = User(balance=Decimal(balance), **kwargs)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def plan(db):
    plan = Plan(name="VPS-2", price=Decimal("500.00"))
    db.session.add(plan)
    db.session.commit()
    return plan


@pytest.fixture
def make_server(db, plan):
    def _make(user, expires_in=timedelta(days=-1), **kwargs):
        kwargs.setdefault("status", ServerStatus.ACTIVE)
        kwargs.setdefault("auto_renew", True)
        server = Server(
            name=kwargs.pop("name", f"srv-{user.id}"),
            user_id=user.id,
            plan_id=kwargs.pop("plan_id", plan.id),
            expires_at=kwargs.pop("expires_at", utcnow() + expires_in),
            **kwargs,
        )
        db.session.add(server)
        db.session.commit()
        return server

    return _make


@pytest.fixture
def login(client):
    def _login(user):
        # The pushed app context outlives requests; drop the cached user
        g.pop("_login_user", None)
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user.id)
            sess["_fresh"] = True

    return _login


def make_response(status_code=200, json_data=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = json_data if json_data is not None else {}
    return response


@pytest.fixture
def mock_session():
    return MagicMock()


@pytest.fixture
def install_provider(app):
    """Build an adapter around a mocked requests session and register it."""

    def _install(cls, session, **kwargs):
        provider = cls(app.config, session=session, **kwargs)
        register_provider(provider)
        return provider

    return _install
