import secrets
from datetime import date, datetime, time, timedelta

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.facility import Facility
from models.session import Session
from models.user import User
from scheduling import build_services, current_services
from scheduling.errors import NotificationDeliveryError
from security.session import hash_token
from utils.audit import log_event

TODAY = date(2024, 1, 1)


class FakeRelay:
    configured = True

    def __init__(self, fail=False):
        self.fail = fail
        self.pushed = []

    def push(self, line_user_id, title, message, link_url=None):
        if self.fail:
            raise NotificationDeliveryError("relay down")
        self.pushed.append({"to": line_user_id, "title": title, "message": message, "link": link_url})
        return {"ok": True}


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
def app(relay):
    app = create_app(TestConfig, relay=relay)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return current_services()


@pytest.fixture
def make_services(app, relay):
    def _make(capabilities=None, backend=None, relay_override=None, **overrides):
        config = dict(app.config)
        config.update(overrides)
        return build_services(
            config,
            db.session,
            capabilities or app.extensions["schema_capabilities"],
            audit=log_event,
            relay=relay_override or relay,
            backend=backend,
        )
    return _make


def _user(email, **kwargs):
    user = User(email=email, **kwargs)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def owner(app):
    return _user("owner@example.com", full_name="Park Owner")


@pytest.fixture
def customer(app):
    return _user("hanako@example.com", full_name="Hanako", line_user_id="U1234567890", notify_opt_in=True)


@pytest.fixture
def other_user(app):
    return _user("stranger@example.com", full_name="Stranger")


@pytest.fixture
def facility(app, owner):
    f = Facility(name="Shibuya Dog Run", owner_user_id=owner.id, opening_time=time(9, 0), closing_time=time(18, 0))
    db.session.add(f)
    db.session.commit()
    return f


@pytest.fixture
def enabled_facility(services, facility):
    services.settings.upsert(facility.id, {"enabled": True, "auto_confirm": False, "capacity_per_slot": 2})
    return facility


@pytest.fixture
def book(services):
    def _book(facility, user, day=TODAY, start="10:00", repository=None, **kwargs):
        repo = repository or services.repository
        return repo.create(facility.id, user.id, day, start, today=kwargs.pop("today", TODAY), **kwargs)
    return _book


@pytest.fixture
def login(client):
    def _login(user):
        token = secrets.token_urlsafe(32)
        db.session.add(Session(
            user_id=user.id,
            token_hash=hash_token(token),
            expires_at=datetime.utcnow() + timedelta(seconds=TestConfig.SESSION_LIFETIME_SECONDS),
        ))
        db.session.commit()
        client.set_cookie(TestConfig.AUTH_COOKIE_NAME, token)
        return token
    return _login
