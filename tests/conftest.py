"""Pytest fixtures for PublicFeed tests."""

import re
from datetime import timedelta

import pytest

from app import create_app
from extensions import mail
from models import db, utcnow

PASSWORD = "Secret123!"


class Clock:
    """Stand-in for the identity component's clock."""

    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class Member:
    """A verified user with their own cookie-carrying client."""

    def __init__(self, client, token, user):
        self.client = client
        self.token = token
        self.user = user
        self.id = user["id"]

    @property
    def bearer(self):
        return {"Authorization": f"Bearer {self.token}"}


def otp_from(message):
    return re.search(r"(\d{4})", message.body).group(1)


def reset_token_from(message):
    return re.search(r"token=([0-9a-f]{64})", message.body).group(1)


@pytest.fixture
def app(tmp_path):
    app = create_app('testing', {'UPLOAD_FOLDER': str(tmp_path / 'uploads')})
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def outbox(app):
    with mail.record_messages() as messages:
        yield messages


@pytest.fixture
def clock(app):
    clock = Clock()
    app.extensions['identity'].clock = clock
    return clock


@pytest.fixture
def signup(client):
    def _signup(email="a@x.com", first="A", last="B", password=PASSWORD):
        return client.post('/api/auth/signup', json={
            "firstName": first, "lastName": last, "email": email, "password": password,
        })
    return _signup


@pytest.fixture
def make_member(app, outbox):
    """Sign up, verify and return a logged-in Member."""
    def _make(email="a@x.com", first="A", last="B"):
        member_client = app.test_client()
        res = member_client.post('/api/auth/signup', json={
            "firstName": first, "lastName": last, "email": email, "password": PASSWORD,
        })
        assert res.status_code == 201
        res = member_client.post('/api/auth/verify-otp', json={
            "email": email, "otp": otp_from(outbox[-1]),
        })
        assert res.status_code == 200
        body = res.get_json()
        return Member(member_client, body["token"], body["user"])
    return _make
