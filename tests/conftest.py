"""Shared fixtures: an app on in-memory SQLite, its test client, identities and
a helper that walks the whole magic-link + TOTP flow.

Mail is suppressed; sent messages are captured with Flask-Mail's
``record_messages()`` so tests can read the link out of the body.
"""

from __future__ import annotations

import base64
import re
import time
from typing import Any, Callable

import pyotp
import pytest

from newsletter import create_app, db, limiter, mail
from newsletter.auth.sessions import create_session
from newsletter.models import User

WEBHOOK_RAW_KEY = b"test_secret_key_12345_bytes!"
WEBHOOK_SECRET = "whsec_" + base64.b64encode(WEBHOOK_RAW_KEY).decode("ascii")
ADMIN_API_KEY = "admin-api-key-for-tests"
COOKIE = "nl_session"

_TOKEN_RE = re.compile(r"token=([A-Za-z0-9_\-]+)")


@pytest.fixture
def app_config() -> dict[str, Any]:
    return {
        "TESTING": True,
        "SECRET_KEY": "test-secret-key",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "PUBLIC_BASE_URL": "http://testserver",
        "MAIL_SUPPRESS_SEND": True,
        "MAIL_SEND_ATTEMPTS": 1,
        "MAIL_SEND_IN_BACKGROUND": False,
        "RESEND_WEBHOOK_SECRET": WEBHOOK_SECRET,
        "ADMIN_API_KEY": ADMIN_API_KEY,
        "LOG_LEVEL": "WARNING",
    }


@pytest.fixture
def app(app_config):
    app = create_app(app_config)
    yield app
    limiter.reset()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app) -> Callable[..., User]:
    """Create an identity; returns a detached-safe User (attributes loaded)."""

    def _make(email: str = "user@example.com", role: str = "subscriber", totp_secret: str | None = None) -> User:
        with app.app_context():
            user = User(email=email, role=role)
            if totp_secret:
                user.enroll_totp(totp_secret)
            db.session.add(user)
            db.session.commit()
            db.session.refresh(user)
            db.session.expunge(user)
            return user

    return _make


@pytest.fixture
def session_cookie_for(app) -> Callable[[User], str]:
    """Open a server-side session for a user without going through the flow."""

    def _open(user: User) -> str:
        with app.app_context():
            token = create_session(db.session.get(User, user.id))
            db.session.commit()
            return token

    return _open


def request_link(client, email: str) -> str | None:
    """POST the email and return the token from the mailed link (None if no mail)."""
    with mail.record_messages() as outbox:
        resp = client.post("/auth/request-magic-link", json={"email": email})
        assert resp.status_code == 200, resp.get_json()
    if not outbox:
        return None
    match = _TOKEN_RE.search(outbox[-1].body)
    assert match, outbox[-1].body
    return match.group(1)


@pytest.fixture
def sign_in(client) -> Callable[[str], dict[str, Any]]:
    """Full flow for an existing identity; leaves the session cookie on `client`."""

    def _sign_in(email: str, secret: str | None = None) -> dict[str, Any]:
        token = request_link(client, email)
        assert token is not None
        data = client.get(f"/auth/verify?token={token}").get_json()["data"]
        if data["is_first_time"]:
            secret = data["totp_secret"]
            path = "/auth/totp/setup"
        else:
            path = "/auth/totp/verify"
        code = pyotp.TOTP(secret).now()
        resp = client.post(path, json={"token": data["temp_token"], "totpCode": code})
        assert resp.status_code == 200, resp.get_json()
        return {"secret": secret, "user": resp.get_json()["data"]["user"]}

    return _sign_in


def wrong_code(secret: str) -> str:
    """A 6-digit code that is not valid for `secret` anywhere near the drift window."""
    totp = pyotp.TOTP(secret)
    now = time.time()
    valid = {totp.at(now + offset) for offset in (-60, -30, 0, 30, 60)}
    for candidate in ("000000", "111111", "222222", "333333", "444444", "555555"):
        if candidate not in valid:
            return candidate
    raise AssertionError("unreachable: at most five codes are valid")
