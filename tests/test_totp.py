"""Tests for TOTP setup/verify and the full sign-in flow."""

from __future__ import annotations

import datetime as dt

import pyotp
import pytest
from conftest import COOKIE, request_link, wrong_code

import security.totp
from newsletter import db
from newsletter.auth import flow
from newsletter.errors import TokenExpiredOrInvalid
from newsletter.models import AuthSession, TempAuthToken, User, utcnow

RETURNING_SECRET = "JBSWY3DPEHPK3PXP"


def _first_time(client, make_user, email: str = "new@example.com") -> dict:
    make_user(email)
    token = request_link(client, email)
    return client.get(f"/auth/verify?token={token}").get_json()["data"]


def _returning(client, make_user, email: str = "back@example.com") -> dict:
    make_user(email, role="admin", totp_secret=RETURNING_SECRET)
    token = request_link(client, email)
    return client.get(f"/auth/verify?token={token}").get_json()["data"]


class TestEndToEnd:
    def test_first_sign_in_then_me(self, app, client, make_user) -> None:
        make_user("user@example.com")

        ack = client.post("/auth/request-magic-link", json={"email": "user@example.com"})
        assert ack.status_code == 200

        token = request_link(client, "user@example.com")
        data = client.get(f"/auth/verify?token={token}").get_json()["data"]
        assert data["is_first_time"] is True

        code = pyotp.TOTP(data["totp_secret"]).now()
        resp = client.post("/auth/totp/setup", json={"token": data["temp_token"], "totpCode": code})
        assert resp.status_code == 200
        assert resp.get_json()["data"]["user"]["email"] == "user@example.com"

        set_cookie = resp.headers["Set-Cookie"]
        assert f"{COOKIE}=" in set_cookie
        assert "HttpOnly" in set_cookie
        assert "SameSite=Lax" in set_cookie

        me = client.get("/auth/me")
        assert me.status_code == 200
        assert me.get_json() == {
            "success": True,
            "data": {"user": {"id": resp.get_json()["data"]["user"]["id"], "email": "user@example.com",
                              "role": "subscriber"}},
        }

        with app.app_context():
            user = User.find_by_email("user@example.com")
            assert user.totp_enabled is True
            assert user.totp_secret == data["totp_secret"]
            assert user.totp_enrolled_at is not None
            assert user.last_login_at is not None

    def test_second_sign_in_uses_verify(self, client, make_user, sign_in) -> None:
        make_user("user@example.com")
        first = sign_in("user@example.com")
        client.post("/auth/logout")

        second = sign_in("user@example.com", secret=first["secret"])
        assert second["user"] == first["user"]
        assert client.get("/auth/me").status_code == 200


class TestCodeFormat:
    @pytest.mark.parametrize("code", ["12345a", "abcdef", "12 34", "1234567", "", "１２３４５６", None])
    def test_rejected_before_any_crypto(self, client, make_user, monkeypatch, code) -> None:
        data = _first_time(client, make_user)

        def boom(*args, **kwargs):
            raise AssertionError("TOTP comparison must not run for malformed codes")

        monkeypatch.setattr(security.totp, "verify_code", boom)
        for path in ("/auth/totp/setup", "/auth/totp/verify"):
            resp = client.post(path, json={"token": data["temp_token"], "totpCode": code})
            assert resp.status_code == 400
            assert resp.get_json() == {"success": False, "error": "Code must be exactly 6 digits"}

    def test_format_checked_before_token(self, client) -> None:
        resp = client.post("/auth/totp/verify", json={"token": "garbage", "totpCode": "12x456"})
        assert resp.status_code == 400

    def test_whitespace_is_stripped(self, client, make_user) -> None:
        data = _first_time(client, make_user)
        code = pyotp.TOTP(data["totp_secret"]).now()
        spaced = f" {code[:3]} {code[3:]} "

        resp = client.post("/auth/totp/setup", json={"token": data["temp_token"], "totpCode": spaced})
        assert resp.status_code == 200


class TestSetup:
    def test_wrong_code_does_not_enroll(self, app, client, make_user) -> None:
        data = _first_time(client, make_user)

        resp = client.post("/auth/totp/setup",
                           json={"token": data["temp_token"], "totpCode": wrong_code(data["totp_secret"])})
        assert resp.status_code == 401
        assert resp.get_json() == {"success": False, "error": "Verification failed"}
        assert COOKIE not in resp.headers.get("Set-Cookie", "")

        with app.app_context():
            user = User.find_by_email("new@example.com")
            assert user.totp_enabled is False
            assert AuthSession.query.count() == 0

    def test_can_retry_after_wrong_code(self, client, make_user) -> None:
        data = _first_time(client, make_user)
        client.post("/auth/totp/setup", json={"token": data["temp_token"], "totpCode": wrong_code(data["totp_secret"])})

        code = pyotp.TOTP(data["totp_secret"]).now()
        resp = client.post("/auth/totp/setup", json={"token": data["temp_token"], "totpCode": code})
        assert resp.status_code == 200

    def test_temp_token_is_single_use(self, client, make_user) -> None:
        data = _first_time(client, make_user)
        code = pyotp.TOTP(data["totp_secret"]).now()
        assert client.post("/auth/totp/setup", json={"token": data["temp_token"], "totpCode": code}).status_code == 200

        again = client.post("/auth/totp/setup", json={"token": data["temp_token"], "totpCode": code})
        assert again.status_code == 401
        assert again.get_json()["error"] == "Invalid or expired token"

    def test_locked_after_too_many_wrong_codes(self, app, client, make_user) -> None:
        app.config["TOTP_MAX_ATTEMPTS"] = 3
        data = _first_time(client, make_user)
        bad = wrong_code(data["totp_secret"])
        for _ in range(3):
            resp = client.post("/auth/totp/setup", json={"token": data["temp_token"], "totpCode": bad})
            assert resp.get_json()["error"] == "Verification failed"

        code = pyotp.TOTP(data["totp_secret"]).now()
        resp = client.post("/auth/totp/setup", json={"token": data["temp_token"], "totpCode": code})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid or expired token"

    def test_expired_temp_token(self, app, client, make_user) -> None:
        data = _first_time(client, make_user)
        with app.app_context():
            row = TempAuthToken.query.one()
            row.expires_at = utcnow() - dt.timedelta(seconds=1)
            db.session.commit()

        code = pyotp.TOTP(data["totp_secret"]).now()
        resp = client.post("/auth/totp/setup", json={"token": data["temp_token"], "totpCode": code})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid or expired token"

    def test_tampered_temp_token(self, client, make_user) -> None:
        data = _first_time(client, make_user)
        code = pyotp.TOTP(data["totp_secret"]).now()
        resp = client.post("/auth/totp/setup", json={"token": data["temp_token"] + "x", "totpCode": code})
        assert resp.status_code == 401

    def test_second_setup_token_cannot_replace_enrolled_secret(self, app, client, make_user) -> None:
        make_user("new@example.com")
        first = client.get(f"/auth/verify?token={request_link(client, 'new@example.com')}").get_json()["data"]
        second = client.get(f"/auth/verify?token={request_link(client, 'new@example.com')}").get_json()["data"]

        code = pyotp.TOTP(first["totp_secret"]).now()
        assert client.post("/auth/totp/setup", json={"token": first["temp_token"], "totpCode": code}).status_code == 200

        code = pyotp.TOTP(second["totp_secret"]).now()
        resp = client.post("/auth/totp/setup", json={"token": second["temp_token"], "totpCode": code})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid or expired token"

        with app.app_context():
            assert User.find_by_email("new@example.com").totp_secret == first["totp_secret"]

    def test_enrollment_only_lands_once(self, app, make_user) -> None:
        # two setups that both passed the enrolled check before either committed
        user = make_user("new@example.com")
        with app.app_context():
            stale = db.session.get(User, user.id)
            flow._enroll_pending_secret(stale, "AAAAAAAAAAAAAAAA", utcnow())
            db.session.commit()

            with pytest.raises(TokenExpiredOrInvalid):
                flow._enroll_pending_secret(stale, "BBBBBBBBBBBBBBBB", utcnow())
            db.session.expire_all()
            assert db.session.get(User, user.id).totp_secret == "AAAAAAAAAAAAAAAA"

    def test_attempts_count_even_from_a_stale_row(self, app, client, make_user) -> None:
        app.config["TOTP_MAX_ATTEMPTS"] = 3
        _first_time(client, make_user)
        with app.app_context():
            # every concurrent request loaded the row while it still said 0
            stale = [TempAuthToken.query.one() for _ in range(3)]
            db.session.expunge_all()
            claims = [flow._claim_attempt(row) for row in stale + [stale[0]]]
            assert claims == [True, True, True, False]
            assert TempAuthToken.query.one().attempts == 3

    def test_no_code_checked_once_attempts_are_spent(self, app, client, make_user, monkeypatch) -> None:
        data = _first_time(client, make_user)
        with app.app_context():
            row = TempAuthToken.query.one()
            row.attempts = app.config["TOTP_MAX_ATTEMPTS"]
            db.session.commit()

        def boom(*args, **kwargs):
            raise AssertionError("no attempts left, the code must not be checked")

        monkeypatch.setattr(security.totp, "verify_code", boom)
        code = pyotp.TOTP(data["totp_secret"]).now()
        resp = client.post("/auth/totp/setup", json={"token": data["temp_token"], "totpCode": code})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid or expired token"

    def test_setup_token_cannot_be_used_to_verify(self, client, make_user) -> None:
        data = _first_time(client, make_user)
        code = pyotp.TOTP(data["totp_secret"]).now()
        resp = client.post("/auth/totp/verify", json={"token": data["temp_token"], "totpCode": code})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid or expired token"


class TestVerify:
    def test_returning_user_signs_in(self, client, make_user) -> None:
        data = _returning(client, make_user)
        code = pyotp.TOTP(RETURNING_SECRET).now()

        resp = client.post("/auth/totp/verify", json={"token": data["temp_token"], "totpCode": code})
        assert resp.status_code == 200
        assert resp.get_json()["data"]["user"]["role"] == "admin"
        assert client.get("/auth/me").get_json()["data"]["user"]["email"] == "back@example.com"

    def test_previous_step_accepted_within_drift(self, client, make_user) -> None:
        data = _returning(client, make_user)
        totp = pyotp.TOTP(RETURNING_SECRET)
        code = totp.at(dt.datetime.now(dt.timezone.utc), counter_offset=-1)

        resp = client.post("/auth/totp/verify", json={"token": data["temp_token"], "totpCode": code})
        assert resp.status_code == 200

    def test_no_drift_when_window_is_zero(self, app, client, make_user) -> None:
        app.config["TOTP_VALID_WINDOW"] = 0
        data = _returning(client, make_user)
        totp = pyotp.TOTP(RETURNING_SECRET)
        code = totp.at(dt.datetime.now(dt.timezone.utc), counter_offset=-2)
        if code == totp.now():
            pytest.skip("codes collided")

        resp = client.post("/auth/totp/verify", json={"token": data["temp_token"], "totpCode": code})
        assert resp.status_code == 401

    def test_wrong_code(self, app, client, make_user) -> None:
        data = _returning(client, make_user)
        resp = client.post("/auth/totp/verify",
                           json={"token": data["temp_token"], "totpCode": wrong_code(RETURNING_SECRET)})
        assert resp.status_code == 401
        assert resp.get_json() == {"success": False, "error": "Verification failed"}
        with app.app_context():
            assert User.find_by_email("back@example.com").totp_secret == RETURNING_SECRET

    def test_verify_token_cannot_be_used_for_setup(self, client, make_user) -> None:
        data = _returning(client, make_user)
        code = pyotp.TOTP(RETURNING_SECRET).now()
        resp = client.post("/auth/totp/setup", json={"token": data["temp_token"], "totpCode": code})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid or expired token"
