"""Tests for the `flask users` and `flask init-db` commands."""

from __future__ import annotations

from newsletter.models import User


class TestUsersCommands:
    def test_create(self, app) -> None:
        result = app.test_cli_runner().invoke(args=["users", "create", "owner@example.com", "--role", "owner",
                                                    "--name", "Owner"])
        assert result.exit_code == 0, result.output
        assert "Created owner owner@example.com" in result.output
        with app.app_context():
            user = User.find_by_email("owner@example.com")
            assert user.role == "owner"
            assert user.name == "Owner"
            assert user.totp_enabled is False

    def test_create_defaults_to_subscriber(self, app) -> None:
        app.test_cli_runner().invoke(args=["users", "create", "reader@example.com"])
        with app.app_context():
            assert User.find_by_email("reader@example.com").role == "subscriber"

    def test_create_rejects_unknown_role(self, app) -> None:
        result = app.test_cli_runner().invoke(args=["users", "create", "x@example.com", "--role", "superuser"])
        assert result.exit_code != 0
        with app.app_context():
            assert User.find_by_email("x@example.com") is None

    def test_create_duplicate(self, app, make_user) -> None:
        make_user("dup@example.com")
        result = app.test_cli_runner().invoke(args=["users", "create", "DUP@example.com"])
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_list(self, app, make_user) -> None:
        make_user("a@example.com", role="admin")
        make_user("b@example.com", totp_secret="JBSWY3DPEHPK3PXP")
        result = app.test_cli_runner().invoke(args=["users", "list"])
        assert result.exit_code == 0
        lines = sorted(line.split("  ", 1)[1] for line in result.output.splitlines())
        assert lines == ["a@example.com  admin  no-totp", "b@example.com  subscriber  totp"]

    def test_reset_totp(self, app, make_user) -> None:
        make_user("b@example.com", totp_secret="JBSWY3DPEHPK3PXP")
        result = app.test_cli_runner().invoke(args=["users", "reset-totp", "b@example.com"])
        assert result.exit_code == 0
        with app.app_context():
            user = User.find_by_email("b@example.com")
            assert user.totp_enabled is False
            assert user.totp_secret is None

    def test_reset_totp_unknown(self, app) -> None:
        result = app.test_cli_runner().invoke(args=["users", "reset-totp", "nobody@example.com"])
        assert result.exit_code == 1
        assert "not found" in result.output


def test_init_db_is_idempotent(app) -> None:
    runner = app.test_cli_runner()
    for _ in range(2):
        result = runner.invoke(args=["init-db"])
        assert result.exit_code == 0
        assert "Database ready." in result.output
