"""
tests/test_auth_routes.py -- Integration tests for /api/v1/auth/* and /health.

Covers:
  - register -> login refused until approved -> approve -> login -> me
  - session cookie attributes (HttpOnly, SameSite=strict) and Cache-Control
  - unknown email and wrong password are indistinguishable (bad_credentials)
  - input errors map to 400, duplicate registration to 409
  - logout removes the server-side session
  - password change and admin reset (503 without SMTP, mail sent with it,
    rolled back when sending fails)
  - admin edits do not refresh the user's open session
  - health endpoint

Fixtures used (from conftest.py):
  app_client  -- TestClient, follow_redirects=False, seeded admin
  login       -- POST /login helper
  make_user   -- register an approved account directly
  admin       -- (email, password) of the seeded admin
"""

from __future__ import annotations

import smtplib

from fastapi.testclient import TestClient

from auth.mailer import ResetMailer
from auth.tokens import verify_password

BASE = "/api/v1/auth"


class FakeMailer:
    configured = True

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send_reset(self, to: str, password: str, message: str = "") -> None:
        self.sent.append((to, password, message))


class TestRegistrationFlow:
    def test_register_approve_login_me(self, app_client: TestClient, login, admin) -> None:
        resp = app_client.post(
            f"{BASE}/register",
            json={"email": "bob@example.com", "password": "builder", "first_name": "Bob", "data": {"team": "red"}},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["role"] == "user"
        assert body["approved"] is False
        assert "password" not in body and "password_hash" not in body

        resp = login("bob@example.com", "builder")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "not_approved"

        login(*admin)
        resp = app_client.post(f"{BASE}/users/approve", json={"email": "bob@example.com"})
        assert resp.status_code == 200
        assert resp.json()["approved"] is True

        resp = login("bob@example.com", "builder")
        assert resp.status_code == 200
        assert resp.json()["redirect_to"] == "/home"

        me = app_client.get(f"{BASE}/me").json()
        assert me["email"] == "bob@example.com"
        assert me["first_name"] == "Bob"
        assert me["data"] == {"team": "red"}

    def test_duplicate_registration_is_409(self, app_client: TestClient, admin) -> None:
        resp = app_client.post(f"{BASE}/register", json={"email": admin[0], "password": "whatever"})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "already_exists"


class TestLogin:
    def test_cookie_attributes(self, app_client: TestClient, login, admin, app_settings) -> None:
        resp = login(*admin)
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        set_cookie = resp.headers["set-cookie"]
        assert set_cookie.startswith(f"{app_settings.cookie_name}=")
        assert "httponly" in set_cookie.lower()
        assert "samesite=strict" in set_cookie.lower()

    def test_unknown_and_wrong_are_indistinguishable(self, login, admin) -> None:
        unknown = login("nobody@example.com", "whatever")
        wrong = login(admin[0], "not-the-password")
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()
        assert unknown.json()["error"]["code"] == "bad_credentials"

    def test_empty_fields_are_400(self, login, admin) -> None:
        resp = login("", "")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "no_email_provided"

        resp = login(admin[0], "")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "no_password_provided"

    def test_corrupt_account_record_is_generic_500(self, login, app_store) -> None:
        key = app_store.insert("users", {"email": "eve@example.com", "approved": True, "data": "not-an-object"})
        resp = login("eve@example.com", "whatever")
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "internal_error"
        assert key not in resp.text

    def test_malformed_body_is_422(self, app_client: TestClient) -> None:
        resp = app_client.post(f"{BASE}/login", json={"email": "a@example.com"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestLogout:
    def test_logout_destroys_session(self, app_client: TestClient, login, admin, app_store, app_settings) -> None:
        login(*admin)
        token = app_client.cookies.get(app_settings.cookie_name)
        assert app_store.get_by_key(app_settings.sessions_collection, token) is not None

        resp = app_client.post(f"{BASE}/logout")
        assert resp.status_code == 200
        assert resp.json()["redirect_to"] == "/login"
        assert app_store.get_by_key(app_settings.sessions_collection, token) is None

        resp = app_client.get(f"{BASE}/me", headers={"Cookie": f"{app_settings.cookie_name}={token}"})
        assert resp.status_code == 403

    def test_logout_without_session_is_ok(self, app_client: TestClient) -> None:
        assert app_client.post(f"{BASE}/logout").status_code == 200


class TestPasswords:
    def test_change_own_password(self, app_client: TestClient, login, make_user) -> None:
        make_user("bob@example.com", "builder")
        login("bob@example.com", "builder")

        resp = app_client.post(f"{BASE}/password", json={"old_password": "wrong", "new_password": "new-one"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "wrong_password"

        resp = app_client.post(f"{BASE}/password", json={"old_password": "builder", "new_password": "new-one"})
        assert resp.status_code == 200
        assert login("bob@example.com", "new-one").status_code == 200
        assert login("bob@example.com", "builder").status_code == 401

    def test_reset_without_mail_is_503(self, app_client: TestClient, login, admin, make_user, app_store) -> None:
        make_user("bob@example.com", "builder")
        before = app_store.get_by_field("users", "email", "bob@example.com")[0][1]["passwordHash"]
        login(*admin)

        resp = app_client.post(f"{BASE}/password/reset", json={"email": "bob@example.com"})
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "mail_unavailable"
        after = app_store.get_by_field("users", "email", "bob@example.com")[0][1]["passwordHash"]
        assert after == before

    def test_reset_sends_temporary_password(self, app_client: TestClient, login, admin, make_user, app_store) -> None:
        mailer = FakeMailer()
        app_client.app.state.mailer = mailer
        make_user("bob@example.com", "builder")
        login(*admin)

        resp = app_client.post(
            f"{BASE}/password/reset", json={"email": "bob@example.com", "message": "Reset per ticket 42."}
        )
        assert resp.status_code == 200
        assert len(mailer.sent) == 1
        to, temporary, message = mailer.sent[0]
        assert to == "bob@example.com"
        assert message == "Reset per ticket 42."
        assert temporary not in resp.text

        stored = app_store.get_by_field("users", "email", "bob@example.com")[0][1]["passwordHash"]
        assert verify_password(temporary, stored)

    def test_reset_mail_failure_keeps_old_password(
        self, app_client: TestClient, login, admin, make_user, mail_settings, monkeypatch
    ) -> None:
        def _unreachable(*args, **kwargs):
            raise OSError("connection refused")

        monkeypatch.setattr(smtplib, "SMTP", _unreachable)
        app_client.app.state.mailer = ResetMailer(mail_settings())
        make_user("bob@example.com", "builder")
        login(*admin)

        resp = app_client.post(f"{BASE}/password/reset", json={"email": "bob@example.com"})
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "internal_error"

        app_client.cookies.clear()
        assert login("bob@example.com", "builder").status_code == 200

    def test_reset_requires_admin(self, app_client: TestClient, login, make_user) -> None:
        make_user("bob@example.com", "builder")
        login("bob@example.com", "builder")
        resp = app_client.post(f"{BASE}/password/reset", json={"email": "bob@example.com"})
        assert resp.status_code == 403


class TestAdminEdits:
    def test_edit_leaves_open_session_stale(self, app_client: TestClient, app_settings, login, admin, make_user) -> None:
        make_user("bob@example.com", "builder", first_name="Bob")
        login("bob@example.com", "builder")
        bob_token = app_client.cookies.get(app_settings.cookie_name)

        login(*admin)
        resp = app_client.patch(f"{BASE}/users", json={"email": "bob@example.com", "role": "admin"})
        assert resp.status_code == 200
        assert resp.json()["role"] == "admin"
        assert resp.json()["first_name"] == "Bob"

        app_client.cookies.clear()
        resp = app_client.get(f"{BASE}/me", headers={"Cookie": f"{app_settings.cookie_name}={bob_token}"})
        assert resp.json()["role"] == "user"

        login("bob@example.com", "builder")
        assert app_client.get(f"{BASE}/me").json()["role"] == "admin"

    def test_edit_unknown_user_is_404(self, app_client: TestClient, login, admin) -> None:
        login(*admin)
        resp = app_client.patch(f"{BASE}/users", json={"email": "nobody@example.com", "role": "admin"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "no_such_user"


def test_health(app_client: TestClient) -> None:
    resp = app_client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["components"] == {"app": "ok", "database": "ok"}
