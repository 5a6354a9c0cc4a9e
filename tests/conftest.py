"""
tests/conftest.py -- Shared fixtures for docauth unit and integration tests.

This module provides:
  - FakeClock: a settable clock injected into SessionManager so expiry is
    tested by moving time, not by sleeping
  - settings / store / sessions / users: in-memory unit-test stack
  - app_client: TestClient over create_app() with an isolated store and a
    pre-approved admin account

Design: HTTP tests use named shared-memory SQLite URIs (not plain :memory:)
because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Each app_client gets a fresh uuid-named DB, so tests never
see each other's accounts or sessions.

The shared slowapi limiter is switched off for the whole run: many tests
log in from the same "testclient" address within a minute.
"""

from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import create_app
from auth.models import Account
from auth.sessions import SessionManager
from auth.store import DocumentStore
from auth.users import UserManager
from core.config import Settings

limiter.enabled = False

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"
COOKIE_NAME = "docauth_session"
FLASH_COOKIE_NAME = "docauth_flash"

T0 = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock for SessionManager. Starts at T0; move it with advance()."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def make_settings(**overrides) -> Settings:
    """Settings with every required option filled in; .env is ignored."""
    values = {
        "cookie_name": COOKIE_NAME,
        "flash_cookie_name": FLASH_COOKIE_NAME,
        "session_life": 60,
        "database_url": "sqlite:///:memory:",
        "redirect_on_sign_in": "/home",
        "redirect_on_log_out": "/login",
        "redirect_if_no_rights": "/no-rights",
        "allowed_hosts": ["testserver"],
        "sweep_interval_seconds": 0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


# ---------------------------------------------------------------------------
# Unit-test stack
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[DocumentStore, None, None]:
    s = DocumentStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def sessions(store: DocumentStore, settings: Settings, clock: FakeClock) -> SessionManager:
    return SessionManager(store, settings, clock=clock)


@pytest.fixture
def users(store: DocumentStore, sessions: SessionManager, settings: Settings) -> UserManager:
    return UserManager(store, sessions, settings)


# ---------------------------------------------------------------------------
# Integration stack
# ---------------------------------------------------------------------------


@pytest.fixture
def app_settings() -> Settings:
    return make_settings(session_life=3600)


@pytest.fixture
def app_store(app_settings: Settings) -> Generator[DocumentStore, None, None]:
    url = f"sqlite:///file:docauth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    s = DocumentStore(url, unique_fields={app_settings.users_collection: "email"})
    admin_users = UserManager(s, SessionManager(s, app_settings), app_settings)
    admin_users.register(Account(email=ADMIN_EMAIL, role="admin", approved=True), ADMIN_PASSWORD)
    yield s
    s.close()


@pytest.fixture
def app_client(app_settings: Settings, app_store: DocumentStore) -> Generator[TestClient, None, None]:
    """TestClient with follow_redirects=False.

    Access-control failures are redirects carrying 401/403; the assertions
    need the Location header, which is lost once a redirect is followed.
    """
    app = create_app(app_settings, store=app_store)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def login(app_client: TestClient):
    """Return a function that POSTs credentials to /login and returns the response."""

    def _login(email: str, password: str):
        return app_client.post("/api/v1/auth/login", json={"email": email, "password": password})

    return _login


@pytest.fixture
def make_user(app_client: TestClient):
    """Return a function that registers an already-approved account in the app's store."""

    def _make_user(email: str, password: str, role: str = "user", **fields) -> None:
        users: UserManager = app_client.app.state.users
        users.register(Account(email=email, role=role, approved=True, **fields), password)

    return _make_user


@pytest.fixture
def admin() -> tuple[str, str]:
    """(email, password) of the approved admin seeded into every app_store."""
    return ADMIN_EMAIL, ADMIN_PASSWORD


@pytest.fixture
def mail_settings():
    """Return a function building Settings with SMTP delivery switched on."""

    def _mail_settings(**overrides) -> Settings:
        values = {"smtp_host": "smtp.example.com", "mail_from": "noreply@example.com"}
        values.update(overrides)
        return make_settings(**values)

    return _mail_settings
