"""
auth/sessions.py -- Session lifecycle against the document store.

A session is a document in the sessions collection keyed by its opaque token.
SessionManager creates it at sign-in, validates it on every protected request,
and removes it on logout, on expiry, or in a bulk sweep.

Invariants:
  - fetch() either returns a live Session or raises. Never both, never a
    session whose expiry has passed.
  - An expired session found by fetch() is deleted before the error is raised.
    Deletion is idempotent, so two requests racing on the same expired token
    both end with "session absent" and neither fails on the delete.
  - sweep_expired() is best-effort: it stops at the first failing delete and
    raises, without restoring what it already removed.

The clock is injectable so expiry can be tested without sleeping.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth.errors import AuthError, ErrorKind
from auth.models import Account, Cookie, Session
from auth.tokens import new_session_token, token_prefix

if TYPE_CHECKING:
    from auth.store import DocumentStore
    from core.config import Settings

logger = logging.getLogger("docauth.sessions")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Create, fetch, destroy and sweep sessions.

    Usage:
        sessions = SessionManager(store, settings)
        cookie = sessions.create(account)
        session = sessions.fetch(cookie.value)
        sessions.destroy(cookie.value)
    """

    def __init__(self, store: DocumentStore, settings: Settings, clock: Clock = utcnow) -> None:
        self.store = store
        self.settings = settings
        self.collection = settings.sessions_collection
        self._clock = clock

    def create(self, account: Account, cookie_name: str | None = None, lifetime_seconds: int | None = None) -> Cookie:
        """Persist a snapshot of ``account`` as a new session and return its cookie.

        Role, data, names and IP are copied from the account now and are not
        refreshed later. Raises AuthError(SESSION_CREATE_FAILED).
        """
        name = cookie_name or self.settings.cookie_name
        life = lifetime_seconds if lifetime_seconds is not None else self.settings.session_life
        expiry = self._clock() + timedelta(seconds=life)
        session = Session(
            token="",
            email=account.email,
            expiry=expiry,
            role=account.role,
            first_name=account.first_name,
            last_name=account.last_name,
            data=dict(account.data),
            ip=account.ip,
        )

        # insert_at is conditional on the key being new. A token collision is
        # astronomically unlikely, so one retry is enough.
        for attempt in (1, 2):
            token = new_session_token()
            try:
                self.store.insert_at(self.collection, token, session.to_document())
                break
            except AuthError as exc:
                if exc.kind is ErrorKind.ALREADY_EXISTS and attempt == 1:
                    continue
                logger.error("session create failed for %s: %s", account.email, exc)
                raise AuthError(ErrorKind.SESSION_CREATE_FAILED, "could not create session", exc) from exc

        logger.info("session %s created for %s (expires %s)", token_prefix(token), account.email, expiry.isoformat())
        return Cookie(
            name=name,
            value=token,
            expires=expiry,
            secure=self.settings.secure_cookies,
        )

    def fetch(self, token: str) -> Session:
        """Return the live session for ``token``.

        Raises AuthError with kind NO_SESSION (empty or unknown token),
        EXPIRED_SESSION (found but expiry <= now; the record is deleted),
        STORE_ERROR or DECODE_ERROR.
        """
        if not token:
            raise AuthError(ErrorKind.NO_SESSION, "session doesn't exist")

        doc = self.store.get_by_key(self.collection, token)
        if doc is None:
            raise AuthError(ErrorKind.NO_SESSION, "session doesn't exist")

        session = Session.from_document(token, doc)
        if session.expiry <= self._clock():
            try:
                self.store.delete_by_key(self.collection, token)
            except AuthError as exc:
                raise AuthError(ErrorKind.STORE_ERROR, "session expired, failed to delete", exc) from exc
            logger.info("session %s expired and was deleted", token_prefix(token))
            raise AuthError(ErrorKind.EXPIRED_SESSION, "session expired, deleted")

        return session

    def destroy(self, token: str) -> None:
        """Delete the session for ``token``. Unknown tokens are not an error."""
        if not token:
            return
        if self.store.delete_by_key(self.collection, token):
            logger.info("session %s destroyed", token_prefix(token))

    def sweep_expired(self) -> int:
        """Delete every session whose expiry is before now. Returns the count removed."""
        cutoff = self._clock().isoformat(timespec="microseconds")
        dead = self.store.find_before(self.collection, "expiryDate", cutoff)
        removed = 0
        for token, _doc in dead:
            try:
                if self.store.delete_by_key(self.collection, token):
                    removed += 1
            except AuthError:
                logger.error("sweep stopped after %d of %d expired sessions", removed, len(dead))
                raise
        if removed:
            logger.info("sweep removed %d expired session(s)", removed)
        return removed

    @staticmethod
    def can_access(session: Session, allowed_roles: Iterable[str]) -> bool:
        """True iff the session's role is one of ``allowed_roles``."""
        return session.role in set(allowed_roles)
