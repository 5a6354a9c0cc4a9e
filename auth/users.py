"""
auth/users.py -- Account lifecycle and the sign-in protocol.

UserManager composes the document store, bcrypt (auth/tokens.py) and the
SessionManager. It owns registration, lookup by email, edits, approval,
password change/reset, and sign-in.

Sign-in check order is part of the contract and must not be reordered:
  1. empty email      -> NO_EMAIL_PROVIDED
  2. empty password   -> NO_PASSWORD_PROVIDED
  3. account lookup   -> NO_SUCH_USER / DUPLICATE_USER / store errors
  4. approval gate    -> NOT_APPROVED
  5. bcrypt verify    -> WRONG_PASSWORD
  6. session create   -> SESSION_CREATE_FAILED
The first failure wins. The plaintext password is never logged or returned.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

from auth.errors import AuthError, ErrorKind
from auth.models import Account, AccountRef, Cookie
from auth.tokens import burn_verify, hash_password, new_temporary_password, verify_password

if TYPE_CHECKING:
    from auth.sessions import SessionManager
    from auth.store import DocumentStore
    from core.config import Settings

logger = logging.getLogger("docauth.auth")


class IdentifierMode(str, Enum):
    """How register() picks the document key for a new account."""

    EXPLICIT = "explicit"  # key = account.user_id, which must be set
    AUTO_ASSIGNED = "auto"  # key generated by the store


class UserManager:
    """Account operations over the users collection.

    Usage:
        users = UserManager(store, sessions, settings)
        users.register(Account(email="a@example.com", role="editor"), "s3cret")
        users.approve("a@example.com")
        cookie = users.sign_in("a@example.com", "s3cret", ip="203.0.113.7")
    """

    def __init__(self, store: DocumentStore, sessions: SessionManager, settings: Settings) -> None:
        self.store = store
        self.sessions = sessions
        self.settings = settings
        self.collection = settings.users_collection

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> AccountRef:
        """Return the single account stored under ``email`` (exact match).

        More than one match means the uniqueness invariant is broken. That is
        raised as DUPLICATE_USER and logged as an alarm, never resolved by
        picking one.
        """
        if not email:
            raise AuthError(ErrorKind.NO_EMAIL_PROVIDED, "please provide an email address")

        try:
            matches = self.store.get_by_field(self.collection, "email", email)
        except AuthError as exc:
            raise AuthError(
                ErrorKind.STORE_QUERY_ERROR, f"error querying db for user {email}", exc
            ) from exc

        if not matches:
            raise AuthError(ErrorKind.NO_SUCH_USER, f"user {email} does not exist")
        if len(matches) > 1:
            logger.error("INTEGRITY: %d accounts share email %s", len(matches), email)
            raise AuthError(
                ErrorKind.DUPLICATE_USER,
                f"there are {len(matches)} users with this email address, contact admin",
            )

        key, doc = matches[0]
        return AccountRef(key=key, account=Account.from_document(key, doc))

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self, account: Account, password: str, mode: IdentifierMode = IdentifierMode.AUTO_ASSIGNED
    ) -> AccountRef:
        """Create a new account. Does not sign the user in.

        ``account.approved`` is stored as given and defaults to False, so new
        accounts cannot sign in until approve() is called.

        Both modes rely on the store's unique email index: if another request
        registers the same email between the lookup and the insert, the insert
        itself fails with ALREADY_EXISTS.
        """
        try:
            self.find_by_email(account.email)
        except AuthError as exc:
            if exc.kind is not ErrorKind.NO_SUCH_USER:
                raise
        else:
            raise AuthError(ErrorKind.ALREADY_EXISTS, "user with this email address already exists")

        if not password:
            raise AuthError(ErrorKind.NO_PASSWORD_PROVIDED, "please provide a password")
        if mode is IdentifierMode.EXPLICIT and not account.user_id:
            raise AuthError(ErrorKind.MISSING_IDENTIFIER, "explicit identifier mode requires a user ID")

        record = Account(
            email=account.email,
            role=account.role,
            user_id=account.user_id,
            password_hash=hash_password(password),
            approved=account.approved,
            data=dict(account.data),
            ip=account.ip,
            first_name=account.first_name,
            last_name=account.last_name,
        )

        try:
            if mode is IdentifierMode.EXPLICIT:
                key = record.user_id
                self.store.insert_at(self.collection, key, record.to_document())
            else:
                key = self.store.insert(self.collection, record.to_document())
                record.user_id = key
        except AuthError as exc:
            if exc.kind is ErrorKind.ALREADY_EXISTS:
                raise
            raise AuthError(ErrorKind.STORE_WRITE_ERROR, "could not create user", exc) from exc

        logger.info("registered %s (mode=%s, approved=%s)", record.email, mode.value, record.approved)
        return AccountRef(key=key, account=record)

    # ------------------------------------------------------------------
    # Sign-in
    # ------------------------------------------------------------------

    def sign_in(self, email: str, password: str, ip: str = "") -> Cookie:
        """Check credentials and open a session. Returns the session cookie."""
        if not email:
            raise AuthError(ErrorKind.NO_EMAIL_PROVIDED, "please provide an email address")
        if not password:
            raise AuthError(ErrorKind.NO_PASSWORD_PROVIDED, "please provide a password")

        try:
            ref = self.find_by_email(email)
        except AuthError as exc:
            if exc.kind is ErrorKind.NO_SUCH_USER:
                burn_verify(password)
            logger.info("sign-in rejected for %s: %s", email, exc.code)
            raise

        account = ref.account
        if not account.approved:
            logger.info("sign-in rejected for %s: not_approved", email)
            raise AuthError(ErrorKind.NOT_APPROVED, "user account not yet approved")

        if not verify_password(password, account.password_hash):
            logger.info("sign-in rejected for %s: wrong_password", email)
            raise AuthError(ErrorKind.WRONG_PASSWORD, "wrong password")

        account.ip = ip
        try:
            cookie = self.sessions.create(account)
        except AuthError as exc:
            raise AuthError(ErrorKind.SESSION_CREATE_FAILED, "login error, contact admin", exc) from exc

        logger.info("sign-in ok for %s from %s", email, ip or "unknown")
        return cookie

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def change_password(self, email: str, old_password: str, new_password: str) -> None:
        """Replace the stored hash if ``old_password`` matches it.

        On a mismatch the stored hash is left exactly as it was.
        """
        ref = self.find_by_email(email)
        if not verify_password(old_password, ref.account.password_hash):
            raise AuthError(ErrorKind.WRONG_PASSWORD, "wrong password")
        if not new_password:
            raise AuthError(ErrorKind.NO_PASSWORD_PROVIDED, "please provide a new password")

        self._store_hash(ref.key, hash_password(new_password))
        logger.info("password changed for %s", email)

    def reset_password(self, email: str, deliver: Callable[[str], None] | None = None) -> str:
        """Set a random 6-character password and return it in plaintext.

        Only the hash is stored. With ``deliver`` (e.g. ResetMailer.send_reset
        bound to the address), the plaintext is handed to it right after the
        hash is written; if delivery raises, the previous hash is put back and
        the error propagates, so the old password keeps working.
        """
        ref = self.find_by_email(email)
        temporary = new_temporary_password()
        self._store_hash(ref.key, hash_password(temporary))
        if deliver is not None:
            try:
                deliver(temporary)
            except AuthError:
                self._store_hash(ref.key, ref.account.password_hash)
                logger.warning("password reset for %s rolled back: delivery failed", email)
                raise
        logger.info("password reset for %s", email)
        return temporary

    def _store_hash(self, key: str, password_hash: str) -> None:
        try:
            updated = self.store.merge_update(self.collection, key, {"passwordHash": password_hash})
        except AuthError as exc:
            raise AuthError(ErrorKind.STORE_WRITE_ERROR, "could not update password", exc) from exc
        if not updated:
            raise AuthError(ErrorKind.NO_SUCH_USER, "user disappeared during password update")

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def edit(self, account: Account) -> None:
        """Merge the non-empty fields of ``account`` into the stored record.

        account.email selects the record. Empty strings, empty data and
        approved=False leave the stored values untouched, so un-approving an
        account is not possible through edit().
        """
        ref = self.find_by_email(account.email)
        partial: dict = {}
        if account.role:
            partial["role"] = account.role
        if account.user_id:
            partial["userID"] = account.user_id
        if account.data:
            partial["data"] = dict(account.data)
        if account.ip:
            partial["ip"] = account.ip
        if account.first_name:
            partial["firstName"] = account.first_name
        if account.last_name:
            partial["lastName"] = account.last_name
        if account.approved:
            partial["approved"] = True
        if not partial:
            return

        try:
            self.store.merge_update(self.collection, ref.key, partial)
        except AuthError as exc:
            raise AuthError(ErrorKind.STORE_WRITE_ERROR, f"could not update user {account.email}", exc) from exc
        logger.info("edited %s: %s", account.email, ", ".join(sorted(partial)))

    def approve(self, email: str) -> None:
        """Allow the account to sign in."""
        self.edit(Account(email=email, approved=True))

    def account_from_session(self, token: str) -> Account:
        """Build an Account view from the session snapshot behind ``token``.

        The result reflects the account as it was at sign-in, not now.
        """
        session = self.sessions.fetch(token)
        return Account(
            email=session.email,
            role=session.role,
            data=dict(session.data),
            ip=session.ip,
            first_name=session.first_name,
            last_name=session.last_name,
        )
