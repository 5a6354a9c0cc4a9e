"""
auth/errors.py -- Error taxonomy for the auth package.

One exception class, many kinds. Every failure raised by auth/ is an AuthError
carrying a stable ErrorKind tag, a human-readable message, and (where there
is one) the underlying cause. Callers branch on the tag by value:

    try:
        users.find_by_email(email)
    except AuthError as exc:
        if exc.kind is not ErrorKind.NO_SUCH_USER:
            raise

Taxonomy groups:
  input validation -- NO_EMAIL_PROVIDED, NO_PASSWORD_PROVIDED, MISSING_IDENTIFIER
  not found        -- NO_SUCH_USER, NO_SESSION, EXPIRED_SESSION
  integrity        -- DUPLICATE_USER (server-side alarm, not user-recoverable)
  credentials      -- WRONG_PASSWORD
  policy           -- NOT_APPROVED, ALREADY_EXISTS
  downstream       -- STORE_*, HASHING_FAILED, SESSION_CREATE_FAILED,
                      DECODE_ERROR, MAIL_FAILED

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NO_EMAIL_PROVIDED = "no_email_provided"
    NO_PASSWORD_PROVIDED = "no_password_provided"
    NO_SUCH_USER = "no_such_user"
    DUPLICATE_USER = "duplicate_user"
    DECODE_ERROR = "decode_error"
    WRONG_PASSWORD = "wrong_password"
    SESSION_CREATE_FAILED = "session_create_failed"
    NOT_APPROVED = "not_approved"
    NO_SESSION = "no_session"
    EXPIRED_SESSION = "expired_session"
    ALREADY_EXISTS = "already_exists"
    MISSING_IDENTIFIER = "missing_identifier"
    HASHING_FAILED = "hashing_failed"
    STORE_ERROR = "store_error"
    STORE_QUERY_ERROR = "store_query_error"
    STORE_WRITE_ERROR = "store_write_error"
    MAIL_FAILED = "mail_failed"


# HTTP status the API layer answers with for each kind.
_HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.NO_EMAIL_PROVIDED: 400,
    ErrorKind.NO_PASSWORD_PROVIDED: 400,
    ErrorKind.MISSING_IDENTIFIER: 400,
    ErrorKind.NO_SUCH_USER: 404,
    ErrorKind.WRONG_PASSWORD: 401,
    ErrorKind.NO_SESSION: 401,
    ErrorKind.EXPIRED_SESSION: 401,
    ErrorKind.NOT_APPROVED: 403,
    ErrorKind.ALREADY_EXISTS: 409,
    ErrorKind.MAIL_FAILED: 502,
}

_ALARMS = frozenset({ErrorKind.DUPLICATE_USER})


class AuthError(Exception):
    """A domain failure tagged with an ErrorKind.

    Attributes:
        kind:    stable tag callers compare against.
        message: human-readable text. Never contains a password or a full token.
        cause:   the wrapped lower-level exception, if any. Also set as
                 __cause__ when raised with ``raise ... from``.
    """

    def __init__(self, kind: ErrorKind, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"AuthError({self.kind.value!r}, {self.message!r})"

    @property
    def code(self) -> str:
        return self.kind.value

    @property
    def http_status(self) -> int:
        """Status code for the HTTP layer. Unlisted kinds are server errors."""
        return _HTTP_STATUS.get(self.kind, 500)

    @property
    def is_alarm(self) -> bool:
        """True for data-integrity violations that must never happen."""
        return self.kind in _ALARMS
