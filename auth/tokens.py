"""
auth/tokens.py -- Session tokens, password hashing, and the cookie helper.

Security design decisions:
  Tokens: opaque 45-character strings over [A-Za-z0-9] drawn with
       secrets.choice (the OS CSPRNG). 62**45 is roughly 2**268, so tokens are
       unguessable and no per-call reseeding is needed. The same generator
       with length 6 produces temporary passwords for resets.

  Passwords: bcrypt used directly (no passlib wrapper). bcrypt's adaptive cost
       makes brute force expensive. _DUMMY_HASH lets sign-in spend the same
       bcrypt time whether or not the email exists, so response time does not
       reveal which accounts are registered.

  Cookies: HttpOnly, SameSite=Strict, Expires = session expiry. Secure is
       driven by the cookie object (SECURE_COOKIES in production).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import secrets
import string
from typing import TYPE_CHECKING

import bcrypt

from auth.errors import AuthError, ErrorKind

if TYPE_CHECKING:
    from auth.models import Cookie

logger = logging.getLogger("docauth.auth")

TOKEN_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
SESSION_TOKEN_LENGTH = 45
TEMP_PASSWORD_LENGTH = 6


# ---------------------------------------------------------------------------
# Random strings
# ---------------------------------------------------------------------------


def random_string(length: int) -> str:
    """Return ``length`` characters drawn uniformly from TOKEN_ALPHABET."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def new_session_token() -> str:
    return random_string(SESSION_TOKEN_LENGTH)


def new_temporary_password() -> str:
    return random_string(TEMP_PASSWORD_LENGTH)


def token_prefix(token: str) -> str:
    """Short, log-safe prefix of a session token."""
    return f"{token[:6]}..." if token else "<empty>"


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of ``plain``.

    Raises AuthError(HASHING_FAILED) when bcrypt refuses the input (current
    bcrypt releases reject passwords longer than 72 bytes instead of
    truncating them).
    """
    try:
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
    except (ValueError, TypeError) as exc:
        raise AuthError(ErrorKind.HASHING_FAILED, "password hashing failed", exc) from exc


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or over-long candidate: never a match.
        return False


# Computed once at import so the first sign-in is not measurably slower.
_DUMMY_HASH: str = hash_password("docauth_timing_dummy")


def burn_verify(plain: str) -> None:
    """Spend one bcrypt verification on a throwaway hash (timing equalization)."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, cookie: Cookie) -> None:
    """Write a session Cookie onto a FastAPI/Starlette response."""
    response.set_cookie(
        cookie.name,
        value=cookie.value,
        expires=cookie.expires,
        httponly=cookie.http_only,
        samesite=cookie.same_site,
        secure=cookie.secure,
    )


def clear_session_cookie(response, name: str) -> None:
    response.delete_cookie(name, httponly=True, samesite="strict")
