"""
auth/dependencies.py -- FastAPI Depends() helpers for session access control.

Every protected request runs the same four-state machine:

  UNAUTHENTICATED  no session cookie             -> fallback route, 401
  SESSION_INVALID  fetch() raised (absent,       -> fallback route, 403
                   expired, store failure)
  FORBIDDEN        role not in the allowed set   -> Referer (same origin) or
                                                    redirect_if_no_rights, 403
  AUTHORIZED       handler runs with the Session

The fallback route is the per-route ``redirect_to`` or, if empty,
settings.redirect_on_log_out.

require_roles() builds the dependency. It raises AccessRedirect instead of
returning a response; access_redirect_handler (registered in api/main.py)
turns that into the redirect and sets a flash cookie with a generic message.
Internal error detail never reaches the client.

Nothing is cached between requests: each one is evaluated from the cookie
and the store alone.

Layer rule: may import from fastapi (this module is part of the dependency
injection system); no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from urllib.parse import urljoin, urlparse

from fastapi import Request
from fastapi.responses import RedirectResponse

from auth.errors import AuthError
from auth.models import Session
from auth.sessions import SessionManager
from auth.tokens import token_prefix

logger = logging.getLogger("docauth.auth")


class AccessState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    SESSION_INVALID = "session_invalid"
    AUTHORIZED = "authorized"
    FORBIDDEN = "forbidden"


_STATUS = {
    AccessState.UNAUTHENTICATED: 401,
    AccessState.SESSION_INVALID: 403,
    AccessState.FORBIDDEN: 403,
}

_FLASH = {
    AccessState.UNAUTHENTICATED: "Please sign in.",
    AccessState.SESSION_INVALID: "Your session has ended. Please sign in again.",
    AccessState.FORBIDDEN: "You do not have access to that page.",
}


class AccessRedirect(Exception):
    """Raised by access dependencies; rendered as a redirect by the app."""

    def __init__(self, state: AccessState, location: str) -> None:
        super().__init__(state.value)
        self.state = state
        self.location = location
        self.status_code = _STATUS[state]
        self.flash = _FLASH[state]


def evaluate_access(request: Request, roles: tuple[str, ...]) -> tuple[AccessState, Session | None]:
    """Classify the request. Returns the Session only in the AUTHORIZED state.

    An empty ``roles`` tuple accepts any valid session.
    """
    settings = request.app.state.settings
    sessions: SessionManager = request.app.state.sessions

    token = request.cookies.get(settings.cookie_name)
    if not token:
        return AccessState.UNAUTHENTICATED, None

    try:
        session = sessions.fetch(token)
    except AuthError as exc:
        logger.info("session %s rejected: %s", token_prefix(token), exc.code)
        return AccessState.SESSION_INVALID, None

    if roles and not sessions.can_access(session, roles):
        logger.info("%s (role=%s) denied %s", session.email, session.role, request.url.path)
        return AccessState.FORBIDDEN, None

    return AccessState.AUTHORIZED, session


def _safe_referer(request: Request) -> str:
    """Return the Referer only when it points back at this site.

    A foreign Referer would turn the no-rights redirect into an open
    redirect, so anything cross-origin is dropped.
    """
    referer = request.headers.get("referer", "")
    if not referer:
        return ""
    # Browsers read "\" as "/", so "/\evil.example" is protocol-relative.
    if "\\" in referer:
        return ""
    parsed = urlparse(referer)
    if not parsed.netloc and not referer.startswith("/"):
        return ""
    resolved = urlparse(urljoin(str(request.url), referer))
    if resolved.scheme != request.url.scheme or resolved.netloc != request.url.netloc:
        return ""
    return referer


def require_roles(*roles: str, redirect_to: str = "") -> Callable[[Request], Session]:
    """Build a dependency that admits only sessions whose role is in ``roles``.

    Use as a FastAPI dependency:
        @router.get("/admin")
        def route(session: Session = Depends(require_roles("admin"))): ...

    With no roles, any valid session is admitted.
    """

    def dependency(request: Request) -> Session:
        state, session = evaluate_access(request, roles)
        if state is AccessState.AUTHORIZED:
            return session
        settings = request.app.state.settings
        if state is AccessState.FORBIDDEN:
            location = _safe_referer(request) or settings.redirect_if_no_rights
        else:
            location = redirect_to or settings.redirect_on_log_out
        raise AccessRedirect(state, location)

    return dependency


require_session = require_roles()


async def access_redirect_handler(request: Request, exc: AccessRedirect) -> RedirectResponse:
    """Render an AccessRedirect as a redirect carrying the state's status code."""
    settings = request.app.state.settings
    response = RedirectResponse(exc.location, status_code=exc.status_code)
    response.set_cookie(settings.flash_cookie_name, exc.flash, httponly=True, samesite="strict", max_age=60)
    if exc.state is AccessState.SESSION_INVALID:
        # The token is dead either way; stop the browser from resending it.
        response.delete_cookie(settings.cookie_name, httponly=True, samesite="strict")
    return response
