"""
api/routes/v1/auth.py -- Session, account and password REST endpoints.

Routes:
  POST  /api/v1/auth/register          -- create an unapproved account (public)
  POST  /api/v1/auth/login             -- sign in; sets the session cookie
  POST  /api/v1/auth/logout            -- destroys the session, clears cookie
  GET   /api/v1/auth/me                -- session snapshot (any valid session)
  POST  /api/v1/auth/password          -- change own password (any valid session)
  POST  /api/v1/auth/password/reset    -- reset a user's password and email it (admin)
  POST  /api/v1/auth/users/approve     -- approve an account (admin)
  PATCH /api/v1/auth/users             -- merge-edit an account (admin)
  POST  /api/v1/auth/sessions/sweep    -- delete expired sessions now (admin)

Security:
  POST /login and /register are rate-limited per client IP.
  Unknown email and wrong password share one "bad_credentials" 401 so the
  response does not reveal which field was wrong. UserManager.sign_in()
  also spends bcrypt time on unknown emails.
  Cache-Control: no-store on login responses.
  Handlers are plain ``def`` so FastAPI runs bcrypt in its threadpool, off
  the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AccountPatch,
    AccountResponse,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    MeResponse,
    MessageResponse,
    PasswordChangeRequest,
    PasswordResetRequest,
    RegisterRequest,
    SweepResponse,
)
from auth.dependencies import require_roles, require_session
from auth.errors import AuthError, ErrorKind
from auth.mailer import ResetMailer
from auth.models import Account, Session
from auth.sessions import SessionManager
from auth.tokens import clear_session_cookie, set_session_cookie
from auth.users import UserManager

ADMIN_ROLE = "admin"

# Kinds collapsed into one generic answer on login.
_BAD_CREDENTIALS = frozenset({ErrorKind.NO_SUCH_USER, ErrorKind.WRONG_PASSWORD})

require_admin = require_roles(ADMIN_ROLE)

router = APIRouter()


def _account_to_response(account: Account) -> AccountResponse:
    return AccountResponse(
        email=account.email,
        user_id=account.user_id,
        role=account.role,
        approved=account.approved,
        first_name=account.first_name,
        last_name=account.last_name,
        data=account.data,
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit("5/minute")
@router.post("/auth/register", response_model=AccountResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> AccountResponse:
    """Create an account with the default role. It cannot sign in until approved."""
    users: UserManager = request.app.state.users
    account = Account(
        email=body.email,
        role=request.app.state.settings.default_role,
        first_name=body.first_name,
        last_name=body.last_name,
        data=body.data,
        ip=request.client.host if request.client else "",
    )
    ref = users.register(account, body.password)
    return _account_to_response(ref.account)


@limiter.limit("10/minute")
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Sign in with email and password; set the session cookie.

    Errors other than bad credentials (missing fields, unapproved account,
    store failures) fall through to the AuthError handler in api/main.py.
    """
    users: UserManager = request.app.state.users
    settings = request.app.state.settings
    ip = request.client.host if request.client else ""
    try:
        cookie = users.sign_in(body.email, body.password, ip)
    except AuthError as exc:
        if exc.kind not in _BAD_CREDENTIALS:
            raise
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            email=body.email,
            expires_at=cookie.expires.isoformat(),
            redirect_to=settings.redirect_on_sign_in,
        ).model_dump(),
    )
    set_session_cookie(resp, cookie)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=LogoutResponse)
def logout(request: Request) -> JSONResponse:
    """Delete the server-side session (if any) and clear the cookie.

    Works without a valid session so a stale cookie can always be cleared.
    """
    sessions: SessionManager = request.app.state.sessions
    settings = request.app.state.settings
    sessions.destroy(request.cookies.get(settings.cookie_name, ""))
    resp = JSONResponse(
        content=LogoutResponse(message="Logged out.", redirect_to=settings.redirect_on_log_out).model_dump()
    )
    clear_session_cookie(resp, settings.cookie_name)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(session: Session = Depends(require_session)) -> MeResponse:
    """Return the caller's session snapshot (as of sign-in, not live)."""
    return MeResponse(
        email=session.email,
        role=session.role,
        first_name=session.first_name,
        last_name=session.last_name,
        data=session.data,
        expires_at=session.expiry.isoformat(),
    )


@router.post("/auth/password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChangeRequest,
    session: Session = Depends(require_session),
) -> MessageResponse:
    """Change the caller's own password. The old password must match."""
    users: UserManager = request.app.state.users
    users.change_password(session.email, body.old_password, body.new_password)
    return MessageResponse(message="Password changed.")


# ---------------------------------------------------------------------------
# Administration (admin only)
# ---------------------------------------------------------------------------


@router.post("/auth/password/reset", response_model=MessageResponse)
def reset_password(
    request: Request,
    body: PasswordResetRequest,
    session: Session = Depends(require_admin),
) -> MessageResponse:
    """Reset a user's password to a temporary one and email it to them.

    Refuses up front when SMTP is not configured. If sending fails, the reset
    is rolled back and the old password stays valid.
    """
    users: UserManager = request.app.state.users
    mailer: ResetMailer = request.app.state.mailer
    if not mailer.configured:
        raise HTTPException(
            status_code=503,
            detail={"code": "mail_unavailable", "message": "Password reset email is not configured."},
        )
    users.reset_password(body.email, deliver=lambda temporary: mailer.send_reset(body.email, temporary, body.message))
    return MessageResponse(message=f"Temporary password sent to {body.email}.")


@router.post("/auth/users/approve", response_model=AccountResponse)
def approve_user(
    request: Request,
    body: EmailRequest,
    session: Session = Depends(require_admin),
) -> AccountResponse:
    """Approve an account so it can sign in."""
    users: UserManager = request.app.state.users
    users.approve(body.email)
    return _account_to_response(users.find_by_email(body.email).account)


@router.patch("/auth/users", response_model=AccountResponse)
def edit_user(
    request: Request,
    body: AccountPatch,
    session: Session = Depends(require_admin),
) -> AccountResponse:
    """Merge the supplied fields into an account. Omitted fields are unchanged.

    Changes show up in the user's session only after they sign in again.
    """
    users: UserManager = request.app.state.users
    users.edit(
        Account(
            email=body.email,
            role=body.role or "",
            user_id=body.user_id or "",
            first_name=body.first_name or "",
            last_name=body.last_name or "",
            data=body.data or {},
            approved=bool(body.approved),
        )
    )
    return _account_to_response(users.find_by_email(body.email).account)


@router.post("/auth/sessions/sweep", response_model=SweepResponse)
def sweep_sessions(request: Request, session: Session = Depends(require_admin)) -> SweepResponse:
    """Delete every expired session now instead of waiting for the background sweep."""
    sessions: SessionManager = request.app.state.sessions
    return SweepResponse(removed=sessions.sweep_expired())
