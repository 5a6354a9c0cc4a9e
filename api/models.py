"""
API request and response models for the docauth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Login fields are plain strings without length minimums: an empty email or
password must reach UserManager.sign_in() so its check order decides the
error, instead of being pre-empted by a 422.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    email: str = Field(max_length=255)
    password: str = Field(max_length=255)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Role is not accepted here: self-registered accounts get
    Settings.default_role and stay unapproved until an admin approves them.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=72)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    data: dict[str, Any] = Field(default_factory=dict)


class PasswordChangeRequest(BaseModel):
    old_password: str = Field(max_length=255)
    new_password: str = Field(min_length=1, max_length=72)


class PasswordResetRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)
    message: str = Field(default="", max_length=2000)


class EmailRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)


class AccountPatch(BaseModel):
    """Request body for PATCH /api/v1/auth/users. Omitted fields are left alone."""

    email: str = Field(min_length=1, max_length=255)
    role: Optional[str] = Field(default=None, max_length=30)
    user_id: Optional[str] = Field(default=None, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    data: Optional[dict[str, Any]] = None
    approved: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. The password hash is never included."""

    email: str
    user_id: str
    role: str
    approved: bool
    first_name: str = ""
    last_name: str = ""
    data: dict[str, Any] = Field(default_factory=dict)


class LoginResponse(BaseModel):
    email: str
    expires_at: str
    redirect_to: str


class LogoutResponse(BaseModel):
    message: str
    redirect_to: str


class MeResponse(BaseModel):
    """Session snapshot for the caller. Reflects the account as of sign-in."""

    email: str
    role: str
    first_name: str
    last_name: str
    data: dict[str, Any]
    expires_at: str


class MessageResponse(BaseModel):
    message: str


class SweepResponse(BaseModel):
    removed: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
