"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for docauth happen here. No module should
call os.getenv() or os.environ.get() directly.

Design patterns used:
  Explicit settings object: every component (DocumentStore, SessionManager,
      UserManager, ResetMailer, the FastAPI app factory) receives a Settings
      instance in its constructor. Nothing reads a module-level global, so two
      isolated instances (e.g. one per tenant, or one per test) can coexist.

  get_settings() (lru_cache): the process bootstrap in asgi.py calls it once
      to build the default instance. It is the only caller.

  BaseSettings (pydantic-settings): reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. cookie_name -> COOKIE_NAME).

  @model_validator(mode="after"): collects every required option that is
      unset and fails startup with a single error naming all of them.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("docauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'docauth.db'}"

_DEFAULT_RESET_MESSAGE = "Your password has been reset by an administrator."


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    The cookie names and the session lifetime have no usable default: they
    must be supplied by the environment or by the caller. Everything else has
    a default so tests only need to pass the required fields.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Cookies and sessions
    # ------------------------------------------------------------------

    cookie_name: str = ""
    flash_cookie_name: str = ""
    # Seconds a session lives on the server. 0 is the "not configured" sentinel.
    session_life: int = 0
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    users_collection: str = "users"
    sessions_collection: str = "sessions"
    # How often the lifespan task sweeps expired sessions. 0 disables it.
    sweep_interval_seconds: int = 3600

    # ------------------------------------------------------------------
    # Redirect routes
    # ------------------------------------------------------------------

    redirect_on_sign_in: str = "/"
    redirect_on_log_out: str = "/login"
    redirect_if_no_rights: str = "/"

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    # Role given to self-registered accounts. Admins change it via PATCH.
    default_role: str = "user"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Password reset mail (optional -- empty host disables delivery)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    mail_from: str = ""
    reset_mail_message: str = _DEFAULT_RESET_MESSAGE

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_required(self) -> "Settings":
        """Fail fast with a descriptive error if a required option is unset.

        All missing options are reported together so a misconfigured deploy
        is fixed in one pass rather than one restart per variable.
        """
        missing = []
        if not self.cookie_name:
            missing.append("COOKIE_NAME (session cookie name)")
        if not self.flash_cookie_name:
            missing.append("FLASH_COOKIE_NAME (flash cookie name)")
        if not self.database_url:
            missing.append("DATABASE_URL (document store)")
        if not self.redirect_on_sign_in:
            missing.append("REDIRECT_ON_SIGN_IN")
        if not self.redirect_on_log_out:
            missing.append("REDIRECT_ON_LOG_OUT")
        if not self.redirect_if_no_rights:
            missing.append("REDIRECT_IF_NO_RIGHTS")
        if not self.users_collection:
            missing.append("USERS_COLLECTION")
        if not self.sessions_collection:
            missing.append("SESSIONS_COLLECTION")
        if missing:
            raise ValueError("Missing required auth configuration: " + ", ".join(missing))
        if self.session_life <= 0:
            raise ValueError("SESSION_LIFE must be a positive number of seconds.")
        if self.sweep_interval_seconds < 0:
            raise ValueError("SWEEP_INTERVAL_SECONDS must be >= 0.")
        if self.smtp_host and not self.mail_from:
            logger.warning("SMTP_HOST is set but MAIL_FROM is empty -- falling back to SMTP_USER as sender")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings built from the environment.

    Only the bootstrap (asgi.py) calls this. Components never do -- they are
    handed a Settings instance explicitly.

    In tests: construct Settings(...) directly instead, or call
    get_settings.cache_clear() after changing environment variables.
    """
    return Settings()
