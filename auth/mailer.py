"""
auth/mailer.py -- Delivers temporary passwords after a reset.

Plain SMTP via smtplib: STARTTLS when the server offers it, LOGIN when
credentials are configured. Transport failures surface as
AuthError(MAIL_FAILED). The temporary password appears only in the message
body, never in logs.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import TYPE_CHECKING

from auth.errors import AuthError, ErrorKind

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("docauth.mail")

_SUBJECT = "Your password has been reset"


def build_reset_message(sender: str, to: str, message: str, password: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = to
    msg["Subject"] = _SUBJECT
    msg.set_content(
        f"{message}\n\nYour temporary password is: {password}\nPlease change this as soon as you sign in.\n"
    )
    return msg


class ResetMailer:
    def __init__(self, settings: Settings, timeout: float = 10.0) -> None:
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.user = settings.smtp_user
        self.password = settings.smtp_password
        self.sender = settings.mail_from or settings.smtp_user
        self.default_message = settings.reset_mail_message
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.host and self.sender)

    def send_reset(self, to: str, password: str, message: str = "") -> None:
        """Email ``password`` to ``to``. Raises AuthError(MAIL_FAILED) on any transport error."""
        if not self.configured:
            raise AuthError(ErrorKind.MAIL_FAILED, "mail delivery is not configured")

        msg = build_reset_message(self.sender, to, message or self.default_message, password)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls()
                    server.ehlo()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("reset mail to %s failed: %s", to, exc)
            raise AuthError(ErrorKind.MAIL_FAILED, "could not send reset email", exc) from exc

        logger.info("reset mail sent to %s", to)
