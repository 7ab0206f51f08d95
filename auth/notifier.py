"""
auth/notifier.py -- Out-of-band delivery of one-time secrets.

The issuer never talks to a mail server. Route handlers hand an IssuedSecret
to a Notifier through the BackgroundTaskRunner, so delivery is fire-and-forget
and a slow or failing SMTP server does not delay the response.

Two implementations:
  SmtpNotifier -- plain-text mail over SMTP with STARTTLS (smtplib).
  LogNotifier  -- development fallback when SMTP_HOST is empty; logs that a
                  message would have been sent, with the address redacted and
                  without the secret itself.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Protocol

from auth.models import IssuedSecret, User

logger = logging.getLogger("offerland.auth.notifier")


class Notifier(Protocol):
    def send_activation(self, user: User, secret: IssuedSecret) -> None: ...

    def send_password_reset(self, user: User, secret: IssuedSecret) -> None: ...


def _redact(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpNotifier:
    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        sender: str,
        frontend_url: str,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or username
        self.frontend_url = frontend_url.rstrip("/")
        self.timeout = timeout

    def send_activation(self, user: User, secret: IssuedSecret) -> None:
        body = (
            f"Hi {user.username},\n\n"
            f"Your activation code is {secret.passcode}.\n"
            f"Enter it at {self.frontend_url}/activate/{secret.plaintext}\n\n"
            f"The code expires at {secret.expires_at:%Y-%m-%d %H:%M} UTC.\n"
        )
        self._send(user.email, "Activate your account", body)

    def send_password_reset(self, user: User, secret: IssuedSecret) -> None:
        body = (
            f"Hi {user.username},\n\n"
            "Someone asked to reset your password. If it was you, follow this link:\n"
            f"{self.frontend_url}/reset-forgot-password/{secret.plaintext}\n\n"
            f"The link expires at {secret.expires_at:%Y-%m-%d %H:%M} UTC. "
            "If you did not ask for a reset you can ignore this mail.\n"
        )
        self._send(user.email, "Reset your password", body)

    def _send(self, to: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg.set_content(body)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.starttls(context=ssl.create_default_context())
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)
        logger.info("Sent '%s' mail to %s", subject, _redact(to))


class LogNotifier:
    def send_activation(self, user: User, secret: IssuedSecret) -> None:
        logger.info("Mail disabled: activation mail for %s not sent", _redact(user.email))

    def send_password_reset(self, user: User, secret: IssuedSecret) -> None:
        logger.info("Mail disabled: password reset mail for %s not sent", _redact(user.email))
