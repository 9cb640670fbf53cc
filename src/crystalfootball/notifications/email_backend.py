"""SMTP email backend."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Iterable

from crystalfootball.config import get_settings

logger = logging.getLogger(__name__)


class EmailBackend:
    """Simple SMTP email sender; logs instead of sending when no host is configured."""

    def __init__(self) -> None:
        self.settings = get_settings()
        self.enabled = bool(self.settings.email_host)

    def send(self, subject: str, body: str, recipients: Iterable[str]) -> None:
        recipients = [address for address in recipients if address]
        if not recipients:
            return
        if not self.enabled:
            logger.info("[Email disabled] %s -> %s", subject, ", ".join(recipients))
            return

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.settings.email_from
        msg["To"] = ", ".join(recipients)
        msg.set_content(body)

        with smtplib.SMTP(self.settings.email_host, self.settings.email_port) as smtp:
            smtp.starttls()
            if self.settings.email_user and self.settings.email_password:
                smtp.login(self.settings.email_user, self.settings.email_password)
            smtp.send_message(msg)
