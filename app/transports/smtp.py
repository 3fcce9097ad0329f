"""
SMTP Email Transport

Sends rendered notification emails over SMTP with STARTTLS.
smtplib is blocking, so each send runs in a worker thread.
"""

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional

from app.core.config import settings
from app.transports.base import EmailTransport, TransportError
from app.utils.email_templates import render_email

logger = logging.getLogger(__name__)


class SmtpEmailTransport(EmailTransport):

    def __init__(
        self,
        server: str,
        port: int,
        sender: str,
        password: Optional[str] = None,
        timeout: float = 30.0
    ):
        self.server = server
        self.port = port
        self.sender = sender
        self.password = password
        self.timeout = timeout

    async def send(self, to: str, subject: str, template: str, data: Dict[str, Any]) -> None:
        # Unknown templates are a programming error, not a delivery failure
        html_content, plain_content = render_email(template, data)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        # Plain first: clients show the last part they support
        msg.attach(MIMEText(plain_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        await asyncio.to_thread(self._send_sync, msg)
        logger.info(f"Email '{subject}' sent to {to}")

    def _send_sync(self, msg: MIMEMultipart) -> None:
        try:
            with smtplib.SMTP(self.server, self.port, timeout=self.timeout) as server:
                server.starttls()
                if self.password:
                    server.login(self.sender, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(f"SMTP delivery failed: {e}") from e


def create_smtp_transport() -> Optional[SmtpEmailTransport]:
    """Transport from settings, or None when SMTP is not configured."""
    if not settings.SMTP_SERVER or not settings.SMTP_EMAIL:
        logger.warning("SMTP settings not configured. Emails will not be sent.")
        return None

    return SmtpEmailTransport(
        server=settings.SMTP_SERVER,
        port=int(settings.SMTP_PORT) if settings.SMTP_PORT else 587,
        sender=str(settings.SMTP_EMAIL),
        password=settings.SMTP_PASSWORD,
        timeout=settings.SMTP_TIMEOUT,
    )
