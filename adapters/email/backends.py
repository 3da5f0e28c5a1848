"""
Email delivery backends.

The default 'console' backend prints the message for development; the 'smtp'
backend delivers through an SMTP server with optional STARTTLS. Both satisfy
the ``Notifier`` protocol and report failures as an error ``Result``.
"""

import asyncio
import smtplib
from email.message import EmailMessage

import structlog

from bpcare.config import EmailConfig
from bpcare.domain.errors import NotifierError
from bpcare.domain.result import Result
from bpcare.services.report import CHART_CID, Notifier

logger = structlog.get_logger(__name__)


def build_message(
    sender: str,
    destination: str,
    subject: str,
    body_text: str,
    body_html: str | None = None,
    image: bytes | None = None,
) -> EmailMessage:
    """Plain text with an optional HTML alternative and an inline PNG chart."""
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = destination
    msg.set_content(body_text)

    if body_html:
        msg.add_alternative(body_html, subtype="html")
        if image:
            html_part = msg.get_payload()[1]
            html_part.add_related(image, maintype="image", subtype="png", cid=f"<{CHART_CID}>")
    elif image:
        msg.add_attachment(image, maintype="image", subtype="png", filename="bp_chart.png")

    return msg


class ConsoleEmailBackend:
    """Prints emails to stdout (for development/testing)."""

    def __init__(self, sender: str = "noreply@localhost") -> None:
        self.sender = sender
        self.sent: list[EmailMessage] = []
        self.logger = logger.bind(component="console_email_backend")

    async def send(
        self,
        destination: str,
        subject: str,
        body_text: str,
        body_html: str | None = None,
        image: bytes | None = None,
    ) -> Result[None, NotifierError]:
        msg = build_message(self.sender, destination, subject, body_text, body_html, image)
        self.sent.append(msg)
        print(
            f"\n{'=' * 50}\n"
            f"[EMAIL] To: {destination}\n"
            f"Subject: {subject}\n"
            f"{'=' * 50}\n"
            f"{body_text}\n"
            f"{'=' * 50}\n"
        )
        self.logger.info("email_sent", destination=destination, has_image=image is not None)
        return Result.ok(None)


class SMTPEmailBackend:
    """SMTP backend with TLS support."""

    def __init__(self, config: EmailConfig) -> None:
        if not all([config.smtp_host, config.smtp_user, config.smtp_password]):
            raise ValueError("SMTP backend requires smtp_host, smtp_user and smtp_password")
        self.config = config
        self.logger = logger.bind(component="smtp_email_backend", host=config.smtp_host)

    async def send(
        self,
        destination: str,
        subject: str,
        body_text: str,
        body_html: str | None = None,
        image: bytes | None = None,
    ) -> Result[None, NotifierError]:
        msg = build_message(
            self.config.sender, destination, subject, body_text, body_html, image
        )
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            self.logger.error("email_send_failed", destination=destination, error=str(e))
            return Result.err(NotifierError(f"Could not send email to {destination}: {e}"))

        self.logger.info("email_sent", destination=destination, has_image=image is not None)
        return Result.ok(None)

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.config.smtp_host or "", self.config.smtp_port, timeout=30) as server:
            if self.config.use_tls:
                server.starttls()
            server.login(self.config.smtp_user or "", self.config.smtp_password or "")
            server.send_message(msg)


def get_email_backend(config: EmailConfig) -> Notifier:
    """Get the configured email backend instance."""
    if config.backend == "smtp":
        return SMTPEmailBackend(config)
    return ConsoleEmailBackend(sender=config.sender)
