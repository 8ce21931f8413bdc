"""Outbound email delivery."""

import asyncio
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

import structlog

from postforge.common.config import EmailConfig

from .templates import EmailMessageContent

logger = structlog.get_logger(__name__)


class EmailDeliveryError(Exception):
    """Raised when an email could not be handed to the mail server."""

    def __init__(self, message: str, recipient: str):
        super().__init__(message)
        self.recipient = recipient


class EmailSender:
    """Base class for email delivery backends."""

    async def send(self, to: str, content: EmailMessageContent) -> None:
        raise NotImplementedError


class LoggingEmailSender(EmailSender):
    """
    Development backend that only logs that an email would be sent.

    Bodies are not logged, since they contain verification codes and
    reset links.
    """

    async def send(self, to: str, content: EmailMessageContent) -> None:
        logger.info("email_not_sent_no_smtp", to=to, subject=content.subject)


class SMTPEmailSender(EmailSender):
    """
    Sends multipart (text + HTML) email over SMTP.

    The blocking ``smtplib`` session runs in a worker thread.

    Args:
        config: EmailConfig with a configured ``smtp_host``
    """

    def __init__(self, config: EmailConfig):
        if not config.smtp_host:
            raise ValueError("SMTP host is not configured")
        self.config = config

    def _build_message(self, to: str, content: EmailMessageContent) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = content.subject
        message["From"] = formataddr((self.config.from_name, str(self.config.from_address)))
        message["To"] = to
        message.set_content(content.text)
        message.add_alternative(content.html, subtype="html")
        return message

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(
            self.config.smtp_host,
            self.config.smtp_port,
            timeout=self.config.smtp_timeout,
        ) as server:
            if self.config.smtp_use_tls:
                server.starttls()
            if self.config.smtp_username and self.config.smtp_password:
                server.login(self.config.smtp_username, self.config.smtp_password)
            server.send_message(message)

    async def send(self, to: str, content: EmailMessageContent) -> None:
        """
        Send one email.

        Raises:
            EmailDeliveryError: If the SMTP exchange fails
        """
        message = self._build_message(to, content)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("email_send_failed", to=to, subject=content.subject, error=str(e))
            raise EmailDeliveryError(f"Failed to send email: {e}", recipient=to) from e

        logger.info("email_sent", to=to, subject=content.subject)


def build_email_sender(config: EmailConfig) -> EmailSender:
    """Use SMTP when a host is configured, otherwise log only."""
    if config.smtp_host:
        return SMTPEmailSender(config)
    logger.warning("smtp_not_configured", detail="emails will be logged, not delivered")
    return LoggingEmailSender()
