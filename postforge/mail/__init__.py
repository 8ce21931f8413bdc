"""Transactional email for verification codes and password resets."""

from .mailer import (
    EmailDeliveryError,
    EmailSender,
    LoggingEmailSender,
    SMTPEmailSender,
    build_email_sender,
)
from .templates import (
    EmailMessageContent,
    otp_email,
    password_changed_email,
    password_reset_email,
)

__all__ = [
    "EmailSender",
    "SMTPEmailSender",
    "LoggingEmailSender",
    "EmailDeliveryError",
    "build_email_sender",
    "EmailMessageContent",
    "otp_email",
    "password_reset_email",
    "password_changed_email",
]
