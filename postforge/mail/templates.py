"""Transactional email bodies."""

from dataclasses import dataclass
from html import escape
from typing import Optional

_HTML_LAYOUT = """<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"></head>
  <body style="font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; color: #333; line-height: 1.6;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
      <h1 style="font-size: 24px; color: #1f2937;">{title}</h1>
      {body}
      <p style="font-size: 12px; color: #666; margin-top: 40px;">{product} - AI-assisted social media drafting</p>
    </div>
  </body>
</html>
"""


@dataclass(frozen=True)
class EmailMessageContent:
    subject: str
    html: str
    text: str


def _greeting(name: Optional[str]) -> str:
    return f"Hi {name}," if name else "Hi there,"


def _render(title: str, body: str, product: str) -> str:
    return _HTML_LAYOUT.format(title=escape(title), body=body, product=escape(product))


def otp_email(
    code: str,
    expires_minutes: int,
    name: Optional[str] = None,
    product: str = "PostForge",
) -> EmailMessageContent:
    """Email carrying an email verification code."""
    greeting = _greeting(name)
    html_body = (
        f"<p>{escape(greeting)}</p>"
        "<p>Use this code to verify your email address:</p>"
        '<p style="font-size: 32px; font-weight: bold; letter-spacing: 8px; '
        f"font-family: 'Courier New', monospace;\">{escape(code)}</p>"
        f"<p>The code expires in {expires_minutes} minutes.</p>"
        "<p>If you didn't create an account, you can ignore this email.</p>"
    )
    text = (
        f"{greeting}\n\n"
        f"Your verification code is: {code}\n\n"
        f"The code expires in {expires_minutes} minutes.\n"
        "If you didn't create an account, you can ignore this email.\n"
    )
    return EmailMessageContent(
        subject=f"Your {product} verification code",
        html=_render("Verify your email", html_body, product),
        text=text,
    )


def password_reset_email(
    reset_url: str,
    expires_minutes: int,
    name: Optional[str] = None,
    product: str = "PostForge",
) -> EmailMessageContent:
    """Email carrying a password reset link."""
    greeting = _greeting(name)
    html_body = (
        f"<p>{escape(greeting)}</p>"
        "<p>We received a request to reset your password. Click the link below to choose a new one:</p>"
        f'<p><a href="{escape(reset_url, quote=True)}">Reset password</a></p>'
        f"<p>This link expires in {expires_minutes} minutes.</p>"
        "<p>If you didn't request a reset, you can ignore this email; your password is unchanged.</p>"
    )
    text = (
        f"{greeting}\n\n"
        "We received a request to reset your password. Open this link to choose a new one:\n"
        f"{reset_url}\n\n"
        f"This link expires in {expires_minutes} minutes.\n"
        "If you didn't request a reset, you can ignore this email.\n"
    )
    return EmailMessageContent(
        subject=f"Reset your {product} password",
        html=_render("Reset your password", html_body, product),
        text=text,
    )


def password_changed_email(name: Optional[str] = None, product: str = "PostForge") -> EmailMessageContent:
    """Confirmation sent after a successful password reset."""
    greeting = _greeting(name)
    html_body = (
        f"<p>{escape(greeting)}</p>"
        "<p>Your password was just changed and all of your sessions were signed out.</p>"
        "<p>If this wasn't you, reset your password immediately and contact support.</p>"
    )
    text = (
        f"{greeting}\n\n"
        "Your password was just changed and all of your sessions were signed out.\n"
        "If this wasn't you, reset your password immediately and contact support.\n"
    )
    return EmailMessageContent(
        subject=f"Your {product} password was changed",
        html=_render("Password changed", html_body, product),
        text=text,
    )
