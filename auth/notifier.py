"""
auth/notifier.py -- Outbound delivery of verification codes.

Notifier is the seam the code service talks to: send(email, code, purpose)
returns True when the provider accepted the message and False otherwise. It
never raises for delivery problems; the service decides what a failure means.

  SendGridNotifier -- POSTs to the SendGrid v3 mail API with requests.
  LogNotifier      -- DEBUG with no SENDGRID_API_KEY. Writes the code to the
                      log (address redacted) instead of sending mail.
  UnconfiguredNotifier -- no SENDGRID_API_KEY outside DEBUG. Every send
                      fails, so the caller answers 503 and no code is logged.

build_notifier(settings) picks one.
"""

from __future__ import annotations

import html
import logging
from typing import Protocol

import requests

from auth.models import CodePurpose
from core.config import Settings

logger = logging.getLogger("codegate.notifier")

SENDGRID_API = "https://api.sendgrid.com/v3/mail/send"

_PURPOSE_TEXT = {
    CodePurpose.login: "sign in",
    CodePurpose.register: "create your account",
    CodePurpose.reset: "reset your account access",
}


class Notifier(Protocol):
    def send(self, email: str, code: str, purpose: CodePurpose) -> bool: ...


def render_subject(purpose: CodePurpose, product: str) -> str:
    titles = {
        CodePurpose.login: "sign-in code",
        CodePurpose.register: "registration code",
        CodePurpose.reset: "account reset code",
    }
    return f"Your {product} {titles.get(CodePurpose(purpose), 'verification code')}"


def render_html(code: str, purpose: CodePurpose, product: str, ttl_minutes: int) -> str:
    """Render the message body. All interpolated values are HTML-escaped."""
    action = _PURPOSE_TEXT.get(CodePurpose(purpose), "continue")
    return f"""\
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(product)} verification code</title></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h2 style="color: #2c3e50;">{html.escape(product)}</h2>
    <p>Use this code to {html.escape(action)}:</p>
    <div style="background-color: #f8f9fa; padding: 20px; text-align: center; margin: 20px 0; border-radius: 5px;">
      <span style="font-size: 24px; font-weight: bold; letter-spacing: 5px;">{html.escape(code)}</span>
    </div>
    <p style="color: #666;">The code is valid for {ttl_minutes} minutes and can be used once.</p>
    <p style="color: #666;">If you did not request it, you can ignore this email.</p>
  </div>
</body>
</html>
"""


class SendGridNotifier:
    def __init__(self, api_key: str, from_email: str, product: str = "CodeGate", ttl_minutes: int = 5) -> None:
        self._from_email = from_email
        self._product = product
        self._ttl_minutes = ttl_minutes
        # Pooled connection; a known API needs no more than 3 redirect hops.
        self._session = requests.Session()
        self._session.max_redirects = 3
        self._session.headers.update({"Authorization": f"Bearer {api_key}"})

    def send(self, email: str, code: str, purpose: CodePurpose) -> bool:
        subject = render_subject(purpose, self._product)
        body = {
            "personalizations": [{"to": [{"email": email}], "subject": subject}],
            "from": {"email": self._from_email},
            "content": [{"type": "text/html", "value": render_html(code, purpose, self._product, self._ttl_minutes)}],
        }
        try:
            resp = self._session.post(SENDGRID_API, json=body, timeout=10)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("SendGrid delivery failed (purpose=%s): %s", CodePurpose(purpose).value, e)
            return False
        logger.info("SendGrid accepted message (purpose=%s, status=%d)", CodePurpose(purpose).value, resp.status_code)
        return True


def redact_email(email: str) -> str:
    """Keep the first two characters of the local part and the domain."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class LogNotifier:
    """Dev-mode notifier: the code goes to the log, nothing is sent."""

    def __init__(self, product: str = "CodeGate") -> None:
        self._product = product

    def send(self, email: str, code: str, purpose: CodePurpose) -> bool:
        logger.warning(
            "[DEV MODE] %s for %s: %s",
            render_subject(purpose, self._product),
            redact_email(email),
            code,
        )
        return True


class UnconfiguredNotifier:
    """Production without a mail provider: every delivery fails."""

    def send(self, email: str, code: str, purpose: CodePurpose) -> bool:
        logger.error("No mail provider configured; code not delivered (purpose=%s)", CodePurpose(purpose).value)
        return False


def build_notifier(settings: Settings) -> Notifier:
    ttl_minutes = max(1, settings.code_ttl_seconds // 60)
    if not settings.sendgrid_api_key:
        if not settings.debug:
            logger.error("SENDGRID_API_KEY not set -- verification codes cannot be delivered")
            return UnconfiguredNotifier()
        logger.warning("SENDGRID_API_KEY not set -- verification codes will be logged, not emailed")
        return LogNotifier(product=settings.mail_product_name)
    return SendGridNotifier(
        api_key=settings.sendgrid_api_key,
        from_email=settings.sendgrid_from_email,
        product=settings.mail_product_name,
        ttl_minutes=ttl_minutes,
    )
