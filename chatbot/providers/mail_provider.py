"""
Outbound mail for one-time codes.

Supports Gmail, SendGrid SMTP relay and a generic SMTP host. When nothing is
configured the provider runs in dev mode: the code is logged instead of sent.
"""

from __future__ import annotations

import logging
import os
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

SUBJECT = "Your Verification Code - AI Chatbot"


class Mailer(Protocol):
    """Protocol for code delivery."""

    def send_code(self, email: str, code: str) -> bool:
        """
        Deliver `code` to `email`.

        Returns:
            True if the message was handed to the transport, False otherwise
            (including dev mode). Never raises for transport failures.
        """
        ...


@dataclass(frozen=True)
class MailConfig:
    host: Optional[str]
    port: int
    username: Optional[str]
    password: Optional[str]
    sender: str
    use_ssl: bool

    @property
    def configured(self) -> bool:
        return bool(self.host)


def load_mail_config() -> MailConfig:
    service = (os.getenv("EMAIL_SERVICE") or "").strip().lower()
    user = (os.getenv("EMAIL_USER") or "").strip() or None
    password = (os.getenv("EMAIL_PASSWORD") or "").strip() or None
    sender = (os.getenv("EMAIL_FROM") or "").strip() or user or "noreply@chatbot.com"

    if service == "gmail":
        return MailConfig(host="smtp.gmail.com", port=465, username=user, password=password, sender=sender, use_ssl=True)
    if service == "sendgrid":
        api_key = (os.getenv("SENDGRID_API_KEY") or "").strip() or None
        return MailConfig(
            host="smtp.sendgrid.net" if api_key else None,
            port=587,
            username="apikey",
            password=api_key,
            sender=sender,
            use_ssl=False,
        )

    port_raw = (os.getenv("EMAIL_PORT") or "").strip() or "587"
    try:
        port = int(port_raw)
    except ValueError:
        port = 587
    return MailConfig(
        host=(os.getenv("EMAIL_HOST") or "").strip() or None,
        port=port,
        username=user,
        password=password,
        sender=sender,
        use_ssl=False,
    )


def render_code_message(sender: str, email: str, code: str, ttl_minutes: int = 10) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = email
    msg["Subject"] = SUBJECT
    msg.set_content(
        f"Your verification code is {code}.\n\n"
        f"This code will expire in {ttl_minutes} minutes.\n"
        "If you didn't request this code, please ignore this email.\n"
    )
    msg.add_alternative(
        f"""\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="color: #333; text-align: center;">Email Verification</h2>
  <p style="color: #666; font-size: 16px; text-align: center;">Use the code below to continue:</p>
  <div style="background: #f5f5f5; padding: 20px; border-radius: 8px; text-align: center; margin: 30px 0;">
    <h1 style="color: #667eea; font-size: 36px; letter-spacing: 8px; margin: 0;">{code}</h1>
  </div>
  <p style="color: #999; font-size: 14px; text-align: center;">This code will expire in {ttl_minutes} minutes.</p>
  <p style="color: #999; font-size: 14px; text-align: center;">If you didn't request this code, please ignore this email.</p>
</div>
""",
        subtype="html",
    )
    return msg


class SmtpMailer:
    def __init__(self, cfg: MailConfig, *, timeout: float = 10.0) -> None:
        self._cfg = cfg
        self._timeout = timeout

    @property
    def dev_mode(self) -> bool:
        return not self._cfg.configured

    def send_code(self, email: str, code: str) -> bool:
        if self.dev_mode:
            logger.warning("[DEV MODE] OTP for %s: %s", email, code)
            return False

        msg = render_code_message(self._cfg.sender, email, code)
        try:
            if self._cfg.use_ssl:
                with smtplib.SMTP_SSL(self._cfg.host, self._cfg.port, timeout=self._timeout) as s:
                    self._login(s)
                    s.send_message(msg)
            else:
                with smtplib.SMTP(self._cfg.host, self._cfg.port, timeout=self._timeout) as s:
                    s.ehlo()
                    # Local relays (Mailpit, MailHog) speak plain SMTP.
                    if s.has_extn("starttls"):
                        s.starttls()
                        s.ehlo()
                    self._login(s)
                    s.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Error sending code email to %s: %s", email, type(e).__name__)
            logger.warning("[DEV MODE] OTP for %s: %s", email, code)
            return False

        logger.info("OTP sent to %s", email)
        return True

    def _login(self, s: smtplib.SMTP) -> None:
        if self._cfg.username and self._cfg.password:
            s.login(self._cfg.username, self._cfg.password)


def mailer_from_env() -> SmtpMailer:
    return SmtpMailer(load_mail_config())
