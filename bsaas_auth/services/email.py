from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from typing import Optional

from bsaas_auth.core.settings import Settings, settings
from bsaas_auth.services.ports import EmailDeliveryError

logger = logging.getLogger(__name__)


def redact_email(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpEmailSender:
    """EmailPort over SMTP; logs instead of sending when SMTP is not configured."""

    def __init__(self, config: Optional[Settings] = None) -> None:
        self.config = config or settings

    @property
    def from_email(self) -> Optional[str]:
        return self.config.email_from or self.config.smtp_user

    @property
    def is_configured(self) -> bool:
        return bool(self.config.smtp_host and self.from_email)

    def _send(self, to: str, subject: str, body: str) -> None:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to
        context = ssl.create_default_context()
        cfg = self.config
        if cfg.smtp_use_tls:
            with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=30) as server:
                server.starttls(context=context)
                if cfg.smtp_user and cfg.smtp_password:
                    server.login(cfg.smtp_user, cfg.smtp_password)
                server.sendmail(self.from_email, [to], msg.as_string())
        else:
            with smtplib.SMTP_SSL(cfg.smtp_host, cfg.smtp_port, context=context, timeout=30) as server:
                if cfg.smtp_user and cfg.smtp_password:
                    server.login(cfg.smtp_user, cfg.smtp_password)
                server.sendmail(self.from_email, [to], msg.as_string())

    async def send_mail(self, to: str, subject: str, body: str) -> None:
        if not self.is_configured:
            logger.info("email_dev_mode to=%s subject=%s", redact_email(to), subject)
            return
        try:
            await asyncio.to_thread(self._send, to, subject, body)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailDeliveryError(f"SMTP delivery failed: {exc.__class__.__name__}") from exc
        logger.info("email_sent to=%s subject=%s", redact_email(to), subject)


__all__ = ["SmtpEmailSender", "redact_email"]
