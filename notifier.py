"""
Outbound email for account notifications.

The password reset flow hands the raw reset token to this module; it goes
into the message body and nowhere else (never into logs or return values).

Configuration comes from the environment:
    SMTP_SERVER, SMTP_PORT, SMTP_SENDER_EMAIL, SMTP_SENDER_PASSWORD,
    PASSWORD_RESET_URL, MAIL_DRY_RUN (default "true")
"""

import os
import re
import logging
import smtplib
from datetime import datetime, timezone
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional, Dict, Any
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class MailerConfig:
    """SMTP configuration."""
    smtp_server: str = field(default_factory=lambda: os.environ.get("SMTP_SERVER", "smtp.gmail.com"))
    smtp_port: int = field(default_factory=lambda: int(os.environ.get("SMTP_PORT", "587")))
    sender_email: str = field(default_factory=lambda: os.environ.get("SMTP_SENDER_EMAIL", ""))
    sender_password: str = field(default_factory=lambda: os.environ.get("SMTP_SENDER_PASSWORD", ""))
    sender_name: str = "Airline Manual Admin"
    reset_url: str = field(default_factory=lambda: os.environ.get(
        "PASSWORD_RESET_URL", "http://localhost:3000/reset-password"
    ))
    use_tls: bool = True
    dry_run: bool = field(default_factory=lambda: _env_flag("MAIL_DRY_RUN", "true"))


class Mailer:
    """
    Email sender over SMTP with STARTTLS.

    Usage:
        mailer = Mailer(MailerConfig())
        result = mailer.send_password_reset("user@aa.com", token)
    """

    def __init__(self, config: Optional[MailerConfig] = None):
        self.config = config or MailerConfig()
        self._sent_count = 0
        self._failed_count = 0

    def send_email(
        self,
        to_email: str,
        subject: str,
        body: str
    ) -> Dict[str, Any]:
        """
        Send a plain text email.

        Returns:
            Dict with success status and details
        """
        if not self._validate_email(to_email):
            return {
                "success": False,
                "error": f"Invalid email format: {to_email}"
            }

        msg = MIMEMultipart()
        msg["From"] = f"{self.config.sender_name} <{self.config.sender_email}>"
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain", "utf-8"))

        if self.config.dry_run:
            logger.info(f"[DRY RUN] Would send email to {to_email}: {subject}")
            return {
                "success": True,
                "dry_run": True,
                "to": to_email,
                "subject": subject
            }

        try:
            with smtplib.SMTP(self.config.smtp_server, self.config.smtp_port) as server:
                if self.config.use_tls:
                    server.starttls()
                if self.config.sender_password:
                    server.login(self.config.sender_email, self.config.sender_password)
                server.sendmail(
                    self.config.sender_email,
                    [to_email],
                    msg.as_string()
                )

            self._sent_count += 1
            logger.info(f"Email sent to {to_email}: {subject}")

            return {
                "success": True,
                "to": to_email,
                "subject": subject,
                "sent_at": datetime.now(timezone.utc).isoformat()
            }

        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP auth failed: {e}")
            self._failed_count += 1
            return {
                "success": False,
                "error": "Authentication failed. Check email/password."
            }
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP error: {e}")
            self._failed_count += 1
            return {
                "success": False,
                "error": f"SMTP error: {e}"
            }

    def send_password_reset(self, to_email: str, token: str) -> Dict[str, Any]:
        """Mail a reset link carrying ``token``."""
        link = f"{self.config.reset_url}?token={token}"
        body = (
            "A password reset was requested for your account.\n\n"
            f"Open the link below to choose a new password:\n{link}\n\n"
            "The link expires in 60 minutes. If you did not request a reset, "
            "you can ignore this email.\n"
        )
        return self.send_email(to_email, "Password reset request", body)

    def _validate_email(self, email: str) -> bool:
        """Basic email format validation."""
        pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        return isinstance(email, str) and bool(re.match(pattern, email))

    @property
    def stats(self) -> Dict[str, int]:
        """Get send statistics."""
        return {
            "sent": self._sent_count,
            "failed": self._failed_count
        }
