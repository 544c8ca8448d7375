"""
Outbound email over SMTP.

Sending never raises: callers get a result dict with `success` and either
`message_id` or `error`, and decide what the user sees.
"""
import logging
import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Any, Dict, Optional
from urllib.parse import quote

from settings import Settings

logger = logging.getLogger(__name__)


class EmailService:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.is_configured = bool(settings.smtp_user and settings.smtp_pass)
        if self.is_configured:
            logger.info("Email service configured for %s:%s", settings.smtp_host, settings.smtp_port)
        else:
            logger.warning("Email service not configured - set SMTP_USER and SMTP_PASS to enable sending")

    def _deliver(self, msg: MIMEMultipart, to: str) -> None:
        s = self.settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=15) as server:
            server.starttls()
            server.login(s.smtp_user, s.smtp_pass)
            server.sendmail(s.smtp_user, [to], msg.as_string())

    def send_email(self, to: str, subject: str, html: str, text: Optional[str] = None) -> Dict[str, Any]:
        if not self.is_configured:
            logger.warning("Email not sent to %s (service not configured): %s", to, subject)
            return {"success": False, "message": "Email service not configured"}

        msg = MIMEMultipart("alternative")
        msg["From"] = f'"{self.settings.email_from_name}" <{self.settings.smtp_user}>'
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid()
        msg.attach(MIMEText(text or html_to_text(html), "plain"))
        msg.attach(MIMEText(html, "html"))

        try:
            self._deliver(msg, to)
        except Exception as e:
            logger.error("Email sending to %s failed: %s", to, e)
            return {"success": False, "error": str(e)[:200]}

        logger.info("Email sent to %s: %s", to, subject)
        return {"success": True, "message_id": msg["Message-ID"]}

    def reset_links(self, token: str) -> Dict[str, str]:
        s = self.settings
        return {
            "deep_link": f"{s.deep_link_scheme}://reset-password?token={token}",
            "web_link": f"{s.frontend_url}/reset-password?token={quote(token)}",
        }

    def send_password_reset_email(self, user: Dict[str, Any], token: str) -> Dict[str, Any]:
        links = self.reset_links(token)
        name = user.get("name") or "User"
        minutes = self.settings.password_reset_minutes
        html = f"""
        <h2>Password Reset Request</h2>
        <p>Hello {name},</p>
        <p>We received a request to reset the password for your {self.settings.email_from_name} account.</p>
        <p><a href="{links['web_link']}">Reset Password</a></p>
        <p>Mobile app: {links['deep_link']}</p>
        <p>This link expires in {minutes} minutes. If you didn't request a reset, ignore this email.</p>
        """
        return self.send_email(user["email"], f"Password Reset Request - {self.settings.email_from_name}", html)

    def send_verification_email(self, user: Dict[str, Any], token: str) -> Dict[str, Any]:
        s = self.settings
        link = f"{s.frontend_url}/verify-email?token={quote(token)}"
        html = f"""
        <h2>Verify your email</h2>
        <p>Hello {user.get('name') or 'User'},</p>
        <p><a href="{link}">Confirm this address</a> within 24 hours.</p>
        """
        return self.send_email(user["email"], f"Verify your email - {s.email_from_name}", html)


def html_to_text(html: str) -> str:
    text = re.sub(r"<(style|script)[^>]*>.*?</\1>", "", html, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r"<[^>]+>", "", text)
    return re.sub(r"\s+", " ", text).strip()
