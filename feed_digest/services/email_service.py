import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional


@dataclass
class EmailConfig:
    """Email service configuration"""
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    from_email: str
    reply_to: Optional[str] = None
    use_tls: bool = True


@dataclass
class SendResult:
    success: bool
    error: Optional[str] = None


class EmailService:
    """SMTP delivery for the compiled digest."""

    def __init__(self, config: EmailConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)

    async def send(self, html: str, text: str, subject: str, recipient: str) -> SendResult:
        """Send a multipart message. Failures are reported in the result, never raised."""
        message = self.build_message(html, text, subject, recipient)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_via_smtp, message)
        except EmailServiceError as e:
            return SendResult(success=False, error=str(e))
        self.logger.info("Digest sent to %s", recipient)
        return SendResult(success=True)

    def build_message(self, html: str, text: str, subject: str, recipient: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.config.from_email or self.config.smtp_user
        message["To"] = recipient
        if self.config.reply_to:
            message["Reply-To"] = self.config.reply_to
        message.attach(MIMEText(text, "plain", "utf-8"))
        message.attach(MIMEText(html, "html", "utf-8"))
        return message

    def _send_via_smtp(self, message: MIMEMultipart) -> None:
        try:
            self.logger.info("Connecting to SMTP server %s:%s", self.config.smtp_host, self.config.smtp_port)
            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=30) as server:
                if self.config.use_tls:
                    server.starttls()
                if self.config.smtp_user:
                    server.login(self.config.smtp_user, self.config.smtp_password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            self.logger.error("SMTP send failed: %s", exc)
            raise EmailServiceError(f"SMTP send failed: {exc}") from exc


class EmailServiceError(Exception):
    """Custom exception for email service failures"""
    pass
