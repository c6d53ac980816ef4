"""
Transactional email over SMTP.

Blocking (smtplib); call from async handlers through run_in_threadpool.
When SMTP is not configured, messages are logged instead of sent so local
development works without a mail server.
"""

import logging
import smtplib
from email.message import EmailMessage
from functools import lru_cache
from typing import Optional

from internmatch.core.config import Settings, get_settings
from internmatch.core.errors import UpstreamError

logger = logging.getLogger(__name__)

APP_NAME = "InternMatch"


class Mailer:
    def __init__(self, settings: Settings):
        self.host = settings.email_host
        self.port = settings.email_port
        self.username = settings.email_user
        self.password = settings.email_pass
        self.sender = settings.email_from
        self.timeout = settings.email_timeout_seconds
        self.enabled = settings.email_enabled
        self.public_host = settings.public_host.rstrip("/")

    def send(self, to_email: str, subject: str, text_body: str, html_body: Optional[str] = None) -> None:
        """Send one message. Raises UpstreamError on any SMTP failure."""
        if not self.enabled:
            logger.info("SMTP not configured; would send %r to %s:\n%s", subject, to_email, text_body)
            return

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{APP_NAME} <{self.sender}>"
        msg["To"] = to_email
        msg.set_content(text_body)
        if html_body:
            msg.add_alternative(html_body, subtype="html")

        try:
            if self.port == 465:
                with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as server:
                    server.login(self.username, self.password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.starttls()
                    server.login(self.username, self.password)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise UpstreamError(f"SMTP send to {to_email} failed: {e}") from e
        logger.info("Sent %r to %s", subject, to_email)

    def send_verification_email(self, to_email: str, code: str) -> None:
        self.send(
            to_email,
            f"Verify Your {APP_NAME} Account",
            f"Welcome to {APP_NAME}!\n\n"
            f"Your verification code is: {code}\n\n"
            "This code expires in 15 minutes. If you did not create an account, ignore this email.",
        )

    def send_welcome_email(self, to_email: str, name: str) -> None:
        self.send(
            to_email,
            f"Welcome to {APP_NAME}, {name}!",
            f"Hi {name},\n\nYour email is verified and your account is ready.\n"
            f"Sign in at {self.public_host}/login to get started.",
        )

    def send_password_reset_email(self, to_email: str, code: str) -> None:
        self.send(
            to_email,
            f"Reset Your {APP_NAME} Password",
            f"Your password reset code is: {code}\n\n"
            "This code expires in 15 minutes. If you did not request a reset, ignore this email.",
        )

    def send_application_notification(self, to_email: str, company_name: str, student_name: str, job_title: str) -> None:
        self.send(
            to_email,
            f"New Application for {job_title}",
            f"Hi {company_name},\n\n{student_name} applied for {job_title}.\n"
            f"Review it at {self.public_host}/dashboard/jobs.",
        )

    def send_application_status_email(self, to_email: str, student_name: str, job_title: str,
                                       company_name: str, status: str) -> None:
        self.send(
            to_email,
            f"Update on Your Application for {job_title}",
            f"Hi {student_name},\n\nYour application for {job_title} at {company_name} "
            f"is now: {status}.\n\nView details at {self.public_host}/dashboard/applications.",
        )


@lru_cache()
def get_mailer() -> Mailer:
    """FastAPI dependency - process-wide mailer."""
    return Mailer(get_settings())
