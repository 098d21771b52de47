"""
Transactional and bulk email.

Messages are posted to the configured provider's HTTP API. Send methods
never raise: they log and return False so callers decide whether a failed
email fails the request.
"""

from __future__ import annotations

import html
import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional
import httpx
from competition_portal.core.config import settings

logger = logging.getLogger(__name__)

BREVO_SEND_URL = "https://api.brevo.com/v3/smtp/email"


@dataclass
class EmailMessage:
    to_email: str
    to_name: str
    subject: str
    html_content: str
    text_content: Optional[str] = None


@dataclass
class Recipient:
    email: str
    name: str


class EmailDeliveryError(Exception):
    pass


class EmailService:

    def __init__(self, provider: Optional[str] = None) -> None:
        self.provider = (provider or settings.EMAIL_PROVIDER).lower()

    # Templates

    @staticmethod
    def _wrap(greeting_name: str, body_html: str) -> str:
        return (
            f"<p>Hi {html.escape(greeting_name)},</p>"
            f"{body_html}"
            f"<p>Thanks,<br>{html.escape(settings.EMAIL_FROM_NAME)} team</p>"
        )

    def build_verification_email(self, to_email: str, name: str, token: str) -> EmailMessage:
        url = f"{settings.BASE_URL}/verify-email?token={token}"
        return EmailMessage(
            to_email=to_email,
            to_name=name,
            subject=f"Verify your email for {settings.EMAIL_FROM_NAME}",
            html_content=self._wrap(
                name,
                f'<p>Please confirm your email address by clicking <a href="{url}">this link</a>. '
                f"The link expires in {settings.VERIFICATION_TOKEN_EXPIRE_HOURS} hours.</p>",
            ),
            text_content=f"Hi {name},\n\nVerify your email: {url}\n",
        )

    def build_password_reset_email(self, to_email: str, name: str, token: str) -> EmailMessage:
        url = f"{settings.BASE_URL}/reset-password?token={token}"
        return EmailMessage(
            to_email=to_email,
            to_name=name,
            subject="Reset your password",
            html_content=self._wrap(
                name,
                f'<p>We received a request to reset your password. <a href="{url}">Choose a new password</a>. '
                f"The link expires in {settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES} minutes. "
                "If you did not ask for this, ignore this email.</p>",
            ),
            text_content=f"Hi {name},\n\nReset your password: {url}\n",
        )

    def build_submission_update_email(self, to_email: str, name: str, headline: str, body: str) -> EmailMessage:
        return EmailMessage(
            to_email=to_email,
            to_name=name,
            subject=headline,
            html_content=self._wrap(name, f"<p>{html.escape(body)}</p>"),
            text_content=f"Hi {name},\n\n{body}\n",
        )

    # Delivery

    def _brevo_request(self, message: EmailMessage) -> tuple[str, dict, dict]:
        payload = {
            "sender": {"email": settings.EMAIL_FROM, "name": settings.EMAIL_FROM_NAME},
            "to": [{"email": message.to_email, "name": message.to_name}],
            "subject": message.subject,
            "htmlContent": message.html_content,
        }
        if message.text_content:
            payload["textContent"] = message.text_content
        return BREVO_SEND_URL, {"api-key": settings.BREVO_API_KEY}, payload

    def _maileroo_request(self, message: EmailMessage) -> tuple[str, dict, dict]:
        payload = {
            "from": {"address": settings.EMAIL_FROM, "display_name": settings.EMAIL_FROM_NAME},
            "to": {"address": message.to_email, "display_name": message.to_name},
            "subject": message.subject,
            "html": message.html_content,
        }
        if message.text_content:
            payload["plain"] = message.text_content
        return f"{settings.MAILEROO_BASE_URL}/emails", {"X-API-Key": settings.MAILEROO_API_KEY}, payload

    def _api_key(self) -> str:
        return settings.MAILEROO_API_KEY if self.provider == "maileroo" else settings.BREVO_API_KEY

    def _deliver(self, message: EmailMessage) -> None:
        """POST the message to the provider; raises EmailDeliveryError on failure."""
        if self.provider == "maileroo":
            url, headers, payload = self._maileroo_request(message)
        else:
            url, headers, payload = self._brevo_request(message)

        try:
            response = httpx.post(url, json=payload, headers=headers, timeout=settings.EMAIL_TIMEOUT_SECONDS)
        except httpx.HTTPError as e:
            raise EmailDeliveryError(str(e)) from e
        if response.status_code >= 400:
            raise EmailDeliveryError(f"{self.provider} responded {response.status_code}: {response.text[:200]}")

    def send(self, message: EmailMessage) -> bool:
        if not self._api_key():
            logger.warning(f"No API key configured for {self.provider}; email to {message.to_email} not sent")
            return False
        try:
            self._deliver(message)
        except EmailDeliveryError as e:
            logger.error(f"Error sending '{message.subject}' to {message.to_email}: {str(e)}")
            return False
        logger.info(f"Email '{message.subject}' sent to {message.to_email}")
        return True

    def send_verification_email(self, to_email: str, name: str, token: str) -> bool:
        return self.send(self.build_verification_email(to_email, name, token))

    def send_password_reset_email(self, to_email: str, name: str, token: str) -> bool:
        return self.send(self.build_password_reset_email(to_email, name, token))

    def send_submission_update_email(self, to_email: str, name: str, headline: str, body: str) -> bool:
        return self.send(self.build_submission_update_email(to_email, name, headline, body))

    def send_bulk(
        self,
        recipients: Iterable[Recipient],
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> dict:
        """
        Send one campaign message per recipient, sequentially.

        Pauses after every EMAIL_BATCH_SIZE sends as a crude provider rate limit.
        """
        sent = 0
        failed = 0
        for index, recipient in enumerate(recipients, start=1):
            message = EmailMessage(
                to_email=recipient.email,
                to_name=recipient.name,
                subject=subject,
                html_content=self._wrap(recipient.name, html_body),
                text_content=text_body,
            )
            if self.send(message):
                sent += 1
            else:
                failed += 1
            if settings.EMAIL_BATCH_SIZE > 0 and index % settings.EMAIL_BATCH_SIZE == 0:
                time.sleep(settings.EMAIL_BATCH_PAUSE_SECONDS)

        logger.info(f"Bulk email '{subject}' finished: {sent} sent, {failed} failed")
        return {"sent": sent, "failed": failed}


email_service = EmailService()
