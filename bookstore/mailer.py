import logging
from typing import Optional

import httpx

from bookstore.config import settings

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"


class MailDeliveryError(Exception):
    pass


class Mailer:
    """Plain-text mail through the Resend HTTP API."""

    def __init__(self, api_key: Optional[str] = None, sender: Optional[str] = None,
                 frontend_url: Optional[str] = None):
        self.api_key = api_key
        self.sender = sender
        self.frontend_url = (frontend_url or settings.FRONTEND_URL).rstrip("/")

    @classmethod
    def from_settings(cls) -> "Mailer":
        return cls(settings.RESEND_API_KEY, settings.RESEND_FROM, settings.FRONTEND_URL)

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.sender)

    async def send(self, to_email: str, subject: str, body: str) -> None:
        if not self.configured:
            logger.warning("Email service not configured. Skipping email send.")
            return

        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(
                    RESEND_URL,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "from": self.sender,
                        "to": [to_email],
                        "subject": subject,
                        "text": body,
                    },
                    timeout=20,
                )
            except httpx.RequestError as exc:
                logger.error(f"Error while sending email: {exc}")
                raise MailDeliveryError("Email service communication error") from exc

        if response.status_code not in (200, 201):
            logger.error(f"Failed to send email via Resend: {response.text}")
            raise MailDeliveryError("Failed to send email.")

    async def send_verification_email(self, to_email: str, name: str, token: str) -> None:
        link = f"{self.frontend_url}/verify-email/{token}"
        await self.send(
            to_email,
            "Verify your email address",
            f"Hi {name},\n\nPlease confirm your email address by opening {link}\n"
            "The link expires in 1 hour.",
        )

    async def send_password_reset_email(self, to_email: str, name: str, token: str) -> None:
        link = f"{self.frontend_url}/reset-password/{token}"
        await self.send(
            to_email,
            "Your password reset link",
            f"Hi {name},\n\nYou can choose a new password at {link}\n"
            "The link expires in 1 hour. If you did not ask for a reset, ignore this email.",
        )

    async def send_welcome_email(self, to_email: str, name: str) -> None:
        await self.send(
            to_email,
            "Welcome to the Bookstore",
            f"Hi {name}, welcome to the Bookstore. Your account is ready.",
        )
