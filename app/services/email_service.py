"""Email transport using SendGrid."""

import asyncio
import logging
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from app.core.config import settings
from app.core.exceptions import ProviderError

logger = logging.getLogger(__name__)


class EmailService:
    """SendGrid transport. ``send`` returns the provider message id."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.SENDGRID_API_KEY
        self.from_email = from_email or settings.SENDGRID_FROM_EMAIL
        self.from_name = from_name or settings.SENDGRID_FROM_NAME
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS

        if not self.api_key:
            logger.warning("SENDGRID_API_KEY not configured. Emails will not be sent.")
            self.client = None
        else:
            self.client = SendGridAPIClient(self.api_key)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def send(
        self,
        to: str,
        subject: str,
        content: str,
        html_content: Optional[str] = None,
    ) -> str:
        """
        Send an email and return SendGrid's X-Message-Id.

        Args:
            to: Recipient email address
            subject: Email subject
            content: Plain text body
            html_content: HTML body (optional)

        Raises:
            ProviderError: transport not configured, timeout or non-2xx response
        """
        if not self.enabled:
            raise ProviderError(f"Email transport not configured; cannot send to {to}")

        message = Mail(
            from_email=(self.from_email, self.from_name),
            to_emails=to,
            subject=subject,
            plain_text_content=content,
            html_content=html_content or None,
        )

        try:
            response = await asyncio.wait_for(asyncio.to_thread(self.client.send, message), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(f"SendGrid timed out after {self.timeout}s sending to {to}") from e
        except Exception as e:
            raise ProviderError(f"SendGrid error sending to {to}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise ProviderError(f"SendGrid rejected email to {to}: {response.status_code} {response.body}")

        message_id = _header(response.headers, "X-Message-Id") or ""
        logger.info("Email sent to %s, message id: %s", to, message_id)
        return message_id


def _header(headers, name: str) -> Optional[str]:
    if headers is None:
        return None
    getter = getattr(headers, "get", None)
    if getter is None:
        return None
    return getter(name) or getter(name.lower())
