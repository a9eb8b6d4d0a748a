"""Twilio SMS transport.

Sends one message per call and reports the provider SID, cost and segment
count. Also owns phone-number normalisation so the opt-out lookup and the
send path agree on the stored form of a number.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional

from twilio.base.exceptions import TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from app.core.config import settings
from app.core.exceptions import PermanentDeliveryError, ProviderError

logger = logging.getLogger(__name__)

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")

# Twilio error codes that will never succeed on retry
# 21211 invalid 'To' number, 21610 recipient replied STOP, 21614 not a mobile number
PERMANENT_TWILIO_ERRORS = {21211, 21610, 21614, 21408}


@dataclass
class SmsSendResult:
    message_id: str
    status: str
    to: str
    cost: Optional[float] = None
    segments: int = 1


def format_phone_number(phone: str, country_code: Optional[str] = None) -> str:
    """Normalise a phone number to E.164.

    Local numbers (leading 0, or a bare 8-9 digit subscriber number) get the
    default country code.
    """
    country_code = country_code or settings.DEFAULT_COUNTRY_CODE
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        return ""

    if phone.strip().startswith("+"):
        return f"+{digits}"
    if digits.startswith("00"):
        return f"+{digits[2:]}"
    if digits.startswith(country_code):
        return f"+{digits}"
    if digits.startswith("0"):
        return f"+{country_code}{digits[1:]}"
    if len(digits) in (8, 9):
        return f"+{country_code}{digits}"
    return f"+{digits}"


def is_valid_phone_number(phone: str) -> bool:
    return bool(E164_PATTERN.match(phone or ""))


class SmsService:
    """Twilio transport. ``send`` returns an ``SmsSendResult``."""

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        status_callback: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.account_sid = account_sid if account_sid is not None else settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token if auth_token is not None else settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number or settings.TWILIO_PHONE_NUMBER
        self.status_callback = status_callback or settings.TWILIO_STATUS_CALLBACK_URL or None
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self._client: Client | None = None

    @property
    def enabled(self) -> bool:
        return all([self.account_sid, self.auth_token, self.from_number])

    def _get_twilio_client(self) -> Client:
        if self._client is None:
            self._client = Client(
                self.account_sid,
                self.auth_token,
                http_client=TwilioHttpClient(timeout=self.timeout),
            )
        return self._client

    async def send(
        self,
        to: str,
        message: str,
        media_urls: Optional[list[str]] = None,
        sender_name: Optional[str] = None,
    ) -> SmsSendResult:
        """Send an SMS/MMS via Twilio.

        Raises PermanentDeliveryError for numbers Twilio will never accept and
        ProviderError for everything else.
        """
        if not self.enabled:
            raise ProviderError(f"Twilio credentials not configured; cannot send SMS to {to}")

        params = {
            "body": message,
            # alphanumeric sender ids are limited to 11 characters
            "from_": sender_name[:11] if sender_name else self.from_number,
            "to": to,
        }
        if media_urls:
            params["media_url"] = media_urls
        if self.status_callback:
            params["status_callback"] = self.status_callback

        client = self._get_twilio_client()
        try:
            sent = await asyncio.wait_for(
                asyncio.to_thread(client.messages.create, **params),
                timeout=self.timeout,
            )
        except TwilioRestException as e:
            if e.code in PERMANENT_TWILIO_ERRORS:
                raise PermanentDeliveryError(f"Twilio rejected {to}: {e.msg}") from e
            raise ProviderError(f"Twilio error sending SMS to {to}: {e.msg}") from e
        except asyncio.TimeoutError as e:
            raise ProviderError(f"Twilio timed out after {self.timeout}s sending to {to}") from e
        except Exception as e:
            raise ProviderError(f"Unexpected error sending SMS to {to}: {e}") from e

        logger.info("SMS sent to %s, SID: %s", to, sent.sid)
        return SmsSendResult(
            message_id=sent.sid,
            status=str(sent.status),
            to=to,
            cost=abs(float(sent.price)) if sent.price else None,
            segments=int(sent.num_segments or 1),
        )
