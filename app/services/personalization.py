"""Token substitution for outbound message bodies.

Replaces ``{{token}}`` occurrences with recipient or dealership values.
Unknown tokens are left in place as literal text.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping
from urllib.parse import quote

from app.core.config import settings
from app.core.database import utcnow

TOKEN_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

STOP_TEXT = {
    "en": "Reply STOP to opt out",
    "sq": "Dërgoni NDALOJ për t'u çregjistruar",
}


@dataclass(frozen=True)
class DealershipIdentity:
    name: str
    phone: str
    email: str
    site_url: str
    default_locale: str = "en"

    @classmethod
    def from_settings(cls) -> "DealershipIdentity":
        return cls(
            name=settings.DEALERSHIP_NAME,
            phone=settings.DEALERSHIP_PHONE,
            email=settings.DEALERSHIP_EMAIL,
            site_url=settings.SITE_URL.rstrip("/"),
            default_locale=settings.DEFAULT_LOCALE,
        )


class PersonalizationEngine:
    def __init__(self, identity: DealershipIdentity | None = None, clock: Callable[[], datetime] = utcnow):
        self.identity = identity or DealershipIdentity.from_settings()
        self.clock = clock

    def tokens_for(self, recipient: Mapping[str, Any] | None) -> dict[str, str]:
        """Token values for one recipient.

        ``recipient`` uses the job payload's personalization keys
        (firstName, lastName, email, phone, locale ...). Extra string keys are
        exposed as tokens too.
        """
        recipient = recipient or {}
        first = str(recipient.get("firstName") or "")
        last = str(recipient.get("lastName") or "")
        email = str(recipient.get("email") or "")
        locale = str(recipient.get("locale") or self.identity.default_locale)

        values = {
            key: str(value)
            for key, value in recipient.items()
            if isinstance(value, (str, int, float)) and not isinstance(value, bool)
        }
        values.update({
            "firstName": first,
            "lastName": last,
            "fullName": f"{first} {last}".strip(),
            "email": email,
            "phone": str(recipient.get("phone") or ""),
            "customerName": first or "Customer",
            "unsubscribeUrl": f"{self.identity.site_url}/unsubscribe?email={quote(email, safe='')}",
            "siteUrl": self.identity.site_url,
            "companyName": self.identity.name,
            "dealershipName": self.identity.name,
            "dealershipPhone": self.identity.phone,
            "dealershipEmail": self.identity.email,
            "currentYear": str(self.clock().year),
            "stopText": STOP_TEXT.get(locale.split("-")[0].lower(), STOP_TEXT["en"]),
        })
        return values

    def render(self, template: str | None, recipient: Mapping[str, Any] | None = None) -> str:
        if not template:
            return template or ""
        values = self.tokens_for(recipient)

        def _replace(match: re.Match) -> str:
            return values.get(match.group(1), match.group(0))

        return TOKEN_PATTERN.sub(_replace, template)


def recipient_data(customer) -> dict[str, Any]:
    """Personalization payload for a Customer row."""
    return {
        "firstName": customer.first_name,
        "lastName": customer.last_name,
        "email": customer.email,
        "phone": customer.phone,
        "locale": customer.preferred_locale,
        "customerId": str(customer.id),
    }
