"""WhatsApp click-to-chat links for absence notifications."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List
from urllib.parse import quote

from ..core.constants import DEFAULT_COUNTRY_CODE
from ..identities.model import Identity

# encodeURIComponent leaves these unescaped
_URI_COMPONENT_SAFE = "-_.!~*'()"


@dataclass(frozen=True)
class AbsenceNotice:
    identity_id: str
    name: str
    phone: str
    email: str
    group_name: str
    message: str
    link: str


def format_phone_number(phone: str, default_country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    cleaned = re.sub(r"[^\d+]", "", phone)
    if not cleaned.startswith("+"):
        if cleaned.startswith("0"):
            cleaned = cleaned[1:]
        cleaned = default_country_code + cleaned
    return cleaned


def validate_phone_number(phone: str) -> bool:
    return bool(re.match(r"^[+]?[1-9]\d{1,14}$", re.sub(r"[\s\-()]", "", phone)))


def generate_whatsapp_link(phone: str, message: str) -> str:
    clean_phone = re.sub(r"[^\d+]", "", phone)
    return f"https://wa.me/{clean_phone}?text={quote(message, safe=_URI_COMPONENT_SAFE)}"


def absence_message(name: str, day: date, organization: str) -> str:
    date_str = f"{day:%A}, {day.day} {day:%B} {day.year}"
    return (
        f"Dear {name},\n\n"
        f"We noticed that you were absent on {date_str}.\n\n"
        "Please ensure regular attendance.\n\n"
        "Thank you,\n"
        f"{organization}"
    )


def absence_notices(
    identities: Iterable[Identity],
    day: date,
    *,
    organization: str,
    default_country_code: str = DEFAULT_COUNTRY_CODE,
) -> List[AbsenceNotice]:
    notices = []
    for identity in identities:
        message = absence_message(identity.name, day, organization)
        phone = format_phone_number(identity.phone, default_country_code)
        notices.append(
            AbsenceNotice(
                identity_id=identity.identity_id,
                name=identity.name,
                phone=phone,
                email=identity.email,
                group_name=identity.group_name,
                message=message,
                link=generate_whatsapp_link(phone, message),
            )
        )
    return notices
