import re
from typing import Optional

from db_models import IdentifyRequest


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def validate_identify_request(request: IdentifyRequest) -> Optional[str]:
    """Return a message describing why the payload is unusable, or None."""
    email = request.email
    phone = request.phoneNumber

    if not email and not phone:
        return "Either email or phoneNumber is required"

    if email is not None:
        trimmed = email.strip()
        if not trimmed:
            return "email cannot be empty"
        if not EMAIL_PATTERN.match(trimmed):
            return "email is not a valid address"

    if phone is not None:
        phone_str = str(phone).strip()
        if not phone_str:
            return "phoneNumber cannot be empty"
        if not any(ch.isdigit() for ch in phone_str):
            return "phoneNumber must contain at least one digit"

    return None
