import re
from typing import Any, Optional


NON_DIGITS = re.compile(r"\D")


def normalize_email(email: Any) -> Optional[str]:
    # anything that is not a string counts as absent
    if not isinstance(email, str):
        return None
    normalized = email.strip().lower()
    return normalized or None


def normalize_phone(phone: Any) -> Optional[str]:
    if phone is None:
        return None
    digits = NON_DIGITS.sub("", str(phone))
    return digits or None
