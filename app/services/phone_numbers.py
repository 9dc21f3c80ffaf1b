# app/services/phone_numbers.py
import re
from typing import Optional

from app.config import get_settings
from app.errors import ValidationError

_NOT_DIALABLE = re.compile(r"[^0-9+]")


def normalize_phone_number(raw: str, country_code: Optional[str] = None) -> str:
    """
    Bring a dialed number into international (E.164-style) form.

    - "+12396008159" → unchanged
    - "2396008159"   → "+12396008159" (10 digits: domestic, country code added)
    - "12396008159"  → "+12396008159" (11 digits with leading country code)
    - anything else is passed through with punctuation stripped

    Normalizing an already-normalized number returns it unchanged.
    """
    if country_code is None:
        country_code = get_settings().DEFAULT_COUNTRY_CODE

    cleaned = _NOT_DIALABLE.sub("", raw or "")
    if not cleaned:
        raise ValidationError("participant number is empty")

    if cleaned.startswith("+"):
        return cleaned
    if len(cleaned) == 10:
        return f"+{country_code}{cleaned}"
    if len(cleaned) == 11 and cleaned.startswith(country_code):
        return f"+{cleaned}"
    return cleaned
