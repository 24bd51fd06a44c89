# utils/phone.py
import re
from typing import Optional

from paycollect.models.client_model import Client

# Highest precedence first
PHONE_PRECEDENCE = ("mobile_phone", "phone", "work_phone")

AD_HOC_PHONE_PATTERN = re.compile(r"^\+?[\d\s\-().]{7,20}$")


def resolve_phone(client: Client) -> Optional[str]:
    """Pick the number to text: mobile > landline > work. Blank values are skipped."""
    for field in PHONE_PRECEDENCE:
        value = (getattr(client, field, None) or "").strip()
        if value:
            return value
    return None


def normalize_phone(phone: str) -> str:
    """
    Normalize to E.164.

    - strip every non-digit
    - 10 digits              → US number, prefix "+1"
    - 11 digits starting "1" → prefix "+"
    - anything else          → best-effort "+" prefix

    Non-US numbers pass through the last rule untouched, so a local-format
    foreign number comes out wrong. Callers reject results shorter than
    10 digits via is_dialable().
    """
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 10:
        return "+1" + digits
    if len(digits) == 11 and digits.startswith("1"):
        return "+" + digits
    return "+" + digits


def is_dialable(e164: str) -> bool:
    return len(e164.lstrip("+")) >= 10
