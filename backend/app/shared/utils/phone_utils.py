"""
Phone Number Utilities for WhatsApp identifiers

WhatsApp (wa_id / `from`) numbers are international numbers written as digits
only, e.g. "5215512345678". Conversations are keyed on that form, so every
number coming from the API or the customer table goes through
`normalize_whatsapp_number` before it is stored or compared.

Validation uses Google's libphonenumber (phonenumbers package).
"""
import re
import logging
from typing import Optional
from dataclasses import dataclass

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


@dataclass
class PhoneValidationResult:
    """Result of phone number validation."""
    is_valid: bool
    normalized: str  # E.164 without + (e.g., "5215512345678")
    country: str  # ISO region (e.g., "MX")
    error: Optional[str] = None


def normalize_whatsapp_number(phone: Optional[str]) -> str:
    """
    Reduce a phone number to WhatsApp's digits-only form.

    "+52 1 55 1234 5678" -> "5215512345678"
    "0052155..."         -> "52155..."
    """
    if not phone:
        return ""
    digits = _NON_DIGITS.sub("", phone.strip())
    if digits.startswith("00"):
        digits = digits[2:]
    return digits


def validate_phone(phone: str, default_country: str = "MX") -> PhoneValidationResult:
    """
    Validate a phone number with libphonenumber.

    Numbers made only of digits are treated as international (WhatsApp style);
    anything else is parsed against `default_country`.
    """
    if not phone or not phone.strip():
        return PhoneValidationResult(False, "", "", error="Phone number is empty")

    raw = phone.strip()
    candidate = f"+{raw}" if raw.isdigit() else raw

    try:
        if candidate.startswith("+") or candidate.startswith("00"):
            parsed = phonenumbers.parse(candidate, None)
        else:
            parsed = phonenumbers.parse(candidate, default_country)
    except NumberParseException as e:
        logger.debug(f"Could not parse phone '{phone}': {e}")
        return PhoneValidationResult(False, "", "", error="Not a valid phone number")

    if not phonenumbers.is_possible_number(parsed):
        return PhoneValidationResult(False, "", "", error="Phone number has invalid length")

    e164 = phonenumbers.format_number(parsed, PhoneNumberFormat.E164)
    return PhoneValidationResult(
        is_valid=True,
        normalized=e164.lstrip("+"),
        country=phonenumbers.region_code_for_number(parsed) or "",
    )
