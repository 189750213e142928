"""
Phone Normalizer - Canonical Phone Keys
=======================================

Every lead, log row and dispatch lock is keyed by the normalized phone, so two
spellings of the same subscriber must always collapse to the same string:

    normalize_phone("9876543210")      -> "919876543210"
    normalize_phone("09876543210")     -> "919876543210"
    normalize_phone("+91 98765-43210") -> "919876543210"
    normalize_phone("9.876543210E9")   -> "919876543210"

The function is total: it never raises and falls back to the cleaned digit
string for anything it does not recognise.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any

DEFAULT_COUNTRY_CODE = "91"
DOMESTIC_LENGTH = 10

# Spreadsheet exports turn long numbers into 9.87654321E9 or 9876543210.0
_SCIENTIFIC_RE = re.compile(r"^[+-]?\d+(\.\d+)?[eE][+-]?\d+$")
_TRAILING_ZERO_DECIMAL_RE = re.compile(r"^\+?\d+\.0+$")
_NON_DIGIT_RE = re.compile(r"[^\d+]")


def _to_text(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bool):
        return ""
    if isinstance(raw, float):
        if raw != raw or raw in (float("inf"), float("-inf")):
            return ""
        if raw.is_integer():
            return str(int(raw))
    return str(raw).strip()


def _repair_scientific(text: str) -> str:
    """Expand 9.876543210E9 style artifacts back into plain digits."""
    if _SCIENTIFIC_RE.match(text):
        try:
            return str(int(Decimal(text)))
        except (InvalidOperation, ValueError):
            return text
    if _TRAILING_ZERO_DECIMAL_RE.match(text):
        return text.split(".", 1)[0]
    return text


def normalize_phone(raw: Any, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """
    Canonicalize a free-form phone value into a comparable key.

    Args:
        raw: Phone as typed in a sheet, a chat id, a number, or None.
        country_code: Prefix applied to bare domestic numbers.

    Returns:
        Digits only, country code included where it could be inferred.
    """
    text = _repair_scientific(_to_text(raw))

    # Keep a leading '+' through cleanup, then drop it
    digits = _NON_DIGIT_RE.sub("", text)
    digits = digits.lstrip("+").replace("+", "")

    if len(digits) == DOMESTIC_LENGTH:
        return country_code + digits
    if len(digits) == DOMESTIC_LENGTH + len(country_code) and digits.startswith(country_code):
        return digits
    if len(digits) == DOMESTIC_LENGTH + 1 and digits.startswith("0"):
        return country_code + digits[1:]

    return digits
