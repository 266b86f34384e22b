"""Phone number normalization for outbound WhatsApp messages."""

import re

DEFAULT_COUNTRY_CODE = "55"

# Area code plus subscriber number, without a country code.
MAX_NATIONAL_LENGTH = 11


def digits_only(raw: str) -> str:
    """Strip everything that is not a digit."""
    return re.sub(r"\D", "", raw or "")


def normalize_phone(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Turn a user-supplied phone number into a country-prefixed digit string.

    Spaces, ``+``, dashes and parentheses are removed, a single trunk-prefix
    zero is dropped, and numbers short enough to lack a country code get
    ``country_code`` prepended. No plausibility check is done; the provider
    rejects numbers that do not exist.

    Args:
        raw: The phone number as received, e.g. ``"+55 (11) 99999-9999"``
        country_code: Digits to prepend when no country code is present

    Returns:
        The canonical number, e.g. ``"5511999999999"``, or ``""`` for input
        without digits
    """
    digits = digits_only(raw)
    if not digits:
        return ""

    if digits.startswith("0"):
        digits = digits[1:]
        if not digits:
            return ""

    if len(digits) <= MAX_NATIONAL_LENGTH:
        digits = f"{country_code}{digits}"

    return digits
