"""Brazilian phone number helpers."""

import re

COUNTRY_CODE = "55"

_NON_DIGITS = re.compile(r"\D")
_JID_SUFFIXES = ("@s.whatsapp.net", "@c.us", "@lid", "@g.us")


def only_digits(value: str | None) -> str:
    """Strip everything but digits."""
    if not value:
        return ""
    return _NON_DIGITS.sub("", value)


def _format_national(digits: str) -> str:
    """Mask up to 11 national digits as (DD) NNNNN-NNNN."""
    if not digits:
        return ""
    if len(digits) <= 2:
        return f"({digits}"
    area, number = digits[:2], digits[2:]
    if len(number) <= 4:
        return f"({area}) {number}"
    # Landlines have 8 digits, mobiles 9
    split = 4 if len(number) <= 8 else 5
    return f"({area}) {number[:split]}-{number[split:]}"


def format_phone_number(value: str | None) -> str:
    """Format a Brazilian phone number as the user types it.

    10 digits -> (11) 3456-7890, 11 digits -> (11) 98765-4321, numbers that
    carry the 55 country code keep it as a +55 prefix. Input longer than 13
    digits is truncated. Re-formatting an already formatted number returns
    the same string.
    """
    digits = only_digits(value)[:13]
    if len(digits) >= 12 and digits.startswith(COUNTRY_CODE):
        return f"+{COUNTRY_CODE} {_format_national(digits[2:])}"
    return _format_national(digits[:11])


def validate_brazilian_phone(value: str | None) -> bool:
    """Check that a value looks like a dialable Brazilian number.

    Accepts 10 to 13 digits. Numbers with 12 or 13 digits must carry the 55
    country code, and the area code must be between 11 and 99.
    """
    digits = only_digits(value)
    if len(digits) < 10 or len(digits) > 13:
        return False
    if len(digits) >= 12:
        if not digits.startswith(COUNTRY_CODE):
            return False
        digits = digits[2:]
    if len(digits) not in (10, 11):
        return False
    return 11 <= int(digits[:2]) <= 99


def to_whatsapp_number(value: str | None) -> str:
    """Digits-only number with the country code, as the gateway expects."""
    digits = only_digits(value)
    if len(digits) in (10, 11):
        return f"{COUNTRY_CODE}{digits}"
    return digits


def extract_phone_from_jid(jid: str | None) -> str:
    """Turn a WhatsApp JID (5511...@s.whatsapp.net, 5511...:12@c.us) into digits."""
    if not jid:
        return ""
    user = jid
    for suffix in _JID_SUFFIXES:
        if user.endswith(suffix):
            user = user[: -len(suffix)]
            break
    # Multi-device JIDs carry a ":<device>" suffix
    user = user.split(":", 1)[0]
    return only_digits(user)


def is_group_jid(jid: str | None) -> bool:
    """Group chats and status broadcasts are not one-to-one conversations."""
    if not jid:
        return False
    return jid.endswith("@g.us") or jid == "status@broadcast"
