# salesdesk/utils/phone.py
from __future__ import annotations

import re

# Operator prefixes after the country code (Telkomsel, Indosat, XL, Axis, Smartfren, Three)
MOBILE_PREFIXES = (
    "811", "812", "813", "814", "815", "816", "817", "818", "819",
    "821", "822", "823", "852", "853",
    "831", "832", "833", "838",
    "855", "856", "857", "858",
    "877", "878",
    "881", "882", "883", "884", "885", "886", "887", "888",
    "895", "896", "897", "898", "899",
)

_STRIP = re.compile(r"[\s\-().]")


def clean_phone(phone: str | None) -> str:
    return _STRIP.sub("", phone or "")


def to_international(phone: str | None) -> str:
    """
    Canonical +62 form.

    "0812-3456-7890", "62 812 3456 7890" and "+6281234567890" all become
    "+6281234567890". A bare subscriber number gets the country code prepended.
    """
    cleaned = clean_phone(phone)
    if cleaned.startswith("+62"):
        return cleaned
    if cleaned.startswith("62"):
        return f"+{cleaned}"
    if cleaned.startswith("0"):
        return f"+62{cleaned[1:]}"
    return f"+62{cleaned}"


def is_valid_indonesian_mobile(phone: str | None) -> bool:
    cleaned = clean_phone(phone)
    if not cleaned.startswith(("08", "62", "+62")):
        return False

    subscriber = to_international(cleaned)[3:]
    if not subscriber.isdigit() or not 9 <= len(subscriber) <= 12:
        return False
    return subscriber.startswith(MOBILE_PREFIXES)


def phone_variants(phone: str | None) -> list[str]:
    """Spellings a stored customer phone may use for the same number."""
    intl = to_international(phone)
    local = "0" + intl[3:]
    display = f"{local[:4]}-{local[4:8]}-{local[8:]}" if len(local) >= 11 else local
    raw = clean_phone(phone)
    out = []
    for v in (raw, intl, intl[1:], local, display):
        if v and v not in out:
            out.append(v)
    return out
