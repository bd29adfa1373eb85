"""Phone normalization for identity matching only (no validation)."""

from __future__ import annotations

import re

_NON_DIGITS = re.compile(r"\D")

BRAZIL_COUNTRY_CODE = "55"


def digits_only(value: str | None) -> str:
    return _NON_DIGITS.sub("", value or "")


def normalize_brazil_mobile(digits: str) -> str:
    """Add the mobile ninth digit to 12-digit Brazilian numbers.

    WhatsApp still reports many Brazilian mobiles in the old 8-digit local
    form (55 + DDD + 8 digits). Local parts starting with 6-9 are mobiles
    and get the leading 9.
    """
    if (
        len(digits) == 12
        and digits.startswith(BRAZIL_COUNTRY_CODE)
        and digits[4] in "6789"
    ):
        return f"{digits[:4]}9{digits[4:]}"
    return digits


def normalize_phone(value: str | None) -> str | None:
    """Digits-only phone with country quirks normalized, or None."""
    digits = digits_only(value)
    if not digits:
        return None
    return normalize_brazil_mobile(digits)


def same_phone(a: str | None, b: str | None) -> bool:
    na, nb = normalize_phone(a), normalize_phone(b)
    return na is not None and na == nb
