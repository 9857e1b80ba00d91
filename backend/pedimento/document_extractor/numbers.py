"""Helpers for parsing amounts as printed on pedimentos ("12,345.67")."""

import re

_GROUPED = re.compile(r"^-?\d{1,3}(?:,\d{3})+(?:\.\d+)?$")
_PLAIN = re.compile(r"^-?\d+(?:\.\d+)?$")
_INTEGER = re.compile(r"^-?\d+$")


def parse_amount(value: object) -> float | None:
    """Parse a number that may carry thousands separators.

    Returns None for anything that is not unambiguously numeric, so a
    malformed value never turns into 0.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None

    text = value.strip().replace("$", "").replace(" ", "")
    if not text:
        return None
    if _GROUPED.match(text):
        return float(text.replace(",", ""))
    if _PLAIN.match(text):
        return float(text)
    return None


def parse_int(value: object) -> int | None:
    """Parse an integer key such as a sequence number ("5", 5, 5.0)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and _INTEGER.match(value.strip()):
        return int(value.strip())
    return None


def is_numeric_token(token: str) -> bool:
    """True when a delimiter-separated token is a plain non-negative number."""
    amount = parse_amount(token)
    return amount is not None and amount >= 0 and not token.strip().startswith("-")
