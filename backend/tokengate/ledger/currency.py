"""
XRPL currency code helpers.

Three-letter codes travel as ASCII; longer codes are 40-char uppercase hex,
the ASCII bytes right-padded with zeros to 20 bytes.
"""

import re

_HEX_CURRENCY_RE = re.compile(r"^[0-9A-F]{40}$")


def currency_to_hex(code: str) -> str:
    return code.encode("ascii").hex().upper().ljust(40, "0")


def is_hex_currency(code: str) -> bool:
    return bool(_HEX_CURRENCY_RE.match(code or ""))


def hex_currency_to_ascii(code: str) -> str | None:
    if not is_hex_currency(code):
        return None
    trimmed = code.rstrip("0")
    if len(trimmed) % 2:
        trimmed += "0"
    try:
        return bytes.fromhex(trimmed).decode("ascii")
    except (ValueError, UnicodeDecodeError):
        return None


def normalize_currency(code: str) -> str:
    """Readable form of a ledger or asset currency code."""
    if is_hex_currency(code):
        decoded = hex_currency_to_ascii(code)
        if decoded is not None:
            return decoded
    return code


def same_currency(a: str, b: str) -> bool:
    return normalize_currency(a) == normalize_currency(b)
