"""
One-time tokens for holder authorization links.

Only the SHA-256 of a token is ever persisted; the raw value exists in
the creating response and in the holder's link, nowhere else.
"""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta

from tokengate.database import utcnow


def generate_token() -> str:
    """256 bits from the OS CSPRNG, hex encoded."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def verify_token(token: str, token_hash: str) -> bool:
    return hmac.compare_digest(hash_token(token), token_hash)


def expiration_time(hours: int, now: datetime | None = None) -> datetime:
    return (now or utcnow()) + timedelta(hours=hours)


def is_expired(expires_at: datetime, now: datetime | None = None) -> bool:
    return (now or utcnow()) > expires_at


def build_auth_url(ui_origin: str, token: str) -> str:
    return f"{ui_origin.rstrip('/')}/authorize/{token}"
