from __future__ import annotations
from datetime import datetime, timedelta, timezone
import secrets

TOKEN_BYTES = 16

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def new_token() -> str:
    """Opaque, URL-safe attendance token (22 chars for 16 bytes)."""
    return secrets.token_urlsafe(TOKEN_BYTES)

def expiry_from_now(ttl_seconds: int, *, now: datetime | None = None) -> datetime:
    return (now or utcnow()) + timedelta(seconds=ttl_seconds)

def is_expired(expires_at: datetime, *, now: datetime | None = None) -> bool:
    return (now or utcnow()) >= as_utc(expires_at)
