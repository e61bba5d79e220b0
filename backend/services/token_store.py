"""
Expiring key/value store backed by the expiring_tokens table.

Keys are random, values are opaque strings, every entry has an explicit TTL.
Entries past their expiry are never returned and are removed by
purge_expired() (run at startup and opportunistically on issue).

consume() is single-use even under concurrency: the row is deleted with a
conditional DELETE and only the caller whose DELETE matched gets the value.

Like the other services, these functions flush but never commit; the
caller owns the transaction.
"""
import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import ExpiringToken

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    # Naive UTC, consistent with the datetime.utcnow column defaults
    return datetime.utcnow()


async def issue(
    db: AsyncSession,
    *,
    purpose: str,
    value: str,
    ttl_seconds: int,
) -> tuple[str, datetime]:
    """Store `value` under a fresh random key. Returns (key, expires_at)."""
    if ttl_seconds <= 0:
        raise ValueError("ttl_seconds must be positive")

    await purge_expired(db)

    key = secrets.token_urlsafe(32)
    expires_at = _now_utc() + timedelta(seconds=ttl_seconds)
    db.add(ExpiringToken(key=key, purpose=purpose, value=value, expires_at=expires_at))
    await db.flush()
    return key, expires_at


async def peek(db: AsyncSession, *, purpose: str, key: str) -> str | None:
    """Return the live value for `key` without consuming it."""
    res = await db.execute(
        select(ExpiringToken.value).where(
            ExpiringToken.key == key,
            ExpiringToken.purpose == purpose,
            ExpiringToken.expires_at > _now_utc(),
        )
    )
    return res.scalar_one_or_none()


async def consume(db: AsyncSession, *, purpose: str, key: str) -> str | None:
    """Return the live value for `key` and delete it; None if absent, expired or already used."""
    value = await peek(db, purpose=purpose, key=key)
    if value is None:
        return None

    res = await db.execute(
        delete(ExpiringToken).where(
            ExpiringToken.key == key,
            ExpiringToken.purpose == purpose,
            ExpiringToken.expires_at > _now_utc(),
        )
    )
    if res.rowcount != 1:
        # Lost the race with another consumer
        return None
    return value


async def purge_expired(db: AsyncSession) -> int:
    """Delete every expired entry; returns how many were removed."""
    res = await db.execute(
        delete(ExpiringToken).where(ExpiringToken.expires_at <= _now_utc())
    )
    if res.rowcount:
        logger.info(f"Purged {res.rowcount} expired token(s)")
    return res.rowcount or 0
