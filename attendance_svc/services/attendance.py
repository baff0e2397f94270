from __future__ import annotations
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.tokens import as_utc, expiry_from_now, is_expired, new_token, utcnow
from ..errors import AlreadySigned, NotRegistered, TokenInvalidOrExpired
from ..models import AttendanceToken, Registration, RegStatus, TrainingSession

logger = logging.getLogger(__name__)

async def get_session_by_id(db: AsyncSession, session_id: uuid.UUID) -> TrainingSession | None:
    return (await db.execute(select(TrainingSession).where(TrainingSession.id == session_id))).scalar_one_or_none()

async def issue_token(
    db: AsyncSession,
    *,
    session_id: uuid.UUID,
    created_by: uuid.UUID,
    ttl_seconds: int,
) -> AttendanceToken:
    """Open a session for sign-in. Earlier tokens keep working until they expire."""
    obj = AttendanceToken(
        session_id=session_id,
        token=new_token(),
        expires_at=expiry_from_now(ttl_seconds),
        created_by=created_by,
    )
    db.add(obj)
    await db.commit()
    await db.refresh(obj)
    logger.info("Issued attendance token for session %s (expires %s)", session_id, obj.expires_at.isoformat())
    return obj

async def resolve_token(db: AsyncSession, token: str, *, now: datetime | None = None) -> AttendanceToken:
    row = (await db.execute(select(AttendanceToken).where(AttendanceToken.token == token))).scalar_one_or_none()
    if row is None:
        raise TokenInvalidOrExpired("Invalid attendance code")
    if is_expired(row.expires_at, now=now):
        raise TokenInvalidOrExpired("This attendance code has expired", expired=True)
    return row

async def record_attendance(
    db: AsyncSession,
    *,
    token: str,
    user_id: uuid.UUID,
) -> Registration:
    """Mark the caller present for the token's session.

    The flag is flipped with a conditional UPDATE so that concurrent
    confirmations for the same registration record a single attendance;
    the losers get ``AlreadySigned`` carrying the original timestamp.
    """
    tok = await resolve_token(db, token)

    reg = (await db.execute(
        select(Registration).where(Registration.session_id == tok.session_id, Registration.user_id == user_id)
    )).scalar_one_or_none()
    if reg is None or reg.status == RegStatus.CANCELLED:
        raise NotRegistered()

    signed_at = utcnow()
    res = await db.execute(
        update(Registration)
        .where(Registration.id == reg.id, Registration.attended.is_(False))
        .values(attended=True, attendance_signed_at=signed_at)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(reg)

    if res.rowcount == 0:
        raise AlreadySigned(
            session_id=tok.session_id,
            signed_at=as_utc(reg.attendance_signed_at) if reg.attendance_signed_at else None,
        )
    logger.info("Attendance recorded for user %s in session %s", user_id, tok.session_id)
    return reg

async def list_attendees(db: AsyncSession, session_id: uuid.UUID) -> list[Registration]:
    rows = (await db.execute(
        select(Registration)
        .where(Registration.session_id == session_id, Registration.status != RegStatus.CANCELLED)
        .order_by(Registration.registered_at.asc())
    )).scalars().all()
    return list(rows)

async def purge_expired_tokens(db: AsyncSession, *, retention_hours: int, now: datetime | None = None) -> int:
    cutoff = (now or utcnow()) - timedelta(hours=retention_hours)
    res = await db.execute(delete(AttendanceToken).where(AttendanceToken.expires_at < cutoff))
    await db.commit()
    if res.rowcount:
        logger.info("Purged %d attendance tokens expired before %s", res.rowcount, cutoff.isoformat())
    return res.rowcount
