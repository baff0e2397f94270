from __future__ import annotations
import uuid
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from ..deps import get_db, get_claims, user_id_from
from ..core.config import get_settings
from ..core.qr import QRCodeCanvas
from ..core.tokens import as_utc, is_expired
from ..models import TrainingSession, AttendanceToken
from ..schemas import AttendanceTokenRead, AttendeeRead
from ..services.attendance import get_session_by_id, issue_token, list_attendees

settings = get_settings()
router = APIRouter(prefix="/api/sessions", tags=["sessions"])

MANAGER_ROLES = ("rh",)

def _ensure_can_manage(claims: dict, s: TrainingSession):
    if claims.get("role") in MANAGER_ROLES:
        return
    if s.instructor_id is None or str(s.instructor_id) != str(claims.get("sub")):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the session instructor can do this")

async def _get_managed_session(db: AsyncSession, session_id: uuid.UUID, claims: dict) -> TrainingSession:
    s = await get_session_by_id(db, session_id)
    if not s:
        raise HTTPException(status_code=404, detail="Session not found")
    _ensure_can_manage(claims, s)
    return s

# --- 1) Instructor opens the session for sign-in: short-lived token + URL to encode
@router.post("/{session_id}/attendance-token", response_model=AttendanceTokenRead, status_code=201)
async def create_attendance_token(session_id: uuid.UUID, claims: dict = Depends(get_claims), db: AsyncSession = Depends(get_db)):
    s = await _get_managed_session(db, session_id, claims)
    tok = await issue_token(
        db, session_id=s.id, created_by=user_id_from(claims),
        ttl_seconds=settings.attendance_token_ttl_seconds,
    )
    return AttendanceTokenRead(
        token=tok.token, expires_at=as_utc(tok.expires_at), session_id=s.id,
        url=settings.attendance_url(tok.token),
    )

# --- 2) PNG of the confirmation URL, for projecting
@router.get("/{session_id}/attendance-token/{token}/qr.png")
async def attendance_token_png(
    session_id: uuid.UUID,
    token: str,
    size: int | None = Query(default=None, ge=1, le=4096),
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
):
    s = await _get_managed_session(db, session_id, claims)
    tok = (await db.execute(
        select(AttendanceToken).where(AttendanceToken.token == token, AttendanceToken.session_id == s.id)
    )).scalar_one_or_none()
    if not tok:
        raise HTTPException(status_code=404, detail="Attendance token not found")
    if is_expired(tok.expires_at):
        raise HTTPException(status_code=410, detail="Attendance token expired")

    canvas = QRCodeCanvas(
        size or settings.qr_default_size,
        foreground=settings.qr_foreground,
        background=settings.qr_background,
        max_version=settings.qr_max_version,
    )
    if not canvas.update(settings.attendance_url(tok.token)):
        raise HTTPException(status_code=500, detail="Failed to render QR code")
    return Response(content=canvas.to_png(), media_type="image/png", headers={"Cache-Control": "no-store"})

# --- 3) Instructor roster with attendance flags
@router.get("/{session_id}/attendees", response_model=list[AttendeeRead])
async def session_attendees(session_id: uuid.UUID, claims: dict = Depends(get_claims), db: AsyncSession = Depends(get_db)):
    s = await _get_managed_session(db, session_id, claims)
    rows = await list_attendees(db, s.id)
    return [
        AttendeeRead(
            registration_id=r.id, user_id=r.user_id, status=r.status.value, priority=r.priority.value,
            attended=r.attended, attendance_signed_at=as_utc(r.attendance_signed_at) if r.attendance_signed_at else None,
            registered_at=as_utc(r.registered_at) if r.registered_at else None,
        )
        for r in rows
    ]
