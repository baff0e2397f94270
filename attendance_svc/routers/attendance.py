from __future__ import annotations
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db, get_claims, user_id_from
from ..core.redis import allow_request
from ..core.nats import publish_attendance
from ..core.tokens import as_utc
from ..errors import AlreadySigned, NotRegistered, TokenInvalidOrExpired
from ..schemas import AttendanceSignRequest, AttendanceSignResponse
from ..services.attendance import record_attendance

router = APIRouter(prefix="/api/attendance", tags=["attendance"])
logger = logging.getLogger(__name__)

# Trainee confirms presence with the token read from the scanned link
@router.post("/sign", response_model=AttendanceSignResponse)
async def sign_attendance(
    payload: AttendanceSignRequest,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
):
    # keyed per user: a whole class may share one NAT address
    user_id = user_id_from(claims)
    if not await allow_request(str(user_id), "attendance.sign"):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Too many requests")

    try:
        reg = await record_attendance(db, token=payload.token, user_id=user_id)
    except TokenInvalidOrExpired as exc:
        code = status.HTTP_410_GONE if exc.expired else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=exc.message)
    except NotRegistered as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message)
    except AlreadySigned as exc:
        return AttendanceSignResponse(
            message=exc.message, session_id=exc.session_id,
            attendance_signed_at=exc.signed_at, already_signed=True,
        )

    signed_at = as_utc(reg.attendance_signed_at)
    try:
        await publish_attendance({
            "session_id": str(reg.session_id),
            "user_id": str(user_id),
            "registration_id": str(reg.id),
            "signed_at": signed_at.isoformat(),
            "idempotency_key": f"{reg.session_id}:{user_id}",
        })
    except Exception as exc:
        # the attendance is already committed
        logger.warning("attendance.signed event not published: %s", exc)

    return AttendanceSignResponse(
        message="Attendance recorded",
        session_id=reg.session_id,
        attendance_signed_at=signed_at,
    )
