import asyncio
import io
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from PIL import Image
from sqlalchemy import select

from attendance_svc.client.confirm import AttendanceConfirmation, ConfirmationState
from attendance_svc.core.config import get_settings
from attendance_svc.db import async_session_maker
from attendance_svc.errors import AlreadySigned, TokenInvalidOrExpired
from attendance_svc.models import AttendanceToken, Registration, RegStatus
from attendance_svc.services.attendance import purge_expired_tokens, record_attendance

from conftest import INSTRUCTOR_ID, OTHER_ID, TRAINEE_ID


def _parse(ts: str) -> datetime:
    return datetime.fromisoformat(ts.replace("Z", "+00:00"))


async def _issue(api, session_id) -> dict:
    r = await api.post(f"/api/sessions/{session_id}/attendance-token")
    assert r.status_code == 201, r.text
    return r.json()


async def _reload(db, reg) -> Registration:
    await db.refresh(reg)
    return reg


async def test_instructor_issues_token(api, training_session):
    body = await _issue(api, training_session.id)

    assert body["sessionId"] == str(training_session.id)
    assert body["url"] == f"https://app.example/a/{body['token']}"
    assert _parse(body["expiresAt"]) > datetime.now(timezone.utc)


async def test_tokens_are_unique_per_issue(api, training_session):
    first = await _issue(api, training_session.id)
    second = await _issue(api, training_session.id)
    assert first["token"] != second["token"]


async def test_only_instructor_or_rh_issue_tokens(api, claims, training_session):
    claims.update(sub=str(OTHER_ID), role="consultant")
    r = await api.post(f"/api/sessions/{training_session.id}/attendance-token")
    assert r.status_code == 403

    claims.update(role="rh")
    r = await api.post(f"/api/sessions/{training_session.id}/attendance-token")
    assert r.status_code == 201


async def test_unknown_session_is_404(api, db):
    r = await api.post(f"/api/sessions/{uuid.uuid4()}/attendance-token")
    assert r.status_code == 404


async def test_trainee_signs_once(api, claims, db, training_session, registration):
    token = (await _issue(api, training_session.id))["token"]
    claims.update(sub=str(TRAINEE_ID), role="consultant")

    r = await api.post("/api/attendance/sign", json={"token": token})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["sessionId"] == str(training_session.id)
    assert body["alreadySigned"] is False

    reg = await _reload(db, registration)
    assert reg.attended is True
    assert reg.attendance_signed_at is not None

    again = await api.post("/api/attendance/sign", json={"token": token})
    assert again.status_code == 200
    assert again.json()["alreadySigned"] is True
    assert _parse(again.json()["attendanceSignedAt"]) == _parse(body["attendanceSignedAt"])


async def test_expired_token_records_nothing(api, claims, db, training_session, registration):
    expired = AttendanceToken(
        session_id=training_session.id,
        token="expired-token",
        expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        created_by=INSTRUCTOR_ID,
    )
    db.add(expired)
    await db.commit()
    claims.update(sub=str(TRAINEE_ID), role="consultant")

    r = await api.post("/api/attendance/sign", json={"token": "expired-token"})

    assert r.status_code == 410
    reg = await _reload(db, registration)
    assert reg.attended is False
    assert reg.attendance_signed_at is None


async def test_unknown_token_is_rejected(api, claims, registration):
    claims.update(sub=str(TRAINEE_ID), role="consultant")
    r = await api.post("/api/attendance/sign", json={"token": "does-not-exist"})
    assert r.status_code == 400


async def test_empty_token_fails_validation(api, registration):
    r = await api.post("/api/attendance/sign", json={"token": ""})
    assert r.status_code == 422


async def test_unregistered_or_cancelled_user_cannot_sign(api, claims, db, training_session, registration):
    token = (await _issue(api, training_session.id))["token"]

    claims.update(sub=str(OTHER_ID), role="consultant")
    r = await api.post("/api/attendance/sign", json={"token": token})
    assert r.status_code == 403

    registration.status = RegStatus.CANCELLED
    await db.commit()
    claims.update(sub=str(TRAINEE_ID))
    r = await api.post("/api/attendance/sign", json={"token": token})
    assert r.status_code == 403


async def test_qr_png_encodes_confirmation_url(api, training_session):
    token = (await _issue(api, training_session.id))["token"]

    r = await api.get(f"/api/sessions/{training_session.id}/attendance-token/{token}/qr.png", params={"size": 300})

    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    image = Image.open(io.BytesIO(r.content))
    assert image.size[0] == image.size[1] <= 300


async def test_qr_png_unknown_token_is_404(api, training_session):
    r = await api.get(f"/api/sessions/{training_session.id}/attendance-token/nope/qr.png")
    assert r.status_code == 404


async def test_attendees_roster(api, claims, training_session, registration):
    token = (await _issue(api, training_session.id))["token"]
    claims.update(sub=str(TRAINEE_ID), role="consultant")
    await api.post("/api/attendance/sign", json={"token": token})

    claims.update(sub=str(INSTRUCTOR_ID), role="formateur")
    r = await api.get(f"/api/sessions/{training_session.id}/attendees")

    assert r.status_code == 200
    [row] = r.json()
    assert row["userId"] == str(TRAINEE_ID)
    assert row["attended"] is True
    assert row["attendanceSignedAt"] is not None


async def test_confirmation_screen_against_service(api, claims, training_session, registration):
    issued = await _issue(api, training_session.id)
    claims.update(sub=str(TRAINEE_ID), role="consultant")

    screen = AttendanceConfirmation(issued["url"], api)
    result = await screen.submit()

    assert screen.state is ConfirmationState.CONFIRMED
    assert result.session_id == str(training_session.id)


async def test_confirmation_link_under_path_prefix(api, claims, monkeypatch, training_session, registration):
    monkeypatch.setattr(get_settings(), "public_app_url", "https://app.example/portal/")
    issued = await _issue(api, training_session.id)
    assert issued["url"] == f"https://app.example/portal/a/{issued['token']}"
    claims.update(sub=str(TRAINEE_ID), role="consultant")

    screen = AttendanceConfirmation(issued["url"], api)
    result = await screen.submit()

    assert result.session_id == str(training_session.id)


async def test_overlong_token_reads_as_invalid_code(api, claims, db, registration):
    claims.update(sub=str(TRAINEE_ID), role="consultant")
    screen = AttendanceConfirmation("/a/" + "X" * 70, api)

    with pytest.raises(TokenInvalidOrExpired):
        await screen.submit()

    assert screen.state is ConfirmationState.FAILED
    assert not (await _reload(db, registration)).attended


async def test_concurrent_confirmations_record_once(db, training_session, registration):
    tok = AttendanceToken(
        session_id=training_session.id,
        token="concurrent-token",
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=5),
        created_by=INSTRUCTOR_ID,
    )
    db.add(tok)
    await db.commit()

    async def attempt():
        async with async_session_maker() as s:
            return await record_attendance(s, token="concurrent-token", user_id=TRAINEE_ID)

    outcomes = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

    recorded = [o for o in outcomes if isinstance(o, Registration)]
    already = [o for o in outcomes if isinstance(o, AlreadySigned)]
    assert len(recorded) == 1 and len(already) == 1
    assert already[0].signed_at is not None


async def test_purge_drops_only_long_expired_tokens(db, training_session):
    now = datetime.now(timezone.utc)
    for name, delta in (("old", timedelta(hours=-48)), ("recent", timedelta(hours=-1)), ("live", timedelta(minutes=5))):
        db.add(AttendanceToken(session_id=training_session.id, token=name, expires_at=now + delta, created_by=INSTRUCTOR_ID))
    await db.commit()

    purged = await purge_expired_tokens(db, retention_hours=24)

    assert purged == 1
    left = (await db.execute(select(AttendanceToken.token))).scalars().all()
    assert sorted(left) == ["live", "recent"]


async def test_resolve_rejects_expired_with_flag(db, training_session, registration):
    db.add(AttendanceToken(
        session_id=training_session.id, token="stale",
        expires_at=datetime.now(timezone.utc) - timedelta(seconds=1), created_by=INSTRUCTOR_ID,
    ))
    await db.commit()

    with pytest.raises(TokenInvalidOrExpired) as exc_info:
        await record_attendance(db, token="stale", user_id=TRAINEE_ID)
    assert exc_info.value.expired
