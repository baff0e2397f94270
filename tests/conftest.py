import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone

_DB_DIR = tempfile.mkdtemp(prefix="attendance-svc-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ.setdefault("AUTH_JWKS_URL", "http://auth.invalid/.well-known/jwks.json")
os.environ["PUBLIC_APP_URL"] = "https://app.example"
os.environ["RL_ENABLED"] = "false"
os.environ["ENABLE_NATS_EVENTS"] = "false"

import httpx
import pytest

from attendance_svc.db import async_session_maker, engine
from attendance_svc.deps import get_claims
from attendance_svc.main import app
from attendance_svc.models import Base, Registration, RegStatus, TrainingSession

INSTRUCTOR_ID = uuid.UUID("00000000-0000-0000-0000-0000000000a1")
TRAINEE_ID = uuid.UUID("00000000-0000-0000-0000-0000000000b1")
OTHER_ID = uuid.UUID("00000000-0000-0000-0000-0000000000c1")


@pytest.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    async with async_session_maker() as session:
        yield session
    # pooled aiosqlite connections are bound to this test's event loop
    await engine.dispose()


@pytest.fixture
async def training_session(db):
    now = datetime.now(timezone.utc)
    s = TrainingSession(
        formation_id=uuid.uuid4(),
        instructor_id=INSTRUCTOR_ID,
        start_date=now,
        end_date=now + timedelta(hours=7),
        location="Salle A",
        capacity=12,
    )
    db.add(s)
    await db.commit()
    await db.refresh(s)
    return s


@pytest.fixture
async def registration(db, training_session):
    reg = Registration(
        user_id=TRAINEE_ID,
        session_id=training_session.id,
        formation_id=training_session.formation_id,
        status=RegStatus.VALIDATED,
    )
    db.add(reg)
    await db.commit()
    await db.refresh(reg)
    return reg


@pytest.fixture
def claims():
    """Mutable claims returned by the auth dependency; tests switch users by updating it."""
    return {"sub": str(INSTRUCTOR_ID), "role": "formateur"}


@pytest.fixture
async def api(db, claims):
    app.dependency_overrides[get_claims] = lambda: claims
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
