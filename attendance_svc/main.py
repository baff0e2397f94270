from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from .db import init_db, async_session_maker
from .routers import attendance, sessions
from .core.config import get_settings
from .core.log import configure_logging
from .core.redis import ping_redis
from .core.nats import nats_connect, nats_close
from .services.attendance import purge_expired_tokens

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)
scheduler = AsyncIOScheduler()

async def purge_tokens_job():
    try:
        async with async_session_maker() as db:
            await purge_expired_tokens(db, retention_hours=settings.token_retention_hours)
    except Exception:
        logger.exception("Attendance token purge failed")

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    # best-effort connect to infra; service still runs if these fail
    if settings.enable_nats_events:
        try:
            await nats_connect()
        except Exception as exc:
            logger.warning("NATS not reachable at startup: %s", exc)
    await ping_redis()

    scheduler.add_job(purge_tokens_job, "interval", seconds=settings.token_purge_interval_sec)
    scheduler.start()

    yield

    scheduler.shutdown(wait=False)
    try:
        await nats_close()
    except Exception as exc:
        logger.warning("NATS drain failed: %s", exc)

app = FastAPI(title="attendance-svc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions.router)
app.include_router(attendance.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "attendance-svc"}

Instrumentator().instrument(app).expose(app)
