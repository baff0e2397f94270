from __future__ import annotations
import json
import logging
from typing import Sequence
from nats.aio.client import Client as NATS
from .config import get_settings

_settings = get_settings()
_nats = NATS()
logger = logging.getLogger(__name__)

async def nats_connect():
    if not _nats.is_connected:
        servers: Sequence[str] = [u.strip() for u in _settings.nats_urls.split(",") if u.strip()]
        await _nats.connect(servers=servers, connect_timeout=2, max_reconnect_attempts=2)
        logger.info("Connected to NATS %s", ", ".join(servers))

async def nats_close():
    if _nats.is_connected:
        await _nats.drain()

async def publish_attendance(evt: dict):
    """
    evt = {
      "session_id": str,
      "user_id": str,
      "registration_id": str,
      "signed_at": iso8601,
      "idempotency_key": "session_id:user_id"
    }
    """
    if not _settings.enable_nats_events:
        return
    await nats_connect()
    await _nats.publish(_settings.nats_subject_attendance, json.dumps(evt).encode("utf-8"))
