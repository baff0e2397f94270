"""Client side of attendance sign-in.

A trainee scans the instructor's QR code and lands on ``/a/<token>`` (or
the long form ``/attendance/<token>``). ``AttendanceConfirmation`` holds
the state of that screen: it reads the token from the visited address and
submits it once to ``POST /api/attendance/sign``.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from urllib.parse import unquote, urlsplit

import httpx

from ..errors import AttendanceError, NetworkOrServerError, TokenInvalidOrExpired, TokenMissing

logger = logging.getLogger(__name__)

SIGN_PATH = "/api/attendance/sign"
# matched at the end of the path so a PUBLIC_APP_URL prefix (/app/a/<t>) still resolves
TOKEN_ROUTE = re.compile(r"/(?:attendance|a)/(?P<token>[^/]+)/?$")

def extract_token(address: str) -> str:
    """Token from a long- or short-form confirmation address, '' if absent."""
    path = urlsplit(address or "").path
    m = TOKEN_ROUTE.search(path)
    return unquote(m.group("token")) if m else ""

class ConfirmationState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    FAILED = "failed"

@dataclass(frozen=True)
class ConfirmationResult:
    message: str
    session_id: str
    attendance_signed_at: datetime
    already_signed: bool = False

def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))

def _detail(r: httpx.Response) -> str | None:
    try:
        body = r.json()
    except ValueError:
        return None
    detail = body.get("detail") if isinstance(body, dict) else None
    return detail if isinstance(detail, str) else None

class AttendanceConfirmation:
    def __init__(self, address: str, client: httpx.AsyncClient):
        self.address = address
        self.token = extract_token(address)
        self._client = client
        self.state = ConfirmationState.IDLE
        self.result: ConfirmationResult | None = None
        self.error: AttendanceError | None = None

    @property
    def can_submit(self) -> bool:
        return bool(self.token) and self.state in (ConfirmationState.IDLE, ConfirmationState.FAILED)

    @property
    def status_text(self) -> str:
        if self.state is ConfirmationState.CONFIRMED and self.result:
            signed_at = self.result.attendance_signed_at.strftime("%Y-%m-%d %H:%M")
            if self.result.already_signed:
                return f"Attendance was already recorded for session #{self.result.session_id} at {signed_at}."
            return f"Attendance recorded for session #{self.result.session_id} at {signed_at}."
        if self.error is not None:
            return self.error.message
        if self.state is ConfirmationState.SUBMITTING:
            return "Recording your attendance..."
        return "Confirm your presence with the code shown by your instructor."

    async def submit(self) -> ConfirmationResult | None:
        """Send the token once.

        Returns ``None`` without a request while a submission is in flight or
        once confirmed. Failures move the screen to FAILED and are re-raised;
        calling ``submit`` again from FAILED is the retry.
        """
        if not self.token:
            self.error = TokenMissing()
            raise self.error
        if not self.can_submit:
            logger.debug("Ignoring submit in state %s", self.state.value)
            return None

        # set before the first await so a second caller sees SUBMITTING
        self.state = ConfirmationState.SUBMITTING
        self.error = None
        try:
            result = await self._post()
        except AttendanceError as exc:
            self.state = ConfirmationState.FAILED
            self.error = exc
            logger.info("Attendance confirmation failed (%s): %s", exc.code, exc.message)
            raise

        self.result = result
        self.state = ConfirmationState.CONFIRMED
        return result

    async def _post(self) -> ConfirmationResult:
        try:
            r = await self._client.post(SIGN_PATH, json={"token": self.token})
        except httpx.TimeoutException:
            raise NetworkOrServerError("The server took too long to respond, please try again")
        except httpx.HTTPError as exc:
            logger.warning("Attendance request failed: %s", exc)
            raise NetworkOrServerError()

        # 422: the token failed request validation (mangled link)
        if r.status_code in (400, 404, 410, 422):
            raise TokenInvalidOrExpired(_detail(r), expired=r.status_code == 410)
        if not r.is_success:
            raise NetworkOrServerError(_detail(r), status_code=r.status_code)

        try:
            body = r.json()
            return ConfirmationResult(
                message=body["message"],
                session_id=str(body["sessionId"]),
                attendance_signed_at=_parse_ts(body["attendanceSignedAt"]),
                already_signed=bool(body.get("alreadySigned", False)),
            )
        except (ValueError, KeyError, TypeError, AttributeError):
            raise NetworkOrServerError("Unexpected response from server", status_code=r.status_code)
