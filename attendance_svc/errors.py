"""Failures surfaced by the attendance flow.

The set is closed: the QR pipeline raises ``InvalidPayload`` /
``MalformedMatrix``, the confirmation flow raises one of ``TokenMissing``,
``TokenInvalidOrExpired``, ``AlreadySigned`` or ``NetworkOrServerError``.
"""
from __future__ import annotations
from datetime import datetime


class AttendanceError(Exception):
    code = "attendance_error"
    default_message = "Attendance could not be recorded"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ---- QR pipeline ----
class InvalidPayload(AttendanceError):
    code = "invalid_payload"
    default_message = "Payload cannot be encoded as a QR code"


class MalformedMatrix(AttendanceError):
    code = "malformed_matrix"
    default_message = "QR matrix must be a non-empty square grid"


# ---- confirmation ----
class TokenMissing(AttendanceError):
    code = "token_missing"
    default_message = "No attendance token in this link"


class TokenInvalidOrExpired(AttendanceError):
    code = "token_invalid_or_expired"
    default_message = "This attendance code is invalid or has expired"

    def __init__(self, message: str | None = None, *, expired: bool = False):
        self.expired = expired
        super().__init__(message)


class AlreadySigned(AttendanceError):
    """Benign: attendance for this (user, session) was recorded earlier."""
    code = "already_signed"
    default_message = "Attendance already recorded for this session"

    def __init__(self, message: str | None = None, *, session_id=None, signed_at: datetime | None = None):
        self.session_id = session_id
        self.signed_at = signed_at
        super().__init__(message)


class NetworkOrServerError(AttendanceError):
    code = "network_or_server_error"
    default_message = "Unable to record attendance, please try again"

    def __init__(self, message: str | None = None, *, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class NotRegistered(AttendanceError):
    """Server-side only; reaches clients as a ``NetworkOrServerError`` (403)."""
    code = "not_registered"
    default_message = "You are not registered for this session"
