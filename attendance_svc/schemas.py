from __future__ import annotations
from typing import Annotated
from uuid import UUID
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TokenStr = Annotated[str, Field(min_length=1, max_length=64)]

class CamelModel(BaseModel):
    # wire format is camelCase, python side stays snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class AttendanceTokenRead(CamelModel):
    token: str
    expires_at: datetime
    session_id: UUID
    url: str  # confirmation address, this is what goes into the QR code

class AttendanceSignRequest(BaseModel):
    token: TokenStr

class AttendanceSignResponse(CamelModel):
    message: str
    session_id: UUID
    attendance_signed_at: datetime
    already_signed: bool = False

class AttendeeRead(CamelModel):
    registration_id: UUID
    user_id: UUID
    status: str
    priority: str
    attended: bool
    attendance_signed_at: datetime | None = None
    registered_at: datetime | None = None
