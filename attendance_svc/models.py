from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, declarative_base, relationship
from sqlalchemy.types import DateTime, Integer

from .core.tokens import utcnow

Base = declarative_base()

class SessionStatus(str, Enum):
    OPEN = "open"
    FULL = "full"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class RegStatus(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class Priority(str, Enum):
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"

class TrainingSession(Base):
    __tablename__ = "sessions"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    formation_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    instructor_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    location: Mapped[str | None] = mapped_column(String(255))
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[SessionStatus] = mapped_column(SqlEnum(SessionStatus), default=SessionStatus.OPEN, nullable=False)

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_sessions_capacity_pos"),
        Index("ix_sessions_instructor", "instructor_id"),
        Index("ix_sessions_formation", "formation_id"),
    )

    registrations: Mapped[list["Registration"]] = relationship(
        "Registration", back_populates="session", cascade="all, delete-orphan"
    )

class Registration(Base):
    __tablename__ = "registrations"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    session_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    formation_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    priority: Mapped[Priority] = mapped_column(SqlEnum(Priority), default=Priority.P3, nullable=False)
    status: Mapped[RegStatus] = mapped_column(SqlEnum(RegStatus), default=RegStatus.PENDING, nullable=False)
    registered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    # attendance record: flips to True exactly once
    attended: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    attendance_signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_registration_session_user"),
        Index("ix_regs_session", "session_id"),
        Index("ix_regs_user", "user_id"),
    )

    session: Mapped[TrainingSession] = relationship("TrainingSession", back_populates="registrations")

class AttendanceToken(Base):
    __tablename__ = "attendance_tokens"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    created_by: Mapped[uuid.UUID] = mapped_column(nullable=False)

    __table_args__ = (
        Index("ix_attendance_tokens_session", "session_id"),
        Index("ix_attendance_tokens_expires", "expires_at"),
    )
