from __future__ import annotations

from enum import Enum

import uuid

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.sql import func

from .base import Base, JSONType


class ReminderStatusEnum(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class ReminderJob(Base):
    __tablename__ = "reminder_jobs"
    __table_args__ = (
        UniqueConstraint(
            "document_id",
            "recipient_email",
            "offset_days",
            "target_due_at",
            name="uq_reminder_jobs_document_offset",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    document_id = Column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_due_at = Column(DateTime(timezone=True), nullable=True)
    offset_days = Column(Integer, nullable=False)
    run_at = Column(DateTime(timezone=True), nullable=False, index=True)
    recipient_email = Column(String, nullable=False)
    recipient_locale = Column(String, nullable=False, default="en")
    status = Column(
        SAEnum(ReminderStatusEnum, name="reminder_status"),
        nullable=False,
        default=ReminderStatusEnum.PENDING,
    )
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(String, nullable=True)
    payload = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
