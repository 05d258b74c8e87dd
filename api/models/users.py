from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, String, Uuid
from sqlalchemy.sql import func

from .base import Base, JSONType

DEFAULT_NOTIFICATION_INTERVALS = [30, 15, 7, 1]


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, nullable=False, unique=True, index=True)
    full_name = Column(String, nullable=True)
    preferred_locale = Column(String, nullable=False, default="en")
    avatar_url = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    email_notifications = Column(Boolean, nullable=False, default=True)
    notification_intervals = Column(JSONType, nullable=False, default=lambda: list(DEFAULT_NOTIFICATION_INTERVALS))

    two_factor_enabled = Column(Boolean, nullable=False, default=False)
    totp_secret = Column(String, nullable=True)
    totp_temp_secret = Column(String, nullable=True)
    backup_codes = Column(JSONType, nullable=False, default=list)

    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    @property
    def display_name(self) -> str:
        return self.full_name or self.email.split("@")[0]

    def reminder_intervals(self) -> list[int]:
        """Owner's reminder offsets in days, largest first; defaults when unset or malformed."""
        intervals = self.notification_intervals or []
        if intervals and all(isinstance(value, int) and value > 0 for value in intervals):
            return sorted(set(intervals), reverse=True)
        return list(DEFAULT_NOTIFICATION_INTERVALS)
