from sqlalchemy import Column, DateTime, ForeignKey, String, Uuid
from sqlalchemy.sql import func
import uuid
from .base import Base, JSONType


class Event(Base):
    __tablename__ = "events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    document_id = Column(Uuid, ForeignKey("documents.id", ondelete="SET NULL"), nullable=True)
    type = Column(String, nullable=False)  # "document_created", "document_deleted", "reminder_sent", ...
    data = Column(JSONType, nullable=False, default=dict)
    at = Column(DateTime(timezone=True), server_default=func.now())
