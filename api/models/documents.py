from sqlalchemy import BigInteger, Column, Date, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.sql import func
import uuid
from .base import Base, JSONType


class Document(Base):
    __tablename__ = "documents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    type = Column(String, nullable=False)              # one of DOCUMENT_TYPE_CONFIG keys
    category = Column(String, nullable=False, default="other")
    expiration_date = Column(Date, nullable=True, index=True)
    reminder_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    file_path = Column(String, nullable=True)          # key inside the documents bucket
    file_name = Column(String, nullable=True)
    file_type = Column(String, nullable=True)
    file_size = Column(BigInteger, nullable=True)

    document_number = Column(String, nullable=True)
    issue_date = Column(Date, nullable=True)
    issuing_authority = Column(String, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSONType, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
