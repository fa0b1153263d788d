"""Sync log model"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Enum
import enum
from app.models.base import Base
from app.models.issue import utcnow


class SyncStatus(str, enum.Enum):
    """Outcome of a finished sync run"""
    COMPLETED = "completed"
    FAILED = "failed"


class SyncLog(Base):
    """Durable history of finished sync runs"""

    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)

    operation_id = Column(String(36), nullable=False, index=True)
    repository_connection_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String, nullable=True)

    status = Column(Enum(SyncStatus), nullable=False)
    sync_type = Column(String, nullable=False)

    created_count = Column(Integer, default=0)
    updated_count = Column(Integer, default=0)
    skipped_count = Column(Integer, default=0)
    failed_count = Column(Integer, default=0)

    message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)

    def __repr__(self):
        return f"<SyncLog(status={self.status}, operation={self.operation_id})>"
