"""Issue model"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String, Text

from app.models.base import Base


def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class IssueType(str, enum.Enum):
    """Issue type enumeration"""
    BUG = "Bug"
    FEATURE = "Feature"
    TASK = "Task"
    EPIC = "Epic"


class IssuePriority(str, enum.Enum):
    """Issue priority enumeration"""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class IssueStatus(str, enum.Enum):
    """Workflow statuses the sync engine writes (the workflow itself is configured elsewhere)"""
    BACKLOG = "Backlog"
    DONE = "Done"


class Issue(Base):
    """Locally tracked issue"""

    __tablename__ = "issues"

    id = Column(String(36), primary_key=True, default=new_id)
    project_id = Column(String, nullable=False, index=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=IssueStatus.BACKLOG.value)
    type = Column(String, nullable=False, default=IssueType.TASK.value)
    priority = Column(String, nullable=True)

    # Extensible key/value bag. Synced issues carry `externalId` and `externalSync` here.
    custom_fields = Column(JSON, nullable=False, default=dict)

    reporter_id = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Issue(id='{self.id}', title='{self.title}')>"
