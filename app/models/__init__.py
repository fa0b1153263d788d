"""Database models"""

from app.models.base import Base
from app.models.issue import Issue, IssuePriority, IssueStatus, IssueType
from app.models.repository_connection import ProviderType, RepositoryConnection
from app.models.sync_log import SyncLog

__all__ = [
    "Base",
    "Issue",
    "IssuePriority",
    "IssueStatus",
    "IssueType",
    "ProviderType",
    "RepositoryConnection",
    "SyncLog",
]
