"""Storage contracts used by the sync engine, and their SQLAlchemy implementations"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.models import Issue, ProviderType, RepositoryConnection
from app.services.errors import IssueNotFoundError

logger = logging.getLogger(__name__)

# Columns a sync write may set on an Issue
_WRITABLE_FIELDS = (
    "project_id",
    "title",
    "description",
    "status",
    "type",
    "priority",
    "custom_fields",
    "reporter_id",
)


class IssueStore(ABC):
    """Where synced issues live. Returned records expose `id`, `title` and `custom_fields`."""

    @abstractmethod
    def find_issues_by_project(self, project_id: str) -> List[Any]:
        ...

    @abstractmethod
    def find_issue_by_id(self, issue_id: str) -> Optional[Any]:
        ...

    @abstractmethod
    def create_issue(self, data: Dict[str, Any]) -> Any:
        ...

    @abstractmethod
    def update_issue(self, issue_id: str, patch: Dict[str, Any]) -> Any:
        """Apply a partial update; raise IssueNotFoundError when the issue is gone."""


class SqlIssueStore(IssueStore):
    """IssueStore on a SQLAlchemy session. Each write commits on its own."""

    def __init__(self, db: Session):
        self.db = db

    def find_issues_by_project(self, project_id: str) -> List[Issue]:
        return self.db.query(Issue).filter(Issue.project_id == project_id).order_by(Issue.created_at).all()

    def find_issue_by_id(self, issue_id: str) -> Optional[Issue]:
        return self.db.query(Issue).filter(Issue.id == issue_id).first()

    def create_issue(self, data: Dict[str, Any]) -> Issue:
        issue = Issue(**{k: v for k, v in data.items() if k in _WRITABLE_FIELDS})
        try:
            self.db.add(issue)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(issue)
        return issue

    def update_issue(self, issue_id: str, patch: Dict[str, Any]) -> Issue:
        issue = self.find_issue_by_id(issue_id)
        if issue is None:
            raise IssueNotFoundError(issue_id)
        for key, value in patch.items():
            if key not in _WRITABLE_FIELDS:
                continue
            if key == "custom_fields":
                # New dict object so the JSON column is flagged dirty
                value = dict(value or {})
            setattr(issue, key, value)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(issue)
        return issue


class ConnectionStore:
    """Read/update access to repository connections"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, connection_id: str) -> Optional[RepositoryConnection]:
        return self.db.query(RepositoryConnection).filter(RepositoryConnection.id == connection_id).first()

    def find_by_repository(
        self, project_id: str, repository_url: str, provider: ProviderType
    ) -> Optional[RepositoryConnection]:
        wanted = repository_url.strip().lower()
        candidates = (
            self.db.query(RepositoryConnection)
            .filter(
                RepositoryConnection.project_id == project_id,
                RepositoryConnection.service_type == provider.value,
            )
            .all()
        )
        for connection in candidates:
            if (connection.repository_url or "").strip().lower() == wanted:
                return connection
        return None

    def mark_synced(self, connection_id: str, when: datetime) -> None:
        connection = self.get(connection_id)
        if connection is None:
            logger.warning(f"Connection {connection_id} disappeared before last_sync_at could be recorded")
            return
        connection.last_sync_at = when
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
