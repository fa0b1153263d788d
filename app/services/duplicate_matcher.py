"""Match incoming provider issues against issues imported earlier"""

from typing import Any, Optional

from app.services.storage import IssueStore
from app.services.sync_types import DuplicateMatch, MatchType


def _fold(value: Optional[str]) -> str:
    return (value or "").strip().casefold()


def _custom_fields(issue: Any) -> dict:
    fields = getattr(issue, "custom_fields", None)
    return fields if isinstance(fields, dict) else {}


class DuplicateMatcher:
    """Two-tier duplicate detection.

    1. Exact `externalId` recorded on a previous import.
    2. Only when (1) finds nothing: same title and same repository URL, both compared
       trimmed and case-insensitively, among issues that have no external id yet. This
       catches issues imported before external ids were recorded.

    Stateless; every call reads the store afresh.
    """

    def __init__(self, issue_store: IssueStore):
        self.issue_store = issue_store

    def find_duplicate(
        self, project_id: str, external_id: str, title: str, repository_url: str
    ) -> DuplicateMatch:
        issue_id = self.match_by_external_id(project_id, external_id)
        if issue_id is not None:
            return DuplicateMatch(matched=True, issue_id=issue_id, match_type=MatchType.EXTERNAL_ID)

        issue_id = self._match_by_title_and_repository(project_id, title, repository_url)
        if issue_id is not None:
            return DuplicateMatch(matched=True, issue_id=issue_id, match_type=MatchType.TITLE_AND_REPOSITORY)

        return DuplicateMatch(matched=False)

    def match_by_external_id(self, project_id: str, external_id: str) -> Optional[str]:
        for issue in self.issue_store.find_issues_by_project(project_id):
            if _custom_fields(issue).get("externalId") == external_id:
                return issue.id
        return None

    def _match_by_title_and_repository(
        self, project_id: str, title: str, repository_url: str
    ) -> Optional[str]:
        wanted_title = _fold(title)
        wanted_repo = _fold(repository_url)
        if not wanted_title or not wanted_repo:
            return None

        for issue in self.issue_store.find_issues_by_project(project_id):
            # Issues that already carry an external id belong to tier 1 only
            if _custom_fields(issue).get("externalId"):
                continue
            sync = _custom_fields(issue).get("externalSync")
            if not isinstance(sync, dict):
                continue
            if _fold(issue.title) == wanted_title and _fold(sync.get("repositoryUrl")) == wanted_repo:
                return issue.id
        return None

    def is_external_id_in_use(
        self, project_id: str, external_id: str, exclude_issue_id: Optional[str] = None
    ) -> bool:
        for issue in self.issue_store.find_issues_by_project(project_id):
            if exclude_issue_id is not None and issue.id == exclude_issue_id:
                continue
            if _custom_fields(issue).get("externalId") == external_id:
                return True
        return False
