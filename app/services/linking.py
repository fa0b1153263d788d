"""Manual binding of a local issue to a remote issue"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from app.models.repository_connection import ProviderType
from app.services.duplicate_matcher import DuplicateMatcher
from app.services.errors import (
    ExternalIdConflictError,
    IssueNotFoundError,
    RepositoryConnectionNotFoundError,
)
from app.services.external_id import generate_external_id, is_valid_manual_external_id
from app.services.storage import ConnectionStore, IssueStore

logger = logging.getLogger(__name__)


class ExternalLinkService:
    """Link issues to external issues outside the automated sync"""

    def __init__(self, issue_store: IssueStore, connection_store: ConnectionStore):
        self.issue_store = issue_store
        self.connection_store = connection_store
        self.matcher = DuplicateMatcher(issue_store)

    def link(
        self,
        project_id: str,
        issue_id: str,
        provider: ProviderType,
        repository_url: str,
        external_id: Optional[str] = None,
        issue_number: Optional[int] = None,
    ) -> Tuple[Any, str]:
        """Bind `issue_id` to one remote issue; returns the updated issue and its external id.

        Raises ValueError for a missing or malformed identifier.
        """
        issue = self.issue_store.find_issue_by_id(issue_id)
        if issue is None or issue.project_id != project_id:
            raise IssueNotFoundError(issue_id)

        connection = self.connection_store.find_by_repository(project_id, repository_url, provider)
        if connection is None:
            raise RepositoryConnectionNotFoundError(repository_url)

        if external_id:
            if not is_valid_manual_external_id(external_id):
                raise ValueError("Invalid external id format")
        elif issue_number is not None:
            # Built from the stored URL, the form sync runs generate
            external_id = generate_external_id(provider, connection.repository_url, issue_number)
        else:
            raise ValueError("Either external_id or issue_number must be provided")

        if self.matcher.is_external_id_in_use(project_id, external_id, exclude_issue_id=issue.id):
            owner = next(
                other.id
                for other in self.issue_store.find_issues_by_project(project_id)
                if other.id != issue.id and (other.custom_fields or {}).get("externalId") == external_id
            )
            raise ExternalIdConflictError(external_id, owner)

        now = datetime.now(timezone.utc).isoformat()
        custom_fields = dict(issue.custom_fields or {})
        custom_fields["externalId"] = external_id
        custom_fields["externalSync"] = {
            "providerType": provider.value,
            "repositoryUrl": connection.repository_url,
            "issueNumber": issue_number,
            "syncedAt": now,
            "lastSyncedAt": now,
            "securityAdvisory": False,
        }

        updated = self.issue_store.update_issue(issue.id, {"custom_fields": custom_fields})
        logger.info(f"Linked issue {issue.id} to {external_id}")
        return updated, external_id
