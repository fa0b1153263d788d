"""Error taxonomy for repository issue synchronization.

Fatal-to-run errors abort a sync before (or instead of) processing issues. Rate-limit
errors are retried by the backoff controller and only become fatal once retries are
exhausted. Everything else raised while handling a single record is caught at the
per-record boundary and recorded in the run's results.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from app.models.repository_connection import ProviderType
    from app.services.sync_types import RateLimitInfo


class SyncError(Exception):
    """Base class for sync engine errors."""


class SyncFatalError(SyncError):
    """Aborts the whole run; the operation ends in the failed state."""


class RepositoryConnectionNotFoundError(SyncFatalError):
    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__("Repository connection not found")


class InvalidRepositoryUrlError(SyncFatalError):
    def __init__(self, provider: "ProviderType", repository_url: str):
        self.provider = provider
        self.repository_url = repository_url
        super().__init__(f"Invalid {provider.value} repository URL: {repository_url}")


class AccessValidationError(SyncFatalError):
    """The stored credential cannot read the repository."""


class ProviderApiError(SyncError):
    """Non-2xx (non rate-limit) response or transport failure from a provider."""

    def __init__(self, message: str, status_code: int, provider: "ProviderType"):
        self.status_code = status_code
        self.provider = provider
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.provider.value} API error ({self.status_code}): {self.args[0]}"


class ProviderAuthError(ProviderApiError):
    """The provider rejected the access token."""


class RateLimitError(SyncError):
    """The provider is throttling requests."""

    def __init__(
        self,
        message: str,
        provider: "ProviderType",
        rate_limit_info: Optional["RateLimitInfo"] = None,
        retry_after: Optional[float] = None,
    ):
        self.provider = provider
        self.rate_limit_info = rate_limit_info
        # Seconds to wait before retrying, when the provider said so
        self.retry_after = retry_after
        super().__init__(message)


class OperationCancelledError(SyncError):
    """The run's cancellation token fired while waiting."""


class MalformedPayloadError(SyncError):
    """A provider record is missing fields the normalizer needs."""


class IssueNotFoundError(SyncError):
    def __init__(self, issue_id: str):
        self.issue_id = issue_id
        super().__init__(f"Issue {issue_id} not found")


class ExternalIdConflictError(SyncError):
    """The external id is already bound to a different local issue."""

    def __init__(self, external_id: str, issue_id: str):
        self.external_id = external_id
        self.issue_id = issue_id
        super().__init__(f"Another issue ({issue_id}) is already linked to this external issue")


class SyncAlreadyRunningError(SyncError):
    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__("A sync operation is already in progress for this repository")


class SyncOperationNotFoundError(SyncError):
    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__("Sync operation not found")


class OperationAlreadyFinishedError(SyncError):
    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__("Cannot cancel a completed or failed operation")
