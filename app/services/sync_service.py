"""Issue synchronization service"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from app.models import IssueStatus, IssueType, RepositoryConnection
from app.models.issue import utcnow
from app.services.cancellation import CancellationToken
from app.services.duplicate_matcher import DuplicateMatcher
from app.services.errors import (
    AccessValidationError,
    InvalidRepositoryUrlError,
    IssueNotFoundError,
    OperationCancelledError,
    ProviderApiError,
    RepositoryConnectionNotFoundError,
)
from app.services.external_id import generate_external_id
from app.services.normalizer import normalize, skip_reason
from app.services.progress import ProgressPublisher
from app.services.providers import ProviderAdapter, RepositoryRef, build_adapter
from app.services.rate_limiter import BackoffConfig, with_retry
from app.services.storage import ConnectionStore, IssueStore
from app.services.sync_types import (
    IssueState,
    ProviderIssue,
    SyncOutcome,
    SyncProgress,
    SyncResults,
    SyncStage,
    SyncType,
)

logger = logging.getLogger(__name__)

AdapterFactory = Callable[..., ProviderAdapter]


@dataclass
class SyncOptions:
    sync_type: SyncType = SyncType.FULL
    include_closed: bool = False
    cancel_token: Optional[CancellationToken] = None
    operation_id: Optional[str] = None


@dataclass
class _Run:
    """Mutable state of one sync run"""

    connection: RepositoryConnection
    adapter: ProviderAdapter
    repo: RepositoryRef
    user_id: str
    options: SyncOptions
    token: CancellationToken
    results: SyncResults
    pages_fetched: int = 0
    seen: int = 0
    processed: int = 0
    started: float = field(default_factory=time.monotonic)


def _payload_id(payload: Any) -> Optional[str]:
    data = getattr(payload, "data", None)
    if isinstance(data, dict) and data.get("id", data.get("number")) is not None:
        return str(data.get("id", data.get("number")))
    return None


class IssueSyncService:
    """Pull issues and security advisories from a connected repository into local storage.

    A run pages through the provider, normalizes every record, asks the duplicate
    matcher whether it was imported before, and creates or updates the local issue.
    Failures of a single record are counted and never abort the run.
    """

    def __init__(
        self,
        issue_store: IssueStore,
        connection_store: ConnectionStore,
        cipher,
        adapter_factory: AdapterFactory = build_adapter,
        backoff_config: Optional[BackoffConfig] = None,
        progress_interval: int = 10,
        max_error_summaries: int = 100,
        page_size: int = 100,
        publisher: Optional[ProgressPublisher] = None,
    ):
        self.issue_store = issue_store
        self.connection_store = connection_store
        self.cipher = cipher
        self.adapter_factory = adapter_factory
        self.backoff_config = backoff_config or BackoffConfig()
        self.progress_interval = max(1, progress_interval)
        self.max_error_summaries = max_error_summaries
        self.page_size = page_size
        self.publisher = publisher or ProgressPublisher()
        self.matcher = DuplicateMatcher(issue_store)

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    def sync_repository_issues(
        self, connection_id: str, user_id: str, options: Optional[SyncOptions] = None
    ) -> SyncResults:
        """Run one sync for a repository connection and return its results.

        Raises a SyncFatalError subclass (or an exhausted RateLimitError) when the run
        cannot proceed. Cancellation is not an error: the partial results are returned.
        """
        options = options or SyncOptions()
        token = options.cancel_token or CancellationToken()
        results = SyncResults(max_errors=self.max_error_summaries)

        connection = self.connection_store.get(connection_id)
        if connection is None:
            raise RepositoryConnectionNotFoundError(connection_id)

        label = f"{connection.service_type} {connection.repository_url}"
        logger.info(
            f"Starting {options.sync_type.value} sync for {label} "
            f"(operation={options.operation_id}, include_closed={options.include_closed})"
        )
        started = time.monotonic()

        try:
            access_token = self.cipher.decrypt(connection.access_token)
            with self.adapter_factory(connection.provider, access_token, connection.repository_url) as adapter:
                repo = self._validate_access(adapter, connection, token)
                run = _Run(connection, adapter, repo, user_id, options, token, results)

                if options.sync_type.includes_issues:
                    self._sync_phase(run, advisories=False)
                if options.sync_type.includes_advisories and adapter.supports_advisories:
                    self._sync_phase(run, advisories=True)
        except OperationCancelledError:
            logger.info(f"Sync for {label} cancelled; keeping partial results")
            return results
        except Exception as e:
            logger.error(f"Sync failed for {label}: {e}")
            raise

        duration = time.monotonic() - started
        error_rate = (results.failed / results.total) if results.total else 0.0
        if token.cancelled:
            logger.info(f"Sync for {label} cancelled after {duration:.1f}s; keeping partial results")
        else:
            self.connection_store.mark_synced(connection.id, utcnow())
        logger.info(
            f"Sync completed for {label}: created={results.created} updated={results.updated} "
            f"skipped={results.skipped} failed={results.failed} "
            f"advisories={results.security_advisories.total} "
            f"duration={duration:.1f}s error_rate={error_rate:.1%}"
        )
        return results

    def _validate_access(
        self, adapter: ProviderAdapter, connection: RepositoryConnection, token: CancellationToken
    ) -> RepositoryRef:
        repo = adapter.parse_repository_url(connection.repository_url)
        try:
            with_retry(lambda: adapter.validate_access(repo), self.backoff_config, cancel_token=token)
        except ProviderApiError as e:
            raise AccessValidationError(f"Failed to validate repository access: {e}") from e
        return repo

    def _publish(self, run: _Run, stage: SyncStage, current: int) -> None:
        self.publisher.publish(
            SyncProgress(current=current, total=run.seen, processed=run.processed, stage=stage)
        )

    def _sync_phase(self, run: _Run, *, advisories: bool) -> None:
        """Page through issues (or advisories) until exhausted or cancelled"""
        kind = "security advisories" if advisories else "issues"
        fetch = run.adapter.list_advisories if advisories else run.adapter.list_issues
        page = 1

        while not run.token.cancelled:
            self._publish(run, SyncStage.FETCHING, page)

            def fetch_page(page=page):
                if advisories:
                    return fetch(run.repo, page=page, per_page=self.page_size)
                return fetch(
                    run.repo, page=page, per_page=self.page_size, include_closed=run.options.include_closed
                )

            try:
                issue_page = with_retry(fetch_page, self.backoff_config, cancel_token=run.token)
            except ProviderApiError as e:
                if run.pages_fetched == 0:
                    raise
                logger.warning(f"Stopped fetching {kind} at page {page}: {e}")
                run.results.add_error(f"Failed to fetch {kind} page {page}: {e}")
                return

            run.pages_fetched += 1
            if not issue_page.items:
                return

            run.seen += len(issue_page.items)
            self._publish(run, SyncStage.MATCHING, page)

            for payload in issue_page.items:
                if run.token.cancelled:
                    return
                self._process_payload(run, payload, advisory=advisories)

            if not issue_page.has_next:
                return
            page = issue_page.next_page or page + 1

        logger.info(f"Stopped fetching {kind}: operation cancelled")

    def _process_payload(self, run: _Run, payload: Any, *, advisory: bool) -> None:
        issue_id = _payload_id(payload)
        outcome: Optional[SyncOutcome] = None
        try:
            reason = skip_reason(payload)
            if reason:
                logger.debug(f"Skipping {issue_id}: {reason}")
                outcome = SyncOutcome.SKIPPED
            else:
                issue = normalize(payload)
                issue_id = str(issue.id)
                if issue.state == IssueState.CLOSED and not run.options.include_closed:
                    outcome = SyncOutcome.SKIPPED
                else:
                    outcome = self.process_issue(run.connection, issue, run.user_id)
            run.results.record(outcome, advisory=advisory)
        except Exception as e:
            logger.warning(f"Failed to sync {run.connection.service_type} record {issue_id}: {e}")
            run.results.record_failure(str(e), issue_id=issue_id, advisory=advisory)

        run.processed += 1
        if run.processed % self.progress_interval == 0:
            stage = SyncStage.UPDATING if outcome == SyncOutcome.UPDATED else SyncStage.CREATING
            self._publish(run, stage, run.processed)

    def process_issue(self, connection: RepositoryConnection, issue: ProviderIssue, user_id: str) -> SyncOutcome:
        """Create or update the local copy of one provider issue"""
        external_id = generate_external_id(connection.provider, connection.repository_url, issue.id)
        match = self.matcher.find_duplicate(
            connection.project_id, external_id, issue.title, connection.repository_url
        )

        if match.matched:
            self._update_issue(match.issue_id, connection, issue, external_id)
            return SyncOutcome.UPDATED

        self._create_issue(connection, issue, external_id, user_id)
        return SyncOutcome.CREATED

    def _create_issue(
        self, connection: RepositoryConnection, issue: ProviderIssue, external_id: str, user_id: str
    ) -> None:
        custom_fields = {
            "externalId": external_id,
            "externalSync": {
                "providerType": connection.service_type,
                "repositoryUrl": connection.repository_url,
                "issueNumber": issue.number,
                "syncedAt": self._now_iso(),
                "securityAdvisory": issue.security_advisory,
            },
        }
        issue_type = IssueType.BUG if issue.security_advisory else IssueType.TASK
        status = IssueStatus.BACKLOG if issue.state == IssueState.OPEN else IssueStatus.DONE

        self.issue_store.create_issue(
            {
                "project_id": connection.project_id,
                "title": issue.title,
                "description": issue.body or None,
                "status": status.value,
                "type": issue_type.value,
                "priority": issue.priority_hint.value if issue.priority_hint else None,
                "custom_fields": custom_fields,
                "reporter_id": user_id,
            }
        )

    def _update_issue(
        self, issue_id: str, connection: RepositoryConnection, issue: ProviderIssue, external_id: str
    ) -> None:
        existing = self.issue_store.find_issue_by_id(issue_id)
        if existing is None:
            raise IssueNotFoundError(issue_id)

        now = self._now_iso()
        custom_fields = dict(existing.custom_fields or {})
        external_sync = dict(custom_fields.get("externalSync") or {})
        external_sync.update(
            {
                "providerType": connection.service_type,
                "repositoryUrl": connection.repository_url,
                "issueNumber": issue.number,
                "syncedAt": external_sync.get("syncedAt") or now,
                "lastSyncedAt": now,
                "securityAdvisory": issue.security_advisory,
            }
        )
        custom_fields["externalId"] = external_id
        custom_fields["externalSync"] = external_sync

        self.issue_store.update_issue(
            issue_id,
            {"title": issue.title, "description": issue.body or None, "custom_fields": custom_fields},
        )
