"""Value types shared by the sync engine"""

import copy
import enum
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from app.models.issue import IssuePriority


class IssueState(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class SyncType(str, enum.Enum):
    FULL = "full"
    ISSUES_ONLY = "issuesOnly"
    SECURITY_ONLY = "securityOnly"

    @property
    def includes_issues(self) -> bool:
        return self in (SyncType.FULL, SyncType.ISSUES_ONLY)

    @property
    def includes_advisories(self) -> bool:
        return self in (SyncType.FULL, SyncType.SECURITY_ONLY)


class SyncStage(str, enum.Enum):
    FETCHING = "fetching"
    MATCHING = "matching"
    CREATING = "creating"
    UPDATING = "updating"


class OperationStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationStatus.COMPLETED, OperationStatus.FAILED)


class MatchType(str, enum.Enum):
    EXTERNAL_ID = "externalId"
    TITLE_AND_REPOSITORY = "titleAndRepository"


class SyncOutcome(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Label:
    name: str
    color: Optional[str] = None


@dataclass(frozen=True)
class Assignee:
    login: str
    name: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class ProviderIssue:
    """Provider-agnostic issue (or security advisory) produced by the normalizer."""

    id: Union[str, int]
    number: int
    title: str
    body: Optional[str]
    state: IssueState
    labels: Tuple[Label, ...] = ()
    assignees: Tuple[Assignee, ...] = ()
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    html_url: Optional[str] = None
    security_advisory: bool = False
    priority_hint: Optional[IssuePriority] = None


@dataclass(frozen=True)
class RateLimitInfo:
    limit: int
    remaining: int
    reset: int  # Unix timestamp


@dataclass(frozen=True)
class DuplicateMatch:
    matched: bool
    issue_id: Optional[str] = None
    match_type: Optional[MatchType] = None


@dataclass(frozen=True)
class SyncProgress:
    current: int
    total: int
    processed: int
    stage: SyncStage


@dataclass
class SyncCounts:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    def increment(self, outcome: SyncOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped + self.failed


@dataclass(frozen=True)
class SyncErrorSummary:
    error: str
    issue_id: Optional[str] = None


@dataclass
class SyncResults:
    """Accumulator for one run. Counts only ever go up."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    security_advisories: SyncCounts = field(default_factory=SyncCounts)
    errors: List[SyncErrorSummary] = field(default_factory=list)
    max_errors: int = 100

    def record(self, outcome: SyncOutcome, *, advisory: bool = False) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)
        if advisory:
            self.security_advisories.increment(outcome)

    def record_failure(
        self, error: str, *, issue_id: Optional[str] = None, advisory: bool = False
    ) -> None:
        self.failed += 1
        if advisory:
            self.security_advisories.failed += 1
        self.add_error(error, issue_id=issue_id)

    def add_error(self, error: str, *, issue_id: Optional[str] = None) -> None:
        # The list is a bounded sample; the counts above stay exact.
        if len(self.errors) < self.max_errors:
            self.errors.append(SyncErrorSummary(error=error, issue_id=issue_id))

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped + self.failed

    def snapshot(self) -> "SyncResults":
        return copy.deepcopy(self)
