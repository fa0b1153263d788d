"""Provider adapter interface"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional

from app.models.repository_connection import ProviderType


@dataclass(frozen=True)
class RepositoryRef:
    """A parsed repository URL."""

    repository_url: str
    owner: str  # GitHub owner, GitLab namespace path, Bitbucket workspace
    name: str
    base_url: Optional[str] = None  # instance root for self-hosted GitLab

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass
class IssuePage:
    items: List[Any] = field(default_factory=list)
    has_next: bool = False
    next_page: Optional[int] = None


class ProviderAdapter(ABC):
    """One Git host's REST API, as seen by the sync engine.

    Methods return raw payloads wrapped in the provider's payload dataclasses; the
    normalizer turns them into ProviderIssue. Throttling surfaces as RateLimitError,
    rejected credentials as ProviderAuthError, anything else as ProviderApiError.
    """

    provider: ProviderType
    supports_advisories: bool = True
    MAX_PER_PAGE = 100

    def clamp_per_page(self, per_page: int) -> int:
        return max(1, min(int(per_page), self.MAX_PER_PAGE))

    @abstractmethod
    def parse_repository_url(self, repository_url: str) -> RepositoryRef:
        """Raise InvalidRepositoryUrlError when the URL is not a repository on this host."""

    @abstractmethod
    def validate_access(self, repo: RepositoryRef) -> None:
        """One lightweight repository fetch proving the token can read it."""

    @abstractmethod
    def list_issues(
        self,
        repo: RepositoryRef,
        page: int = 1,
        per_page: int = 100,
        include_closed: bool = False,
    ) -> IssuePage:
        ...

    def list_advisories(self, repo: RepositoryRef, page: int = 1, per_page: int = 100) -> IssuePage:
        return IssuePage(items=[], has_next=False)

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
