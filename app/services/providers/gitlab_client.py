"""GitLab API client wrapper"""
import gitlab
import logging
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from app.models.repository_connection import ProviderType
from app.services.errors import (
    InvalidRepositoryUrlError,
    ProviderApiError,
    ProviderAuthError,
)
from app.services.providers.base import IssuePage, ProviderAdapter, RepositoryRef
from app.services.providers.payloads import GitLabFindingPayload, GitLabIssuePayload
from app.services.rate_limiter import create_rate_limit_error

logger = logging.getLogger(__name__)

_HTTP_URL = re.compile(r"^(https?://[^/]+)/(.+?)/?$")
_SSH_URL = re.compile(r"^git@([^:]+):(.+?)(?:\.git)?$")


class GitLabClient(ProviderAdapter):
    """Issues and vulnerability findings from gitlab.com or a self-hosted instance"""

    provider = ProviderType.GITLAB

    def __init__(self, url: str, access_token: str, gl: Optional[gitlab.Gitlab] = None, timeout: float = 30.0):
        """Initialize GitLab client against the instance root `url`"""
        self.url = url.rstrip("/")
        self.gl = gl or gitlab.Gitlab(self.url, private_token=access_token, timeout=timeout)

    @staticmethod
    def _should_retry(exc: Exception) -> bool:
        """Best-effort retry predicate for transient GitLab failures."""
        # Throttling (429) is left to the sync engine's backoff controller.
        rc = getattr(exc, "response_code", None)
        if rc in (500, 502, 503, 504):
            return True
        return False

    def _with_retries(self, fn, *, max_attempts: int = 3, base_delay_s: float = 0.5):
        """Run callable with small exponential backoff on transient errors."""
        attempt = 1
        while True:
            try:
                return fn()
            except Exception as e:
                if attempt >= max_attempts or not self._should_retry(e):
                    raise
                time.sleep(base_delay_s * (2 ** (attempt - 1)))
                attempt += 1

    @staticmethod
    def instance_url(repository_url: str) -> str:
        """Instance root (scheme + host) a repository URL lives on."""
        url = (repository_url or "").strip()
        match = _HTTP_URL.match(url)
        if match:
            return match.group(1)
        match = _SSH_URL.match(url)
        if match:
            return f"https://{match.group(1)}"
        raise InvalidRepositoryUrlError(ProviderType.GITLAB, repository_url)

    def parse_repository_url(self, repository_url: str) -> RepositoryRef:
        url = (repository_url or "").strip()
        match = _HTTP_URL.match(url) or _SSH_URL.match(url)
        if not match:
            raise InvalidRepositoryUrlError(self.provider, repository_url)

        base = match.group(1) if url.startswith("http") else f"https://{match.group(1)}"
        # Strip UI sub-paths like /-/issues and a trailing .git
        path = match.group(2).split("/-/", 1)[0].strip("/")
        if path.endswith(".git"):
            path = path[: -len(".git")]
        if "/" not in path:
            raise InvalidRepositoryUrlError(self.provider, repository_url)

        namespace, _, name = path.rpartition("/")
        return RepositoryRef(repository_url=repository_url, owner=namespace, name=name, base_url=base)

    @staticmethod
    def _project_path(repo: RepositoryRef) -> str:
        return quote(repo.full_name, safe="")

    def _translate(self, exc: Exception, what: str) -> Exception:
        """Map python-gitlab/requests failures onto the sync engine's error types."""
        if isinstance(exc, gitlab.exceptions.GitlabAuthenticationError):
            return ProviderAuthError(str(exc.error_message or "Unauthorized"), 401, self.provider)
        if isinstance(exc, gitlab.exceptions.GitlabError):
            rc = getattr(exc, "response_code", None) or 0
            if rc == 429:
                # python-gitlab does not expose the response headers on errors
                return create_rate_limit_error(429, {}, self.provider)
            if rc == 401:
                return ProviderAuthError(str(exc.error_message), rc, self.provider)
            return ProviderApiError(str(exc.error_message or f"Failed to {what}"), rc, self.provider)
        return ProviderApiError(f"Failed to {what}: {exc}", 0, self.provider)

    def _get_page(self, path: str, query_data: Dict[str, Any], what: str) -> requests.Response:
        try:
            return self._with_retries(
                lambda: self.gl.http_get(path, query_data=query_data, raw=True, obey_rate_limit=False)
            )
        except (gitlab.exceptions.GitlabError, requests.exceptions.RequestException) as e:
            logger.error(f"Failed to {what}: {e}")
            raise self._translate(e, what) from e

    @staticmethod
    def _next_page(response: requests.Response) -> Optional[int]:
        raw = (response.headers.get("X-Next-Page") or "").strip()
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def validate_access(self, repo: RepositoryRef) -> None:
        """Get project by path"""
        try:
            self._with_retries(lambda: self.gl.projects.get(repo.full_name, obey_rate_limit=False))
        except (gitlab.exceptions.GitlabError, requests.exceptions.RequestException) as e:
            logger.error(f"Failed to get project {repo.full_name}: {e}")
            raise self._translate(e, f"get project {repo.full_name}") from e

    def list_issues(
        self,
        repo: RepositoryRef,
        page: int = 1,
        per_page: int = 100,
        include_closed: bool = False,
    ) -> IssuePage:
        """Get one page of issues from a project"""
        query = {
            # GitLab defaults to state=opened
            "state": "all" if include_closed else "opened",
            "page": page,
            "per_page": self.clamp_per_page(per_page),
        }
        response = self._get_page(
            f"/projects/{self._project_path(repo)}/issues", query, f"get issues for project {repo.full_name}"
        )
        items = [GitLabIssuePayload(data=item) for item in response.json() or []]
        next_page = self._next_page(response)
        return IssuePage(items=items, has_next=next_page is not None, next_page=next_page)

    def list_advisories(self, repo: RepositoryRef, page: int = 1, per_page: int = 100) -> IssuePage:
        """Get one page of vulnerability findings from a project"""
        query = {"page": page, "per_page": self.clamp_per_page(per_page)}
        response = self._get_page(
            f"/projects/{self._project_path(repo)}/vulnerability_findings",
            query,
            f"get vulnerability findings for project {repo.full_name}",
        )
        repository_url = f"{repo.base_url}/{repo.full_name}" if repo.base_url else repo.repository_url
        items = [GitLabFindingPayload(data=item, repository_url=repository_url) for item in response.json() or []]
        next_page = self._next_page(response)
        return IssuePage(items=items, has_next=next_page is not None, next_page=next_page)

    def close(self) -> None:
        session = getattr(self.gl, "session", None)
        if session is not None:
            session.close()
