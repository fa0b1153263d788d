"""GitHub REST API adapter"""

import re
from typing import Dict, Optional

import httpx

from app.models.repository_connection import ProviderType
from app.services.errors import InvalidRepositoryUrlError
from app.services.providers.base import IssuePage, RepositoryRef
from app.services.providers.http import HttpProviderAdapter, page_from_url
from app.services.providers.payloads import GitHubAlertPayload, GitHubIssuePayload

_URL_PATTERNS = (
    re.compile(r"^https?://github\.com/([^/]+)/([^/]+?)(?:\.git)?(?:/|$)"),
    re.compile(r"^git@github\.com:([^/]+)/([^/]+?)(?:\.git)?$"),
)


class GitHubAdapter(HttpProviderAdapter):
    """Issues and Dependabot alerts from GitHub (or a GitHub Enterprise API base URL)."""

    provider = ProviderType.GITHUB
    DEFAULT_API_URL = "https://api.github.com"

    def __init__(
        self,
        access_token: str,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        super().__init__(access_token, base_url=api_url, timeout=timeout, client=client)

    def _default_headers(self, access_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def parse_repository_url(self, repository_url: str) -> RepositoryRef:
        url = (repository_url or "").strip()
        for pattern in _URL_PATTERNS:
            match = pattern.match(url)
            if match:
                return RepositoryRef(repository_url=repository_url, owner=match.group(1), name=match.group(2))
        raise InvalidRepositoryUrlError(self.provider, repository_url)

    def validate_access(self, repo: RepositoryRef) -> None:
        self._get(f"/repos/{repo.full_name}")

    def list_issues(
        self,
        repo: RepositoryRef,
        page: int = 1,
        per_page: int = 100,
        include_closed: bool = False,
    ) -> IssuePage:
        params = {
            "state": "all" if include_closed else "open",
            "page": page,
            "per_page": self.clamp_per_page(per_page),
        }
        response = self._get(f"/repos/{repo.full_name}/issues", params=params)
        items = [GitHubIssuePayload(data=item) for item in response.json() or []]
        return self._page(response, items, page)

    def list_advisories(self, repo: RepositoryRef, page: int = 1, per_page: int = 100) -> IssuePage:
        params = {"state": "open", "page": page, "per_page": self.clamp_per_page(per_page)}
        response = self._get(f"/repos/{repo.full_name}/dependabot/alerts", params=params)
        items = [GitHubAlertPayload(data=item) for item in response.json() or []]
        return self._page(response, items, page)

    @staticmethod
    def _page(response: httpx.Response, items, page: int) -> IssuePage:
        next_link = response.links.get("next")
        if not next_link:
            return IssuePage(items=items, has_next=False)
        next_page = page_from_url(next_link.get("url")) or page + 1
        return IssuePage(items=items, has_next=True, next_page=next_page)
