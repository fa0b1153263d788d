"""Bitbucket Cloud REST API adapter"""

import re
from typing import Optional

import httpx

from app.models.repository_connection import ProviderType
from app.services.errors import InvalidRepositoryUrlError
from app.services.providers.base import IssuePage, RepositoryRef
from app.services.providers.http import HttpProviderAdapter, page_from_url
from app.services.providers.payloads import BitbucketIssuePayload

_URL_PATTERNS = (
    re.compile(r"^https?://bitbucket\.org/([^/]+)/([^/]+?)(?:\.git)?(?:/|$)"),
    re.compile(r"^git@bitbucket\.org:([^/]+)/([^/]+?)(?:\.git)?$"),
)

OPEN_STATES_QUERY = 'state="new" OR state="open"'


class BitbucketAdapter(HttpProviderAdapter):
    """Issues from Bitbucket's built-in tracker. Bitbucket exposes no security advisories."""

    provider = ProviderType.BITBUCKET
    supports_advisories = False
    DEFAULT_API_URL = "https://api.bitbucket.org/2.0"

    def __init__(
        self,
        access_token: str,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        super().__init__(access_token, base_url=api_url, timeout=timeout, client=client)

    def parse_repository_url(self, repository_url: str) -> RepositoryRef:
        url = (repository_url or "").strip()
        for pattern in _URL_PATTERNS:
            match = pattern.match(url)
            if match:
                return RepositoryRef(repository_url=repository_url, owner=match.group(1), name=match.group(2))
        raise InvalidRepositoryUrlError(self.provider, repository_url)

    def validate_access(self, repo: RepositoryRef) -> None:
        self._get(f"/repositories/{repo.full_name}")

    def list_issues(
        self,
        repo: RepositoryRef,
        page: int = 1,
        per_page: int = 100,
        include_closed: bool = False,
    ) -> IssuePage:
        params = {"page": page, "pagelen": self.clamp_per_page(per_page)}
        if not include_closed:
            params["q"] = OPEN_STATES_QUERY

        body = self._get(f"/repositories/{repo.full_name}/issues", params=params).json() or {}
        items = [BitbucketIssuePayload(data=item) for item in body.get("values") or []]

        next_url = body.get("next")
        if not next_url:
            return IssuePage(items=items, has_next=False)
        return IssuePage(items=items, has_next=True, next_page=page_from_url(next_url) or page + 1)
