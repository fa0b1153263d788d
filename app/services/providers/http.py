"""Shared httpx plumbing for REST providers"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

import httpx

from app.services.errors import ProviderApiError, ProviderAuthError
from app.services.providers.base import ProviderAdapter
from app.services.rate_limiter import create_rate_limit_error, detect_rate_limit

logger = logging.getLogger(__name__)


def page_from_url(url: Optional[str]) -> Optional[int]:
    """Extract the `page` query parameter from a pagination link."""
    if not url:
        return None
    values = parse_qs(urlparse(url).query).get("page")
    if not values:
        return None
    try:
        return int(values[0])
    except ValueError:
        return None


class HttpProviderAdapter(ProviderAdapter):
    """Adapter backed by a long-lived httpx.Client.

    A client can be injected (tests pass one built on httpx.MockTransport); the adapter
    only closes clients it created.
    """

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout)
        self._client.headers.update(self._default_headers(access_token))

    def _default_headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            response = self._client.get(url, params=params)
        except httpx.HTTPError as e:
            logger.error(f"{self.provider.value} request to {url} failed: {e}")
            raise ProviderApiError(f"Request failed: {e}", 0, self.provider) from e
        self._raise_for_status(response)
        return response

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return

        status = response.status_code
        if detect_rate_limit(status, response.headers, self.provider).is_rate_limited:
            raise create_rate_limit_error(status, response.headers, self.provider)

        message = self._error_message(response)
        logger.error(f"{self.provider.value} API returned {status} for {response.request.url}: {message}")
        if status == 401:
            raise ProviderAuthError(message, status, self.provider)
        raise ProviderApiError(message, status, self.provider)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict):
            if isinstance(body.get("error"), dict):
                return str(body["error"].get("message") or body["error"])
            return str(body.get("message") or body.get("error") or body)
        return str(body)
