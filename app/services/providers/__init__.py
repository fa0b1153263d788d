"""Git host adapters"""

from app.config import Settings, settings as default_settings
from app.models.repository_connection import ProviderType
from app.services.providers.base import IssuePage, ProviderAdapter, RepositoryRef
from app.services.providers.bitbucket import BitbucketAdapter
from app.services.providers.github import GitHubAdapter
from app.services.providers.gitlab_client import GitLabClient


def build_adapter(
    provider: ProviderType,
    access_token: str,
    repository_url: str,
    settings: Settings = default_settings,
) -> ProviderAdapter:
    """Construct the adapter for a connection's provider."""
    timeout = settings.provider_timeout_seconds
    if provider == ProviderType.GITHUB:
        return GitHubAdapter(access_token, api_url=settings.github_api_url, timeout=timeout)
    if provider == ProviderType.GITLAB:
        return GitLabClient(GitLabClient.instance_url(repository_url), access_token, timeout=timeout)
    if provider == ProviderType.BITBUCKET:
        return BitbucketAdapter(access_token, api_url=settings.bitbucket_api_url, timeout=timeout)
    raise ValueError(f"Unsupported provider: {provider}")


__all__ = [
    "BitbucketAdapter",
    "GitHubAdapter",
    "GitLabClient",
    "IssuePage",
    "ProviderAdapter",
    "RepositoryRef",
    "build_adapter",
]
