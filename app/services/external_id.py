"""External identifiers binding a local issue to one remote issue"""

import re
from typing import NamedTuple, Optional, Union

from app.models.repository_connection import ProviderType

MANUAL_EXTERNAL_ID_PATTERN = re.compile(r"^(github|gitlab|bitbucket):https?://.+")
MAX_EXTERNAL_ID_LENGTH = 500

_PREFIXES = {provider.value.lower(): provider for provider in ProviderType}


class ParsedExternalId(NamedTuple):
    provider: ProviderType
    repository_url: str
    issue_id: str


def generate_external_id(
    provider: ProviderType, repository_url: str, issue_id: Union[str, int]
) -> str:
    """Build `{provider}:{repositoryUrl}:{issueId}` with the provider lower-cased."""
    return f"{provider.value.lower()}:{repository_url}:{issue_id}"


def parse_external_id(external_id: str) -> Optional[ParsedExternalId]:
    """Split an external id back into its parts.

    The repository URL may itself contain colons, so the provider is everything up to
    the first colon and the issue id everything after the last one.
    """
    if not external_id or external_id.count(":") < 2:
        return None

    prefix, _, rest = external_id.partition(":")
    repository_url, _, issue_id = rest.rpartition(":")
    if not prefix or not repository_url or not issue_id:
        return None

    provider = _PREFIXES.get(prefix)
    if provider is None:
        return None
    return ParsedExternalId(provider, repository_url, issue_id)


def is_valid_manual_external_id(external_id: str) -> bool:
    if not external_id or len(external_id) > MAX_EXTERNAL_ID_LENGTH:
        return False
    return bool(MANUAL_EXTERNAL_ID_PATTERN.match(external_id)) and parse_external_id(external_id) is not None
