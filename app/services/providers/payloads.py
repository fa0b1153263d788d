"""Raw provider records, tagged by origin so the normalizer can dispatch on them"""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class GitHubIssuePayload:
    data: Dict[str, Any]


@dataclass(frozen=True)
class GitHubAlertPayload:
    """Dependabot alert"""

    data: Dict[str, Any]


@dataclass(frozen=True)
class GitLabIssuePayload:
    data: Dict[str, Any]


@dataclass(frozen=True)
class GitLabFindingPayload:
    """Vulnerability finding; findings carry no web URL so the repository URL rides along"""

    data: Dict[str, Any]
    repository_url: str


@dataclass(frozen=True)
class BitbucketIssuePayload:
    data: Dict[str, Any]
