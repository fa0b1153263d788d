"""Map provider payloads onto the canonical ProviderIssue shape.

Pure functions, no I/O. Dispatch is on the payload's dataclass type.
"""

from functools import singledispatch
from typing import Any, Dict, Iterable, Optional

from app.models.issue import IssuePriority
from app.services.errors import MalformedPayloadError
from app.services.providers.payloads import (
    BitbucketIssuePayload,
    GitHubAlertPayload,
    GitHubIssuePayload,
    GitLabFindingPayload,
    GitLabIssuePayload,
)
from app.services.sync_types import Assignee, IssueState, Label, ProviderIssue

SECURITY_LABEL_COLOR = "#d73a4a"
SEVERITY_LABEL_COLOR = "#fb8500"

_SEVERITY_PRIORITY = {
    "critical": IssuePriority.CRITICAL,
    "high": IssuePriority.HIGH,
}


def _require(data: Dict[str, Any], kind: str, *keys: str) -> None:
    if not isinstance(data, dict):
        raise MalformedPayloadError(f"{kind} payload is not an object")
    missing = [k for k in keys if data.get(k) is None]
    if missing:
        raise MalformedPayloadError(f"{kind} payload missing required field(s): {', '.join(missing)}")


def _state(open_: bool) -> IssueState:
    return IssueState.OPEN if open_ else IssueState.CLOSED


def _advisory_labels(severity: Optional[str]) -> tuple:
    labels = [Label(name="security", color=SECURITY_LABEL_COLOR)]
    if severity:
        color = SECURITY_LABEL_COLOR if severity == "critical" else SEVERITY_LABEL_COLOR
        labels.append(Label(name=severity, color=color))
    return tuple(labels)


def priority_for_severity(severity: Optional[str]) -> Optional[IssuePriority]:
    return _SEVERITY_PRIORITY.get((severity or "").lower())


def _github_labels(raw: Iterable[Any]) -> tuple:
    labels = []
    for label in raw or []:
        if isinstance(label, str):
            labels.append(Label(name=label))
        elif isinstance(label, dict) and label.get("name"):
            labels.append(Label(name=label["name"], color=label.get("color")))
    return tuple(labels)


@singledispatch
def normalize(payload) -> ProviderIssue:
    """Convert a tagged provider payload into a ProviderIssue."""
    raise TypeError(f"No normalizer registered for {type(payload).__name__}")


@normalize.register
def _(payload: GitHubIssuePayload) -> ProviderIssue:
    data = payload.data
    _require(data, "GitHub issue", "id", "number", "title", "state")
    return ProviderIssue(
        id=str(data["id"]),
        number=int(data["number"]),
        title=data["title"],
        body=data.get("body"),
        state=_state(data["state"] == "open"),
        labels=_github_labels(data.get("labels")),
        assignees=tuple(
            Assignee(login=a["login"], name=a.get("name") or None, email=a.get("email") or None)
            for a in data.get("assignees") or []
            if a.get("login")
        ),
        created_at=data.get("created_at"),
        updated_at=data.get("updated_at"),
        html_url=data.get("html_url"),
    )


@normalize.register
def _(payload: GitHubAlertPayload) -> ProviderIssue:
    data = payload.data
    _require(data, "Dependabot alert", "number", "state", "security_advisory")
    advisory = data["security_advisory"]
    _require(advisory, "Dependabot advisory", "summary")
    severity = advisory.get("severity")
    return ProviderIssue(
        id=str(data["number"]),
        number=int(data["number"]),
        title=f"Security: {advisory['summary']}",
        body=advisory.get("description"),
        state=_state(data["state"] == "open"),
        labels=_advisory_labels(severity),
        created_at=data.get("created_at"),
        updated_at=data.get("updated_at"),
        html_url=data.get("html_url"),
        security_advisory=True,
        priority_hint=priority_for_severity(severity),
    )


@normalize.register
def _(payload: GitLabIssuePayload) -> ProviderIssue:
    data = payload.data
    _require(data, "GitLab issue", "id", "iid", "title", "state")
    return ProviderIssue(
        id=str(data["id"]),
        number=int(data["iid"]),
        title=data["title"],
        body=data.get("description"),
        state=_state(data["state"] == "opened"),
        labels=tuple(Label(name=name) for name in data.get("labels") or []),
        assignees=tuple(
            Assignee(login=a["username"], name=a.get("name"), email=a.get("email"))
            for a in data.get("assignees") or []
            if a.get("username")
        ),
        created_at=data.get("created_at"),
        updated_at=data.get("updated_at"),
        html_url=data.get("web_url"),
    )


@normalize.register
def _(payload: GitLabFindingPayload) -> ProviderIssue:
    data = payload.data
    _require(data, "GitLab vulnerability finding", "id", "name")
    severity = data.get("severity")
    return ProviderIssue(
        id=str(data["id"]),
        number=int(data["id"]),
        title=f"Security: {data['name']}",
        body=data.get("description"),
        state=_state(data.get("state") == "detected"),
        labels=_advisory_labels(severity),
        created_at=data.get("created_at"),
        updated_at=data.get("updated_at"),
        html_url=f"{payload.repository_url.rstrip('/')}/-/security/vulnerabilities/{data['id']}",
        security_advisory=True,
        priority_hint=priority_for_severity(severity),
    )


@normalize.register
def _(payload: BitbucketIssuePayload) -> ProviderIssue:
    data = payload.data
    _require(data, "Bitbucket issue", "id", "title", "state")
    content = data.get("content") or {}
    html = ((data.get("links") or {}).get("html") or {}).get("href")
    assignee = data.get("assignee") or {}
    login = assignee.get("nickname") or assignee.get("account_id")
    try:
        number = int(data["id"])
    except (TypeError, ValueError):
        number = 0
    return ProviderIssue(
        id=str(data["id"]),
        number=number,
        title=data["title"],
        body=content.get("raw") or None,
        state=_state(data["state"] in ("new", "open")),
        assignees=(Assignee(login=login, name=assignee.get("display_name")),) if login else (),
        created_at=data.get("created_on"),
        updated_at=data.get("updated_on"),
        html_url=html,
    )


@singledispatch
def skip_reason(payload) -> Optional[str]:
    """Why a record must not be imported, or None when it is importable."""
    return None


@skip_reason.register
def _(payload: GitHubIssuePayload) -> Optional[str]:
    # GitHub lists pull requests on the issues endpoint
    if isinstance(payload.data, dict) and "pull_request" in payload.data:
        return "pull request"
    return None
