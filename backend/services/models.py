"""Typed issue records projected from GitHub API payloads."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from services.sprint import parse_timestamp

EVENT_LABELED = "labeled"
EVENT_CLOSED = "closed"
EVENT_OTHER = "other"

ISSUE_TYPE_ISSUE = "issue"
ISSUE_TYPE_BUG = "bug"
ISSUE_TYPE_PR = "PR"

# Events that never affect sprint state; kept as kind "other" so the
# history still shows them in order.
NOISE_EVENTS = {
    "renamed", "subscribed", "unsubscribed", "assigned", "unassigned",
    "milestoned", "demilestoned", "mentioned", "referenced",
}


@dataclass(frozen=True)
class LifecycleEvent:
    """One entry of an issue's event history."""

    kind: str
    timestamp: Optional[datetime]
    label: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_github(cls, payload: dict) -> "LifecycleEvent":
        """Project a `/issues/{n}/events` entry.

        The original event name is preserved in `name`; anything other than
        labeled/closed becomes kind "other".
        """
        name = payload.get("event")
        kind = name if name in (EVENT_LABELED, EVENT_CLOSED) else EVENT_OTHER
        label = None
        if kind == EVENT_LABELED:
            label_data = payload.get("label") or {}
            label = label_data.get("name") if isinstance(label_data, dict) else str(label_data)
        return cls(
            kind=kind,
            timestamp=parse_timestamp(payload.get("created_at")),
            label=label,
            name=name,
        )

    def to_dict(self) -> dict:
        return {
            "event": self.name or self.kind,
            "kind": self.kind,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "label": self.label,
        }


@dataclass(frozen=True)
class Issue:
    """The fields of an issue the reports consume."""

    repository: str
    number: int
    title: str = ""
    state: str = "open"
    labels: frozenset = frozenset()
    is_pull_request: bool = False
    closed_at: Optional[datetime] = None
    closed_at_raw: Optional[str] = None
    updated_at: Optional[datetime] = None
    events: tuple = field(default=())
    milestone: Optional[str] = None
    assignee: Optional[str] = None
    author: Optional[str] = None
    url: Optional[str] = None

    @property
    def id(self) -> str:
        return f"{self.repository}#{self.number}"

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    def has_label(self, name: str) -> bool:
        return name in self.labels

    def kind(self, bug_label: str) -> str:
        """Issue type used to refine velocity categories: PR, bug or issue."""
        if self.is_pull_request:
            return ISSUE_TYPE_PR
        if bug_label in self.labels:
            return ISSUE_TYPE_BUG
        return ISSUE_TYPE_ISSUE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "repository": self.repository,
            "number": self.number,
            "title": self.title,
            "state": self.state,
            "labels": sorted(self.labels),
            "isPullRequest": self.is_pull_request,
            "closedAt": self.closed_at.isoformat() if self.closed_at else None,
            "milestone": self.milestone,
            "assignee": self.assignee,
            "url": self.url,
        }


def _login(user: Optional[dict]) -> Optional[str]:
    if not user:
        return None
    return user.get("login")


def project_issue(repository: str, payload: dict, events: Optional[list] = None) -> Issue:
    """Project a raw GitHub issue (and its events) onto an Issue record.

    Only the fields listed on Issue survive; urls, ids, reactions and the
    rest of the payload are dropped here rather than downstream.
    """
    milestone = payload.get("milestone") or {}
    closed_at_raw = payload.get("closed_at")
    return Issue(
        repository=repository,
        number=int(payload["number"]),
        title=payload.get("title") or "",
        state=payload.get("state", "open"),
        labels=frozenset(
            label["name"] if isinstance(label, dict) else str(label)
            for label in payload.get("labels") or []
        ),
        is_pull_request="pull_request" in payload,
        closed_at=parse_timestamp(closed_at_raw),
        closed_at_raw=closed_at_raw,
        updated_at=parse_timestamp(payload.get("updated_at")),
        events=tuple(LifecycleEvent.from_github(e) for e in events or []),
        milestone=milestone.get("title"),
        assignee=_login(payload.get("assignee")),
        author=_login(payload.get("user")),
        url=payload.get("html_url"),
    )
