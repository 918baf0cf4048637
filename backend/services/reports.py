"""Report driver: fetch issues, classify them, and build report data.

Each method is one report invocation. All fetching for a report completes
before any classification starts, and any failure aborts the report; a
partial velocity number is worse than none.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from services.config import ToolsConfig
from services.github_client import GitHubClient
from services.lifecycle import EventClassifier, IssueLifecycle
from services.models import NOISE_EVENTS, Issue
from services.sprint import SprintWindow
from services.velocity import ClassifiedIssue, VelocityAggregator, VelocityReport

logger = logging.getLogger(__name__)

STATUS_OPEN = "open"
STATUS_IN_PROGRESS = "in_progress"
STATUS_RESOLVED = "resolved"

NO_MILESTONE_ROW = "Issues without milestones"
BUGS_ROW = "Bugs"
COMMUNITY_ROW = "Community contribution"


@dataclass(frozen=True)
class IssueHistory:
    issue: Issue
    events: tuple
    lifecycle: IssueLifecycle

    def to_dict(self) -> dict:
        return {
            "issue": self.issue.to_dict(),
            "events": [e.to_dict() for e in self.events],
            "lifecycle": self.lifecycle.to_dict(),
        }


@dataclass(frozen=True)
class UnassignedPull:
    url: str
    labels: list
    community: bool


@dataclass
class SprintTally:
    """Open / in-progress / resolved counts for one report row."""

    open: int = 0
    in_progress: int = 0
    resolved: int = 0

    def add(self, status: str) -> None:
        setattr(self, status, getattr(self, status) + 1)

    @property
    def total(self) -> int:
        return self.open + self.in_progress + self.resolved

    def to_dict(self) -> dict:
        return {"open": self.open, "inProgress": self.in_progress, "resolved": self.resolved}


@dataclass(frozen=True)
class SprintReport:
    """Per-milestone and per-assignee standing of one sprint.

    `milestones` and `assignees` are lists of (name, SprintTally) rows in
    display order.
    """

    window: SprintWindow
    milestones: list
    assignees: list

    @property
    def total_resolved(self) -> int:
        # Bugs and community rows re-count issues already in a milestone row
        return sum(
            tally.resolved for name, tally in self.milestones
            if name not in (BUGS_ROW, COMMUNITY_ROW)
        )

    def to_dict(self) -> dict:
        return {
            "sprint": self.window.to_dict(),
            "milestones": [{"name": name, **tally.to_dict()} for name, tally in self.milestones],
            "assignees": [{"login": login, **tally.to_dict()} for login, tally in self.assignees],
            "totalResolved": self.total_resolved,
        }


class ReportService:
    """Builds sprint reports for a set of repositories."""

    def __init__(self, source: GitHubClient, config: Optional[ToolsConfig] = None):
        self.source = source
        self.config = config or ToolsConfig()
        self.calendar = self.config.sprint_calendar()
        self.labels = self.config.labels
        self.classifier = EventClassifier(self.calendar, self.labels)
        self.aggregator = VelocityAggregator(bug_label=self.labels.bug)

    def current_sprint(self) -> int:
        return self.calendar.current_sprint()

    def classify(self, repositories: list) -> list:
        """Fetch every issue with its events and classify it."""
        issues = self.source.fetch_issues(repositories, with_events=True)
        classified = [ClassifiedIssue(issue, self.classifier.classify(issue)) for issue in issues]
        started = sum(1 for c in classified if c.lifecycle.started)
        logger.info(f"issues {len(classified)} started {started}")
        return classified

    def velocity(self, repositories: list, current_sprint: Optional[int] = None) -> VelocityReport:
        """Per-sprint incomplete/complete/rejected breakdown."""
        if current_sprint is None:
            current_sprint = self.current_sprint()
        return self.aggregator.aggregate(self.classify(repositories), current_sprint)

    def closed(self, repositories: list, from_sprint: Optional[int] = None,
               milestone: Optional[str] = None) -> dict:
        """Closed issues grouped by the sprint they were closed in.

        Only sprints >= from_sprint (default: current) are included.
        """
        if from_sprint is None:
            from_sprint = self.current_sprint()
        since = self.calendar.window_of(from_sprint).start

        issues = self.source.fetch_issues(
            repositories, with_events=False, state="closed", since=since
        )

        sprints = {}
        for issue in issues:
            if issue.closed_at is None:
                continue
            closed_in = self.calendar.sprint_containing(issue.closed_at)
            if closed_in < from_sprint:
                continue
            if milestone and issue.milestone != milestone:
                continue
            logger.debug(f"sprint {closed_in} issue {issue.id} size {self.size_of(issue)}")
            sprints.setdefault(closed_in, []).append(issue)

        return sprints

    def in_sprint_labels(self) -> list:
        """Labels of issues in the current sprint, in reporting order."""
        labels = self.labels
        return [
            labels.ready_for_verification,
            labels.in_review,
            labels.in_progress,
            labels.sprint_label(self.current_sprint()),
        ]

    def current(self, repositories: list, milestone: Optional[str] = None) -> dict:
        """Open issues per in-sprint label (label -> issues, reporting order)."""
        report = {}
        for label in self.in_sprint_labels():
            issues = self.source.fetch_issues(
                repositories, with_events=False, state="open", labels=label
            )
            if milestone:
                issues = [i for i in issues if i.milestone == milestone]
            report[label] = issues
        return report

    def backlog(self, repositories: list, milestone: str) -> list:
        """Open issues in `milestone` that carry no in-sprint label.

        Milestones can only be queried by number, which differs per
        repository, so any-milestone issues are fetched and filtered by title.
        """
        in_sprint = set(self.in_sprint_labels())
        issues = self.source.fetch_issues(
            repositories, with_events=False, state="open", milestone="*"
        )
        return [
            issue for issue in issues
            if issue.milestone == milestone and not (issue.labels & in_sprint)
        ]

    def issue_history(self, repository: str, number: int) -> IssueHistory:
        issue = self.source.fetch_issues([f"{repository}/{number}"], with_events=True)[0]
        events = tuple(e for e in issue.events if e.name not in NOISE_EVENTS)
        return IssueHistory(issue=issue, events=events, lifecycle=self.classifier.classify(issue))

    def is_community(self, issue: Issue) -> bool:
        """Community contribution: the community label, or a PR by a non-collaborator."""
        if issue.has_label(self.labels.community):
            return True
        if not issue.is_pull_request or not issue.author:
            return False
        return not self.source.is_collaborator(issue.repository, issue.author)

    def unassigned_pulls(self, repositories: list) -> list:
        """Open pull requests without an assignee."""
        pulls = []
        for issue in self.source.fetch_issues(repositories, with_events=False, state="open"):
            if not issue.is_pull_request or issue.assignee:
                continue
            pulls.append(UnassignedPull(issue.url, sorted(issue.labels), self.is_community(issue)))
        return pulls

    def sprint_status(self, issue: Issue, window: SprintWindow) -> Optional[str]:
        """Where an issue stands in a sprint, or None if it is not counted.

        Open issues touched during the sprint count by label: the sprint's
        own label is open, in progress is in progress, verify or ready to
        ship is resolved. Issues closed during the sprint are resolved.
        """
        labels = self.labels
        if issue.is_open:
            if issue.updated_at is None or not self.calendar.contains(window, issue.updated_at):
                return None
            if issue.has_label(labels.sprint_label(window.number)):
                return STATUS_OPEN
            if issue.has_label(labels.in_progress):
                return STATUS_IN_PROGRESS
            if issue.has_label(labels.ready_for_verification) or issue.has_label(labels.ready_to_ship):
                return STATUS_RESOLVED
            return None
        if issue.closed_at is not None and self.calendar.contains(window, issue.closed_at):
            return STATUS_RESOLVED
        return None

    def by_milestone(self, issues: list, window: SprintWindow) -> list:
        """(milestone, tally) rows for a sprint.

        Milestones come sorted by title, then issues without a milestone,
        then the bug and community contribution rows. Those last two count
        issues already counted in a milestone row. Milestones with nothing
        counted are left out.
        """
        milestones = {}
        extra = {
            NO_MILESTONE_ROW: SprintTally(),
            BUGS_ROW: SprintTally(),
            COMMUNITY_ROW: SprintTally(),
        }
        for issue in issues:
            status = self.sprint_status(issue, window)
            if status is None:
                continue
            if issue.milestone:
                milestones.setdefault(issue.milestone, SprintTally()).add(status)
            else:
                extra[NO_MILESTONE_ROW].add(status)
            if issue.has_label(self.labels.bug):
                extra[BUGS_ROW].add(status)
            if self.is_community(issue):
                extra[COMMUNITY_ROW].add(status)

        rows = sorted(milestones.items())
        if extra[NO_MILESTONE_ROW].total:
            rows.append((NO_MILESTONE_ROW, extra[NO_MILESTONE_ROW]))
        rows.append((BUGS_ROW, extra[BUGS_ROW]))
        rows.append((COMMUNITY_ROW, extra[COMMUNITY_ROW]))
        return rows

    def by_assignee(self, issues: list, window: SprintWindow) -> list:
        """(login, tally) rows for a sprint, sorted by login.

        Unassigned issues and assignees with nothing counted are left out.
        """
        assignees = {}
        for issue in issues:
            if not issue.assignee:
                continue
            status = self.sprint_status(issue, window)
            if status is not None:
                assignees.setdefault(issue.assignee, SprintTally()).add(status)
        return sorted(assignees.items())

    def sprint_report(self, repositories: list, sprint: Optional[int] = None) -> SprintReport:
        """Milestone and assignee standing of `sprint` (default: current)."""
        if sprint is None:
            sprint = self.current_sprint()
        window = self.calendar.window_of(sprint)

        issues = self.source.fetch_issues(
            repositories, with_events=False, state="all", since=window.start
        )
        logger.info(f"sprint {sprint}: {len(issues)} issues updated since {window.start.isoformat()}")

        return SprintReport(
            window=window,
            milestones=self.by_milestone(issues, window),
            assignees=self.by_assignee(issues, window),
        )

    def size_of(self, issue: Issue) -> Optional[int]:
        """Story size from a `#fib-<N>` label, or None."""
        pattern = re.escape(self.labels.size_prefix) + r"(\d+)"
        size = None
        for label in sorted(issue.labels):
            match = re.fullmatch(pattern, label)
            if match:
                size = int(match.group(1))
        return size

    def display_labels(self, issue: Issue) -> list:
        """Issue labels minus the workflow, sprint and size labels."""
        labels = self.labels
        hidden = set(labels.workflow_labels)
        shown = []
        for label in sorted(issue.labels):
            if label in hidden or labels.is_sprint_label(label) or label.startswith(labels.size_prefix):
                continue
            shown.append("blocked" if "waiting" in label else label.lstrip("#"))
        return shown
