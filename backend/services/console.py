"""Console rendering of report data with rich tables."""

from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from services.models import Issue
from services.reports import IssueHistory, ReportService, SprintReport
from services.sprint import SprintWindow
from services.velocity import VelocityReport


def _issue_ref(issue: Issue) -> str:
    return f"{issue.repository}#{issue.number}"


def _short_repo_name(repository: str) -> str:
    name = repository.split("/")[-1]
    for prefix in ("scrum-", "strong-"):
        if name.startswith(prefix):
            return name[len(prefix):]
    return name


def decorated_title(service: ReportService, issue: Issue) -> str:
    """Title prefixed with its milestone and display labels."""
    title = issue.title
    if issue.milestone:
        title = f"{issue.milestone.lstrip('#')}: {title}"
    labels = service.display_labels(issue)
    if labels:
        title = f"({', '.join(labels)}) {title}"
    return title


def render_window(console: Console, window: SprintWindow, current: Optional[int] = None) -> None:
    marker = " (current)" if current == window.number else ""
    console.print(f"Sprint {window.number}{marker}")
    console.print(f"  start: {window.start.isoformat()}")
    console.print(f"  stop:  {window.stop.isoformat()}")


def render_velocity(console: Console, report: VelocityReport, with_issues: bool = False) -> None:
    """One row per sprint and category, sprints ascending, categories by name."""
    table = Table(title=f"Velocity (current sprint {report.current_sprint})",
                  show_header=True, header_style="bold")
    table.add_column("sprint", style="cyan", no_wrap=True)
    table.add_column("category", no_wrap=True)
    table.add_column("count", justify="right")
    if with_issues:
        table.add_column("issues")

    for sprint in sorted(report.sprints):
        categories = report.sprints[sprint]
        for category in sorted(categories):
            entry = categories[category]
            row = [str(sprint), category, str(entry.count)]
            if with_issues:
                row.append(", ".join(
                    f"{_short_repo_name(repo)}#{','.join(str(n) for n in numbers)}"
                    for repo, numbers in sorted(entry.issues.items())
                ))
            table.add_row(*row)

    console.print(table)

    if report.excluded:
        console.print(f"Not started: {len(report.excluded)}")
        for item in report.excluded:
            note = f" (closed in {item.lifecycle.done})" if item.lifecycle.closed_without_work else ""
            console.print(escape(f"  {_issue_ref(item.issue)} {item.issue.title}{note}"))


def render_issues(console: Console, service: ReportService, title: str, issues: list,
                  with_issues: bool = False) -> None:
    """Size/title listing with totals; pull requests are not listed."""
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("size", justify="right", no_wrap=True)
    table.add_column("title")

    listed = sorted(
        (i for i in issues if not i.is_pull_request),
        key=lambda i: decorated_title(service, i),
    )
    velocity = 0
    for issue in listed:
        size = service.size_of(issue)
        text = decorated_title(service, issue)
        if with_issues:
            text += f" ({_short_repo_name(issue.repository)}/{issue.number})"
        table.add_row(str(size) if size else "-", escape(text))
        velocity += size or 0

    console.print(table)
    console.print(f"  total size:\t{velocity}")
    console.print(f"  total issues:\t{len(listed)}")
    console.print("")


def render_closed(console: Console, service: ReportService, sprints: dict,
                  with_issues: bool = False) -> None:
    for number in sorted(sprints):
        render_issues(console, service, f"Sprint {number}", sprints[number], with_issues)


def render_current(console: Console, service: ReportService, by_label: dict,
                   with_issues: bool = False) -> None:
    console.print("Incomplete:")
    for label, issues in by_label.items():
        render_issues(console, service, f"Incomplete in {label}", issues, with_issues)


def render_backlog(console: Console, service: ReportService, issues: list,
                   with_issues: bool = False) -> None:
    render_issues(console, service, "Backlog", issues, with_issues)


def render_issue_history(console: Console, history: IssueHistory) -> None:
    issue = history.issue
    console.print(escape(f"{_issue_ref(issue)} [{issue.state}] {issue.title}"))
    if issue.url:
        console.print(issue.url)

    table = Table(show_header=True, header_style="bold")
    table.add_column("when", no_wrap=True)
    table.add_column("event")
    table.add_column("label")
    for event in history.events:
        table.add_row(
            event.timestamp.isoformat() if event.timestamp else "-",
            event.name or event.kind,
            escape(event.label or ""),
        )
    console.print(table)

    lifecycle = history.lifecycle
    console.print(
        f"start {lifecycle.start} done {lifecycle.done} rejected {lifecycle.rejected}"
    )


def render_unassigned_pulls(console: Console, pulls: list) -> None:
    for pull in pulls:
        note = " (community)" if pull.community else ""
        console.print(escape(f"{pull.url} {pull.labels}{note}"))
    console.print(f"{len(pulls)} unassigned pull requests")


def _tally_table(title: str, first_column: str, rows: list) -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column(first_column)
    table.add_column("open", justify="right")
    table.add_column("in progress", justify="right")
    table.add_column("resolved", justify="right")
    for name, tally in rows:
        table.add_row(escape(name), str(tally.open), str(tally.in_progress), str(tally.resolved))
    return table


def render_sprint_report(console: Console, report: SprintReport) -> None:
    render_window(console, report.window)
    console.print(_tally_table("Issues by milestone", "milestone", report.milestones))
    console.print(f"Total resolved: {report.total_resolved}")
    console.print(_tally_table("Issues by assignee", "assignee", report.assignees))
