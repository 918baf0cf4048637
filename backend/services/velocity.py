"""Per-sprint velocity breakdown of classified issues."""

import bisect
from dataclasses import dataclass, field
from typing import Iterable, Optional

from services.lifecycle import IssueLifecycle
from services.models import Issue

CATEGORY_INCOMPLETE = "incomplete"
CATEGORY_COMPLETE = "complete"
CATEGORY_REJECTED = "rejected"


@dataclass(frozen=True)
class ClassifiedIssue:
    issue: Issue
    lifecycle: IssueLifecycle


@dataclass
class AggregateEntry:
    """Count and issue numbers (per repository) for one sprint/category."""

    count: int = 0
    issues: dict = field(default_factory=dict)

    def add(self, repository: str, number: int) -> None:
        self.count += 1
        numbers = self.issues.setdefault(repository, [])
        index = bisect.bisect_left(numbers, number)
        if index == len(numbers) or numbers[index] != number:
            numbers.insert(index, number)

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "issues": {repo: list(numbers) for repo, numbers in sorted(self.issues.items())},
        }


@dataclass
class VelocityReport:
    """Aggregated breakdown: sprint -> category -> AggregateEntry.

    `excluded` holds the issues that never started (including ones closed
    without being worked) for informational display.
    """

    current_sprint: int
    sprints: dict = field(default_factory=dict)
    excluded: list = field(default_factory=list)

    def entry(self, sprint: int, category: str) -> Optional[AggregateEntry]:
        return self.sprints.get(sprint, {}).get(category)

    def count(self, sprint: int, category: str) -> int:
        entry = self.entry(sprint, category)
        return entry.count if entry else 0

    def to_dict(self) -> dict:
        return {
            "currentSprint": self.current_sprint,
            "sprints": {
                str(sprint): {
                    category: entry.to_dict()
                    for category, entry in sorted(categories.items())
                }
                for sprint, categories in sorted(self.sprints.items())
            },
            "excluded": [
                dict(item.issue.to_dict(), lifecycle=item.lifecycle.to_dict())
                for item in self.excluded
            ],
        }


class VelocityAggregator:
    """Builds a VelocityReport from classified issues."""

    def __init__(self, bug_label: str = "bug"):
        self.bug_label = bug_label

    @staticmethod
    def contributions(lifecycle: IssueLifecycle, current_sprint: int) -> list:
        """(sprint, category) pairs an issue contributes, before type tagging."""
        if lifecycle.rejected is not None:
            return [(lifecycle.rejected, CATEGORY_REJECTED)]
        if lifecycle.start is None:
            return []
        if lifecycle.done is None:
            return [(s, CATEGORY_INCOMPLETE) for s in range(lifecycle.start, current_sprint + 1)]
        pairs = [(s, CATEGORY_INCOMPLETE) for s in range(lifecycle.start, lifecycle.done)]
        pairs.append((lifecycle.done, CATEGORY_COMPLETE))
        return pairs

    def aggregate(self, classified: Iterable[ClassifiedIssue], current_sprint: int) -> VelocityReport:
        report = VelocityReport(current_sprint=current_sprint)

        for item in classified:
            pairs = self.contributions(item.lifecycle, current_sprint)
            if not pairs and item.lifecycle.rejected is None:
                report.excluded.append(item)
                continue

            kind = item.issue.kind(self.bug_label)
            for sprint, category in pairs:
                categories = report.sprints.setdefault(sprint, {})
                for key in (category, f"{category}:{kind}"):
                    entry = categories.setdefault(key, AggregateEntry())
                    entry.add(item.issue.repository, item.issue.number)

        return report
