"""Sprint-state inference from an issue's event history.

Events are scanned in the order GitHub returns them. The first "work started"
signal sets the start sprint and the first "done" signal sets the done sprint;
later signals of the same kind do not move them. Moving an issue back to
triage or planning clears the start. After the scan the issue's own closed
timestamp is offered as a done candidate, and a started issue that no longer
carries any committed-state label (and is not done) is reported as rejected
in the sprint it was started in.

Label text is configurable through LabelVocabulary; the defaults are the
hash-prefixed labels used on the scrum boards:

    #wip, #review, #verify   started
    #tbr                     done (to be released)
    #tob, #plan              back to backlog
    #sprint<N>               started in sprint N
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import Iterable, Optional

from services.errors import ConfigurationError, MalformedEventError
from services.models import EVENT_CLOSED, EVENT_LABELED, Issue, LifecycleEvent
from services.sprint import SprintCalendar

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LabelVocabulary:
    """Label names that drive the state machine."""

    in_progress: str = "#wip"
    in_review: str = "#review"
    ready_for_verification: str = "#verify"
    ready_to_ship: str = "#tbr"
    back_to_triage: str = "#tob"
    planning: str = "#plan"
    sprint_prefix: str = "#sprint"
    bug: str = "bug"
    community: str = "#community contribution"
    size_prefix: str = "#fib-"

    # config file key -> attribute
    KEYS = {
        "inProgress": "in_progress",
        "inReview": "in_review",
        "readyForVerification": "ready_for_verification",
        "readyToShip": "ready_to_ship",
        "backToTriage": "back_to_triage",
        "planning": "planning",
        "sprintLabelPrefix": "sprint_prefix",
        "bugLabelName": "bug",
        "communityLabelName": "community",
        "sizeLabelPrefix": "size_prefix",
    }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "LabelVocabulary":
        """Build from the `labels` section of the config file.

        Accepts the flat keys in KEYS plus a nested `stateLabelNames` object.
        """
        data = dict(data or {})
        data.update(data.pop("stateLabelNames", None) or {})
        values = {}
        for key, value in data.items():
            attr = cls.KEYS.get(key)
            if attr is None:
                raise ConfigurationError(f"Unknown label setting: {key}")
            if not isinstance(value, str) or not value:
                raise ConfigurationError(f"Label setting {key} must be a non-empty string")
            values[attr] = value
        return cls(**values)

    def sprint_number(self, label: Optional[str]) -> Optional[int]:
        """Sprint number encoded in a sprint label, or None.

        Matches `<prefix><N>` (e.g. `#sprint64`) and the short `sprint#<N>`
        form.
        """
        if not label:
            return None
        match = re.fullmatch(re.escape(self.sprint_prefix) + r"(\d+)", label)
        if not match:
            match = re.fullmatch(r"sprint#(\d+)", label)
        if not match:
            return None
        return int(match.group(1))

    def sprint_label(self, number: int) -> str:
        return f"{self.sprint_prefix}{number}"

    def is_sprint_label(self, label: str) -> bool:
        return self.sprint_number(label) is not None

    @property
    def started_labels(self) -> tuple:
        return (self.in_progress, self.in_review, self.ready_for_verification)

    @property
    def workflow_labels(self) -> tuple:
        """Labels describing sprint state rather than the issue itself."""
        return self.started_labels + (self.ready_to_ship, self.back_to_triage, self.planning)


@dataclass(frozen=True)
class IssueLifecycle:
    """Sprints in which an issue started, finished, or was rejected."""

    start: Optional[int] = None
    done: Optional[int] = None
    rejected: Optional[int] = None

    @property
    def started(self) -> bool:
        return self.start is not None

    @property
    def finished(self) -> bool:
        return self.done is not None

    @property
    def closed_without_work(self) -> bool:
        return self.done is not None and self.start is None and self.rejected is None

    def to_dict(self) -> dict:
        return {"start": self.start, "done": self.done, "rejected": self.rejected}


@dataclass(frozen=True)
class Progress:
    """Accumulator carried through the event scan."""

    start: Optional[int] = None
    done: Optional[int] = None

    def started(self, sprint: int) -> "Progress":
        if self.start is not None:
            return self
        return replace(self, start=sprint)

    def finished(self, sprint: int) -> "Progress":
        if self.done is not None:
            return self
        return replace(self, done=sprint)

    def reset(self) -> "Progress":
        return replace(self, start=None)


class EventClassifier:
    """Reduces an issue's events to an IssueLifecycle."""

    def __init__(self, calendar: Optional[SprintCalendar] = None,
                 labels: Optional[LabelVocabulary] = None):
        self.calendar = calendar or SprintCalendar()
        self.labels = labels or LabelVocabulary()

    @staticmethod
    def _require_timestamp(issue: Issue, event: LifecycleEvent) -> None:
        if event.timestamp is None:
            raise MalformedEventError(f"{event.kind} event has no timestamp", issue.id)

    def _sprint_of(self, issue: Issue, event: LifecycleEvent) -> int:
        self._require_timestamp(issue, event)
        return self.calendar.sprint_containing(event.timestamp)

    def step(self, progress: Progress, issue: Issue, event: LifecycleEvent) -> Progress:
        """Apply one event to the accumulator."""
        if event.kind == EVENT_CLOSED:
            return progress.finished(self._sprint_of(issue, event))

        if event.kind != EVENT_LABELED:
            return progress

        labels = self.labels
        label = event.label
        if label in labels.started_labels:
            return progress.started(self._sprint_of(issue, event))
        if label == labels.ready_to_ship:
            return progress.finished(self._sprint_of(issue, event))
        if label in (labels.back_to_triage, labels.planning):
            self._require_timestamp(issue, event)
            return progress.reset()

        # A sprint label may be applied before the sprint opens, so the label
        # value is used, not the time it was applied.
        sprint = labels.sprint_number(label)
        if sprint is not None:
            self._require_timestamp(issue, event)
            return progress.started(sprint)

        return progress

    def scan(self, issue: Issue, events: Iterable[LifecycleEvent]) -> Progress:
        progress = Progress()
        for event in events:
            progress = self.step(progress, issue, event)
        return progress

    def committed(self, issue: Issue, progress: Progress) -> bool:
        """Whether the issue still shows active sprint work at scan end."""
        if progress.done is not None:
            return True
        labels = self.labels
        for label in issue.labels:
            if label in labels.started_labels or label == labels.ready_to_ship:
                return True
            if labels.is_sprint_label(label):
                return True
        return False

    def classify(self, issue: Issue) -> IssueLifecycle:
        """Classify one issue.

        Raises:
            MalformedEventError: a labeled/closed event, or the issue's own
                closed timestamp, is missing or unparseable
        """
        progress = self.scan(issue, issue.events)

        if issue.closed_at is not None:
            progress = progress.finished(self.calendar.sprint_containing(issue.closed_at))
        elif issue.closed_at_raw:
            raise MalformedEventError(
                f"unparseable closed timestamp {issue.closed_at_raw!r}", issue.id
            )

        if progress.start is not None and not self.committed(issue, progress):
            lifecycle = IssueLifecycle(rejected=progress.start)
        else:
            lifecycle = IssueLifecycle(start=progress.start, done=progress.done)

        logger.debug(
            f"{issue.id} start {lifecycle.start} done {lifecycle.done} "
            f"rejected {lifecycle.rejected}"
        )
        return lifecycle
