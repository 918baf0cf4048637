"""Error kinds raised by the sprint tools."""

from typing import Optional


class SprintToolsError(Exception):
    """Base class for every error the report driver surfaces."""


class ConfigurationError(SprintToolsError):
    """Missing or invalid configuration (calendar anchor, labels, projects)."""


class SourceFetchError(SprintToolsError):
    """A GitHub request failed after its retry policy was exhausted.

    Args:
        message: Human readable description
        target: Repository, issue or endpoint that failed
        status: HTTP status code if a response was received
    """

    def __init__(self, message: str, target: Optional[str] = None,
                 status: Optional[int] = None):
        super().__init__(message)
        self.target = target
        self.status = status

    def __str__(self):
        message = super().__str__()
        if self.target:
            return f"{self.target}: {message}"
        return message


class MalformedEventError(SprintToolsError):
    """An issue's event history is missing a required timestamp."""

    def __init__(self, message: str, issue_id: str):
        super().__init__(message)
        self.issue_id = issue_id

    def __str__(self):
        return f"{self.issue_id}: {super().__str__()}"
