"""Configuration loading for reports.

The config file is JSON:

    {
      "calendar": {"anchorDate": "2015-01-13", "anchorSprintNumber": 62,
                   "timeZone": "America/Vancouver", "periodWeeks": 2},
      "labels": {"sprintLabelPrefix": "#sprint", "bugLabelName": "bug",
                 "stateLabelNames": {"inProgress": "#wip", ...}},
      "projects": {"nodeops": ["strongloop/strong-pm", ...]},
      "maxWorkers": 10
    }

Every section is optional.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from services.errors import ConfigurationError
from services.lifecycle import LabelVocabulary
from services.sprint import CalendarConfig, SprintCalendar

logger = logging.getLogger(__name__)

CONFIG_ENV = "SPRINT_TOOLS_CONFIG"
DEFAULT_CONFIG_PATH = os.path.join(
    os.path.dirname(os.path.dirname(__file__)), "config", "projects-config.json"
)
AUTH_FILE = ".auth.json"
DEFAULT_MAX_WORKERS = 10

REPOSITORY_PATTERN = re.compile(r"^[\w.-]+/[\w.-]+(/\d+)?$")


@dataclass(frozen=True)
class ToolsConfig:
    """Everything a report invocation needs besides the issue source."""

    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    labels: LabelVocabulary = field(default_factory=LabelVocabulary)
    projects: dict = field(default_factory=dict)
    max_workers: int = DEFAULT_MAX_WORKERS

    @classmethod
    def from_dict(cls, data: dict) -> "ToolsConfig":
        if not isinstance(data, dict):
            raise ConfigurationError("Config must be a JSON object")

        projects = {}
        for name, repos in (data.get("projects") or {}).items():
            if isinstance(repos, dict):
                repos = repos.get("repos", [])
            if not isinstance(repos, list) or not repos:
                raise ConfigurationError(f"Project {name} must list at least one repository")
            projects[name] = tuple(validate_repository(r) for r in repos)

        max_workers = data.get("maxWorkers", DEFAULT_MAX_WORKERS)
        if isinstance(max_workers, bool) or not isinstance(max_workers, int) or max_workers < 1:
            raise ConfigurationError(f"maxWorkers must be a positive integer, got {max_workers!r}")

        return cls(
            calendar=CalendarConfig.from_dict(data.get("calendar")),
            labels=LabelVocabulary.from_dict(data.get("labels")),
            projects=projects,
            max_workers=max_workers,
        )

    def sprint_calendar(self) -> SprintCalendar:
        return SprintCalendar(self.calendar)

    def project_repositories(self, name: str) -> tuple:
        if name not in self.projects:
            raise ConfigurationError(f"Unknown project: {name}")
        return self.projects[name]

    def resolve_repositories(self, targets: Iterable[str]) -> list:
        """Expand targets into repository specs.

        A target is a configured project name, a JSON file with a `repos`
        list, or an `owner/repo[/number]` spec.
        """
        repos = []
        for target in targets:
            if target in self.projects:
                repos.extend(self.projects[target])
            elif target.endswith(".json") and os.path.exists(target):
                data = _read_json(target)
                listed = data.get("repos") if isinstance(data, dict) else None
                if not isinstance(listed, list):
                    raise ConfigurationError(f"{target} must be an object with a `repos` list")
                repos.extend(validate_repository(r) for r in listed)
            else:
                repos.append(validate_repository(target))

        if not repos:
            raise ConfigurationError("No repositories to report on")
        # Keep first-seen order, drop duplicates
        return list(dict.fromkeys(repos))


def validate_repository(spec) -> str:
    if not isinstance(spec, str) or not REPOSITORY_PATTERN.match(spec):
        raise ConfigurationError(
            f"Invalid repo `{spec}`: does not match `owner/name` format"
        )
    return spec


def _read_json(path: str) -> dict:
    try:
        with open(path, "r") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Failed to parse {path}: {e}")
    except IOError as e:
        raise ConfigurationError(f"Failed to read {path}: {e}")


def load_config(path: Optional[str] = None) -> ToolsConfig:
    """Load configuration from `path`, $SPRINT_TOOLS_CONFIG or the default file.

    A missing default file means defaults; a missing explicit file is an error.
    """
    explicit = path or os.environ.get(CONFIG_ENV)
    config_path = explicit or DEFAULT_CONFIG_PATH

    if not os.path.exists(config_path):
        if explicit:
            raise ConfigurationError(f"Config file not found: {config_path}")
        logger.info("No projects-config.json found, using default calendar and labels")
        return ToolsConfig()

    config = ToolsConfig.from_dict(_read_json(config_path))
    logger.info(f"Loaded {len(config.projects)} projects from {config_path}")
    return config


def load_token(auth_file: str = AUTH_FILE) -> Optional[str]:
    """GitHub token from $GITHUB_TOKEN, else from `.auth.json` in the cwd."""
    token = os.environ.get("GITHUB_TOKEN")
    if token:
        return token

    if os.path.exists(auth_file):
        try:
            with open(auth_file, "r") as f:
                return json.load(f).get("token")
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to read {auth_file}: {e}")

    return None
