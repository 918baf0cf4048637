"""Keep labels and milestones consistent across repositories.

Sync config (JSON):

    {
      "repos": ["strongloop/strong-pm", ...],
      "labels": {"#wip": "ededed", "obsolete": null},
      "milestones": {"#Sprint 70": "2015-06-09", "#Sprint 60": false, "typo": null}
    }

A label with a colour is created or updated, a null colour deletes it. A
milestone with a date is created or has its due date updated, `false`
closes it, and `null` deletes it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from services.config import validate_repository
from services.errors import ConfigurationError, SprintToolsError
from services.github_client import GitHubClient

logger = logging.getLogger(__name__)

# Milestones are due at midnight Pacific time
DUE_TIME = "T07:00:00Z"


@dataclass(frozen=True)
class SyncAction:
    repository: str
    action: str
    kind: str
    name: str

    def __str__(self):
        return f"{self.repository}: {self.action} {self.kind} {self.name}"


@dataclass(frozen=True)
class SyncFailure:
    repository: str
    error: str


def _label_actions(repository: str, existing: list, definitions: dict) -> list:
    names = {label["name"] for label in existing}
    actions = []
    for name, color in definitions.items():
        if not color:
            if name in names:
                actions.append((SyncAction(repository, "delete", "label", name), color))
        elif name in names:
            actions.append((SyncAction(repository, "update", "label", name), color))
        else:
            actions.append((SyncAction(repository, "create", "label", name), color))
    return actions


def sync_labels(client: GitHubClient, repository: str, definitions: dict,
                dry_run: bool = False) -> list:
    performed = []
    existing = client.list_labels(repository)
    for action, color in _label_actions(repository, existing, definitions):
        logger.info(f"{action.action} label {action.name} {color or ''}".rstrip())
        if not dry_run:
            if action.action == "delete":
                client.delete_label(repository, action.name)
            elif action.action == "update":
                client.update_label(repository, action.name, color)
            else:
                client.create_label(repository, action.name, color)
        performed.append(action)
    return performed


def sync_milestones(client: GitHubClient, repository: str, definitions: dict,
                    dry_run: bool = False) -> list:
    performed = []
    existing = {m["title"]: m for m in client.list_milestones(repository)}

    for title, definition in definitions.items():
        milestone = existing.get(title)

        if definition is False:
            if not milestone or milestone.get("state") != "open":
                logger.debug(f"skip closed or missing milestone {title}")
                continue
            action = SyncAction(repository, "close", "milestone", title)
            if not dry_run:
                client.update_milestone(repository, milestone["number"], state="closed")
        elif definition is None:
            if not milestone:
                continue
            action = SyncAction(repository, "delete", "milestone", title)
            if not dry_run:
                client.delete_milestone(repository, milestone["number"])
        else:
            due_on = f"{definition}{DUE_TIME}"
            if milestone:
                if (milestone.get("due_on") or "").startswith(definition):
                    logger.debug(f"skip up-to-date milestone {title}")
                    continue
                action = SyncAction(repository, "update", "milestone", title)
                if not dry_run:
                    client.update_milestone(repository, milestone["number"], due_on=due_on)
            else:
                action = SyncAction(repository, "create", "milestone", title)
                if not dry_run:
                    client.create_milestone(repository, title, due_on)

        logger.info(str(action))
        performed.append(action)

    return performed


def sync_repository(client: GitHubClient, repository: str, labels: Optional[dict] = None,
                    milestones: Optional[dict] = None, dry_run: bool = False) -> list:
    """Sync one repository's labels, then its milestones."""
    logger.info(f"Syncing {repository}")
    actions = sync_labels(client, repository, labels or {}, dry_run)
    actions.extend(sync_milestones(client, repository, milestones or {}, dry_run))
    return actions


def sync_repositories(client: GitHubClient, config: dict, dry_run: bool = False) -> tuple:
    """Sync every repository in a sync config.

    A failing repository is recorded and the rest still run.

    Returns:
        (actions, failures)
    """
    repos = config.get("repos")
    if not repos:
        raise ConfigurationError("Sync config must list repos")

    actions = []
    failures = []
    for repo in repos:
        try:
            repository = validate_repository(repo)
            actions.extend(sync_repository(
                client, repository,
                config.get("labels"), config.get("milestones"), dry_run
            ))
        except SprintToolsError as e:
            logger.error(f"Sync failed for {repo}: {e}")
            failures.append(SyncFailure(str(repo), str(e)))

    return actions, failures
