"""Shared fixtures for sprint tools tests."""

import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from services.config import ToolsConfig
from services.lifecycle import LabelVocabulary
from services.models import Issue
from services.sprint import SprintCalendar


@pytest.fixture
def calendar():
    """Default calendar: sprint 62 opens 2015-01-13 in Vancouver."""
    return SprintCalendar()


@pytest.fixture
def labels():
    return LabelVocabulary()


@pytest.fixture
def tools_config_data():
    """Config file contents with one project."""
    return {
        "calendar": {
            "anchorDate": "2015-01-13",
            "anchorSprintNumber": 62,
            "timeZone": "America/Vancouver",
            "periodWeeks": 2
        },
        "projects": {
            "nodeops": ["strongloop/strong-pm", "strongloop/strong-supervisor"]
        },
        "maxWorkers": 4
    }


@pytest.fixture
def tools_config(tools_config_data):
    return ToolsConfig.from_dict(tools_config_data)


@pytest.fixture
def config_file(tmp_path, tools_config_data):
    path = tmp_path / "projects-config.json"
    path.write_text(json.dumps(tools_config_data))
    return str(path)


@pytest.fixture
def make_issue():
    """Factory for Issue records."""
    def _make(number=1, events=(), labels=(), state="open", closed_at=None,
              repository="strongloop/strong-pm", is_pull_request=False, title=None, **kwargs):
        return Issue(
            repository=repository,
            number=number,
            title=title or f"Issue {number}",
            state=state,
            labels=frozenset(labels),
            is_pull_request=is_pull_request,
            closed_at=closed_at,
            events=tuple(events),
            **kwargs
        )
    return _make


@pytest.fixture
def sample_issue_payload():
    """Raw GitHub issue as returned by /repos/{repo}/issues."""
    return {
        "url": "https://api.github.com/repos/strongloop/strong-pm/issues/98",
        "html_url": "https://github.com/strongloop/strong-pm/issues/98",
        "id": 12345,
        "number": 98,
        "title": "Support cluster restart",
        "user": {"login": "sam-github", "id": 1},
        "labels": [
            {"name": "#wip", "color": "ededed"},
            {"name": "#fib-3", "color": "ededed"}
        ],
        "state": "open",
        "assignee": {"login": "rmg"},
        "milestone": {"title": "#Rel strong-pm 5.0", "number": 4},
        "comments": 3,
        "created_at": "2015-01-20T18:00:00Z",
        "updated_at": "2015-02-02T18:00:00Z",
        "closed_at": None,
        "body": "..."
    }


@pytest.fixture
def sample_closed_payload():
    return {
        "html_url": "https://github.com/strongloop/strong-pm/issues/99",
        "number": 99,
        "title": "Fix log rotation",
        "user": {"login": "rmg"},
        "labels": [{"name": "bug", "color": "fc2929"}],
        "state": "closed",
        "assignee": None,
        "milestone": None,
        "closed_at": "2015-01-28T18:30:00Z"
    }


@pytest.fixture
def sample_pull_payload():
    return {
        "html_url": "https://github.com/strongloop/strong-pm/pull/101",
        "number": 101,
        "title": "Add restart command",
        "user": {"login": "contributor"},
        "labels": [],
        "state": "open",
        "assignee": None,
        "milestone": None,
        "closed_at": None,
        "pull_request": {"url": "https://api.github.com/repos/strongloop/strong-pm/pulls/101"}
    }


@pytest.fixture
def sample_events_payload():
    """Raw GitHub events for issue 98."""
    return [
        {"event": "subscribed", "created_at": "2015-01-20T18:00:00Z", "actor": {"login": "a"}},
        {"event": "labeled", "created_at": "2015-01-21T18:00:00Z",
         "label": {"name": "#sprint62", "color": "ededed"}},
        {"event": "assigned", "created_at": "2015-01-22T18:00:00Z"},
        {"event": "labeled", "created_at": "2015-01-28T18:00:00Z",
         "label": {"name": "#wip", "color": "ededed"}},
        {"event": "renamed", "created_at": "2015-01-29T18:00:00Z"}
    ]


@pytest.fixture
def app(config_file):
    """Create Flask test app."""
    from app import create_app
    app = create_app(config_file)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()
