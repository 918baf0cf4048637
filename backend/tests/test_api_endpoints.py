"""Tests for API endpoints."""

import pytest
from unittest.mock import patch, Mock
from datetime import datetime
import json

from services.errors import MalformedEventError, SourceFetchError
from services.models import EVENT_LABELED, LifecycleEvent

TOKEN_HEADERS = {"X-GitHub-Token": "test-token"}


@pytest.fixture
def github():
    """Patch the GitHub client used by the report endpoints."""
    with patch("app.api.metrics.GitHubClient") as metrics_client, \
            patch("app.api.debug.GitHubClient") as debug_client:
        debug_client.return_value = metrics_client.return_value
        yield metrics_client.return_value


class TestHealth:
    """Test health check endpoint."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert json.loads(response.data) == {"status": "ok"}


class TestAuthValidate:
    """Test token validation endpoint."""

    def test_validate_missing_body(self, client):
        """Should return 400 for missing request body."""
        response = client.post("/api/auth/validate",
                               content_type="application/json")
        assert response.status_code == 400

    def test_validate_missing_token(self, client):
        """Should return 400 when no token is given."""
        response = client.post("/api/auth/validate", json={"user": "rmg"})
        assert response.status_code == 400
        data = json.loads(response.data)
        assert "error" in data

    @patch("app.api.auth.GitHubClient")
    def test_validate_invalid_token(self, mock_client, client):
        """Should return 401 for a rejected token."""
        mock_client.return_value.get_authenticated_user.side_effect = SourceFetchError(
            "GitHub API error: 401 Bad credentials", "user", 401
        )

        response = client.post("/api/auth/validate", json={"token": "invalid-token"})

        assert response.status_code == 401

    @patch("app.api.auth.GitHubClient")
    def test_validate_success(self, mock_client, client):
        """Should return user info on a valid token."""
        github = mock_client.return_value
        github.get_authenticated_user.return_value = {
            "login": "rmg",
            "name": "Ryan Graham",
            "avatar_url": "https://example.com/avatar.png"
        }
        github.rate_limit.snapshot.return_value = (4999, 1421136000.0)

        response = client.post("/api/auth/validate", json={"token": "valid-token"})

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["data"]["valid"] is True
        assert data["data"]["user"]["login"] == "rmg"
        assert data["data"]["rateLimitRemaining"] == 4999
        mock_client.assert_called_once_with("valid-token", max_retries=1)

    @patch("app.api.auth.GitHubClient")
    def test_validate_github_unreachable(self, mock_client, client):
        """Should return 502 when GitHub fails after retries."""
        mock_client.return_value.get_authenticated_user.side_effect = SourceFetchError(
            "giving up after 2 attempts: timed out", "user"
        )

        response = client.post("/api/auth/validate", json={"token": "valid-token"})

        assert response.status_code == 502
        assert "giving up" in json.loads(response.data)["error"]

    def test_validate_uses_client_retry_policy(self, client):
        """Token validation goes through the shared client, not a bare request."""
        with patch("services.github_client.requests.Session") as session_cls:
            session = session_cls.return_value
            session.headers = {}
            session.request.return_value = Mock(
                status_code=200, ok=True, links={},
                headers={"X-RateLimit-Remaining": "4999"},
                json=Mock(return_value={"login": "rmg"})
            )

            response = client.post("/api/auth/validate", json={"token": "valid-token"})

        assert response.status_code == 200
        assert session.headers["Authorization"] == "token valid-token"
        assert json.loads(response.data)["data"]["rateLimitRemaining"] == 4999


class TestProjects:
    """Test project listing endpoints."""

    def test_list_projects(self, client):
        response = client.get("/api/projects")
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["data"] == [{
            "name": "nodeops",
            "repos": ["strongloop/strong-pm", "strongloop/strong-supervisor"],
            "repoCount": 2
        }]

    def test_get_project(self, client):
        response = client.get("/api/projects/nodeops")
        assert response.status_code == 200
        assert json.loads(response.data)["data"]["name"] == "nodeops"

    def test_unknown_project(self, client):
        response = client.get("/api/projects/loopback")
        assert response.status_code == 404


class TestSprints:
    """Test sprint calendar endpoints."""

    def test_get_sprint(self, client):
        response = client.get("/api/sprints/63")
        assert response.status_code == 200
        data = json.loads(response.data)["data"]
        assert data["number"] == 63
        assert data["start"] == "2015-01-27T00:00:00-08:00"
        assert data["stop"] == "2015-02-10T00:00:00-08:00"
        assert data["current"] is False

    def test_negative_sprint(self, client):
        response = client.get("/api/sprints/-1")
        assert response.status_code == 200
        assert json.loads(response.data)["data"]["number"] == -1

    def test_current_sprint_at(self, client):
        response = client.get("/api/sprints/current?at=2015-01-26T23:59:59")
        assert response.status_code == 200
        assert json.loads(response.data)["data"]["number"] == 62

    def test_current_sprint_invalid_at(self, client):
        response = client.get("/api/sprints/current?at=soon")
        assert response.status_code == 400


class TestMetrics:
    """Test report endpoints."""

    def test_velocity_missing_token(self, client):
        response = client.get("/api/metrics/nodeops/velocity")
        assert response.status_code == 401

    def test_velocity(self, client, github, make_issue):
        github.fetch_issues.return_value = [
            make_issue(7, events=[LifecycleEvent(EVENT_LABELED, datetime(2015, 1, 15), label="#wip")],
                       labels=["#wip"]),
        ]

        response = client.get("/api/metrics/nodeops/velocity?current=63", headers=TOKEN_HEADERS)

        assert response.status_code == 200
        data = json.loads(response.data)["data"]
        assert data["currentSprint"] == 63
        assert data["sprints"]["62"]["incomplete"]["count"] == 1
        assert data["sprints"]["63"]["incomplete:issue"]["count"] == 1
        github.fetch_issues.assert_called_once_with(
            ["strongloop/strong-pm", "strongloop/strong-supervisor"], with_events=True
        )

    def test_velocity_unknown_project(self, client, github):
        response = client.get("/api/metrics/loopback/velocity", headers=TOKEN_HEADERS)
        assert response.status_code == 400
        github.fetch_issues.assert_not_called()

    def test_velocity_fetch_failure(self, client, github):
        github.fetch_issues.side_effect = SourceFetchError(
            "giving up after 4 attempts", "strongloop/strong-pm", 503
        )

        response = client.get("/api/metrics/nodeops/velocity", headers=TOKEN_HEADERS)

        assert response.status_code == 502
        data = json.loads(response.data)
        assert data["target"] == "strongloop/strong-pm"
        assert data["status"] == 503

    def test_velocity_malformed_events(self, client, github):
        github.fetch_issues.side_effect = MalformedEventError(
            "labeled event has no timestamp", "strongloop/strong-pm#7"
        )

        response = client.get("/api/metrics/nodeops/velocity", headers=TOKEN_HEADERS)

        assert response.status_code == 422
        assert json.loads(response.data)["issue"] == "strongloop/strong-pm#7"

    def test_closed(self, client, github, make_issue):
        github.fetch_issues.return_value = [
            make_issue(3, state="closed", closed_at=datetime(2015, 1, 20), labels=["#fib-5"]),
            make_issue(4, state="closed", closed_at=datetime(2015, 1, 28), labels=["#fib-2"]),
        ]

        response = client.get("/api/metrics/nodeops/closed?from=62", headers=TOKEN_HEADERS)

        assert response.status_code == 200
        sprints = json.loads(response.data)["data"]["sprints"]
        assert [s["sprint"] for s in sprints] == [62, 63]
        assert sprints[0]["totalSize"] == 5
        assert sprints[0]["totalIssues"] == 1

    def test_current(self, client, github):
        github.fetch_issues.return_value = []

        response = client.get("/api/metrics/nodeops/current", headers=TOKEN_HEADERS)

        assert response.status_code == 200
        labels = [entry["label"] for entry in json.loads(response.data)["data"]["labels"]]
        assert labels[:3] == ["#verify", "#review", "#wip"]
        assert labels[3].startswith("#sprint")

    def test_backlog_requires_milestone(self, client, github):
        response = client.get("/api/metrics/nodeops/backlog", headers=TOKEN_HEADERS)
        assert response.status_code == 400

    def test_backlog(self, client, github, make_issue):
        github.fetch_issues.return_value = [make_issue(9, milestone="#Rel 5.0")]

        response = client.get("/api/metrics/nodeops/backlog?milestone=%23Rel%205.0", headers=TOKEN_HEADERS)

        assert response.status_code == 200
        data = json.loads(response.data)["data"]
        assert data["milestone"] == "#Rel 5.0"
        assert [i["number"] for i in data["issues"]] == [9]

    def test_sprint_report(self, client, github, make_issue):
        github.fetch_issues.return_value = [
            make_issue(3, state="closed", closed_at=datetime(2015, 1, 29), milestone="#Rel 5.0",
                       assignee="rmg"),
        ]

        response = client.get("/api/metrics/nodeops/sprint-report?sprint=63", headers=TOKEN_HEADERS)

        assert response.status_code == 200
        data = json.loads(response.data)["data"]
        assert data["sprint"]["start"] == "2015-01-27T00:00:00-08:00"
        assert data["milestones"][0] == {"name": "#Rel 5.0", "open": 0, "inProgress": 0, "resolved": 1}
        assert data["assignees"] == [{"login": "rmg", "open": 0, "inProgress": 0, "resolved": 1}]
        assert data["totalResolved"] == 1

    def test_sprint_report_unknown_project(self, client, github):
        response = client.get("/api/metrics/loopback/sprint-report", headers=TOKEN_HEADERS)
        assert response.status_code == 400


class TestDebug:
    """Test debug endpoints."""

    def test_issue_history(self, client, github, make_issue):
        github.fetch_issues.return_value = [
            make_issue(98, labels=["#wip"], events=[
                LifecycleEvent(EVENT_LABELED, datetime(2015, 1, 15), label="#wip", name="labeled"),
            ]),
        ]

        response = client.get("/api/debug/issue/strongloop/strong-pm/98", headers=TOKEN_HEADERS)

        assert response.status_code == 200
        data = json.loads(response.data)["data"]
        assert data["issue"]["id"] == "strongloop/strong-pm#98"
        assert data["lifecycle"] == {"start": 62, "done": None, "rejected": None}
        assert data["events"][0]["label"] == "#wip"

    def test_issue_history_missing_token(self, client):
        response = client.get("/api/debug/issue/strongloop/strong-pm/98")
        assert response.status_code == 401
