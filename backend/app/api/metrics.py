"""Sprint report API endpoints."""

from flask import Blueprint, current_app, request, jsonify

from services.github_client import GitHubClient
from services.reports import ReportService

bp = Blueprint("metrics", __name__, url_prefix="/api/metrics")


def get_github_token():
    """Extract the GitHub token from request headers."""
    return request.headers.get("X-GitHub-Token")


def get_sprint_arg(name):
    """Get an optional integer sprint number from query params.

    Returns:
        int or None
    """
    value = request.args.get(name)
    if value:
        try:
            return int(value)
        except ValueError:
            return None
    return None


def report_service(token):
    config = current_app.config["TOOLS_CONFIG"]
    client = GitHubClient(token, max_workers=config.max_workers)
    return ReportService(client, config)


def issue_list(issues):
    return [issue.to_dict() for issue in issues]


@bp.route("/<project>/velocity", methods=["GET"])
def get_velocity(project):
    """Get the velocity breakdown for a project.

    Query params:
        - current: Optional sprint number treated as the current sprint

    Returns:
        - Per-sprint incomplete/complete/rejected counts and issue numbers,
          also split by issue type (issue, bug, PR)
        - Issues that never started
    """
    token = get_github_token()

    if not token:
        return jsonify({"error": "Missing GitHub token in headers"}), 401

    config = current_app.config["TOOLS_CONFIG"]
    repos = list(config.project_repositories(project))

    service = report_service(token)
    report = service.velocity(repos, current_sprint=get_sprint_arg("current"))
    return jsonify({"data": report.to_dict()})


@bp.route("/<project>/closed", methods=["GET"])
def get_closed(project):
    """Get closed issues grouped by the sprint they closed in.

    Query params:
        - from: First sprint to include (default: current)
        - milestone: Optional milestone title filter
    """
    token = get_github_token()

    if not token:
        return jsonify({"error": "Missing GitHub token in headers"}), 401

    config = current_app.config["TOOLS_CONFIG"]
    repos = list(config.project_repositories(project))

    service = report_service(token)
    sprints = service.closed(repos, get_sprint_arg("from"), request.args.get("milestone"))

    return jsonify({
        "data": {
            "sprints": [
                {
                    "sprint": number,
                    "issues": issue_list(sprints[number]),
                    "totalSize": sum(service.size_of(i) or 0 for i in sprints[number]),
                    "totalIssues": len(sprints[number])
                }
                for number in sorted(sprints)
            ]
        }
    })


@bp.route("/<project>/current", methods=["GET"])
def get_current(project):
    """Get open issues in the current sprint, grouped by sprint-state label.

    Query params:
        - milestone: Optional milestone title filter
    """
    token = get_github_token()

    if not token:
        return jsonify({"error": "Missing GitHub token in headers"}), 401

    config = current_app.config["TOOLS_CONFIG"]
    repos = list(config.project_repositories(project))

    service = report_service(token)
    by_label = service.current(repos, request.args.get("milestone"))

    return jsonify({
        "data": {
            "currentSprint": service.current_sprint(),
            "labels": [
                {"label": label, "issues": issue_list(issues)}
                for label, issues in by_label.items()
            ]
        }
    })


@bp.route("/<project>/backlog", methods=["GET"])
def get_backlog(project):
    """Get open milestone issues not yet committed to the current sprint.

    Query params:
        - milestone: Milestone title (required; the full backlog is too large)
    """
    token = get_github_token()

    if not token:
        return jsonify({"error": "Missing GitHub token in headers"}), 401

    milestone = request.args.get("milestone")
    if not milestone:
        return jsonify({"error": "Missing milestone query parameter"}), 400

    config = current_app.config["TOOLS_CONFIG"]
    repos = list(config.project_repositories(project))

    service = report_service(token)
    issues = service.backlog(repos, milestone)
    return jsonify({"data": {"milestone": milestone, "issues": issue_list(issues)}})


@bp.route("/<project>/sprint-report", methods=["GET"])
def get_sprint_report(project):
    """Get open, in-progress and resolved counts per milestone and assignee.

    Query params:
        - sprint: Sprint number (default: current)
    """
    token = get_github_token()

    if not token:
        return jsonify({"error": "Missing GitHub token in headers"}), 401

    config = current_app.config["TOOLS_CONFIG"]
    repos = list(config.project_repositories(project))

    service = report_service(token)
    report = service.sprint_report(repos, get_sprint_arg("sprint"))
    return jsonify({"data": report.to_dict()})
