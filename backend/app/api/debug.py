"""Debug API endpoints for troubleshooting sprint classification."""

from flask import Blueprint, current_app, request, jsonify

from services.github_client import GitHubClient
from services.reports import ReportService

bp = Blueprint("debug", __name__, url_prefix="/api/debug")


def get_github_token():
    """Extract the GitHub token from request headers."""
    return request.headers.get("X-GitHub-Token")


@bp.route("/issue/<owner>/<repo>/<int:number>", methods=["GET"])
def get_issue_history(owner, repo, number):
    """Get one issue's event history and the lifecycle derived from it.

    Noise events (renames, subscriptions, assignments, mentions) are left
    out of the history.
    """
    token = get_github_token()

    if not token:
        return jsonify({"error": "Missing GitHub token in headers"}), 401

    config = current_app.config["TOOLS_CONFIG"]
    service = ReportService(GitHubClient(token, max_workers=config.max_workers), config)
    history = service.issue_history(f"{owner}/{repo}", number)

    current_app.logger.debug(f"{history.issue.id}: {history.lifecycle}")

    return jsonify({"data": history.to_dict()})
