"""Project listing API endpoints."""

from flask import Blueprint, current_app, jsonify

bp = Blueprint("projects", __name__, url_prefix="/api/projects")


@bp.route("", methods=["GET"])
def list_projects():
    """List the configured projects and their repositories."""
    config = current_app.config["TOOLS_CONFIG"]

    formatted_projects = [
        {
            "name": name,
            "repos": list(repos),
            "repoCount": len(repos)
        }
        for name, repos in sorted(config.projects.items())
    ]

    return jsonify({"data": formatted_projects})


@bp.route("/<name>", methods=["GET"])
def get_project(name):
    """Get one project's repositories."""
    config = current_app.config["TOOLS_CONFIG"]

    if name not in config.projects:
        return jsonify({"error": "Project not found"}), 404

    return jsonify({"data": {"name": name, "repos": list(config.projects[name])}})
