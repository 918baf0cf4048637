"""Authentication API endpoints."""

from flask import Blueprint, request, jsonify

from services.errors import SourceFetchError
from services.github_client import GitHubClient

bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@bp.route("/validate", methods=["POST"])
def validate_token():
    """Validate a GitHub token by fetching the authenticated user.

    Expects JSON body with:
        - token: GitHub personal access token

    Returns the user's login and remaining rate-limit quota on success.
    """
    data = request.get_json(silent=True)

    if not data:
        return jsonify({"error": "Missing request body"}), 400

    token = data.get("token")

    if not token:
        return jsonify({"error": "Missing required field: token"}), 400

    client = GitHubClient(token, max_retries=1)

    try:
        user_info = client.get_authenticated_user()
    except SourceFetchError as e:
        if e.status == 401:
            return jsonify({"error": "Invalid credentials"}), 401
        return jsonify({"error": str(e)}), 502

    remaining, _ = client.rate_limit.snapshot()

    return jsonify({
        "data": {
            "valid": True,
            "user": {
                "login": user_info.get("login"),
                "name": user_info.get("name"),
                "avatarUrl": user_info.get("avatar_url")
            },
            "rateLimitRemaining": remaining
        }
    })
