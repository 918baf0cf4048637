"""Sprint calendar API endpoints."""

from flask import Blueprint, current_app, jsonify, request

bp = Blueprint("sprints", __name__, url_prefix="/api/sprints")


def get_calendar():
    return current_app.config["TOOLS_CONFIG"].sprint_calendar()


@bp.route("/current", methods=["GET"])
def get_current_sprint():
    """Get the window of the sprint containing now (or ?at=<timestamp>)."""
    calendar = get_calendar()
    at = request.args.get("at")

    try:
        number = calendar.current_sprint(at)
    except ValueError:
        return jsonify({"error": f"Invalid timestamp: {at}"}), 400

    return jsonify({"data": calendar.window_of(number).to_dict()})


@bp.route("/<int(signed=True):number>", methods=["GET"])
def get_sprint(number):
    """Get the window of a sprint. Negative and zero numbers are valid."""
    calendar = get_calendar()
    window = calendar.window_of(number)

    return jsonify({
        "data": dict(window.to_dict(), current=calendar.current_sprint() == number)
    })
