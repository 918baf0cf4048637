"""Flask application factory."""

from flask import Flask, jsonify
from flask_cors import CORS

from services.config import load_config
from services.errors import (
    ConfigurationError,
    MalformedEventError,
    SourceFetchError,
    SprintToolsError,
)


def register_error_handlers(app):
    """Map report errors onto JSON error responses."""

    @app.errorhandler(ConfigurationError)
    def configuration_error(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(SourceFetchError)
    def source_fetch_error(e):
        app.logger.warning(f"GitHub fetch failed: {e}")
        return jsonify({"error": str(e), "target": e.target, "status": e.status}), 502

    @app.errorhandler(MalformedEventError)
    def malformed_event_error(e):
        app.logger.warning(f"Malformed event history: {e}")
        return jsonify({"error": str(e), "issue": e.issue_id}), 422

    @app.errorhandler(SprintToolsError)
    def sprint_tools_error(e):
        return jsonify({"error": str(e)}), 500


def create_app(config_path=None):
    """Create and configure the Flask application.

    Args:
        config_path: Optional path to a projects-config.json; defaults to
            $SPRINT_TOOLS_CONFIG or backend/config/projects-config.json
    """
    app = Flask(__name__)

    # Enable CORS for frontend
    CORS(app, resources={
        r"/api/*": {
            "origins": ["http://localhost:5173", "http://127.0.0.1:5173"],
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["Content-Type", "X-GitHub-Token"]
        }
    })

    # Configuration is per app instance, never module state
    tools_config = load_config(config_path)
    app.config["TOOLS_CONFIG"] = tools_config
    app.logger.info(f"Loaded {len(tools_config.projects)} projects")

    # Register blueprints
    from app.api import auth, projects, sprints, metrics, debug
    app.register_blueprint(auth.bp)
    app.register_blueprint(projects.bp)
    app.register_blueprint(sprints.bp)
    app.register_blueprint(metrics.bp)
    app.register_blueprint(debug.bp)

    register_error_handlers(app)

    # Health check endpoint
    @app.route("/health")
    def health():
        return {"status": "ok"}

    return app
