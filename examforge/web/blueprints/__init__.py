"""Flask blueprints for the ExamForge preview player."""

from examforge.web.blueprints.player import player_bp


def register_blueprints(app):
    """Register all blueprint modules on the Flask app."""
    app.register_blueprint(player_bp)
