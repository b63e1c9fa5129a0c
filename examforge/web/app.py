"""
Flask application factory for the ExamForge preview player.
"""

import os
import secrets

from flask import Flask
from flask_wtf.csrf import CSRFProtect

from examforge.config import configure_logging, load_config
from examforge.models import load_test_definition
from examforge.runtime import StandaloneChannel
from examforge.web.blueprints import register_blueprints

csrf = CSRFProtect()


def create_app(config=None, test=None):
    """
    Create and configure the Flask application.

    Args:
        config: Application config dict. If None, loads from config.yaml.
        test: TestDefinition to serve. If None, loads server.test_file
              from the config (EXAMFORGE_TEST_FILE overrides it).

    Returns:
        Configured Flask app instance
    """
    if config is None:
        config = load_config()
        configure_logging(config)

    if test is None:
        test_file = config.get("server", {}).get("test_file")
        if not test_file:
            raise ValueError("No test to serve: set server.test_file or EXAMFORGE_TEST_FILE")
        test = load_test_definition(test_file)

    app = Flask(__name__)
    app.config["APP_CONFIG"] = config
    app.config["TEST_DEFINITION"] = test

    # One learner per preview server: attempts share the runtime channel so
    # the attempt counter persists across restarts of the test.
    app.config["RUNTIME_CHANNEL"] = StandaloneChannel(
        log_writes=config.get("runtime", {}).get("log_writes", True)
    )
    app.config["ATTEMPTS"] = {}
    app.config["MAX_TRACKED_ATTEMPTS"] = int(config.get("server", {}).get("max_tracked_attempts", 100))

    # Session-only key when none is configured
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY") or secrets.token_hex(32)
    app.config["MAX_CONTENT_LENGTH"] = 1 * 1024 * 1024

    csrf.init_app(app)
    register_blueprints(app)
    return app
