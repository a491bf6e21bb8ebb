"""
Quiz Progression Service: Flask Web Application

Scores quiz attempts and turns them, and daily logins, into XP, points,
levels, streaks and achievement unlocks.
"""

from __future__ import annotations

import os
from typing import Any

from flask import Flask, Response

import database
from auth import init_auth
from blueprints import register_blueprints


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)

    # Load config
    if test_config is not None:
        from config import TestingConfig
        app.config.from_object(TestingConfig)
        app.config.update(test_config)
    else:
        from config import config_by_name
        env = os.environ.get("FLASK_ENV", "development")
        cfg = config_by_name.get(env, config_by_name["development"])
        app.config.from_object(cfg)
        if hasattr(cfg, "validate"):
            cfg.validate()

    app.secret_key = app.config["SECRET_KEY"]

    # Cache backend (Redis or in-memory fallback)
    from cache_backend import init_cache
    init_cache(app)

    # Structured logging
    from logging_config import init_logging
    init_logging(app)

    # Register database teardown
    database.init_app(app)

    # Login manager and the login activity hook
    init_auth(app)

    # Register all application blueprints
    register_blueprints(app)

    # CLI
    from seed_achievements import seed_achievements_command
    app.cli.add_command(seed_achievements_command)

    @app.after_request
    def set_security_headers(response: Response) -> Response:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        return response

    @app.route("/healthz")
    def healthz():
        return {"status": "ok"}

    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    create_app().run(debug=True, port=port)
