"""
Blueprint registration for the progression service.

All blueprints are registered without URL prefixes; routes carry their own /api paths.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.progression import bp as progression_bp

    app.register_blueprint(progression_bp)
