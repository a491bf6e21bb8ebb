"""
User loading and the login hook for Flask-Login.

The host application owns its login routes. Whatever route calls
`login_user()`, the `user_logged_in` signal records that day's activity so
streaks and streak achievements stay current. A failure there is logged and
never blocks the login.
"""

from __future__ import annotations

import logging

from flask import jsonify
from flask_login import LoginManager, UserMixin, user_logged_in

from database import get_db

logger = logging.getLogger(__name__)

login_manager = LoginManager()


class User(UserMixin):
    """Wraps a DB user row for Flask-Login."""

    def __init__(self, id: int, name: str, email: str | None = None, role: str = "user"):
        self.id = id
        self.name = name
        self.email = email
        self.role = role

    @staticmethod
    def get(user_id: int):
        row = get_db().execute(
            "SELECT id, name, email, role FROM users WHERE id = ?", (user_id,),
        ).fetchone()
        if row:
            return User(row["id"], row["name"], row["email"], row["role"])
        return None


@login_manager.user_loader
def load_user(user_id):
    try:
        return User.get(int(user_id))
    except (TypeError, ValueError):
        return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Authentication required"}), 401


def record_login_activity(sender, user, **extra) -> None:
    """Streak update on login; best-effort."""
    from helpers import get_coordinator

    try:
        outcome = get_coordinator().on_user_activity(int(user.get_id()))
    except Exception:
        logger.warning("Login activity not recorded for user %s", user.get_id(), exc_info=True)
        return
    if outcome.newly_unlocked:
        logger.info(
            "Login by user %s unlocked %s",
            user.get_id(), ", ".join(a.id for a in outcome.newly_unlocked),
        )


def init_auth(app) -> None:
    login_manager.init_app(app)
    user_logged_in.connect(record_login_activity, app)
