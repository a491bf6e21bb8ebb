"""
Shared helpers used across blueprints.

Kept out of app.py to avoid circular imports between auth and the blueprints.
"""

from __future__ import annotations

from flask import current_app, g, jsonify
from flask_login import current_user

import database
from db_stores import (
    AchievementCatalogDB,
    ActivityLedgerDB,
    QuizAttemptLogDB,
    QuizStoreDB,
    StatsProviderDB,
    UserAggregateStoreDB,
)
from progression import ProgressionCoordinator


def current_user_id() -> int:
    """Return the current authenticated user's ID."""
    return int(current_user.get_id())


def get_coordinator() -> ProgressionCoordinator:
    """The request's coordinator, wired to the SQLite stores and app config."""
    if "coordinator" not in g:
        cfg = current_app.config
        g.coordinator = ProgressionCoordinator(
            quizzes=QuizStoreDB(default_pass_score=cfg.get("DEFAULT_PASS_SCORE", 70)),
            aggregates=UserAggregateStoreDB(),
            ledger=ActivityLedgerDB(),
            catalog=AchievementCatalogDB(cache_ttl=cfg.get("ACHIEVEMENT_CACHE_TTL", 300)),
            stats=StatsProviderDB(),
            history=QuizAttemptLogDB(),
            transaction=database.transaction,
            retry_attempts=cfg.get("STORE_RETRY_ATTEMPTS", 3),
        )
    return g.coordinator


def json_error(message: str, status: int):
    return jsonify({"error": message}), status
