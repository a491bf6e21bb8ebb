"""
DB-backed store classes for the progression engine.

Each class implements one of the collaborator Protocols in models.py over
SQLite. Write methods do not commit on their own: callers group them inside
database.transaction() so an event's writes land together or not at all.
"""

from __future__ import annotations

import json
from datetime import date, datetime

from cache_backend import get_cache
from database import get_db
from models import (
    AchievementDefinition,
    AggregateDelta,
    AttemptRecord,
    Question,
    Quiz,
    QuizSubmissionResult,
    SubmittedAnswer,
    Trigger,
    UserAggregate,
)

CATALOG_CACHE_PREFIX = "achievements:"


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


# ── Quizzes ──────────────────────────────────────────────────────────


class QuizStoreDB:
    """Read-only quiz lookup plus the insert used by seeding and admin tooling."""

    def __init__(self, default_pass_score: float = 70):
        self.default_pass_score = default_pass_score

    def get_by_id(self, quiz_id: str) -> Quiz | None:
        db = get_db()
        row = db.execute("SELECT * FROM quizzes WHERE id = ?", (str(quiz_id),)).fetchone()
        if not row:
            return None
        questions = db.execute(
            "SELECT id, points, correct_option_id FROM quiz_questions "
            "WHERE quiz_id = ? ORDER BY position, rowid",
            (row["id"],),
        ).fetchall()
        return Quiz(
            id=row["id"],
            title=row["title"],
            difficulty=row["difficulty"],
            pass_score=row["pass_score"] if row["pass_score"] is not None else self.default_pass_score,
            time_limit_minutes=row["time_limit_minutes"],
            questions=[
                Question(id=q["id"], points=q["points"], correct_option_id=q["correct_option_id"])
                for q in questions
            ],
        )

    def add(self, quiz: Quiz) -> None:
        db = get_db()
        db.execute(
            "INSERT INTO quizzes (id, title, difficulty, pass_score, time_limit_minutes, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (quiz.id, quiz.title, quiz.difficulty, quiz.pass_score,
             quiz.time_limit_minutes, datetime.now().isoformat()),
        )
        for i, q in enumerate(quiz.questions):
            db.execute(
                "INSERT INTO quiz_questions (id, quiz_id, position, points, correct_option_id) "
                "VALUES (?, ?, ?, ?, ?)",
                (q.id, quiz.id, i, q.points, q.correct_option_id),
            )


# ── User aggregates ──────────────────────────────────────────────────


class UserAggregateStoreDB:
    """Per-user XP, points, level, quiz totals, streak and unlocked achievements."""

    def _ensure(self, user_id: int) -> None:
        get_db().execute("INSERT OR IGNORE INTO user_aggregates (user_id) VALUES (?)", (user_id,))

    def read(self, user_id: int) -> UserAggregate | None:
        """Current aggregate, a zeroed one for a user with no activity yet, or None for an unknown user."""
        db = get_db()
        row = db.execute(
            "SELECT u.id AS uid, a.* FROM users u "
            "LEFT JOIN user_aggregates a ON a.user_id = u.id WHERE u.id = ?",
            (user_id,),
        ).fetchone()
        if not row:
            return None
        unlocked = frozenset(
            r["achievement_id"] for r in db.execute(
                "SELECT achievement_id FROM user_achievements WHERE user_id = ?", (user_id,),
            ).fetchall()
        )
        if row["user_id"] is None:
            return UserAggregate(user_id=user_id, unlocked_achievement_ids=unlocked)
        return UserAggregate(
            user_id=user_id,
            xp=row["xp"],
            points=row["points"],
            quiz_points_earned=row["quiz_points_earned"],
            level=row["level"],
            quiz_completed_count=row["quiz_completed_count"],
            quiz_total_percentage_score_sum=row["quiz_total_percentage_score_sum"],
            streak=row["streak"],
            longest_streak=row["longest_streak"],
            last_active_at=_parse_timestamp(row["last_active_at"]),
            unlocked_achievement_ids=unlocked,
        )

    def apply_delta(self, user_id: int, delta: AggregateDelta, level: int | None = None) -> None:
        """Atomically increment counters; optionally set the derived level in the same statement."""
        self._ensure(user_id)
        get_db().execute(
            "UPDATE user_aggregates SET xp = xp + ?, points = points + ?, "
            "quiz_points_earned = quiz_points_earned + ?, "
            "quiz_completed_count = quiz_completed_count + ?, "
            "quiz_total_percentage_score_sum = quiz_total_percentage_score_sum + ?, "
            "level = COALESCE(?, level) WHERE user_id = ?",
            (delta.xp, delta.points, delta.quiz_points_earned, delta.quiz_completed_count,
             delta.quiz_percentage_score_sum, level, user_id),
        )

    def write(self, user_id: int, aggregate: UserAggregate) -> None:
        self._ensure(user_id)
        get_db().execute(
            "UPDATE user_aggregates SET xp=?, points=?, quiz_points_earned=?, level=?, "
            "quiz_completed_count=?, quiz_total_percentage_score_sum=?, streak=?, "
            "longest_streak=?, last_active_at=? WHERE user_id=?",
            (aggregate.xp, aggregate.points, aggregate.quiz_points_earned, aggregate.level,
             aggregate.quiz_completed_count, aggregate.quiz_total_percentage_score_sum,
             aggregate.streak, aggregate.longest_streak,
             aggregate.last_active_at.isoformat() if aggregate.last_active_at else None,
             user_id),
        )

    def add_unlocked(self, user_id: int, achievement_id: str, unlocked_at: datetime) -> bool:
        """Record an unlock; returns False when it was already recorded."""
        cur = get_db().execute(
            "INSERT OR IGNORE INTO user_achievements (user_id, achievement_id, unlocked_at) "
            "VALUES (?, ?, ?)",
            (user_id, achievement_id, unlocked_at.isoformat()),
        )
        return cur.rowcount > 0

    def unlocked_at(self, user_id: int) -> dict[str, str]:
        rows = get_db().execute(
            "SELECT achievement_id, unlocked_at FROM user_achievements WHERE user_id = ?",
            (user_id,),
        ).fetchall()
        return {r["achievement_id"]: r["unlocked_at"] for r in rows}

    def top_by_points(self, limit: int) -> list[dict]:
        """Users by points, then level, then XP; users with no activity count as zero."""
        rows = get_db().execute(
            "SELECT u.id AS user_id, u.name, COALESCE(a.points, 0) AS points, "
            "COALESCE(a.level, 1) AS level "
            "FROM users u LEFT JOIN user_aggregates a ON a.user_id = u.id "
            "ORDER BY points DESC, level DESC, COALESCE(a.xp, 0) DESC, u.id LIMIT ?",
            (limit,),
        ).fetchall()
        return [dict(r) for r in rows]


# ── Activity ledger ──────────────────────────────────────────────────


class ActivityLedgerDB:
    """One row per (user, UTC day) with the last activity timestamp of that day."""

    def was_active_on(self, user_id: int, day: date) -> bool:
        row = get_db().execute(
            "SELECT 1 FROM activity_log WHERE user_id = ? AND date = ?",
            (user_id, day.isoformat()),
        ).fetchone()
        return row is not None

    def record_activity(self, user_id: int, day: date, at: datetime) -> None:
        get_db().execute(
            "INSERT INTO activity_log (user_id, date, last_timestamp) VALUES (?, ?, ?) "
            "ON CONFLICT(user_id, date) DO UPDATE SET last_timestamp = excluded.last_timestamp",
            (user_id, day.isoformat(), at.isoformat()),
        )


# ── Achievement catalog ──────────────────────────────────────────────


def _row_to_achievement(r) -> AchievementDefinition:
    return AchievementDefinition(
        id=r["id"],
        trigger=r["trigger_type"],
        requirement=r["requirement"],
        condition=json.loads(r["condition"] or "{}"),
        reward_xp=r["reward_xp"],
        reward_points=r["reward_points"],
        title=r["title"],
        description=r["description"],
        icon=r["icon"],
        category=r["category"],
        rarity=r["rarity"],
        position=r["position"],
    )


def invalidate_catalog_cache() -> None:
    get_cache().delete_prefix(CATALOG_CACHE_PREFIX)


class AchievementCatalogDB:
    """Achievement definitions, cached process-wide for `cache_ttl` seconds."""

    def __init__(self, cache_ttl: int = 300):
        self.cache_ttl = cache_ttl

    def _cached(self, key: str, loader) -> list[AchievementDefinition]:
        cache = get_cache()
        if self.cache_ttl > 0:
            hit = cache.get(CATALOG_CACHE_PREFIX + key)
            if hit is not None:
                return [AchievementDefinition.from_dict(d) for d in hit]
        rows = loader()
        if self.cache_ttl > 0:
            cache.set(CATALOG_CACHE_PREFIX + key, [a.to_dict() for a in rows], ttl=self.cache_ttl)
        return rows

    def list_all(self) -> list[AchievementDefinition]:
        def load():
            rows = get_db().execute(
                "SELECT rowid AS position, * FROM achievements ORDER BY rowid"
            ).fetchall()
            return [_row_to_achievement(r) for r in rows]
        return self._cached("all", load)

    def list_by_trigger(self, trigger: Trigger) -> list[AchievementDefinition]:
        trigger_value = Trigger(trigger).value

        def load():
            rows = get_db().execute(
                "SELECT rowid AS position, * FROM achievements WHERE trigger_type = ? ORDER BY rowid",
                (trigger_value,),
            ).fetchall()
            return [_row_to_achievement(r) for r in rows]
        return self._cached(trigger_value, load)

    def add(self, achievement: AchievementDefinition) -> bool:
        """Insert a definition unless one with the same id exists."""
        cur = get_db().execute(
            "INSERT OR IGNORE INTO achievements (id, title, description, icon, category, rarity, "
            "trigger_type, requirement, condition, reward_xp, reward_points, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (achievement.id, achievement.title or achievement.id, achievement.description,
             achievement.icon, achievement.category or "milestone", achievement.rarity,
             Trigger(achievement.trigger).value, achievement.requirement,
             json.dumps(achievement.condition or {}), achievement.reward_xp,
             achievement.reward_points, datetime.now().isoformat()),
        )
        invalidate_catalog_cache()
        return cur.rowcount > 0


# ── External counters ────────────────────────────────────────────────


class StatsProviderDB:
    """Forum and resource counters for engagement achievements."""

    def _count(self, sql: str, params: tuple) -> int:
        row = get_db().execute(sql, params).fetchone()
        return row["cnt"] if row else 0

    def forum_topic_count(self, user_id: int) -> int:
        return self._count("SELECT COUNT(*) AS cnt FROM forum_topics WHERE author_id = ?", (user_id,))

    def forum_reply_count(self, user_id: int) -> int:
        return self._count("SELECT COUNT(*) AS cnt FROM forum_replies WHERE author_id = ?", (user_id,))

    def best_answer_count(self, user_id: int) -> int:
        return self._count(
            "SELECT COUNT(*) AS cnt FROM forum_replies WHERE author_id = ? AND is_best_answer = 1",
            (user_id,),
        )

    def resource_access_count(self, user_id: int, access_type: str | None = None) -> int:
        if access_type:
            return self._count(
                "SELECT COUNT(*) AS cnt FROM resource_access WHERE user_id = ? AND access_type = ?",
                (user_id, access_type),
            )
        return self._count("SELECT COUNT(*) AS cnt FROM resource_access WHERE user_id = ?", (user_id,))


# ── Attempt history ──────────────────────────────────────────────────


class QuizAttemptLogDB:
    """Submitted quiz attempts, oldest first."""

    def list_attempts(self, user_id: int) -> list[AttemptRecord]:
        rows = get_db().execute(
            "SELECT quiz_id, percentage_score, passed, difficulty, points_awarded, created_at "
            "FROM quiz_attempts WHERE user_id = ? ORDER BY id",
            (user_id,),
        ).fetchall()
        return [AttemptRecord(
            quiz_id=r["quiz_id"],
            percentage_score=r["percentage_score"],
            passed=bool(r["passed"]),
            difficulty=r["difficulty"],
            points_awarded=r["points_awarded"],
            created_at=r["created_at"],
        ) for r in rows]

    def record(self, user_id: int, result: QuizSubmissionResult,
               answers: list[SubmittedAnswer]) -> None:
        correct = set(result.correct_question_ids)
        stored_answers = [
            {"question_id": a.question_id, "answer_id": a.answer_id,
             "is_correct": a.question_id in correct}
            for a in answers
        ]
        get_db().execute(
            "INSERT INTO quiz_attempts (user_id, quiz_id, difficulty, answers, score, total_points, "
            "percentage_score, passed, time_taken, points_awarded, xp_awarded, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (user_id, result.quiz_id, result.difficulty, json.dumps(stored_answers),
             result.raw_score, result.total_possible_points, result.percentage_score,
             int(result.passed), result.time_taken_seconds, result.points_awarded,
             result.xp_awarded, datetime.now().isoformat()),
        )

