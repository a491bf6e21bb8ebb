"""
Test fixtures for the progression service.

Provides app, client, auth_client and coordinator fixtures backed by a
file-based SQLite database, plus in-memory collaborators for tests that
exercise the engine without Flask.
"""

from __future__ import annotations

import copy
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime

import pytest
from flask_login import FlaskLoginClient

from models import (
    AchievementDefinition,
    AggregateDelta,
    AttemptRecord,
    Question,
    Quiz,
    Trigger,
    UserAggregate,
)


MEDIUM_QUIZ = Quiz(
    id="quiz-medium",
    title="Cell Biology",
    difficulty="medium",
    questions=[
        Question(id="m1", correct_option_id="a"),
        Question(id="m2", correct_option_id="b"),
    ],
)

HARD_QUIZ = Quiz(
    id="quiz-hard",
    title="Organic Chemistry",
    difficulty="hard",
    time_limit_minutes=10,
    questions=[
        Question(id="h1", correct_option_id="a"),
        Question(id="h2", correct_option_id="b"),
        Question(id="h3", correct_option_id="c"),
        Question(id="h4", correct_option_id="d"),
    ],
)


def perfect_answers(quiz: Quiz) -> list[dict]:
    return [{"questionId": q.id, "answerId": q.correct_option_id} for q in quiz.questions]


def wrong_answers(quiz: Quiz) -> list[dict]:
    return [{"questionId": q.id, "answerId": "zzz"} for q in quiz.questions]


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app

    db_file = str(tmp_path / "test.db")
    app = create_app({
        "TESTING": True,
        "DATABASE": db_file,
        "SECRET_KEY": "test-secret-key",
        "ACHIEVEMENT_CACHE_TTL": 0,
    })
    app.test_client_class = FlaskLoginClient

    with app.app_context():
        from database import get_db, init_db, run_migrations
        from db_stores import QuizStoreDB

        init_db()
        run_migrations()

        db = get_db()
        db.execute(
            "INSERT INTO users (id, name, email, created_at) VALUES (1, 'Test Student', 'test@example.com', ?)",
            (datetime.now().isoformat(),),
        )
        quizzes = QuizStoreDB()
        quizzes.add(MEDIUM_QUIZ)
        quizzes.add(HARD_QUIZ)

        yield app


@pytest.fixture
def add_achievements(app):
    """Insert achievement definitions into the catalog table."""
    from db_stores import AchievementCatalogDB

    def _add(*definitions: AchievementDefinition) -> None:
        catalog = AchievementCatalogDB(cache_ttl=0)
        for d in definitions:
            catalog.add(d)

    return _add


@pytest.fixture
def coordinator(app):
    from helpers import get_coordinator
    return get_coordinator()


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


@pytest.fixture
def auth_client(app):
    """Test client logged in as the test user through Flask-Login."""
    from auth import User

    return app.test_client(user=User.get(1))


@pytest.fixture
def fake_redis():
    fakeredis = pytest.importorskip("fakeredis")
    return fakeredis.FakeRedis()


# ── In-memory collaborators ────────────────────────────────────────────


class MemoryQuizzes:
    def __init__(self, *quizzes: Quiz):
        self.quizzes = {q.id: q for q in quizzes}

    def get_by_id(self, quiz_id):
        return self.quizzes.get(quiz_id)


class MemoryAggregates:
    def __init__(self, *aggregates: UserAggregate):
        self.aggregates = {a.user_id: a for a in aggregates}
        self.unlocked: dict[int, dict[str, str]] = {}
        self.fail_with: Exception | None = None

    def read(self, user_id):
        return self.aggregates.get(user_id)

    def apply_delta(self, user_id, delta: AggregateDelta, level=None):
        if self.fail_with is not None:
            raise self.fail_with
        updated = self.aggregates[user_id].with_delta(delta)
        if level is not None:
            updated = replace(updated, level=level)
        self.aggregates[user_id] = updated

    def write(self, user_id, aggregate):
        if self.fail_with is not None:
            raise self.fail_with
        kept = self.aggregates[user_id].unlocked_achievement_ids
        self.aggregates[user_id] = replace(
            aggregate, unlocked_achievement_ids=kept | aggregate.unlocked_achievement_ids,
        )

    def add_unlocked(self, user_id, achievement_id, unlocked_at):
        seen = self.unlocked.setdefault(user_id, {})
        if achievement_id in seen:
            return False
        seen[achievement_id] = unlocked_at.isoformat()
        current = self.aggregates[user_id]
        self.aggregates[user_id] = replace(
            current,
            unlocked_achievement_ids=current.unlocked_achievement_ids | {achievement_id},
        )
        return True

    def unlocked_at(self, user_id):
        return dict(self.unlocked.get(user_id, {}))

    def top_by_points(self, limit):
        ranked = sorted(self.aggregates.values(), key=lambda a: (-a.points, -a.level, -a.xp, a.user_id))
        return [
            {"user_id": a.user_id, "name": f"User {a.user_id}", "points": a.points, "level": a.level}
            for a in ranked[:limit]
        ]


class MemoryLedger:
    def __init__(self, days=None):
        self.days: set[tuple[int, object]] = set(days or ())

    def was_active_on(self, user_id, day):
        return (user_id, day) in self.days

    def record_activity(self, user_id, day, at):
        self.days.add((user_id, day))


class MemoryCatalog:
    def __init__(self, *definitions: AchievementDefinition):
        self.definitions = list(definitions)

    def list_all(self):
        return list(self.definitions)

    def list_by_trigger(self, trigger):
        value = Trigger(trigger).value
        return [d for d in self.definitions if d.trigger == value]


class MemoryStats:
    def __init__(self, topics=0, replies=0, best_answers=0, resources=None):
        self.topics = topics
        self.replies = replies
        self.best_answers = best_answers
        self.resources = resources or {}

    def forum_topic_count(self, user_id):
        return self.topics

    def forum_reply_count(self, user_id):
        return self.replies

    def best_answer_count(self, user_id):
        return self.best_answers

    def resource_access_count(self, user_id, access_type=None):
        if access_type:
            return self.resources.get(access_type, 0)
        return sum(self.resources.values())


class MemoryHistory:
    def __init__(self, *attempts: AttemptRecord):
        self.attempts = list(attempts)

    def list_attempts(self, user_id):
        return list(self.attempts)

    def record(self, user_id, result, answers):
        self.attempts.append(AttemptRecord(
            quiz_id=result.quiz_id,
            percentage_score=result.percentage_score,
            passed=result.passed,
            difficulty=result.difficulty,
            points_awarded=result.points_awarded,
        ))


class MemoryTransaction:
    """Snapshot the given in-memory stores and put them back if the unit raises."""

    def __init__(self, *stores):
        self.stores = stores

    @contextmanager
    def __call__(self):
        saved = [copy.deepcopy(vars(store)) for store in self.stores]
        try:
            yield
        except BaseException:
            for store, state in zip(self.stores, saved):
                vars(store).clear()
                vars(store).update(state)
            raise
