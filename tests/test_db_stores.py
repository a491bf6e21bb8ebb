"""Tests for db_stores.py: the SQLite collaborators."""

from datetime import date, datetime, timezone

from conftest import HARD_QUIZ, MEDIUM_QUIZ
from db_stores import (
    AchievementCatalogDB,
    ActivityLedgerDB,
    QuizAttemptLogDB,
    QuizStoreDB,
    StatsProviderDB,
    UserAggregateStoreDB,
)
from models import AchievementDefinition, AggregateDelta, SubmittedAnswer, Trigger, UserAggregate
from scoring import score


class TestQuizStoreDB:
    def test_get_by_id(self, app):
        with app.app_context():
            quiz = QuizStoreDB().get_by_id("quiz-hard")
            assert quiz.difficulty == "hard"
            assert quiz.time_limit_minutes == 10
            assert [q.id for q in quiz.questions] == ["h1", "h2", "h3", "h4"]
            assert quiz.questions[0].correct_option_id == "a"

    def test_missing(self, app):
        with app.app_context():
            assert QuizStoreDB().get_by_id("nope") is None

    def test_default_pass_score(self, app):
        with app.app_context():
            from database import get_db
            get_db().execute("INSERT INTO quizzes (id) VALUES ('bare')")
            assert QuizStoreDB(default_pass_score=60).get_by_id("bare").pass_score == 60


class TestUserAggregateStoreDB:
    def test_unknown_user(self, app):
        with app.app_context():
            assert UserAggregateStoreDB().read(999) is None

    def test_new_user_has_defaults(self, app):
        with app.app_context():
            assert UserAggregateStoreDB().read(1) == UserAggregate(user_id=1)

    def test_apply_delta_increments(self, app):
        with app.app_context():
            store = UserAggregateStoreDB()
            delta = AggregateDelta(xp=75, points=18, quiz_points_earned=18,
                                   quiz_completed_count=1, quiz_percentage_score_sum=100)
            store.apply_delta(1, delta)
            store.apply_delta(1, delta, level=2)
            agg = store.read(1)
            assert agg.xp == 150
            assert agg.points == 36
            assert agg.quiz_points_earned == 36
            assert agg.quiz_completed_count == 2
            assert agg.quiz_total_percentage_score_sum == 200
            assert agg.level == 2

    def test_write_roundtrip(self, app):
        with app.app_context():
            store = UserAggregateStoreDB()
            moment = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)
            store.write(1, UserAggregate(user_id=1, xp=10, streak=3, longest_streak=5,
                                         last_active_at=moment))
            agg = store.read(1)
            assert agg.streak == 3
            assert agg.longest_streak == 5
            assert agg.last_active_at == moment

    def test_add_unlocked_is_idempotent(self, app):
        with app.app_context():
            store = UserAggregateStoreDB()
            moment = datetime(2026, 3, 10, tzinfo=timezone.utc)
            assert store.add_unlocked(1, "first", moment) is True
            assert store.add_unlocked(1, "first", datetime.now(timezone.utc)) is False
            assert store.read(1).unlocked_achievement_ids == frozenset({"first"})
            assert store.unlocked_at(1) == {"first": moment.isoformat()}

    def test_top_by_points_orders_and_limits(self, app):
        with app.app_context():
            from database import get_db
            db = get_db()
            db.execute("INSERT INTO users (id, name) VALUES (2, 'Two'), (3, 'Three')")
            store = UserAggregateStoreDB()
            store.apply_delta(1, AggregateDelta(points=40, xp=100), level=2)
            store.apply_delta(2, AggregateDelta(points=40, xp=400), level=3)
            ranked = store.top_by_points(2)
            assert [r["user_id"] for r in ranked] == [2, 1]
            assert ranked[0] == {"user_id": 2, "name": "Two", "points": 40, "level": 3}
            assert [r["user_id"] for r in store.top_by_points(10)] == [2, 1, 3]


class TestActivityLedgerDB:
    def test_record_and_check(self, app):
        with app.app_context():
            ledger = ActivityLedgerDB()
            day = date(2026, 3, 10)
            assert not ledger.was_active_on(1, day)
            ledger.record_activity(1, day, datetime(2026, 3, 10, 8, tzinfo=timezone.utc))
            ledger.record_activity(1, day, datetime(2026, 3, 10, 20, tzinfo=timezone.utc))
            assert ledger.was_active_on(1, day)
            from database import get_db
            rows = get_db().execute("SELECT last_timestamp FROM activity_log WHERE user_id = 1").fetchall()
            assert len(rows) == 1
            assert rows[0]["last_timestamp"].startswith("2026-03-10T20:00")


class TestAchievementCatalogDB:
    def _definitions(self):
        return [
            AchievementDefinition(id="b_first", trigger="quiz_completion", reward_xp=50),
            AchievementDefinition(id="a_streak", trigger="study_streak", requirement=7),
            AchievementDefinition(id="c_hard", trigger="quiz_completion", requirement=5,
                                  condition={"difficulty": "hard"}),
        ]

    def test_insertion_order_is_catalog_order(self, app):
        with app.app_context():
            catalog = AchievementCatalogDB(cache_ttl=0)
            for d in self._definitions():
                catalog.add(d)
            assert [a.id for a in catalog.list_all()] == ["b_first", "a_streak", "c_hard"]
            by_trigger = catalog.list_by_trigger(Trigger.QUIZ_COMPLETION)
            assert [a.id for a in by_trigger] == ["b_first", "c_hard"]
            assert by_trigger[1].condition == {"difficulty": "hard"}
            assert by_trigger[0].position < by_trigger[1].position

    def test_add_is_insert_or_ignore(self, app):
        with app.app_context():
            catalog = AchievementCatalogDB(cache_ttl=0)
            assert catalog.add(self._definitions()[0]) is True
            assert catalog.add(self._definitions()[0]) is False

    def test_cached_until_invalidated(self, app):
        with app.app_context():
            catalog = AchievementCatalogDB(cache_ttl=300)
            catalog.add(self._definitions()[0])
            assert [a.id for a in catalog.list_by_trigger(Trigger.QUIZ_COMPLETION)] == ["b_first"]
            from database import get_db
            get_db().execute("DELETE FROM achievements")
            assert [a.id for a in catalog.list_by_trigger(Trigger.QUIZ_COMPLETION)] == ["b_first"]
            catalog.add(self._definitions()[2])
            assert [a.id for a in catalog.list_by_trigger(Trigger.QUIZ_COMPLETION)] == ["c_hard"]


class TestStatsProviderDB:
    def test_counts(self, app):
        with app.app_context():
            from database import get_db
            db = get_db()
            db.execute("INSERT INTO forum_topics (id, author_id, title) VALUES (1, 1, 'Help')")
            db.execute("INSERT INTO forum_replies (topic_id, author_id, is_best_answer) VALUES (1, 1, 1)")
            db.execute("INSERT INTO forum_replies (topic_id, author_id) VALUES (1, 1)")
            db.execute("INSERT INTO resource_access (user_id, resource_id, access_type) VALUES (1, 'r1', 'download')")
            db.execute("INSERT INTO resource_access (user_id, resource_id, access_type) VALUES (1, 'r2', 'view')")
            stats = StatsProviderDB()
            assert stats.forum_topic_count(1) == 1
            assert stats.forum_reply_count(1) == 2
            assert stats.best_answer_count(1) == 1
            assert stats.resource_access_count(1) == 2
            assert stats.resource_access_count(1, "download") == 1


class TestQuizAttemptLogDB:
    def test_record_and_list(self, app):
        with app.app_context():
            log = QuizAttemptLogDB()
            answers = [SubmittedAnswer("m1", "a"), SubmittedAnswer("m2", "x")]
            log.record(1, score(MEDIUM_QUIZ, answers), answers)
            hard_answers = [SubmittedAnswer(q.id, q.correct_option_id) for q in HARD_QUIZ.questions]
            log.record(1, score(HARD_QUIZ, hard_answers), hard_answers)

            attempts = log.list_attempts(1)
            assert [a.percentage_score for a in attempts] == [50, 100]
            assert [a.difficulty for a in attempts] == ["medium", "hard"]
            assert attempts[0].passed is False

            from database import get_db
            import json
            stored = json.loads(get_db().execute(
                "SELECT answers FROM quiz_attempts ORDER BY id LIMIT 1"
            ).fetchone()["answers"])
            assert stored[0] == {"question_id": "m1", "answer_id": "a", "is_correct": True}
            assert stored[1]["is_correct"] is False
