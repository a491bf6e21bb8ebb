"""Tests for database.py: schema, migrations, and transaction()."""

import sqlite3

import pytest

from database import MIGRATIONS, get_db, init_db, run_migrations, transaction


class TestSchema:
    def test_tables_exist(self, app):
        with app.app_context():
            db = get_db()
            tables = [r["name"] for r in db.execute(
                "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
            ).fetchall()]
            expected = [
                "achievements", "activity_log", "forum_replies", "forum_topics",
                "quiz_attempts", "quiz_questions", "quizzes", "resource_access",
                "schema_version", "user_achievements", "user_aggregates", "users",
            ]
            for t in expected:
                assert t in tables, f"Table {t} not found"

    def test_wal_mode(self, app):
        with app.app_context():
            mode = get_db().execute("PRAGMA journal_mode").fetchone()[0]
            assert mode == "wal"

    def test_foreign_keys_enabled(self, app):
        with app.app_context():
            assert get_db().execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_foreign_key_cascade(self, app):
        """Deleting a user removes their aggregates and unlocks."""
        with app.app_context():
            db = get_db()
            db.execute("INSERT INTO user_aggregates (user_id, xp) VALUES (1, 10)")
            db.execute(
                "INSERT INTO user_achievements (user_id, achievement_id, unlocked_at) "
                "VALUES (1, 'first', '2026-01-01')"
            )
            db.execute("DELETE FROM users WHERE id = 1")
            assert db.execute("SELECT COUNT(*) FROM user_aggregates").fetchone()[0] == 0
            assert db.execute("SELECT COUNT(*) FROM user_achievements").fetchone()[0] == 0


class TestMigrations:
    def test_all_versions_recorded(self, app):
        with app.app_context():
            versions = {r["version"] for r in get_db().execute(
                "SELECT version FROM schema_version"
            ).fetchall()}
            assert versions == {v for v, _ in MIGRATIONS}

    def test_migration_columns_present(self, app):
        with app.app_context():
            cols = {r["name"] for r in get_db().execute("PRAGMA table_info(user_aggregates)")}
            assert {"quiz_points_earned", "longest_streak"} <= cols

    def test_rerun_is_harmless(self, app):
        with app.app_context():
            init_db()
            run_migrations()
            count = get_db().execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
            assert count == len(MIGRATIONS)


class TestTransaction:
    def test_commit(self, app):
        with app.app_context():
            with transaction() as db:
                db.execute("INSERT INTO users (id, name) VALUES (5, 'Five')")
            assert get_db().execute("SELECT name FROM users WHERE id = 5").fetchone()["name"] == "Five"

    def test_rollback_on_error(self, app):
        with app.app_context():
            with pytest.raises(sqlite3.IntegrityError):
                with transaction() as db:
                    db.execute("INSERT INTO users (id, name) VALUES (6, 'Six')")
                    db.execute("INSERT INTO users (id, name) VALUES (6, 'Duplicate')")
            assert get_db().execute("SELECT 1 FROM users WHERE id = 6").fetchone() is None

    def test_failed_commit_leaves_connection_usable(self, app):
        with app.app_context():
            db = get_db()
            db.execute("CREATE TABLE parent (id INTEGER PRIMARY KEY)")
            db.execute(
                "CREATE TABLE child (parent_id INTEGER REFERENCES parent(id) DEFERRABLE INITIALLY DEFERRED)"
            )
            with pytest.raises(sqlite3.IntegrityError):
                with transaction() as tx:
                    tx.execute("INSERT INTO child (parent_id) VALUES (99)")
            assert not db.in_transaction
            with transaction() as tx:
                tx.execute("INSERT INTO users (id, name) VALUES (7, 'Seven')")
            assert db.execute("SELECT COUNT(*) FROM child").fetchone()[0] == 0
