"""
Progression coordinator: turns quiz submissions and logins into XP, points,
levels, streaks and achievement unlocks.

Quiz flow:  scored -> aggregates updated -> level checked -> achievements
            evaluated -> persisted (one write unit)
Login flow: streak updated -> study_streak achievements -> persisted

Scoring errors propagate to the caller. Failures while persisting roll the
whole unit back, are logged, and come back as `persisted=False`; the score
is still returned.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import weakref
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, ContextManager, Iterable

import scoring
from achievements import AchievementEvaluator, progress_pct, rewards_delta
from leveling import detect_level_up, level_for_xp, level_progress
from models import (
    ACTIVITY_TRIGGERS,
    QUIZ_TRIGGERS,
    AchievementCatalog,
    AchievementDefinition,
    ActivityLedger,
    AggregateDelta,
    AttemptHistory,
    InvalidQuery,
    InvalidSubmission,
    QuizEvent,
    Quiz,
    QuizLookup,
    QuizSubmissionResult,
    StatsProvider,
    SubmittedAnswer,
    Trigger,
    UnknownUser,
    UserAggregate,
    UserAggregateStore,
)
from resilience import retry_on_locked
from streaks import StreakTracker

logger = logging.getLogger(__name__)


class StoreUnavailable(RuntimeError):
    """Raised by non-SQLite stores when their backend cannot be reached."""


PERSISTENCE_ERRORS = (sqlite3.Error, StoreUnavailable)

LEADERBOARD_DEFAULT_LIMIT = 20
LEADERBOARD_MAX_LIMIT = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Per-user mutual exclusion ──────────────────────────────────────────

class _UserLock:
    __slots__ = ("lock", "__weakref__")

    def __init__(self) -> None:
        self.lock = threading.Lock()


class UserLocks:
    """One lock per user id, dropped once nobody holds a reference to it."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[int, _UserLock] = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, user_id: int):
        with self._guard:
            entry = self._locks.get(user_id)
            if entry is None:
                entry = _UserLock()
                self._locks[user_id] = entry
        with entry.lock:
            yield


_user_locks = UserLocks()


# ── Outcomes ───────────────────────────────────────────────────────────

def achievement_summary(a: AchievementDefinition) -> dict:
    return {
        "id": a.id,
        "title": a.title,
        "description": a.description,
        "icon": a.icon,
        "category": a.category,
        "rarity": a.rarity,
        "xp": a.reward_xp,
        "points": a.reward_points,
    }


@dataclass
class QuizOutcome:
    result: QuizSubmissionResult
    newly_unlocked: list[AchievementDefinition] = field(default_factory=list)
    leveled_up: bool = False
    level: int | None = None
    persisted: bool = True

    def to_dict(self) -> dict:
        return {
            "score": self.result.raw_score,
            "total_points": self.result.total_possible_points,
            "percentage_score": self.result.percentage_score,
            "passed": self.result.passed,
            "points_awarded": self.result.points_awarded,
            "xp_awarded": self.result.xp_awarded,
            "newly_unlocked_achievements": [achievement_summary(a) for a in self.newly_unlocked],
            "leveled_up": self.leveled_up,
            "level": self.level,
            "persisted": self.persisted,
        }


@dataclass
class ActivityOutcome:
    streak: int
    newly_unlocked: list[AchievementDefinition] = field(default_factory=list)
    leveled_up: bool = False
    persisted: bool = True

    def to_dict(self) -> dict:
        return {
            "streak": self.streak,
            "newly_unlocked_achievements": [achievement_summary(a) for a in self.newly_unlocked],
            "leveled_up": self.leveled_up,
            "persisted": self.persisted,
        }


def _parse_time_taken(value: Any) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InvalidSubmission("timeTaken must be a number of seconds")
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise InvalidSubmission("timeTaken must be a number of seconds") from None
    if seconds < 0:
        raise InvalidSubmission("timeTaken cannot be negative")
    return seconds


def _with_level(aggregate: UserAggregate) -> UserAggregate:
    return replace(aggregate, level=level_for_xp(aggregate.xp))


# ── Coordinator ────────────────────────────────────────────────────────

class ProgressionCoordinator:
    """Entry points for the host application.

    Every collaborator is injected; db_stores.py provides the SQLite ones
    and helpers.get_coordinator() wires them for a Flask request.

    `transaction` returns a context manager under which the stores' writes
    commit together or not at all (database.transaction for SQLite).
    """

    def __init__(
        self,
        quizzes: QuizLookup,
        aggregates: UserAggregateStore,
        ledger: ActivityLedger,
        catalog: AchievementCatalog,
        transaction: Callable[[], ContextManager],
        stats: StatsProvider | None = None,
        history: AttemptHistory | None = None,
        locks: UserLocks | None = None,
        retry_attempts: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.quizzes = quizzes
        self.aggregates = aggregates
        self.catalog = catalog
        self.history = history
        self.streaks = StreakTracker(ledger)
        self.evaluator = AchievementEvaluator(catalog, stats=stats, history=history)
        self.transaction = transaction
        self.locks = locks or _user_locks
        self.retry_attempts = retry_attempts
        self.clock = clock

    def _read_user(self, user_id: int) -> UserAggregate:
        aggregate = self.aggregates.read(user_id)
        if aggregate is None:
            raise UnknownUser(f"Unknown user {user_id}")
        return aggregate

    def _check_user(self, user_id: int) -> UserAggregate | None:
        """Raise UnknownUser for a missing user; None when the store cannot answer right now."""
        try:
            return self._read_user(user_id)
        except PERSISTENCE_ERRORS:
            logger.warning("Could not read aggregate for user %s", user_id, exc_info=True)
            return None

    def _run_unit(self, user_id: int, unit: Callable, *args):
        """Run one all-or-nothing write unit under the user's lock, retrying lock contention."""
        with self.locks.hold(user_id):
            return retry_on_locked(self.retry_attempts)(unit)(user_id, *args)

    def _store_unlocks(self, user_id: int,
                       awarded: list[AchievementDefinition]) -> list[AchievementDefinition]:
        """Record unlocks first; only those not already on file earn their rewards."""
        now = self.clock()
        return [a for a in awarded if self.aggregates.add_unlocked(user_id, a.id, now)]

    # ── Quiz submission ────────────────────────────────────────────────

    def on_quiz_submitted(self, user_id: int, quiz: Quiz | str, submitted_answers,
                          time_taken_seconds: Any = None) -> QuizOutcome:
        """Score a submission and apply its progression effects.

        `quiz` is a Quiz or a quiz id resolved through the quiz lookup.

        Raises ProgressionInputError subclasses before anything is scored or
        written. Once scored, the result is always returned.
        """
        if not isinstance(quiz, Quiz):
            quiz = self.quizzes.get_by_id(quiz)
        answers = scoring.validate_submission(quiz, submitted_answers)
        time_taken = _parse_time_taken(time_taken_seconds)
        self._check_user(user_id)

        result = scoring.score(quiz, answers, time_taken)

        try:
            before_level, after_level, awarded = self._run_unit(
                user_id, self._apply_quiz, result, answers,
            )
        except PERSISTENCE_ERRORS:
            logger.warning(
                "Quiz %s scored for user %s but progression was not saved",
                result.quiz_id, user_id, exc_info=True,
            )
            return QuizOutcome(result=result, persisted=False)

        leveled_up = after_level > before_level
        if leveled_up:
            logger.info("User %s reached level %s", user_id, after_level)
        return QuizOutcome(
            result=result,
            newly_unlocked=awarded,
            leveled_up=leveled_up,
            level=after_level,
        )

    def _apply_quiz(self, user_id: int, result: QuizSubmissionResult,
                    answers: list[SubmittedAnswer]):
        with self.transaction():
            before = self._read_user(user_id)

            score_delta = AggregateDelta(
                xp=result.xp_awarded,
                points=result.points_awarded,
                quiz_points_earned=result.points_awarded,
                quiz_completed_count=1,
                quiz_percentage_score_sum=result.percentage_score,
            )
            scored = _with_level(before.with_delta(score_delta))

            awarded = self._store_unlocks(user_id, self.evaluator.evaluate(
                user_id, scored, QuizEvent.from_result(result), QUIZ_TRIGGERS,
            ))
            reward = rewards_delta(awarded)
            final = _with_level(scored.with_delta(reward))

            self.aggregates.apply_delta(user_id, score_delta + reward, level=final.level)
            if self.history is not None:
                self.history.record(user_id, result, answers)

        return before.level, final.level, awarded

    # ── Login / activity ───────────────────────────────────────────────

    def on_user_activity(self, user_id: int, activity_at: datetime | None = None) -> ActivityOutcome:
        """Update the daily streak and unlock any streak achievements."""
        activity_at = activity_at or self.clock()
        before = self._check_user(user_id)
        try:
            return self._run_unit(user_id, self._apply_activity, activity_at)
        except PERSISTENCE_ERRORS:
            logger.warning("Streak update failed for user %s", user_id, exc_info=True)
            return ActivityOutcome(streak=before.streak if before else 0, persisted=False)

    def _apply_activity(self, user_id: int, activity_at: datetime) -> ActivityOutcome:
        with self.transaction():
            before = self._read_user(user_id)
            update = self.streaks.record_activity(before, activity_at)
            current = replace(
                before,
                streak=update.streak,
                longest_streak=update.longest_streak,
                last_active_at=update.last_active_at,
            )

            awarded = self._store_unlocks(
                user_id, self.evaluator.evaluate(user_id, current, None, ACTIVITY_TRIGGERS),
            )
            final = current.with_delta(rewards_delta(awarded))
            final.level, leveled_up = detect_level_up(before.level, final.xp)

            if update.changed or awarded:
                self.aggregates.write(user_id, final)

        if leveled_up:
            logger.info("User %s reached level %s", user_id, final.level)
        return ActivityOutcome(streak=final.streak, newly_unlocked=awarded, leveled_up=leveled_up)

    # ── On-demand evaluation ───────────────────────────────────────────

    def refresh_achievements(self, user_id: int,
                             triggers: Iterable[Trigger] | None = None) -> list[AchievementDefinition]:
        """Unlock anything now satisfied for `triggers` (all by default), with no current event."""
        triggers = list(triggers) if triggers is not None else list(Trigger)
        self._check_user(user_id)
        try:
            return self._run_unit(user_id, self._apply_refresh, triggers)
        except PERSISTENCE_ERRORS:
            logger.warning("Achievement refresh failed for user %s", user_id, exc_info=True)
            return []

    def _apply_refresh(self, user_id: int, triggers: list[Trigger]) -> list[AchievementDefinition]:
        with self.transaction():
            before = self._read_user(user_id)
            awarded = self._store_unlocks(
                user_id, self.evaluator.evaluate(user_id, before, None, triggers),
            )
            if not awarded:
                return []
            reward = rewards_delta(awarded)
            final = _with_level(before.with_delta(reward))
            self.aggregates.apply_delta(user_id, reward, level=final.level)
        return awarded

    # ── Read models ────────────────────────────────────────────────────

    def achievement_overview(self, user_id: int) -> dict:
        """Every catalog achievement with unlock state and progress for one user."""
        aggregate = self._read_user(user_id)
        unlocked_at = self.aggregates.unlocked_at(user_id)
        ctx = self.evaluator.context(user_id, aggregate)

        items = []
        total_points = 0
        for achievement in self.catalog.list_all():
            unlocked = achievement.id in aggregate.unlocked_achievement_ids
            if unlocked:
                total_points += achievement.reward_points
            items.append({
                **achievement_summary(achievement),
                "trigger": achievement.trigger,
                "unlocked": unlocked,
                "unlocked_at": unlocked_at.get(achievement.id) if unlocked else None,
                "progress": progress_pct(achievement, ctx),
                "total_needed": achievement.requirement,
            })
        return {
            "achievements": items,
            "total_achievement_points": total_points,
            "total_user_xp": aggregate.xp,
        }

    def progress_summary(self, user_id: int) -> dict:
        aggregate = self._read_user(user_id)
        attempts = self.history.list_attempts(user_id) if self.history else []
        return {
            **level_progress(aggregate.xp).to_dict(),
            "points": aggregate.points,
            "quiz_points_earned": aggregate.quiz_points_earned,
            "streak": aggregate.streak,
            "longest_streak": aggregate.longest_streak,
            "quiz_stats": {
                "completed": aggregate.quiz_completed_count,
                "avg_score": aggregate.average_percentage_score,
                "best_score": max((a.percentage_score for a in attempts), default=0),
            },
            "unlocked_achievements": len(aggregate.unlocked_achievement_ids),
        }

    def leaderboard(self, limit: int = LEADERBOARD_DEFAULT_LIMIT) -> list[dict]:
        """Top users by points, then level, then XP, with a 1-based `rank`."""
        if isinstance(limit, bool) or not isinstance(limit, int) \
                or not 0 < limit <= LEADERBOARD_MAX_LIMIT:
            raise InvalidQuery(f"limit must be between 1 and {LEADERBOARD_MAX_LIMIT}")
        return [
            {**entry, "rank": rank}
            for rank, entry in enumerate(self.aggregates.top_by_points(limit), 1)
        ]
