"""
Achievement evaluation.

Each trigger has one quantity function (how far the user has got) and, for
quiz triggers, one attempt filter (does an attempt count). The unlock
decision and the progress bar both go through them, so the two cannot drift.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from models import (
    AchievementCatalog,
    AchievementDefinition,
    AggregateDelta,
    AttemptHistory,
    AttemptRecord,
    QuizEvent,
    StatsProvider,
    Trigger,
    UserAggregate,
)

logger = logging.getLogger(__name__)


def _condition_value(condition: dict, *keys: str):
    for key in keys:
        if condition.get(key) is not None:
            return condition[key]
    return None


def attempt_counts(condition: dict, percentage_score: float, passed: bool, difficulty: str) -> bool:
    """True when an attempt satisfies every filter present in `condition`."""
    condition = condition or {}
    want_passed = _condition_value(condition, "passed")
    if want_passed is not None and bool(passed) != bool(want_passed):
        return False
    min_score = _condition_value(condition, "min_score", "minScore")
    if min_score is not None and percentage_score < float(min_score):
        return False
    want_difficulty = _condition_value(condition, "difficulty")
    if want_difficulty is not None and str(difficulty).lower() != str(want_difficulty).lower():
        return False
    return True


def perfect_counts(condition: dict, percentage_score: float, difficulty: str) -> bool:
    if percentage_score != 100:
        return False
    want_difficulty = _condition_value(condition or {}, "difficulty")
    return want_difficulty is None or str(difficulty).lower() == str(want_difficulty).lower()


@dataclass
class EvaluationContext:
    """Everything a rule may look at for one user.

    `aggregate` is the state AFTER the current event's own deltas (quiz
    points, streak) have been applied; `event` is the quiz submission being
    processed, or None for login/refresh/progress evaluation.
    """

    user_id: int
    aggregate: UserAggregate
    event: QuizEvent | None = None
    history: AttemptHistory | None = None
    stats: StatsProvider | None = None
    _attempts: list[AttemptRecord] | None = field(default=None, repr=False)

    @property
    def attempts(self) -> list[AttemptRecord]:
        if self._attempts is None:
            self._attempts = self.history.list_attempts(self.user_id) if self.history else []
        return self._attempts


# ── Quantity functions, one per trigger ────────────────────────────────

def _perfect_score_quantity(achievement: AchievementDefinition, ctx: EvaluationContext) -> float:
    count = sum(
        1 for a in ctx.attempts
        if perfect_counts(achievement.condition, a.percentage_score, a.difficulty)
    )
    if ctx.event is not None and perfect_counts(
        achievement.condition, ctx.event.percentage_score, ctx.event.difficulty
    ):
        count += 1
    return count


def _completion_quantity(achievement: AchievementDefinition, ctx: EvaluationContext) -> float:
    count = sum(
        1 for a in ctx.attempts
        if attempt_counts(achievement.condition, a.percentage_score, a.passed, a.difficulty)
    )
    if ctx.event is not None and attempt_counts(
        achievement.condition, ctx.event.percentage_score, ctx.event.passed, ctx.event.difficulty
    ):
        count += 1
    return count


def _quiz_points_quantity(achievement: AchievementDefinition, ctx: EvaluationContext) -> float:
    return ctx.aggregate.quiz_points_earned


def _forum_posts_quantity(achievement: AchievementDefinition, ctx: EvaluationContext) -> float:
    return ctx.stats.forum_topic_count(ctx.user_id) if ctx.stats else 0


def _forum_replies_quantity(achievement: AchievementDefinition, ctx: EvaluationContext) -> float:
    return ctx.stats.forum_reply_count(ctx.user_id) if ctx.stats else 0


def _best_answers_quantity(achievement: AchievementDefinition, ctx: EvaluationContext) -> float:
    return ctx.stats.best_answer_count(ctx.user_id) if ctx.stats else 0


def _resource_access_quantity(achievement: AchievementDefinition, ctx: EvaluationContext) -> float:
    if not ctx.stats:
        return 0
    access_type = _condition_value(achievement.condition or {}, "access_type", "accessType")
    return ctx.stats.resource_access_count(ctx.user_id, access_type)


def _study_streak_quantity(achievement: AchievementDefinition, ctx: EvaluationContext) -> float:
    return ctx.aggregate.streak


QUANTITY_RULES: dict[Trigger, Callable[[AchievementDefinition, EvaluationContext], float]] = {
    Trigger.QUIZ_PERFECT_SCORE: _perfect_score_quantity,
    Trigger.QUIZ_COMPLETION: _completion_quantity,
    Trigger.QUIZ_POINTS: _quiz_points_quantity,
    Trigger.FORUM_POSTS: _forum_posts_quantity,
    Trigger.FORUM_REPLIES: _forum_replies_quantity,
    Trigger.FORUM_BEST_ANSWERS: _best_answers_quantity,
    Trigger.RESOURCE_ACCESS: _resource_access_quantity,
    Trigger.STUDY_STREAK: _study_streak_quantity,
}


def _trigger_of(achievement: AchievementDefinition) -> Trigger | None:
    try:
        return Trigger(achievement.trigger)
    except ValueError:
        return None


def quantity(achievement: AchievementDefinition, ctx: EvaluationContext) -> float:
    trigger = _trigger_of(achievement)
    if trigger is None:
        logger.warning("No rule for achievement trigger %r (%s)", achievement.trigger, achievement.id)
        return 0
    return QUANTITY_RULES[trigger](achievement, ctx)


def is_satisfied(achievement: AchievementDefinition, ctx: EvaluationContext) -> bool:
    trigger = _trigger_of(achievement)
    if trigger is None:
        return False
    if trigger is Trigger.QUIZ_PERFECT_SCORE:
        # Unlocked by the submission itself being perfect, not by a count.
        return ctx.event is not None and perfect_counts(
            achievement.condition, ctx.event.percentage_score, ctx.event.difficulty
        )
    return quantity(achievement, ctx) >= achievement.requirement


def progress_pct(achievement: AchievementDefinition, ctx: EvaluationContext) -> int:
    if achievement.id in ctx.aggregate.unlocked_achievement_ids:
        return 100
    needed = achievement.requirement or 1
    return min(100, int(quantity(achievement, ctx) / needed * 100 + 0.5))


def rewards_delta(awarded: Iterable[AchievementDefinition]) -> AggregateDelta:
    """XP/points granted by newly unlocked achievements."""
    delta = AggregateDelta()
    for achievement in awarded:
        delta = delta + AggregateDelta(
            xp=int(achievement.reward_xp or 0),
            points=int(achievement.reward_points or 0),
            unlocked_achievement_ids=[achievement.id],
        )
    return delta


class AchievementEvaluator:
    """Decides which catalog achievements a user has newly satisfied."""

    def __init__(self, catalog: AchievementCatalog, stats: StatsProvider | None = None,
                 history: AttemptHistory | None = None):
        self.catalog = catalog
        self.stats = stats
        self.history = history

    def context(self, user_id: int, aggregate: UserAggregate,
                event: QuizEvent | None = None) -> EvaluationContext:
        return EvaluationContext(
            user_id=user_id, aggregate=aggregate, event=event,
            history=self.history, stats=self.stats,
        )

    def candidates(self, aggregate: UserAggregate,
                   triggers: Iterable[Trigger]) -> list[AchievementDefinition]:
        """Locked achievements for `triggers`, in catalog order."""
        wanted = {Trigger(t).value for t in triggers}
        if len(wanted) == 1:
            pool = self.catalog.list_by_trigger(Trigger(next(iter(wanted))))
        else:
            pool = [a for a in self.catalog.list_all() if a.trigger in wanted]
        return [a for a in pool if a.id not in aggregate.unlocked_achievement_ids]

    def evaluate(self, user_id: int, aggregate: UserAggregate, event: QuizEvent | None = None,
                 triggers: Iterable[Trigger] | None = None) -> list[AchievementDefinition]:
        """Return the achievements the user has newly satisfied.

        Nothing is mutated here; the caller applies rewards_delta() to the
        aggregate and records the unlocks.
        """
        if triggers is None:
            triggers = list(Trigger)
        ctx = self.context(user_id, aggregate, event)
        awarded = [a for a in self.candidates(aggregate, triggers) if is_satisfied(a, ctx)]
        if awarded:
            logger.info(
                "User %s unlocked %s", user_id, ", ".join(a.id for a in awarded),
            )
        return awarded

    def progress(self, user_id: int, aggregate: UserAggregate,
                 achievement: AchievementDefinition) -> int:
        """Percentage progress (0-100) toward `achievement`."""
        return progress_pct(achievement, self.context(user_id, aggregate))
