"""
Domain types for the quiz progression engine.

Dataclasses for quizzes, submissions, per-user aggregates and achievement
definitions, the input-error hierarchy, and the Protocols the engine uses
to reach its collaborators (the SQLite implementations live in db_stores.py).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Protocol


# ── Enums ──────────────────────────────────────────────────────────────

class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

    @classmethod
    def parse(cls, value: Any) -> Difficulty | None:
        """Return the matching member, or None for unknown values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return None


class Trigger(str, Enum):
    QUIZ_PERFECT_SCORE = "quiz_perfect_score"
    QUIZ_COMPLETION = "quiz_completion"
    QUIZ_POINTS = "quiz_points"
    FORUM_POSTS = "forum_posts"
    FORUM_REPLIES = "forum_replies"
    FORUM_BEST_ANSWERS = "forum_best_answers"
    RESOURCE_ACCESS = "resource_access"
    STUDY_STREAK = "study_streak"


QUIZ_TRIGGERS = (Trigger.QUIZ_PERFECT_SCORE, Trigger.QUIZ_COMPLETION, Trigger.QUIZ_POINTS)
ACTIVITY_TRIGGERS = (Trigger.STUDY_STREAK,)


# ── Errors ─────────────────────────────────────────────────────────────

class ProgressionInputError(ValueError):
    """Rejected input; raised before any scoring or mutation happens."""


class QuizNotFound(ProgressionInputError):
    pass


class InvalidSubmission(ProgressionInputError):
    pass


class UnknownUser(ProgressionInputError):
    pass


class InvalidQuery(ProgressionInputError):
    pass


# ── Quizzes ────────────────────────────────────────────────────────────

@dataclass
class Question:
    id: str
    correct_option_id: str | None
    points: float = 10


@dataclass
class Quiz:
    id: str
    questions: list[Question] = field(default_factory=list)
    difficulty: str = "medium"
    pass_score: float = 70
    time_limit_minutes: float | None = None
    title: str = ""


@dataclass
class SubmittedAnswer:
    question_id: str
    answer_id: str | None

    @classmethod
    def from_dict(cls, data: dict) -> SubmittedAnswer:
        """Accept both snake_case and the camelCase keys web clients send."""
        question_id = data.get("question_id", data.get("questionId"))
        answer_id = data.get("answer_id", data.get("answerId"))
        if question_id is None:
            raise InvalidSubmission("Each answer needs a questionId")
        return cls(
            question_id=str(question_id),
            answer_id=str(answer_id) if answer_id is not None else None,
        )


@dataclass
class QuizSubmissionResult:
    """Outcome of scoring one attempt. Never persisted by the engine itself."""

    quiz_id: str
    raw_score: float
    total_possible_points: float
    percentage_score: int
    passed: bool
    difficulty: str
    question_count: int
    time_taken_seconds: float | None
    time_limit_minutes: float | None
    points_awarded: int
    xp_awarded: int
    correct_question_ids: list[str] = field(default_factory=list)


@dataclass
class AttemptRecord:
    """One historical attempt, as far as achievement conditions care."""

    quiz_id: str
    percentage_score: int
    passed: bool
    difficulty: str
    points_awarded: int = 0
    created_at: str = ""


# ── Aggregates ─────────────────────────────────────────────────────────

@dataclass
class UserAggregate:
    user_id: int
    xp: int = 0
    points: int = 0
    quiz_points_earned: int = 0
    level: int = 1
    quiz_completed_count: int = 0
    quiz_total_percentage_score_sum: float = 0
    streak: int = 0
    longest_streak: int = 0
    last_active_at: datetime | None = None
    unlocked_achievement_ids: frozenset[str] = frozenset()

    @property
    def average_percentage_score(self) -> float:
        if self.quiz_completed_count <= 0:
            return 0
        return round(self.quiz_total_percentage_score_sum / self.quiz_completed_count, 1)

    def with_delta(self, delta: AggregateDelta) -> UserAggregate:
        """Return a copy with the counters advanced by `delta`."""
        return replace(
            self,
            xp=self.xp + delta.xp,
            points=self.points + delta.points,
            quiz_points_earned=self.quiz_points_earned + delta.quiz_points_earned,
            quiz_completed_count=self.quiz_completed_count + delta.quiz_completed_count,
            quiz_total_percentage_score_sum=(
                self.quiz_total_percentage_score_sum + delta.quiz_percentage_score_sum
            ),
            unlocked_achievement_ids=self.unlocked_achievement_ids | frozenset(delta.unlocked_achievement_ids),
        )


@dataclass
class AggregateDelta:
    """Counter increments applied atomically to a UserAggregate."""

    xp: int = 0
    points: int = 0
    quiz_points_earned: int = 0
    quiz_completed_count: int = 0
    quiz_percentage_score_sum: float = 0
    unlocked_achievement_ids: list[str] = field(default_factory=list)

    def __add__(self, other: AggregateDelta) -> AggregateDelta:
        return AggregateDelta(
            xp=self.xp + other.xp,
            points=self.points + other.points,
            quiz_points_earned=self.quiz_points_earned + other.quiz_points_earned,
            quiz_completed_count=self.quiz_completed_count + other.quiz_completed_count,
            quiz_percentage_score_sum=self.quiz_percentage_score_sum + other.quiz_percentage_score_sum,
            unlocked_achievement_ids=self.unlocked_achievement_ids + other.unlocked_achievement_ids,
        )


# ── Achievements ───────────────────────────────────────────────────────

@dataclass
class AchievementDefinition:
    id: str
    trigger: str
    requirement: float = 1
    condition: dict = field(default_factory=dict)
    reward_xp: int = 0
    reward_points: int = 0
    title: str = ""
    description: str = ""
    icon: str = ""
    category: str = ""
    rarity: str = "common"
    position: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trigger": self.trigger,
            "requirement": self.requirement,
            "condition": dict(self.condition),
            "reward_xp": self.reward_xp,
            "reward_points": self.reward_points,
            "title": self.title,
            "description": self.description,
            "icon": self.icon,
            "category": self.category,
            "rarity": self.rarity,
            "position": self.position,
        }

    @classmethod
    def from_dict(cls, data: dict) -> AchievementDefinition:
        return cls(
            id=str(data["id"]),
            trigger=data["trigger"],
            requirement=data.get("requirement", 1),
            condition=dict(data.get("condition") or {}),
            reward_xp=int(data.get("reward_xp", 0)),
            reward_points=int(data.get("reward_points", 0)),
            title=data.get("title", ""),
            description=data.get("description", ""),
            icon=data.get("icon", ""),
            category=data.get("category", ""),
            rarity=data.get("rarity", "common"),
            position=int(data.get("position", 0)),
        )


@dataclass
class QuizEvent:
    """The submission currently being processed, as seen by the evaluator."""

    percentage_score: int
    passed: bool
    difficulty: str
    points_awarded: int

    @classmethod
    def from_result(cls, result: QuizSubmissionResult) -> QuizEvent:
        return cls(
            percentage_score=result.percentage_score,
            passed=result.passed,
            difficulty=result.difficulty,
            points_awarded=result.points_awarded,
        )


# ── Collaborator protocols ─────────────────────────────────────────────

class QuizLookup(Protocol):
    def get_by_id(self, quiz_id: str) -> Quiz | None: ...


class UserAggregateStore(Protocol):
    def read(self, user_id: int) -> UserAggregate | None: ...
    def apply_delta(self, user_id: int, delta: AggregateDelta, level: int | None = None) -> None: ...
    def write(self, user_id: int, aggregate: UserAggregate) -> None: ...
    def add_unlocked(self, user_id: int, achievement_id: str, unlocked_at: datetime) -> bool: ...
    def unlocked_at(self, user_id: int) -> dict[str, str]: ...
    def top_by_points(self, limit: int) -> list[dict]: ...


class ActivityLedger(Protocol):
    def was_active_on(self, user_id: int, day) -> bool: ...
    def record_activity(self, user_id: int, day, at: datetime) -> None: ...


class AchievementCatalog(Protocol):
    def list_by_trigger(self, trigger: Trigger) -> list[AchievementDefinition]: ...
    def list_all(self) -> list[AchievementDefinition]: ...


class StatsProvider(Protocol):
    def forum_topic_count(self, user_id: int) -> int: ...
    def forum_reply_count(self, user_id: int) -> int: ...
    def best_answer_count(self, user_id: int) -> int: ...
    def resource_access_count(self, user_id: int, access_type: str | None = None) -> int: ...


class AttemptHistory(Protocol):
    def list_attempts(self, user_id: int) -> list[AttemptRecord]: ...
    def record(self, user_id: int, result: QuizSubmissionResult,
               answers: list[SubmittedAnswer]) -> None: ...
