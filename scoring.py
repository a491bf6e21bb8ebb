"""
Quiz scoring: raw/percentage score, pass/fail, and the points and XP awards.

Pure functions; nothing here touches storage. Malformed input is rejected
by validate_submission() before any scoring starts, after which score()
cannot fail.
"""

from __future__ import annotations

import math

from models import (
    Difficulty,
    InvalidSubmission,
    Quiz,
    QuizNotFound,
    QuizSubmissionResult,
    SubmittedAnswer,
)

DEFAULT_PASS_SCORE = 70
BASE_POINTS = 10

POINTS_DIFFICULTY_MULTIPLIER = {
    Difficulty.EASY: 1,
    Difficulty.MEDIUM: 1.5,
    Difficulty.HARD: 2.5,
}

XP_DIFFICULTY_MULTIPLIER = {
    Difficulty.EASY: 1,
    Difficulty.MEDIUM: 1.5,
    Difficulty.HARD: 2,
}

PERFECT_SCORE_BONUS = 1.2
FAST_FINISH_BONUS = 1.1
FAST_FINISH_FRACTION = 0.5
MAX_QUESTION_COUNT_FACTOR = 2
XP_PER_PERCENT = 0.5


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def validate_submission(quiz: Quiz | None, answers) -> list[SubmittedAnswer]:
    """Return parsed answers or raise before anything is scored."""
    if quiz is None:
        raise QuizNotFound("Quiz not found")
    if not isinstance(answers, (list, tuple)):
        raise InvalidSubmission("Answers must be provided as an array")
    parsed = []
    for a in answers:
        if isinstance(a, SubmittedAnswer):
            parsed.append(a)
        elif isinstance(a, dict):
            parsed.append(SubmittedAnswer.from_dict(a))
        else:
            raise InvalidSubmission("Each answer must be an object")
    return parsed


def question_count_factor(question_count: int) -> float:
    return min(MAX_QUESTION_COUNT_FACTOR, math.log10(question_count + 1) + 0.5)


def time_bonus(time_taken_seconds: float | None, time_limit_minutes: float | None) -> float:
    if time_taken_seconds is None or not time_limit_minutes or time_limit_minutes <= 0:
        return 1
    if time_taken_seconds < FAST_FINISH_FRACTION * time_limit_minutes * 60:
        return FAST_FINISH_BONUS
    return 1


def points_for(percentage_score: int, difficulty: str, question_count: int,
               time_taken_seconds: float | None = None,
               time_limit_minutes: float | None = None) -> int:
    """Multi-factor points award; never below 1."""
    multiplier = POINTS_DIFFICULTY_MULTIPLIER.get(Difficulty.parse(difficulty), 1)
    perfect = PERFECT_SCORE_BONUS if percentage_score == 100 else 1
    raw_points = (
        BASE_POINTS
        * multiplier
        * (percentage_score / 100)
        * question_count_factor(question_count)
        * perfect
        * time_bonus(time_taken_seconds, time_limit_minutes)
    )
    return max(1, round_half_up(raw_points))


def xp_for(percentage_score: int, difficulty: str) -> int:
    multiplier = XP_DIFFICULTY_MULTIPLIER.get(Difficulty.parse(difficulty), 1)
    return math.floor(percentage_score * XP_PER_PERCENT * multiplier)


def score(quiz: Quiz, submitted_answers: list[SubmittedAnswer],
          time_taken_seconds: float | None = None) -> QuizSubmissionResult:
    """Score one attempt against `quiz`.

    Each question contributes its points to the total; it contributes to the
    raw score only when the submitted answer id equals its correct option id.
    Answers for unknown question ids are ignored, and the first answer for a
    question wins when it is answered twice.
    """
    by_question: dict[str, SubmittedAnswer] = {}
    for answer in submitted_answers:
        by_question.setdefault(answer.question_id, answer)

    raw_score = 0.0
    total_points = 0.0
    correct_ids = []
    for question in quiz.questions:
        total_points += question.points
        answer = by_question.get(question.id)
        if answer is None or question.correct_option_id is None:
            continue
        if answer.answer_id == question.correct_option_id:
            raw_score += question.points
            correct_ids.append(question.id)

    if total_points > 0:
        percentage = round_half_up(raw_score / total_points * 100)
    else:
        percentage = 0
    percentage = max(0, min(100, percentage))

    pass_score = quiz.pass_score if quiz.pass_score is not None else DEFAULT_PASS_SCORE
    question_count = len(quiz.questions)

    if total_points > 0:
        points = points_for(percentage, quiz.difficulty, question_count,
                            time_taken_seconds, quiz.time_limit_minutes)
    else:
        points = 0

    return QuizSubmissionResult(
        quiz_id=quiz.id,
        raw_score=raw_score,
        total_possible_points=total_points,
        percentage_score=percentage,
        passed=percentage >= pass_score,
        difficulty=quiz.difficulty,
        question_count=question_count,
        time_taken_seconds=time_taken_seconds,
        time_limit_minutes=quiz.time_limit_minutes,
        points_awarded=points,
        xp_awarded=xp_for(percentage, quiz.difficulty),
        correct_question_ids=correct_ids,
    )
