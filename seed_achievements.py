"""Seed the default achievement catalog.

Run: flask --app app seed-achievements
  or: python seed_achievements.py

Existing definitions (same id) are left untouched, so re-running is safe.
Catalog order follows insertion order.
"""

from __future__ import annotations

import logging

import click
from flask.cli import with_appcontext

from models import AchievementDefinition, Trigger

logger = logging.getLogger(__name__)


DEFAULT_ACHIEVEMENTS: list[AchievementDefinition] = [
    AchievementDefinition(
        id="perfect_score", title="Perfect Score",
        description="Score 100% on any quiz",
        icon="perfect_score", category="academic", rarity="uncommon",
        trigger=Trigger.QUIZ_PERFECT_SCORE.value, requirement=1,
        reward_xp=100, reward_points=50,
    ),
    AchievementDefinition(
        id="quiz_master", title="Quiz Master",
        description="Complete 10 quizzes with a passing grade",
        icon="quiz_master", category="academic", rarity="uncommon",
        trigger=Trigger.QUIZ_COMPLETION.value, requirement=10, condition={"passed": True},
        reward_xp=150, reward_points=75,
    ),
    AchievementDefinition(
        id="first_steps", title="First Steps",
        description="Complete your first quiz",
        icon="first_steps", category="milestone",
        trigger=Trigger.QUIZ_COMPLETION.value, requirement=1,
        reward_xp=50, reward_points=25,
    ),
    AchievementDefinition(
        id="high_achiever", title="High Achiever",
        description="Score 95% or more on 3 quizzes",
        icon="subject_master", category="academic", rarity="epic",
        trigger=Trigger.QUIZ_COMPLETION.value, requirement=3, condition={"minScore": 95},
        reward_xp=400, reward_points=200,
    ),
    AchievementDefinition(
        id="challenge_seeker", title="Challenge Seeker",
        description="Complete 20 hard difficulty quizzes",
        icon="challenge_seeker", category="milestone", rarity="rare",
        trigger=Trigger.QUIZ_COMPLETION.value, requirement=20, condition={"difficulty": "hard"},
        reward_xp=300, reward_points=150,
    ),
    AchievementDefinition(
        id="point_collector", title="Point Collector",
        description="Earn 500 points from quizzes",
        icon="point_collector", category="milestone", rarity="uncommon",
        trigger=Trigger.QUIZ_POINTS.value, requirement=500,
        reward_xp=100, reward_points=0,
    ),
    AchievementDefinition(
        id="discussion_starter", title="Discussion Starter",
        description="Create your first forum post",
        icon="discussion_starter", category="engagement",
        trigger=Trigger.FORUM_POSTS.value, requirement=1,
        reward_xp=50, reward_points=25,
    ),
    AchievementDefinition(
        id="helpful_mentor", title="Helpful Mentor",
        description='Have your answer marked as "Best Answer" 10 times',
        icon="helpful_mentor", category="engagement", rarity="uncommon",
        trigger=Trigger.FORUM_BEST_ANSWERS.value, requirement=10,
        reward_xp=200, reward_points=100,
    ),
    AchievementDefinition(
        id="resource_collector", title="Resource Collector",
        description="Download 5 resources",
        icon="resource_collector", category="milestone", rarity="uncommon",
        trigger=Trigger.RESOURCE_ACCESS.value, requirement=5, condition={"accessType": "download"},
        reward_xp=150, reward_points=50,
    ),
    AchievementDefinition(
        id="week_streak", title="On a Roll",
        description="Maintain a 7-day study streak",
        icon="streak", category="milestone",
        trigger=Trigger.STUDY_STREAK.value, requirement=7,
        reward_xp=75, reward_points=25,
    ),
    AchievementDefinition(
        id="thirty_day_commitment", title="30-Day Commitment",
        description="Maintain a 30-day study streak",
        icon="commitment", category="milestone", rarity="epic",
        trigger=Trigger.STUDY_STREAK.value, requirement=30,
        reward_xp=300, reward_points=150,
    ),
]


def seed(app=None) -> int:
    """Insert the default catalog. Returns the number of new definitions."""
    if app is None:
        from app import create_app
        app = create_app()

    count = 0
    with app.app_context():
        from database import init_db, run_migrations, transaction
        from db_stores import AchievementCatalogDB

        init_db()
        run_migrations()
        catalog = AchievementCatalogDB()
        with transaction():
            for achievement in DEFAULT_ACHIEVEMENTS:
                if catalog.add(achievement):
                    count += 1
    logger.info("Seeded %d achievement definitions", count)
    return count


@click.command("seed-achievements")
@with_appcontext
def seed_achievements_command():
    """Seed the default achievement catalog."""
    from flask import current_app

    n = seed(current_app._get_current_object())
    click.echo(f"{n} achievement definitions inserted.")


if __name__ == "__main__":
    n = seed()
    print(f"{n} achievement definitions inserted.")
