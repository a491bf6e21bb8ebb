"""Tests for seed_achievements.py and its CLI command."""

from db_stores import AchievementCatalogDB
from models import Trigger
from seed_achievements import DEFAULT_ACHIEVEMENTS, seed


def test_default_catalog_uses_known_triggers():
    ids = [a.id for a in DEFAULT_ACHIEVEMENTS]
    assert len(ids) == len(set(ids))
    for a in DEFAULT_ACHIEVEMENTS:
        Trigger(a.trigger)


def test_seed_is_repeatable(app):
    assert seed(app) == len(DEFAULT_ACHIEVEMENTS)
    assert seed(app) == 0
    ids = [a.id for a in AchievementCatalogDB(cache_ttl=0).list_all()]
    assert ids == [a.id for a in DEFAULT_ACHIEVEMENTS]


def test_cli_command(app):
    result = app.test_cli_runner().invoke(args=["seed-achievements"])
    assert result.exit_code == 0
    assert f"{len(DEFAULT_ACHIEVEMENTS)} achievement definitions inserted." in result.output
