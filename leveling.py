"""
Level formula.

level = floor(1 + sqrt(xp / 100)). Every code path that changes XP derives the
level from level_for_xp(); nothing increments a level on its own.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

XP_PER_LEVEL_UNIT = 100


def level_for_xp(xp: float) -> int:
    """Level reached with `xp` cumulative experience (always >= 1)."""
    if xp <= 0:
        return 1
    # floor(sqrt(x)) == isqrt(floor(x)) for x >= 0; avoids float error at exact squares
    return 1 + math.isqrt(int(xp // XP_PER_LEVEL_UNIT))


def xp_for_current_level(level: int) -> int:
    """XP at which `level` starts."""
    level = max(1, int(level))
    return XP_PER_LEVEL_UNIT * (level - 1) ** 2


def xp_threshold_for_level(level: int) -> int:
    """XP at which `level` is complete and the next one starts."""
    level = max(1, int(level))
    return XP_PER_LEVEL_UNIT * level ** 2


def detect_level_up(previous_level: int, new_xp: float) -> tuple[int, bool]:
    """Return (level for new_xp, whether it is above previous_level)."""
    new_level = level_for_xp(new_xp)
    return new_level, new_level > previous_level


@dataclass
class LevelProgress:
    level: int
    xp: int
    current_level_xp: int
    next_level_xp: int

    @property
    def xp_to_next_level(self) -> int:
        return max(0, self.next_level_xp - self.xp)

    @property
    def progress_pct(self) -> int:
        level_range = self.next_level_xp - self.current_level_xp
        if level_range <= 0:
            return 100
        return min(100, int((self.xp - self.current_level_xp) / level_range * 100))

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "xp": self.xp,
            "current_level_xp": self.current_level_xp,
            "next_level_xp": self.next_level_xp,
            "xp_to_next_level": self.xp_to_next_level,
            "progress_pct": self.progress_pct,
        }


def level_progress(xp: int) -> LevelProgress:
    level = level_for_xp(xp)
    return LevelProgress(
        level=level,
        xp=int(xp),
        current_level_xp=xp_for_current_level(level),
        next_level_xp=xp_threshold_for_level(level),
    )
