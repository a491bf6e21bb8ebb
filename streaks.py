"""Daily activity streaks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from models import ActivityLedger, UserAggregate


def utc_day(moment: datetime) -> date:
    """Calendar day of `moment` in UTC; naive datetimes are taken as UTC."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date()


@dataclass
class StreakUpdate:
    streak: int
    longest_streak: int
    last_active_at: datetime | None
    changed: bool


class StreakTracker:
    """Consecutive-day streak, anchored at today or yesterday.

    Same-day re-entry is a no-op. Otherwise the streak extends when the
    ledger shows activity yesterday and resets to 1 when it does not.
    """

    def __init__(self, ledger: ActivityLedger):
        self.ledger = ledger

    def record_activity(self, aggregate: UserAggregate, activity_at: datetime) -> StreakUpdate:
        user_id = aggregate.user_id
        today = utc_day(activity_at)
        yesterday = today - timedelta(days=1)

        self.ledger.record_activity(user_id, today, activity_at)

        last = aggregate.last_active_at
        if last is not None and utc_day(last) == today:
            return StreakUpdate(
                streak=aggregate.streak,
                longest_streak=aggregate.longest_streak,
                last_active_at=last,
                changed=False,
            )

        if self.ledger.was_active_on(user_id, yesterday):
            new_streak = aggregate.streak + 1
        else:
            new_streak = 1

        return StreakUpdate(
            streak=new_streak,
            longest_streak=max(aggregate.longest_streak, new_streak),
            last_active_at=activity_at,
            changed=True,
        )
