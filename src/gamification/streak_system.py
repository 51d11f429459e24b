"""
Daily Streak Tracking

A streak is the number of consecutive calendar days with at least one
recorded activity, counted back from today. If today has no record yet the
count starts from yesterday, so a streak survives until the day is over.

Also classifies the time of a session for the early bird / night owl /
weekend counters.
"""

from datetime import date, datetime, timedelta
from typing import Dict, Iterable
import logging

from src.gamification.xp_system import is_early_bird, is_night_owl, is_weekend

logger = logging.getLogger(__name__)

# Matches the daily-activity read limit
MAX_STREAK_LOOKBACK_DAYS = 100


def compute_current_streak(activity_dates: Iterable[date], today: date) -> int:
    """
    Count consecutive active days ending today (or yesterday)

    Args:
        activity_dates: Days with recorded activity, any order, duplicates allowed
        today: Current calendar day in the application timezone

    Returns:
        Streak length in days (0 if neither today nor yesterday is active)

    Example:
        today=Mar 10, dates={Mar 8, Mar 9} -> 2
        today=Mar 10, dates={Mar 8, Mar 9, Mar 10} -> 3
        today=Mar 10, dates={Mar 7, Mar 8} -> 0
    """
    days = {d.date() if isinstance(d, datetime) else d for d in activity_dates}

    if today in days:
        cursor = today
    elif today - timedelta(days=1) in days:
        cursor = today - timedelta(days=1)
    else:
        return 0

    streak = 0
    while cursor in days and streak < MAX_STREAK_LOOKBACK_DAYS:
        streak += 1
        cursor -= timedelta(days=1)

    return streak


def streak_after_activity(current_streak: int, active_today: bool) -> int:
    """Streak once today's activity is recorded"""
    return current_streak if active_today else current_streak + 1


def classify_session(now: datetime) -> Dict[str, int]:
    """
    Session counter increments for an activity at `now` (local time)

    Returns:
        Subset of {'early_bird_sessions': 1, 'night_owl_sessions': 1,
        'weekend_sessions': 1}
    """
    increments = {}
    if is_early_bird(now.hour):
        increments["early_bird_sessions"] = 1
    if is_night_owl(now.hour):
        increments["night_owl_sessions"] = 1
    if is_weekend(now):
        increments["weekend_sessions"] = 1
    return increments
