"""
Gamification system for LearnStream

This package implements the reward rules:
- Anti-cheat action validation and IP rate limiting
- XP awards and the leveling curve
- Daily streaks
- Achievement catalog and unlock checks
- The ActionStore interface and its in-memory implementation
"""

from src.gamification.anti_cheat import validate_action, ActionPolicy, DEFAULT_ACTION_POLICIES
from src.gamification.rate_limiter import check_rate_limit, check_like_cooldown
from src.gamification.xp_system import calculate_award, calculate_level, level_progress
from src.gamification.streak_system import compute_current_streak
from src.gamification.achievement_system import check_achievements, get_achievement_progress

__all__ = [
    "validate_action",
    "ActionPolicy",
    "DEFAULT_ACTION_POLICIES",
    "check_rate_limit",
    "check_like_cooldown",
    "calculate_award",
    "calculate_level",
    "level_progress",
    "compute_current_streak",
    "check_achievements",
    "get_achievement_progress",
]
