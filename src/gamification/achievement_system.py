"""
Achievement System

Static catalog of achievements, each a threshold on one UserState stat.

Categories:
- Learning (videos watched)
- Consistency (daily streak)
- Time (seconds studied)
- Social (likes given)
- Mastery (total XP)
- Special (early bird / night owl / weekend sessions)

Unlocking is idempotent: an id already in the user's unlocked set is never
returned again. Achievement XP is applied by the caller.
"""

from typing import Dict, List, Any
import logging

from src.models.achievement import Achievement, AchievementCategory, AchievementRarity
from src.models.user import UserState

logger = logging.getLogger(__name__)

_C = AchievementCategory
_R = AchievementRarity


def _achievement(id, title, description, icon, category, rarity, stat, requirement, xp_reward) -> Achievement:
    return Achievement(
        id=id,
        title=title,
        description=description,
        icon=icon,
        category=category,
        rarity=rarity,
        stat=stat,
        requirement=requirement,
        xp_reward=xp_reward,
    )


ACHIEVEMENTS: List[Achievement] = [
    # Learning
    _achievement("first_steps", "First Steps", "Watch your first video", "play", _C.LEARNING, _R.COMMON, "videos_watched", 1, 50),
    _achievement("video_explorer", "Video Explorer", "Watch 10 videos", "compass", _C.LEARNING, _R.COMMON, "videos_watched", 10, 100),
    _achievement("binge_watcher", "Binge Watcher", "Watch 50 videos", "tv", _C.LEARNING, _R.RARE, "videos_watched", 50, 250),
    _achievement("knowledge_seeker", "Knowledge Seeker", "Watch 100 videos", "brain", _C.LEARNING, _R.EPIC, "videos_watched", 100, 500),
    _achievement("master_learner", "Master Learner", "Watch 500 videos", "crown", _C.LEARNING, _R.LEGENDARY, "videos_watched", 500, 2000),

    # Consistency
    _achievement("streak_starter", "Streak Starter", "Learn for 3 days in a row", "flame", _C.CONSISTENCY, _R.COMMON, "current_streak", 3, 75),
    _achievement("week_warrior", "Week Warrior", "Learn for 7 days in a row", "fire", _C.CONSISTENCY, _R.RARE, "current_streak", 7, 150),
    _achievement("month_master", "Month Master", "Learn for 30 days in a row", "volcano", _C.CONSISTENCY, _R.EPIC, "current_streak", 30, 1000),
    _achievement("century_champion", "Century Champion", "Learn for 100 days in a row", "phoenix", _C.CONSISTENCY, _R.LEGENDARY, "current_streak", 100, 5000),

    # Time (seconds)
    _achievement("time_invested", "Time Invested", "Study for 10 hours total", "clock", _C.TIME, _R.COMMON, "time_spent", 36000, 200),
    _achievement("marathon_learner", "Marathon Learner", "Study for 100 hours total", "hourglass", _C.TIME, _R.EPIC, "time_spent", 360000, 1500),
    _achievement("time_master", "Time Master", "Study for 1000 hours total", "robot", _C.TIME, _R.LEGENDARY, "time_spent", 3600000, 10000),

    # Social
    _achievement("heart_giver", "Heart Giver", "Like 50 videos", "heart", _C.SOCIAL, _R.COMMON, "likes_given", 50, 100),
    _achievement("love_spreader", "Love Spreader", "Like 200 videos", "butterfly", _C.SOCIAL, _R.RARE, "likes_given", 200, 300),

    # Mastery
    _achievement("xp_collector", "XP Collector", "Earn 1,000 XP", "zap", _C.MASTERY, _R.COMMON, "total_xp", 1000, 100),
    _achievement("xp_master", "XP Master", "Earn 10,000 XP", "star", _C.MASTERY, _R.RARE, "total_xp", 10000, 500),
    _achievement("xp_legend", "XP Legend", "Earn 100,000 XP", "crown", _C.MASTERY, _R.EPIC, "total_xp", 100000, 2000),
    _achievement("xp_god", "XP God", "Earn 1,000,000 XP", "diamond", _C.MASTERY, _R.LEGENDARY, "total_xp", 1000000, 10000),

    # Special
    _achievement("early_bird", "Early Bird", "Study 10 times between 5-8 AM", "sunrise", _C.SPECIAL, _R.RARE, "early_bird_sessions", 10, 200),
    _achievement("night_owl", "Night Owl", "Study 10 times between 10 PM-2 AM", "moon", _C.SPECIAL, _R.RARE, "night_owl_sessions", 10, 200),
    _achievement("weekend_warrior", "Weekend Warrior", "Study 20 times on weekends", "weekend", _C.SPECIAL, _R.RARE, "weekend_sessions", 20, 300),
]

ACHIEVEMENTS_BY_ID: Dict[str, Achievement] = {a.id: a for a in ACHIEVEMENTS}


def get_achievement(achievement_id: str) -> Achievement:
    return ACHIEVEMENTS_BY_ID[achievement_id]


def check_achievements(state: UserState) -> List[Achievement]:
    """
    Achievements whose threshold is met and that the user has not unlocked yet

    Returns them in catalog order. Calling again with the ids added to
    state.unlocked_achievements returns an empty list.
    """
    unlocked = set(state.unlocked_achievements)
    return [a for a in ACHIEVEMENTS if a.id not in unlocked and a.is_met(state)]


def total_reward(achievements: List[Achievement]) -> int:
    return sum(a.xp_reward for a in achievements)


def get_achievement_progress(state: UserState) -> List[Dict[str, Any]]:
    """
    Progress for every catalog achievement

    Returns:
        [
            {
                ...achievement fields,
                'current_progress': int,  # capped at requirement
                'unlocked': bool,
                'progress_percent': float
            }
        ]
    """
    unlocked = set(state.unlocked_achievements)
    progress = []
    for achievement in ACHIEVEMENTS:
        current = min(achievement.current_value(state), achievement.requirement)
        progress.append({
            **achievement.model_dump(mode="json"),
            "current_progress": current,
            "unlocked": achievement.id in unlocked or achievement.is_met(state),
            "progress_percent": round(current / achievement.requirement * 100, 1),
        })
    return progress
