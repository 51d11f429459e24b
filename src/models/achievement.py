"""Achievement models for gamification"""
from enum import Enum
from pydantic import BaseModel
from typing import Optional
from datetime import datetime

from src.models.user import UserState


class AchievementCategory(str, Enum):
    """Achievement categories"""
    LEARNING = "learning"
    CONSISTENCY = "consistency"
    TIME = "time"
    SOCIAL = "social"
    MASTERY = "mastery"
    SPECIAL = "special"


class AchievementRarity(str, Enum):
    """Achievement rarity levels"""
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class Achievement(BaseModel):
    """Achievement definition: unlocked once `stat` on UserState reaches `requirement`"""
    id: str
    title: str
    description: str
    icon: str
    category: AchievementCategory
    rarity: AchievementRarity
    stat: str
    requirement: int
    xp_reward: int

    def current_value(self, state: UserState) -> int:
        return int(getattr(state, self.stat, 0) or 0)

    def is_met(self, state: UserState) -> bool:
        return self.current_value(state) >= self.requirement


class UserAchievement(BaseModel):
    """User's unlocked achievement (audit row)"""
    user_id: str
    achievement_id: str
    unlocked_at: datetime
    xp_awarded: Optional[int] = None
