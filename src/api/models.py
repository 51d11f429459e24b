"""Pydantic models for API request/response validation

Clients speak camelCase JSON; fields are snake_case in Python and exposed
through aliases.
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime


class CamelModel(BaseModel):
    """Base model serializing snake_case fields as camelCase"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==========================================
# Requests
# ==========================================

class ValidateActionRequest(CamelModel):
    """Request to validate a proposed action"""
    user_id: str = Field(..., min_length=1, description="User identifier")
    action: str = Field(..., min_length=1, description="Action type, e.g. video_like")
    video_id: Optional[str] = None
    quiz_id: Optional[str] = None
    challenge_id: Optional[str] = None
    module_id: Optional[str] = None
    course_id: Optional[str] = None
    timestamp: int = Field(..., description="Client time in epoch milliseconds")
    metadata: Optional[Dict[str, Any]] = None


class TrackActionRequest(CamelModel):
    """Request to award flat XP for a validated action"""
    user_id: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    video_id: Optional[str] = None
    module_id: Optional[str] = None
    course_id: Optional[str] = None
    points: Optional[int] = Field(default=None, description="Suggested XP; can only lower the award")
    metadata: Optional[Dict[str, Any]] = None


class TrackAdvancedRequest(CamelModel):
    """Request to record a learning activity with the full XP breakdown"""
    user_id: str = Field(..., min_length=1)
    activity_type: str = Field(..., min_length=1)
    video_id: Optional[str] = None
    module_id: Optional[str] = None
    course_id: Optional[str] = None
    quiz_id: Optional[str] = None
    challenge_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class WatchBonusRequest(CamelModel):
    user_id: str = Field(..., min_length=1)
    video_id: str = Field(..., min_length=1)
    watch_time_minutes: float
    metadata: Optional[Dict[str, Any]] = None


class VideoCompleteRequest(CamelModel):
    user_id: str = Field(..., min_length=1)
    video_id: str = Field(..., min_length=1)
    metrics: Dict[str, Any]


class EngagementBonusRequest(CamelModel):
    user_id: str = Field(..., min_length=1)
    video_id: str = Field(..., min_length=1)
    watch_time_minutes: float
    engagement_score: float
    metrics: Optional[Dict[str, Any]] = None


# ==========================================
# Responses
# ==========================================

class ValidationResponse(CamelModel):
    """Outcome of /actions/validate; also the 429 body"""
    valid: bool
    reason: Optional[str] = None
    cooldown_remaining: Optional[int] = Field(default=None, description="Milliseconds until retry")


class LevelUpModel(CamelModel):
    old_level: int
    new_level: int


class XPBonusModel(CamelModel):
    type: str
    description: str
    amount: int


class XPBreakdown(CamelModel):
    base_xp: int = Field(..., alias="baseXP")
    total_xp: int = Field(..., alias="totalXP")
    bonuses: List[XPBonusModel] = Field(default_factory=list)


class WatchBonusBreakdown(XPBreakdown):
    bonus_xp: int = Field(..., alias="bonusXP")
    encouragement: Optional[XPBonusModel] = None


class AchievementModel(CamelModel):
    id: str
    title: str
    description: str
    icon: str
    category: str
    rarity: str
    requirement: int
    xp_reward: int


class UserStateModel(CamelModel):
    id: str
    total_xp: int = Field(..., alias="totalXP")
    level: int
    current_streak: int
    best_streak: int
    last_active: Optional[datetime] = None
    videos_watched: int
    likes_given: int
    quizzes_completed: int
    challenges_completed: int
    time_spent: int
    early_bird_sessions: int
    night_owl_sessions: int
    weekend_sessions: int
    unlocked_achievements: List[str]


class NotificationsModel(CamelModel):
    xp_gained: XPBreakdown
    level_up: Optional[LevelUpModel] = None
    achievements: List[AchievementModel] = Field(default_factory=list)
    streak: Optional[int] = None


class TrackResponse(CamelModel):
    success: bool = True
    xp_awarded: int
    total_xp: int = Field(..., alias="totalXP")
    level: int
    level_up: Optional[LevelUpModel] = None
    action_recorded: bool


class TrackAdvancedResponse(CamelModel):
    success: bool = True
    xp: XPBreakdown
    level_up: Optional[LevelUpModel] = None
    new_achievements: List[AchievementModel] = Field(default_factory=list)
    current_streak: int
    user: UserStateModel
    notifications: NotificationsModel


class WatchBonusResponse(CamelModel):
    success: bool = True
    xp_awarded: int = 0
    xp: Optional[WatchBonusBreakdown] = None
    level_up: Optional[LevelUpModel] = None
    encouragement: Optional[XPBonusModel] = None


class VideoCompleteResponse(CamelModel):
    success: bool = True
    xp_awarded: int
    engagement_score: int
    completion_percentage: int
    already_completed: bool = False


class EngagementBonusResponse(CamelModel):
    success: bool = True
    xp_awarded: int
    engagement_score: int
    watch_time_minutes: float
    already_awarded: bool = False


class LevelProgressModel(CamelModel):
    level: int
    current_level_xp: int = Field(..., alias="currentLevelXP")
    next_level_xp: int = Field(..., alias="nextLevelXP")
    xp_to_next_level: int
    progress_percent: float


class XPResponse(CamelModel):
    """Response with XP and level info"""
    user_id: str
    total_xp: int = Field(..., alias="totalXP")
    level: int
    progress: LevelProgressModel
    current_streak: int
    best_streak: int
    unlocked_achievements: int


class AchievementProgressModel(AchievementModel):
    current_progress: int
    unlocked: bool
    progress_percent: float


class AchievementResponse(CamelModel):
    """Response with achievement progress"""
    user_id: str
    achievements: List[AchievementProgressModel]
    unlocked: List[str]
    total: int


class HealthCheckResponse(CamelModel):
    """Health check response"""
    status: str
    store: str
    timestamp: datetime
