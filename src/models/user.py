"""User state models"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class UserState(BaseModel):
    """Per-user progress state. Mutated only by the progress service."""
    id: str
    total_xp: int = 0
    level: int = 1
    current_streak: int = 0
    best_streak: int = 0
    last_active: Optional[datetime] = None

    # Per-action-type counters
    videos_watched: int = 0
    likes_given: int = 0
    quizzes_completed: int = 0
    challenges_completed: int = 0
    time_spent: int = 0  # seconds

    # Time-of-day session counters
    early_bird_sessions: int = 0
    night_owl_sessions: int = 0
    weekend_sessions: int = 0

    unlocked_achievements: list[str] = Field(default_factory=list)

    @field_validator("unlocked_achievements")
    @classmethod
    def dedupe_achievements(cls, v: list[str]) -> list[str]:
        """Achievement ids behave as a set; keep first-unlock order"""
        return list(dict.fromkeys(v))


class UserStateUpdate(BaseModel):
    """Changes applied to a UserState after an accepted action"""
    level: int
    current_streak: int
    best_streak: int
    last_active: datetime
    increments: dict[str, int] = Field(
        default_factory=dict,
        description="Counter name -> amount to add atomically"
    )
