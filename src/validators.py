"""
Centralized Pydantic Input Validation Layer

Every client-supplied number that feeds a reward decision passes through here
before it reaches the anti-cheat validator or the XP calculator. Clients send
camelCase keys; the sanitized bag keeps them and drops nulls.

Validation Categories:
1. Action Metadata - engagement score, watch time, quiz timing, study duration
2. Video Metrics - end-of-video completion and engagement figures
3. Watch-time Claims - periodic watch-time pings
"""

import logging
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from src.exceptions import ValidationError

logger = logging.getLogger(__name__)

MAX_WATCH_MINUTES = 24 * 60
MAX_SESSION_SECONDS = 24 * 60 * 60


# ============================================================================
# ACTION METADATA VALIDATION
# ============================================================================

class ActionMetadata(BaseModel):
    """
    Validate the opaque metadata bag attached to an action

    Constraints:
    - engagementScore, score, completionRate, videoProgress: 0-100
    - watchTimeMinutes: 0-1440
    - duration, timeSpent: 0-86400 seconds
    - questionsCount: 1-500
    - NaN / infinity rejected
    - Unknown keys are kept untouched
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True, allow_inf_nan=False)

    engagement_score: Optional[float] = Field(default=None, alias="engagementScore", ge=0, le=100)
    watch_time_minutes: Optional[float] = Field(default=None, alias="watchTimeMinutes", ge=0, le=MAX_WATCH_MINUTES)
    duration: Optional[int] = Field(default=None, ge=0, le=MAX_SESSION_SECONDS)
    score: Optional[float] = Field(default=None, ge=0, le=100)
    time_spent: Optional[float] = Field(default=None, alias="timeSpent", ge=0, le=MAX_SESSION_SECONDS)
    questions_count: Optional[int] = Field(default=None, alias="questionsCount", ge=1, le=500)
    completion_rate: Optional[float] = Field(default=None, alias="completionRate", ge=0, le=100)
    video_progress: Optional[float] = Field(default=None, alias="videoProgress", ge=0, le=100)


# ============================================================================
# VIDEO METRICS VALIDATION
# ============================================================================

class VideoMetrics(BaseModel):
    """
    Validate end-of-video metrics reported by the player

    Constraints:
    - engagementScore, videoProgress: 0-100 (default 0)
    - actualWatchTime, totalTimeSpent: 0-86400 seconds
    - tabSwitches: non-negative
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True, allow_inf_nan=False)

    engagement_score: float = Field(default=0, alias="engagementScore", ge=0, le=100)
    video_progress: float = Field(default=0, alias="videoProgress", ge=0, le=100)
    actual_watch_time: float = Field(default=0, alias="actualWatchTime", ge=0, le=MAX_SESSION_SECONDS)
    total_time_spent: float = Field(default=0, alias="totalTimeSpent", ge=0, le=MAX_SESSION_SECONDS)
    tab_switches: int = Field(default=0, alias="tabSwitches", ge=0)


# ============================================================================
# WATCH-TIME CLAIMS
# ============================================================================

class WatchTimeClaim(BaseModel):
    """Validate a periodic watch-time ping"""
    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)

    watch_time_minutes: float = Field(..., alias="watchTimeMinutes", gt=0, le=MAX_WATCH_MINUTES)
    engagement_score: Optional[float] = Field(default=None, alias="engagementScore", ge=0, le=100)


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def format_validation_error(e: Exception) -> str:
    """
    Format Pydantic validation error for API responses

    Args:
        e: ValidationError from Pydantic

    Returns:
        Short message naming the first offending field
    """
    if not isinstance(e, PydanticValidationError):
        return f"Error: {str(e)}"

    errors = e.errors()
    if not errors:
        return "Validation failed"

    # Get first error for simplicity
    first_error = errors[0]
    loc = first_error.get('loc') or ('input',)
    field = loc[0]
    msg = first_error.get('msg', 'Invalid value')

    field_name = field if isinstance(field, str) else 'input'
    return f"Invalid {field_name}: {msg}"


def validate_model(model_class: type[BaseModel], data: Optional[dict], user_id: Optional[str] = None) -> BaseModel:
    """
    Validate data against model_class, raising our ValidationError on failure

    Raises:
        ValidationError: with the first offending field and a readable message
    """
    try:
        return model_class.model_validate(data or {})
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = first.get('loc') or ('input',)
        raise ValidationError(
            message=format_validation_error(e),
            field=str(loc[0]),
            value=first.get('input'),
            user_id=user_id,
            operation=f"validate_{model_class.__name__}"
        )


def sanitize_metadata(metadata: Optional[dict[str, Any]], user_id: Optional[str] = None) -> dict[str, Any]:
    """
    Validate an action's metadata bag and return it with camelCase keys

    Known numeric fields are range-checked and coerced; unknown keys pass
    through; null values are dropped.
    """
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError(
            message="metadata must be an object",
            field="metadata",
            value=metadata,
            user_id=user_id
        )
    validated = validate_model(ActionMetadata, metadata, user_id=user_id)
    return validated.model_dump(by_alias=True, exclude_none=True)
