"""Action models: client-submitted actions, persisted action records, validation results"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field

# Which gate wrote an action record. Validators only look at history
# written by the same gate.
SOURCE_VALIDATION = "validation"
SOURCE_TRACK = "track"
SOURCE_ACTIVITY = "activity"
SOURCE_BONUS = "bonus"


class UserAction(BaseModel):
    """A discrete user-initiated event submitted for validation and reward"""
    user_id: Optional[str] = None
    action_type: Optional[str] = None
    video_id: Optional[str] = None
    module_id: Optional[str] = None
    course_id: Optional[str] = None
    quiz_id: Optional[str] = None
    challenge_id: Optional[str] = None
    timestamp: Optional[int] = Field(default=None, description="Epoch milliseconds")
    metadata: dict[str, Any] = Field(default_factory=dict)

    def target_id(self, field_name: str) -> Optional[str]:
        """Return the id the cooldown for this action type is keyed on"""
        return getattr(self, field_name, None)


class ActionRecord(UserAction):
    """Append-only action log entry"""
    ip_address: Optional[str] = None
    user_agent: str = "unknown"
    xp_awarded: int = 0
    source: str = SOURCE_VALIDATION
    created_at: datetime


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a rate-limit or anti-cheat check"""
    valid: bool
    reason: Optional[str] = None
    cooldown_remaining_ms: Optional[int] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def reject(cls, reason: str, cooldown_remaining_ms: Optional[int] = None) -> "ValidationResult":
        return cls(valid=False, reason=reason, cooldown_remaining_ms=cooldown_remaining_ms)
