"""
In-memory ActionStore

Used by the test suite and by STORE_BACKEND=memory for local development.
Nothing is persisted across restarts.
"""

import copy
import logging
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional

from src.gamification.store import ActionStore, UserLockRegistry
from src.models.action import ActionRecord, SOURCE_ACTIVITY
from src.models.achievement import UserAchievement
from src.models.user import UserState, UserStateUpdate
from src.exceptions import RecordNotFoundError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryActionStore(ActionStore):
    """Dict-backed store; every method returns copies so callers cannot mutate state"""

    def __init__(self, lock_timeout_seconds: float = 5.0, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._users: Dict[str, UserState] = {}
        self._actions: List[ActionRecord] = []
        self._daily_activity: Dict[tuple, int] = {}
        self._likes: Dict[tuple, datetime] = {}
        self._watch_bonuses: List[dict] = []
        self._completions: Dict[tuple, dict] = {}
        self._engagement_bonuses: Dict[tuple, dict] = {}
        self.validation_failures: List[dict] = []
        self.achievement_unlocks: List[UserAchievement] = []
        self._locks = UserLockRegistry(lock_timeout_seconds)

    # ==========================================
    # Users
    # ==========================================

    def create_user(self, user_id: str, **fields) -> UserState:
        """Seed a user (tests and development only)"""
        user = UserState(id=user_id, **fields)
        self._users[user_id] = user
        logger.debug(f"Seeded in-memory user {user_id}")
        return user.model_copy(deep=True)

    def _require_user(self, user_id: str) -> UserState:
        user = self._users.get(user_id)
        if user is None:
            raise RecordNotFoundError(
                message=f"User {user_id} not found",
                record_type="User",
                record_id=user_id,
                user_id=user_id
            )
        return user

    async def get_user(self, user_id: str) -> Optional[UserState]:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def apply_user_update(self, user_id: str, xp_delta: int, update: UserStateUpdate) -> UserState:
        user = self._require_user(user_id)
        changes = {
            "total_xp": user.total_xp + xp_delta,
            "level": update.level,
            "current_streak": update.current_streak,
            "best_streak": update.best_streak,
            "last_active": update.last_active,
        }
        for counter, amount in update.increments.items():
            changes[counter] = getattr(user, counter) + amount
        self._users[user_id] = user.model_copy(update=changes)
        return self._users[user_id].model_copy(deep=True)

    async def add_xp(self, user_id: str, amount: int, level: int, last_active: Optional[datetime] = None) -> UserState:
        user = self._require_user(user_id)
        changes = {"total_xp": user.total_xp + amount, "level": level}
        if last_active is not None:
            changes["last_active"] = last_active
        self._users[user_id] = user.model_copy(update=changes)
        return self._users[user_id].model_copy(deep=True)

    async def unlock_achievements(
        self,
        user_id: str,
        achievement_ids: List[str],
        xp_delta: int,
        level: int
    ) -> UserState:
        user = self._require_user(user_id)
        unlocked = list(dict.fromkeys(user.unlocked_achievements + list(achievement_ids)))
        self._users[user_id] = user.model_copy(update={
            "total_xp": user.total_xp + xp_delta,
            "level": level,
            "unlocked_achievements": unlocked,
        })
        return self._users[user_id].model_copy(deep=True)

    # ==========================================
    # Action log
    # ==========================================

    async def append_action(self, record: ActionRecord) -> None:
        self._actions.append(record.model_copy(deep=True))

    async def recent_actions(
        self,
        user_id: str,
        since: datetime,
        source: Optional[str] = None
    ) -> List[ActionRecord]:
        return [
            r.model_copy(deep=True)
            for r in reversed(self._actions)
            if r.user_id == user_id and r.created_at >= since and (source is None or r.source == source)
        ]

    async def actions_by_ip(self, ip_address: str, since: datetime) -> List[ActionRecord]:
        return [
            r.model_copy(deep=True)
            for r in reversed(self._actions)
            if r.ip_address == ip_address and r.created_at >= since
        ]

    async def count_actions_since(
        self,
        user_id: str,
        action_type: str,
        since: datetime,
        source: Optional[str] = None
    ) -> int:
        return sum(
            1 for r in self._actions
            if r.user_id == user_id
            and r.action_type == action_type
            and r.created_at >= since
            and (source is None or r.source == source)
        )

    async def has_prior_activity(self, user_id: str, action_type: str, video_id: Optional[str]) -> bool:
        return any(
            r.user_id == user_id
            and r.action_type == action_type
            and r.video_id == video_id
            and r.source == SOURCE_ACTIVITY
            for r in self._actions
        )

    async def study_duration_since(self, user_id: str, since: datetime) -> int:
        total = 0
        for r in self._actions:
            if r.user_id == user_id and r.source == SOURCE_ACTIVITY and r.created_at >= since:
                total += int(r.metadata.get("duration") or 0)
        return total

    # ==========================================
    # Daily activity
    # ==========================================

    async def activity_dates(self, user_id: str, limit: int = 100) -> List[date]:
        days = sorted((d for (uid, d) in self._daily_activity if uid == user_id), reverse=True)
        return days[:limit]

    async def upsert_daily_activity(self, user_id: str, activity_date: date) -> None:
        key = (user_id, activity_date)
        self._daily_activity[key] = self._daily_activity.get(key, 0) + 1

    # ==========================================
    # Reward audit tables
    # ==========================================

    async def has_liked(self, user_id: str, video_id: str) -> bool:
        return (user_id, video_id) in self._likes

    async def record_like(self, user_id: str, video_id: str) -> None:
        self._likes.setdefault((user_id, video_id), self._clock())

    async def last_watch_bonus_minutes(self, user_id: str, video_id: str) -> Optional[float]:
        minutes = [
            b["watch_time_minutes"] for b in self._watch_bonuses
            if b["user_id"] == user_id and b["video_id"] == video_id
        ]
        return max(minutes) if minutes else None

    async def record_watch_bonus(self, user_id: str, video_id: str, watch_time_minutes: float, bonus_xp: int) -> None:
        self._watch_bonuses.append({
            "user_id": user_id,
            "video_id": video_id,
            "watch_time_minutes": watch_time_minutes,
            "bonus_xp": bonus_xp,
            "created_at": self._clock(),
        })

    async def record_video_completion(
        self,
        user_id: str,
        video_id: str,
        completion_percentage: float,
        engagement_score: float,
        xp_awarded: int,
        metrics: Dict
    ) -> bool:
        key = (user_id, video_id)
        if key in self._completions:
            return False
        self._completions[key] = {
            "completion_percentage": completion_percentage,
            "engagement_score": engagement_score,
            "xp_awarded": xp_awarded,
            "metrics": copy.deepcopy(metrics),
        }
        return True

    async def last_engagement_bonus_minutes(self, user_id: str, video_id: str) -> Optional[float]:
        minutes = [key[2] for key in self._engagement_bonuses if key[:2] == (user_id, video_id)]
        return max(minutes) if minutes else None

    async def record_engagement_bonus(
        self,
        user_id: str,
        video_id: str,
        watch_time_minutes: float,
        engagement_score: float,
        xp_awarded: int,
        metrics: Dict
    ) -> bool:
        key = (user_id, video_id, watch_time_minutes)
        if key in self._engagement_bonuses:
            return False
        self._engagement_bonuses[key] = {
            "engagement_score": engagement_score,
            "xp_awarded": xp_awarded,
            "metrics": copy.deepcopy(metrics),
        }
        return True

    async def record_validation_failure(
        self,
        user_id: Optional[str],
        action_type: Optional[str],
        reason: str,
        ip_address: Optional[str],
        user_agent: str,
        metadata: Dict
    ) -> None:
        self.validation_failures.append({
            "user_id": user_id,
            "action_type": action_type,
            "reason": reason,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "metadata": copy.deepcopy(metadata),
            "created_at": self._clock(),
        })

    async def record_achievement_unlock(self, unlock: UserAchievement) -> None:
        self.achievement_unlocks.append(unlock)

    # ==========================================
    # Coordination
    # ==========================================

    def user_lock(self, user_id: str):
        return self._locks.hold(user_id)
