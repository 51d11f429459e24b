"""
Action store interface

Everything the progress service persists or reads goes through ActionStore.
Two implementations exist: PostgresActionStore (src/db/store.py) and
InMemoryActionStore (src/gamification/memory_store.py).

Counters and XP are always changed by increments, never by writing back a
value read earlier, so concurrent writers cannot lose updates.
"""

import asyncio
import logging
import weakref
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import AsyncIterator, Dict, List, Optional

from src.exceptions import StoreTimeoutError
from src.models.action import ActionRecord
from src.models.achievement import UserAchievement
from src.models.user import UserState, UserStateUpdate

logger = logging.getLogger(__name__)


class UserLockRegistry:
    """
    In-process asyncio.Lock per user id

    Locks are held weakly, so idle users do not accumulate entries.
    """

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _get(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self._get(user_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise StoreTimeoutError(
                message=f"Timed out waiting for progress lock of user {user_id}",
                timeout_seconds=self.timeout_seconds,
                user_id=user_id,
                operation="user_lock",
                cause=e
            )
        try:
            yield
        finally:
            lock.release()


class ActionStore(ABC):
    """Persistence interface for users, the action log and reward audit tables"""

    # ==========================================
    # Users
    # ==========================================

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserState]:
        ...

    @abstractmethod
    async def apply_user_update(self, user_id: str, xp_delta: int, update: UserStateUpdate) -> UserState:
        """Add xp_delta and counter increments, set level/streak/last_active; return the new state"""

    @abstractmethod
    async def add_xp(self, user_id: str, amount: int, level: int, last_active: Optional[datetime] = None) -> UserState:
        """Atomically add XP and set the level computed for the new total"""

    @abstractmethod
    async def unlock_achievements(
        self,
        user_id: str,
        achievement_ids: List[str],
        xp_delta: int,
        level: int
    ) -> UserState:
        """Append ids not already unlocked and add their XP in one statement"""

    # ==========================================
    # Action log
    # ==========================================

    @abstractmethod
    async def append_action(self, record: ActionRecord) -> None:
        ...

    @abstractmethod
    async def recent_actions(
        self,
        user_id: str,
        since: datetime,
        source: Optional[str] = None
    ) -> List[ActionRecord]:
        ...

    @abstractmethod
    async def actions_by_ip(self, ip_address: str, since: datetime) -> List[ActionRecord]:
        ...

    @abstractmethod
    async def count_actions_since(
        self,
        user_id: str,
        action_type: str,
        since: datetime,
        source: Optional[str] = None
    ) -> int:
        ...

    @abstractmethod
    async def has_prior_activity(self, user_id: str, action_type: str, video_id: Optional[str]) -> bool:
        ...

    @abstractmethod
    async def study_duration_since(self, user_id: str, since: datetime) -> int:
        """Sum of metadata.duration (seconds) over tracked activities since `since`"""

    # ==========================================
    # Daily activity
    # ==========================================

    @abstractmethod
    async def activity_dates(self, user_id: str, limit: int = 100) -> List[date]:
        """Most recent active days, newest first"""

    @abstractmethod
    async def upsert_daily_activity(self, user_id: str, activity_date: date) -> None:
        ...

    # ==========================================
    # Reward audit tables
    # ==========================================

    @abstractmethod
    async def has_liked(self, user_id: str, video_id: str) -> bool:
        ...

    @abstractmethod
    async def record_like(self, user_id: str, video_id: str) -> None:
        ...

    @abstractmethod
    async def last_watch_bonus_minutes(self, user_id: str, video_id: str) -> Optional[float]:
        ...

    @abstractmethod
    async def record_watch_bonus(self, user_id: str, video_id: str, watch_time_minutes: float, bonus_xp: int) -> None:
        ...

    @abstractmethod
    async def record_video_completion(
        self,
        user_id: str,
        video_id: str,
        completion_percentage: float,
        engagement_score: float,
        xp_awarded: int,
        metrics: Dict
    ) -> bool:
        """Returns False when the (user, video) completion already exists"""

    @abstractmethod
    async def last_engagement_bonus_minutes(self, user_id: str, video_id: str) -> Optional[float]:
        ...

    @abstractmethod
    async def record_engagement_bonus(
        self,
        user_id: str,
        video_id: str,
        watch_time_minutes: float,
        engagement_score: float,
        xp_awarded: int,
        metrics: Dict
    ) -> bool:
        """Returns False when the (user, video, minutes) bonus already exists"""

    @abstractmethod
    async def record_validation_failure(
        self,
        user_id: Optional[str],
        action_type: Optional[str],
        reason: str,
        ip_address: Optional[str],
        user_agent: str,
        metadata: Dict
    ) -> None:
        ...

    @abstractmethod
    async def record_achievement_unlock(self, unlock: UserAchievement) -> None:
        ...

    # ==========================================
    # Coordination
    # ==========================================

    @abstractmethod
    def user_lock(self, user_id: str):
        """Async context manager serializing progress updates for one user"""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass
