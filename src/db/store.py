"""
PostgreSQL-backed ActionStore

Wraps the query modules with a per-call timeout, error translation into
the exception hierarchy, and latency metrics. The per-user critical section
combines an in-process asyncio lock with a session-level advisory lock held
on a dedicated lock-pool connection, so several API processes can share one
database.
"""

import asyncio
import logging
import time
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import date, datetime
from typing import Awaitable, Dict, List, Optional, TypeVar

from psycopg_pool import PoolTimeout

from src.db.connection import Database, db as default_db
from src.db.queries import actions as action_queries
from src.db.queries import activity as activity_queries
from src.db.queries import users as user_queries
from src.exceptions import LearnStreamError, RecordNotFoundError, StoreTimeoutError, wrap_external_exception
from src.gamification.store import ActionStore, UserLockRegistry
from src.models.action import ActionRecord, SOURCE_ACTIVITY
from src.models.achievement import UserAchievement
from src.models.user import UserState, UserStateUpdate
from src.observability.metrics import store_operation_duration_seconds

logger = logging.getLogger(__name__)

T = TypeVar('T')

ADVISORY_LOCK_POLL_SECONDS = 0.05


class PostgresActionStore(ActionStore):
    """ActionStore over the psycopg connection pool"""

    def __init__(self, database: Database = default_db, timeout_seconds: float = 5.0):
        self.database = database
        self.timeout_seconds = timeout_seconds
        self._local_locks = UserLockRegistry(timeout_seconds)

    async def _call(self, operation: str, awaitable: Awaitable[T], user_id: Optional[str] = None) -> T:
        """Run one query with the configured timeout; translate driver errors"""
        start_time = time.perf_counter()
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except Exception as e:
            raise wrap_external_exception(
                e,
                operation=operation,
                user_id=user_id,
                context={"timeout_seconds": self.timeout_seconds}
            )
        finally:
            store_operation_duration_seconds.labels(operation=operation).observe(
                time.perf_counter() - start_time
            )

    def _user_or_raise(self, row: Optional[dict], user_id: str) -> UserState:
        if row is None:
            raise RecordNotFoundError(
                message=f"User {user_id} not found",
                record_type="User",
                record_id=user_id,
                user_id=user_id
            )
        return UserState(**row)

    # ==========================================
    # Users
    # ==========================================

    async def get_user(self, user_id: str) -> Optional[UserState]:
        row = await self._call("get_user", user_queries.get_user(user_id), user_id)
        return UserState(**row) if row else None

    async def apply_user_update(self, user_id: str, xp_delta: int, update: UserStateUpdate) -> UserState:
        row = await self._call(
            "apply_user_update",
            user_queries.apply_user_update(
                user_id,
                xp_delta=xp_delta,
                level=update.level,
                current_streak=update.current_streak,
                best_streak=update.best_streak,
                last_active=update.last_active,
                increments=update.increments,
            ),
            user_id,
        )
        return self._user_or_raise(row, user_id)

    async def add_xp(self, user_id: str, amount: int, level: int, last_active: Optional[datetime] = None) -> UserState:
        row = await self._call("add_xp", user_queries.add_user_xp(user_id, amount, level, last_active), user_id)
        return self._user_or_raise(row, user_id)

    async def unlock_achievements(
        self,
        user_id: str,
        achievement_ids: List[str],
        xp_delta: int,
        level: int
    ) -> UserState:
        row = await self._call(
            "unlock_achievements",
            user_queries.unlock_achievements(user_id, achievement_ids, xp_delta, level),
            user_id,
        )
        return self._user_or_raise(row, user_id)

    # ==========================================
    # Action log
    # ==========================================

    async def append_action(self, record: ActionRecord) -> None:
        await self._call("append_action", action_queries.insert_action(record.model_dump()), record.user_id)

    async def recent_actions(
        self,
        user_id: str,
        since: datetime,
        source: Optional[str] = None
    ) -> List[ActionRecord]:
        rows = await self._call("recent_actions", action_queries.get_recent_actions(user_id, since, source), user_id)
        return [ActionRecord(**row) for row in rows]

    async def actions_by_ip(self, ip_address: str, since: datetime) -> List[ActionRecord]:
        rows = await self._call("actions_by_ip", action_queries.get_actions_by_ip(ip_address, since))
        return [ActionRecord(**row) for row in rows]

    async def count_actions_since(
        self,
        user_id: str,
        action_type: str,
        since: datetime,
        source: Optional[str] = None
    ) -> int:
        return await self._call(
            "count_actions_since",
            action_queries.count_actions_since(user_id, action_type, since, source),
            user_id,
        )

    async def has_prior_activity(self, user_id: str, action_type: str, video_id: Optional[str]) -> bool:
        return await self._call(
            "has_prior_activity",
            action_queries.has_prior_activity(user_id, action_type, video_id, SOURCE_ACTIVITY),
            user_id,
        )

    async def study_duration_since(self, user_id: str, since: datetime) -> int:
        return await self._call(
            "study_duration_since",
            action_queries.get_study_duration_since(user_id, since, SOURCE_ACTIVITY),
            user_id,
        )

    # ==========================================
    # Daily activity
    # ==========================================

    async def activity_dates(self, user_id: str, limit: int = 100) -> List[date]:
        return await self._call("activity_dates", activity_queries.get_activity_dates(user_id, limit), user_id)

    async def upsert_daily_activity(self, user_id: str, activity_date: date) -> None:
        await self._call(
            "upsert_daily_activity",
            activity_queries.upsert_daily_activity(user_id, activity_date),
            user_id,
        )

    # ==========================================
    # Reward audit tables
    # ==========================================

    async def has_liked(self, user_id: str, video_id: str) -> bool:
        return await self._call("has_liked", activity_queries.has_liked(user_id, video_id), user_id)

    async def record_like(self, user_id: str, video_id: str) -> None:
        await self._call("record_like", activity_queries.insert_like(user_id, video_id), user_id)

    async def last_watch_bonus_minutes(self, user_id: str, video_id: str) -> Optional[float]:
        return await self._call(
            "last_watch_bonus_minutes",
            activity_queries.get_last_watch_bonus_minutes(user_id, video_id),
            user_id,
        )

    async def record_watch_bonus(self, user_id: str, video_id: str, watch_time_minutes: float, bonus_xp: int) -> None:
        await self._call(
            "record_watch_bonus",
            activity_queries.insert_watch_bonus(user_id, video_id, watch_time_minutes, bonus_xp),
            user_id,
        )

    async def record_video_completion(
        self,
        user_id: str,
        video_id: str,
        completion_percentage: float,
        engagement_score: float,
        xp_awarded: int,
        metrics: Dict
    ) -> bool:
        return await self._call(
            "record_video_completion",
            activity_queries.insert_video_completion(
                user_id, video_id, completion_percentage, engagement_score, xp_awarded, metrics
            ),
            user_id,
        )

    async def last_engagement_bonus_minutes(self, user_id: str, video_id: str) -> Optional[float]:
        return await self._call(
            "last_engagement_bonus_minutes",
            activity_queries.get_last_engagement_bonus_minutes(user_id, video_id),
            user_id,
        )

    async def record_engagement_bonus(
        self,
        user_id: str,
        video_id: str,
        watch_time_minutes: float,
        engagement_score: float,
        xp_awarded: int,
        metrics: Dict
    ) -> bool:
        return await self._call(
            "record_engagement_bonus",
            activity_queries.insert_engagement_bonus(
                user_id, video_id, watch_time_minutes, engagement_score, xp_awarded, metrics
            ),
            user_id,
        )

    async def record_validation_failure(
        self,
        user_id: Optional[str],
        action_type: Optional[str],
        reason: str,
        ip_address: Optional[str],
        user_agent: str,
        metadata: Dict
    ) -> None:
        await self._call(
            "record_validation_failure",
            action_queries.insert_validation_failure(user_id, action_type, reason, ip_address, user_agent, metadata),
            user_id,
        )

    async def record_achievement_unlock(self, unlock: UserAchievement) -> None:
        await self._call(
            "record_achievement_unlock",
            activity_queries.insert_achievement_unlock(
                unlock.user_id, unlock.achievement_id, unlock.unlocked_at, unlock.xp_awarded
            ),
            unlock.user_id,
        )

    # ==========================================
    # Coordination
    # ==========================================

    async def _acquire_advisory_lock(self, conn, user_id: str, deadline: float) -> None:
        loop = asyncio.get_running_loop()
        while not await self._call("advisory_lock", user_queries.try_advisory_lock(conn, user_id), user_id):
            if loop.time() >= deadline:
                raise StoreTimeoutError(
                    message=f"Timed out waiting for advisory lock of user {user_id}",
                    timeout_seconds=self.timeout_seconds,
                    user_id=user_id,
                    operation="user_lock"
                )
            await asyncio.sleep(ADVISORY_LOCK_POLL_SECONDS)

    async def _release_advisory_lock(self, conn, user_id: str) -> None:
        try:
            await self._call("advisory_unlock", user_queries.advisory_unlock(conn, user_id), user_id)
        except LearnStreamError as e:
            # Session locks survive a rollback. A closed connection is dropped
            # by the pool and the server releases everything it held.
            logger.error(f"Advisory unlock failed for user {user_id}; closing lock connection: {e}")
            await conn.close()

    @asynccontextmanager
    async def user_lock(self, user_id: str):
        """
        Serialize progress updates for one user across tasks and processes

        The advisory lock lives on a lock-pool connection; queries inside the
        section use the query pool.

        Raises:
            StoreTimeoutError: the lock was not acquired within timeout_seconds
        """
        deadline = asyncio.get_running_loop().time() + self.timeout_seconds

        async with self._local_locks.hold(user_id):
            async with AsyncExitStack() as stack:
                try:
                    conn = await stack.enter_async_context(self.database.lock_connection())
                except PoolTimeout as e:
                    raise StoreTimeoutError(
                        message=f"No lock connection available for user {user_id}",
                        timeout_seconds=self.timeout_seconds,
                        user_id=user_id,
                        operation="user_lock",
                        cause=e
                    )
                await self._acquire_advisory_lock(conn, user_id, deadline)
                try:
                    yield
                finally:
                    await self._release_advisory_lock(conn, user_id)

    async def ping(self) -> bool:
        async def _select_one():
            async with self.database.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT 1")
                    return True

        return await self._call("ping", _select_one())

    async def close(self) -> None:
        await self.database.close_pool()
