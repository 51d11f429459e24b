"""Daily activity, likes, bonus and achievement audit queries"""
import json
import logging
from datetime import date, datetime
from typing import Optional
from src.db.connection import db

logger = logging.getLogger(__name__)


# ==========================================
# Daily Activity
# ==========================================

async def get_activity_dates(user_id: str, limit: int = 100) -> list[date]:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT activity_date
                FROM user_daily_activity
                WHERE user_id = %s
                ORDER BY activity_date DESC
                LIMIT %s
                """,
                (user_id, limit)
            )
            return [row["activity_date"] for row in await cur.fetchall()]


async def upsert_daily_activity(user_id: str, activity_date: date) -> None:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO user_daily_activity (user_id, activity_date, activities_count)
                VALUES (%s, %s, 1)
                ON CONFLICT (user_id, activity_date)
                DO UPDATE SET activities_count = user_daily_activity.activities_count + 1
                """,
                (user_id, activity_date)
            )
            await conn.commit()


# ==========================================
# Likes
# ==========================================

async def has_liked(user_id: str, video_id: str) -> bool:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                "SELECT EXISTS (SELECT 1 FROM user_likes WHERE user_id = %s AND video_id = %s) AS found",
                (user_id, video_id)
            )
            row = await cur.fetchone()
            return bool(row and row["found"])


async def insert_like(user_id: str, video_id: str) -> None:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO user_likes (user_id, video_id)
                VALUES (%s, %s)
                ON CONFLICT (user_id, video_id) DO NOTHING
                """,
                (user_id, video_id)
            )
            await conn.commit()


# ==========================================
# Watch Bonuses
# ==========================================

async def get_last_watch_bonus_minutes(user_id: str, video_id: str) -> Optional[float]:
    """
    Highest watch time a bonus was paid for on this video

    MAX rather than the latest row on purpose: the next bonus needs watch
    time beyond every checkpoint already paid, so rewatching a video from
    the start earns no further watch bonuses once a long session was rewarded.
    """
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT MAX(watch_time_minutes) AS minutes
                FROM user_watch_bonuses
                WHERE user_id = %s AND video_id = %s
                """,
                (user_id, video_id)
            )
            row = await cur.fetchone()
            if not row or row["minutes"] is None:
                return None
            return float(row["minutes"])


async def insert_watch_bonus(user_id: str, video_id: str, watch_time_minutes: float, bonus_xp: int) -> None:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO user_watch_bonuses (user_id, video_id, watch_time_minutes, bonus_xp)
                VALUES (%s, %s, %s, %s)
                """,
                (user_id, video_id, watch_time_minutes, bonus_xp)
            )
            await conn.commit()


# ==========================================
# Video Completions / Engagement Bonuses
# ==========================================

async def insert_video_completion(
    user_id: str,
    video_id: str,
    completion_percentage: float,
    engagement_score: float,
    xp_awarded: int,
    metrics: dict
) -> bool:
    """Returns False if this (user, video) completion was already recorded"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO user_video_completions
                (user_id, video_id, completion_percentage, engagement_score,
                 actual_watch_time, total_time_spent, tab_switches, xp_awarded, metrics)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb)
                ON CONFLICT (user_id, video_id) DO NOTHING
                RETURNING id
                """,
                (
                    user_id,
                    video_id,
                    completion_percentage,
                    engagement_score,
                    metrics.get("actualWatchTime", 0),
                    metrics.get("totalTimeSpent", 0),
                    metrics.get("tabSwitches", 0),
                    xp_awarded,
                    json.dumps(metrics),
                )
            )
            row = await cur.fetchone()
            await conn.commit()
            return row is not None


async def get_last_engagement_bonus_minutes(user_id: str, video_id: str) -> Optional[float]:
    """Highest watch time an engagement bonus was paid for; same MAX rule as watch bonuses"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT MAX(watch_time_minutes) AS minutes
                FROM user_engagement_bonuses
                WHERE user_id = %s AND video_id = %s
                """,
                (user_id, video_id)
            )
            row = await cur.fetchone()
            if not row or row["minutes"] is None:
                return None
            return float(row["minutes"])


async def insert_engagement_bonus(
    user_id: str,
    video_id: str,
    watch_time_minutes: float,
    engagement_score: float,
    xp_awarded: int,
    metrics: dict
) -> bool:
    """Returns False if this (user, video, minutes) bonus was already recorded"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO user_engagement_bonuses
                (user_id, video_id, watch_time_minutes, engagement_score, xp_awarded, metrics)
                VALUES (%s, %s, %s, %s, %s, %s::jsonb)
                ON CONFLICT (user_id, video_id, watch_time_minutes) DO NOTHING
                RETURNING id
                """,
                (user_id, video_id, watch_time_minutes, engagement_score, xp_awarded, json.dumps(metrics or {}))
            )
            row = await cur.fetchone()
            await conn.commit()
            return row is not None


# ==========================================
# Achievements
# ==========================================

async def insert_achievement_unlock(
    user_id: str,
    achievement_id: str,
    unlocked_at: datetime,
    xp_awarded: Optional[int]
) -> None:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO user_achievements (user_id, achievement_id, unlocked_at, xp_awarded)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (user_id, achievement_id) DO NOTHING
                """,
                (user_id, achievement_id, unlocked_at, xp_awarded)
            )
            await conn.commit()
            logger.info(f"Recorded achievement {achievement_id} for user {user_id}")
