"""User progress queries"""
import logging
from datetime import datetime
from typing import Optional
import psycopg
from psycopg import sql
from src.db.connection import db

logger = logging.getLogger(__name__)

USER_COLUMNS = """
    id, total_xp, level, current_streak, best_streak, last_active,
    videos_watched, likes_given, quizzes_completed, challenges_completed, time_spent,
    early_bird_sessions, night_owl_sessions, weekend_sessions, unlocked_achievements
"""

# Only these columns may be incremented through apply_user_update
COUNTER_COLUMNS = frozenset({
    "videos_watched",
    "likes_given",
    "quizzes_completed",
    "challenges_completed",
    "time_spent",
    "early_bird_sessions",
    "night_owl_sessions",
    "weekend_sessions",
})


async def get_user(user_id: str) -> Optional[dict]:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"SELECT {USER_COLUMNS} FROM users WHERE id = %s",
                (user_id,)
            )
            row = await cur.fetchone()
            return dict(row) if row else None


async def apply_user_update(
    user_id: str,
    xp_delta: int,
    level: int,
    current_streak: int,
    best_streak: int,
    last_active: datetime,
    increments: dict
) -> Optional[dict]:
    """
    Increment XP and counters, set level/streak/last_active

    Returns:
        The updated row, or None when the user does not exist
    """
    unknown = set(increments) - COUNTER_COLUMNS
    if unknown:
        raise ValueError(f"Unknown counter columns: {sorted(unknown)}")

    assignments = [
        sql.SQL("total_xp = total_xp + {}").format(sql.Literal(xp_delta)),
        sql.SQL("level = {}").format(sql.Literal(level)),
        sql.SQL("current_streak = {}").format(sql.Literal(current_streak)),
        sql.SQL("best_streak = GREATEST(best_streak, {})").format(sql.Literal(best_streak)),
        sql.SQL("last_active = {}").format(sql.Literal(last_active)),
        sql.SQL("updated_at = CURRENT_TIMESTAMP"),
    ]
    for column, amount in sorted(increments.items()):
        assignments.append(
            sql.SQL("{col} = {col} + {amount}").format(
                col=sql.Identifier(column),
                amount=sql.Literal(amount)
            )
        )

    query = sql.SQL("UPDATE users SET {assignments} WHERE id = {user_id} RETURNING {columns}").format(
        assignments=sql.SQL(", ").join(assignments),
        user_id=sql.Literal(user_id),
        columns=sql.SQL(USER_COLUMNS),
    )

    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(query)
            row = await cur.fetchone()
            await conn.commit()
            return dict(row) if row else None


async def add_user_xp(
    user_id: str,
    amount: int,
    level: int,
    last_active: Optional[datetime] = None
) -> Optional[dict]:
    """Atomically add XP; the caller computes the level for the new total"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                UPDATE users
                SET total_xp = total_xp + %s,
                    level = %s,
                    last_active = COALESCE(%s, last_active),
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = %s
                RETURNING {USER_COLUMNS}
                """,
                (amount, level, last_active, user_id)
            )
            row = await cur.fetchone()
            await conn.commit()
            return dict(row) if row else None


async def unlock_achievements(
    user_id: str,
    achievement_ids: list[str],
    xp_delta: int,
    level: int
) -> Optional[dict]:
    """Append achievement ids that are not already present and add their XP"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                UPDATE users
                SET total_xp = total_xp + %s,
                    level = %s,
                    unlocked_achievements = unlocked_achievements || ARRAY(
                        SELECT a FROM unnest(%s::text[]) AS a
                        WHERE NOT a = ANY(unlocked_achievements)
                    ),
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = %s
                RETURNING {USER_COLUMNS}
                """,
                (xp_delta, level, achievement_ids, user_id)
            )
            row = await cur.fetchone()
            await conn.commit()
            return dict(row) if row else None


# ==========================================
# Advisory locks (cross-process critical section)
# ==========================================

async def try_advisory_lock(conn: psycopg.AsyncConnection, user_id: str) -> bool:
    async with conn.cursor() as cur:
        await cur.execute(
            "SELECT pg_try_advisory_lock(hashtext(%s)) AS acquired",
            (user_id,)
        )
        row = await cur.fetchone()
        return bool(row and row["acquired"])


async def advisory_unlock(conn: psycopg.AsyncConnection, user_id: str) -> None:
    async with conn.cursor() as cur:
        await cur.execute("SELECT pg_advisory_unlock(hashtext(%s))", (user_id,))
