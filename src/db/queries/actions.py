"""Action log and validation audit queries"""
import json
import logging
from datetime import datetime
from typing import Optional
from src.db.connection import db

logger = logging.getLogger(__name__)

ACTION_COLUMNS = """
    user_id, action_type, video_id, module_id, course_id, quiz_id, challenge_id,
    client_timestamp AS timestamp, metadata, ip_address, user_agent, xp_awarded,
    source, created_at
"""


async def insert_action(record: dict) -> None:
    """Append one action record"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO user_actions
                (user_id, action_type, video_id, module_id, course_id, quiz_id, challenge_id,
                 client_timestamp, metadata, ip_address, user_agent, xp_awarded, source, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s, %s, %s, %s)
                """,
                (
                    record["user_id"],
                    record["action_type"],
                    record.get("video_id"),
                    record.get("module_id"),
                    record.get("course_id"),
                    record.get("quiz_id"),
                    record.get("challenge_id"),
                    record.get("timestamp"),
                    json.dumps(record.get("metadata") or {}),
                    record.get("ip_address"),
                    record.get("user_agent", "unknown"),
                    record.get("xp_awarded", 0),
                    record["source"],
                    record["created_at"],
                )
            )
            await conn.commit()


async def get_recent_actions(user_id: str, since: datetime, source: Optional[str] = None) -> list[dict]:
    """User's actions since `since`, newest first"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                SELECT {ACTION_COLUMNS}
                FROM user_actions
                WHERE user_id = %s
                  AND created_at >= %s
                  AND (%s::text IS NULL OR source = %s)
                ORDER BY created_at DESC
                """,
                (user_id, since, source, source)
            )
            return [dict(row) for row in await cur.fetchall()]


async def get_actions_by_ip(ip_address: str, since: datetime) -> list[dict]:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                SELECT {ACTION_COLUMNS}
                FROM user_actions
                WHERE ip_address = %s AND created_at >= %s
                ORDER BY created_at DESC
                """,
                (ip_address, since)
            )
            return [dict(row) for row in await cur.fetchall()]


async def count_actions_since(
    user_id: str,
    action_type: str,
    since: datetime,
    source: Optional[str] = None
) -> int:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT COUNT(*) AS count
                FROM user_actions
                WHERE user_id = %s
                  AND action_type = %s
                  AND created_at >= %s
                  AND (%s::text IS NULL OR source = %s)
                """,
                (user_id, action_type, since, source, source)
            )
            row = await cur.fetchone()
            return row["count"] if row else 0


async def has_prior_activity(user_id: str, action_type: str, video_id: Optional[str], source: str) -> bool:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT EXISTS (
                    SELECT 1 FROM user_actions
                    WHERE user_id = %s
                      AND action_type = %s
                      AND video_id IS NOT DISTINCT FROM %s
                      AND source = %s
                ) AS found
                """,
                (user_id, action_type, video_id, source)
            )
            row = await cur.fetchone()
            return bool(row and row["found"])


async def get_study_duration_since(user_id: str, since: datetime, source: str) -> int:
    """Sum of metadata.duration seconds across tracked activities"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT COALESCE(SUM((metadata->>'duration')::numeric), 0)::bigint AS total
                FROM user_actions
                WHERE user_id = %s
                  AND source = %s
                  AND created_at >= %s
                  AND jsonb_typeof(metadata->'duration') = 'number'
                """,
                (user_id, source, since)
            )
            row = await cur.fetchone()
            return int(row["total"]) if row else 0


async def insert_validation_failure(
    user_id: Optional[str],
    action_type: Optional[str],
    reason: str,
    ip_address: Optional[str],
    user_agent: str,
    metadata: dict
) -> None:
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO validation_failures
                (user_id, action_type, reason, ip_address, user_agent, metadata)
                VALUES (%s, %s, %s, %s, %s, %s::jsonb)
                """,
                (user_id, action_type, reason, ip_address, user_agent, json.dumps(metadata or {}))
            )
            await conn.commit()
