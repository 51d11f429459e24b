"""Best-effort execution for secondary writes

Audit rows, daily markers and similar side effects must never change the
outcome of a request. best_effort() runs one such call, logs and counts a
failure, and hands back a default instead of raising.
"""

import logging
from typing import Any, Awaitable, TypeVar

from src.observability.metrics import best_effort_failures_total

logger = logging.getLogger(__name__)

T = TypeVar('T')


async def best_effort(
    operation: str,
    awaitable: Awaitable[T],
    default: Any = None,
    user_id: str = None
) -> T:
    """
    Await a secondary write, swallowing and logging any failure

    Args:
        operation: Name used in logs and the best_effort_failures_total metric
        awaitable: The store call to run
        default: Returned when the call fails
        user_id: For log context

    Returns:
        The call's result, or `default` on failure

    Example:
        await best_effort("record_like", store.record_like(user_id, video_id))
    """
    try:
        return await awaitable
    except Exception as e:
        logger.warning(
            f"[BEST_EFFORT] {operation} failed for user {user_id}: "
            f"{type(e).__name__}: {e}",
            exc_info=True
        )
        best_effort_failures_total.labels(operation=operation).inc()
        return default
