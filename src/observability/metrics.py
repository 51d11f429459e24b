"""
Prometheus metrics definitions for the rewards API.

Metrics are organized by category:
- HTTP/API metrics: Request counts, latency, in-flight requests
- Action metrics: Validation outcomes per action type
- Reward metrics: XP awarded, level ups, achievement unlocks
- Store metrics: Call latency, swallowed best-effort failures

Metrics are exposed at the /metrics endpoint for Prometheus scraping.
"""

import logging
import os
import sys
from prometheus_client import Counter, Gauge, Histogram, Info

logger = logging.getLogger(__name__)

# =============================================================================
# HTTP/API Metrics
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests received",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0],
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently being processed",
    ["method", "endpoint"],
)

# =============================================================================
# Action Metrics
# =============================================================================

action_validations_total = Counter(
    "action_validations_total",
    "Actions evaluated by the rate limiter and anti-cheat validator",
    ["action_type", "result"],  # result: accepted/rejected
)

# =============================================================================
# Reward Metrics
# =============================================================================

xp_awarded_total = Counter(
    "xp_awarded_total",
    "Total XP awarded",
    ["source"],  # source: activity/track/watch_bonus/video_complete/engagement_bonus/achievement
)

level_ups_total = Counter(
    "level_ups_total",
    "Number of level ups",
)

achievements_unlocked_total = Counter(
    "achievements_unlocked_total",
    "Achievements unlocked",
    ["achievement_id"],
)

# =============================================================================
# Store Metrics
# =============================================================================

store_operation_duration_seconds = Histogram(
    "store_operation_duration_seconds",
    "Store call latency in seconds",
    ["operation"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
)

best_effort_failures_total = Counter(
    "best_effort_failures_total",
    "Secondary writes that failed and were skipped",
    ["operation"],
)

# =============================================================================
# Application Info
# =============================================================================

app_info = Info("learnstream_app", "Application metadata")


def init_metrics():
    """
    Initialize metrics with application information.

    This should be called once at application startup to set
    static metadata about the application.
    """
    from src.config import STORE_BACKEND

    app_info.info(
        {
            "version": os.getenv("GIT_COMMIT_SHA", "dev")[:7],
            "store_backend": STORE_BACKEND,
            "python_version": f"{sys.version_info.major}.{sys.version_info.minor}",
        }
    )

    logger.info("Prometheus metrics initialized")


# =============================================================================
# Helper Functions
# =============================================================================


def record_validation(action_type: str, valid: bool) -> None:
    action_validations_total.labels(
        action_type=action_type or "unknown",
        result="accepted" if valid else "rejected",
    ).inc()


def record_xp(source: str, amount: int) -> None:
    if amount > 0:
        xp_awarded_total.labels(source=source).inc(amount)
