"""
Anti-Cheat Validation

Decides whether a proposed action is accepted, given the user's recent history.

Checks (first failure wins):
1. Structure: user, action type and timestamp present
2. Clock skew / replay: timestamp not in the future, not too stale
3. Likes: video id present, video not already liked
4. Cooldown per (user, action type, target) - closest violation wins
5. Hourly cap per action type
6. Daily cap per action type
7. Suspicious like patterns (rapid clicking, impossible speed)
8. Action-specific payload checks (quiz timing, watch and engagement bonus intervals)

Thresholds live in a policy table keyed by action type; 0 means unlimited.
Everything the validator needs (clock, history, counts) is passed in. The
client timestamp only feeds the skew/replay check; cooldowns and windows are
measured on server time (`now` and each record's created_at).
"""

import logging
from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta
from typing import Iterable, Mapping, Optional

from src.models.action import UserAction, ValidationResult

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
RAPID_LIKE_WINDOW_MS = 10000
RAPID_LIKE_MAX = 5
MIN_LIKE_INTERVAL_MS = 1000
SECONDS_PER_QUIZ_QUESTION = 10
DEFAULT_QUIZ_QUESTIONS = 5
WATCH_BONUS_INTERVAL_MINUTES = 2

DEFAULT_MAX_FUTURE_SKEW_MS = 5000
DEFAULT_MAX_ACTION_AGE_MS = 10 * 60 * 1000


@dataclass(frozen=True)
class ActionPolicy:
    """Per action type limits. 0 disables the corresponding check."""
    cooldown_ms: int = 0
    max_per_hour: int = 0
    max_per_day: int = 0
    target_field: str = "video_id"


DEFAULT_POLICY = ActionPolicy()

DEFAULT_ACTION_POLICIES: dict[str, ActionPolicy] = {
    "video_like": ActionPolicy(cooldown_ms=3000, max_per_hour=30, max_per_day=100, target_field="video_id"),
    "video_watch": ActionPolicy(target_field="video_id"),  # unlimited viewing
    "quiz_complete": ActionPolicy(cooldown_ms=120000, max_per_hour=5, max_per_day=15, target_field="quiz_id"),
    "challenge_complete": ActionPolicy(cooldown_ms=300000, max_per_hour=3, max_per_day=10, target_field="challenge_id"),
    "notes_read": ActionPolicy(cooldown_ms=10000, max_per_hour=50, max_per_day=200, target_field="video_id"),
    "course_complete": ActionPolicy(cooldown_ms=3600000, max_per_hour=1, max_per_day=3, target_field="course_id"),
    "watch_bonus": ActionPolicy(cooldown_ms=120000, max_per_hour=30, max_per_day=720, target_field="video_id"),
    "engagement_bonus": ActionPolicy(cooldown_ms=120000, max_per_hour=30, max_per_day=720, target_field="video_id"),
}


@dataclass(frozen=True)
class ValidationContext:
    """Facts about the user that live outside the 2-hour action window"""
    daily_count: int = 0
    already_liked: bool = False
    last_watch_bonus_minutes: Optional[float] = None
    last_engagement_bonus_minutes: Optional[float] = None


def build_policies(
    overrides: Optional[Mapping[str, Mapping[str, object]]] = None,
    base: Mapping[str, ActionPolicy] = DEFAULT_ACTION_POLICIES
) -> dict[str, ActionPolicy]:
    """
    Merge per-type overrides into the default policy table

    Example:
        build_policies({"quiz_complete": {"cooldown_ms": 60000}})
    """
    policies = dict(base)
    allowed = {f.name for f in fields(ActionPolicy)}
    for action_type, values in (overrides or {}).items():
        unknown = set(values) - allowed
        if unknown:
            raise ValueError(f"Unknown policy fields for {action_type}: {sorted(unknown)}")
        policies[action_type] = replace(policies.get(action_type, DEFAULT_POLICY), **values)
    return policies


def policy_for(action_type: Optional[str], policies: Mapping[str, ActionPolicy] = DEFAULT_ACTION_POLICIES) -> ActionPolicy:
    return policies.get(action_type or "", DEFAULT_POLICY)


def to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _recorded_ms(action: UserAction) -> int:
    """Server receive time of a history entry; client time only for entries that lack one"""
    created_at = getattr(action, "created_at", None)
    if created_at is not None:
        return to_epoch_ms(created_at)
    return action.timestamp or 0


def ms_until_next_day(now: datetime) -> int:
    """Milliseconds from `now` until the next midnight in now's timezone"""
    tomorrow = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return max(int((tomorrow - now).total_seconds() * 1000), 0)


def validate_action(
    action: UserAction,
    recent_actions: Iterable[UserAction],
    now: datetime,
    context: ValidationContext = ValidationContext(),
    policies: Mapping[str, ActionPolicy] = DEFAULT_ACTION_POLICIES,
    max_future_skew_ms: int = DEFAULT_MAX_FUTURE_SKEW_MS,
    max_action_age_ms: int = DEFAULT_MAX_ACTION_AGE_MS
) -> ValidationResult:
    """
    Validate a proposed action against the user's recent actions

    Args:
        action: The proposed action
        recent_actions: The user's actions from the lookback window (any order)
        now: Current server time (timezone-aware)
        context: Daily count, prior like and last watch bonus for this user
        policies: Policy table keyed by action type
        max_future_skew_ms: How far ahead of server time a timestamp may be
        max_action_age_ms: How far behind server time a timestamp may be

    Returns:
        ValidationResult with a reason and, where it applies, cooldown_remaining_ms
    """
    if not action.user_id or not action.action_type or not action.timestamp:
        return ValidationResult.reject("Invalid action data")

    now_ms = to_epoch_ms(now)
    if action.timestamp > now_ms + max_future_skew_ms:
        logger.info(
            f"Rejected {action.action_type} from {action.user_id}: "
            f"timestamp {action.timestamp - now_ms}ms in the future"
        )
        return ValidationResult.reject("Action timestamp is in the future")
    if action.timestamp < now_ms - max_action_age_ms:
        return ValidationResult.reject("Action timestamp is too old")

    if action.action_type == "video_like":
        if not action.video_id:
            return ValidationResult.reject("Invalid video ID")
        if context.already_liked:
            return ValidationResult.reject("You've already liked this video!")

    policy = policy_for(action.action_type, policies)
    history = sorted(
        (a for a in recent_actions if a.user_id == action.user_id and a.action_type == action.action_type),
        key=_recorded_ms,
        reverse=True,
    )

    for check in (_check_cooldown, _check_hourly_limit):
        result = check(action, history, policy, now_ms)
        if not result.valid:
            return result

    if policy.max_per_day and context.daily_count >= policy.max_per_day:
        return ValidationResult.reject(
            f"You've reached the daily limit for this action ({policy.max_per_day} per day)",
            ms_until_next_day(now),
        )

    if action.action_type == "video_like":
        result = _check_suspicious_likes(history, now_ms)
        if not result.valid:
            return result

    return _validate_specific_action(action, context)


def _check_cooldown(action: UserAction, history: list[UserAction], policy: ActionPolicy, now_ms: int) -> ValidationResult:
    """History is most-recent-first; the first record on the same target decides"""
    if not policy.cooldown_ms:
        return ValidationResult.ok()

    target = action.target_id(policy.target_field)
    for previous in history:
        if previous.target_id(policy.target_field) != target:
            continue
        elapsed = now_ms - _recorded_ms(previous)
        if elapsed < policy.cooldown_ms:
            remaining = policy.cooldown_ms - max(elapsed, 0)
            remaining_seconds = -(-remaining // 1000)
            return ValidationResult.reject(
                f"Please wait {remaining_seconds} seconds before performing this action again",
                remaining,
            )
        # Older records on this target are further away
        break

    return ValidationResult.ok()


def _check_hourly_limit(action: UserAction, history: list[UserAction], policy: ActionPolicy, now_ms: int) -> ValidationResult:
    if not policy.max_per_hour:
        return ValidationResult.ok()

    hour_start = now_ms - HOUR_MS
    in_window = [a for a in history if _recorded_ms(a) > hour_start]
    if len(in_window) < policy.max_per_hour:
        return ValidationResult.ok()

    # The window frees up once the oldest counted action ages out
    oldest_counted = _recorded_ms(in_window[policy.max_per_hour - 1])
    remaining = max(oldest_counted + HOUR_MS - now_ms, 0)
    return ValidationResult.reject(
        f"You've reached the hourly limit for this action ({policy.max_per_hour} per hour)",
        remaining,
    )


def _check_suspicious_likes(history: list[UserAction], now_ms: int) -> ValidationResult:
    latest = history[:10]

    rapid_start = now_ms - RAPID_LIKE_WINDOW_MS
    rapid = [a for a in latest if _recorded_ms(a) > rapid_start]
    if len(rapid) > RAPID_LIKE_MAX:
        return ValidationResult.reject("You're liking videos too quickly! Please slow down")

    if latest:
        since_last = now_ms - _recorded_ms(latest[0])
        if since_last < MIN_LIKE_INTERVAL_MS:
            return ValidationResult.reject(
                "Please take a moment between likes",
                MIN_LIKE_INTERVAL_MS - max(since_last, 0),
            )

    return ValidationResult.ok()


def _validate_specific_action(action: UserAction, context: ValidationContext) -> ValidationResult:
    metadata = action.metadata or {}

    if action.action_type == "quiz_complete":
        score = metadata.get("score")
        time_spent = metadata.get("timeSpent")
        if not action.quiz_id or score is None or time_spent is None:
            return ValidationResult.reject("Invalid quiz completion data")
        questions = metadata.get("questionsCount") or DEFAULT_QUIZ_QUESTIONS
        if time_spent < questions * SECONDS_PER_QUIZ_QUESTION:
            return ValidationResult.reject("You completed the quiz too quickly")

    elif action.action_type == "watch_bonus":
        return _check_watch_interval(action, context.last_watch_bonus_minutes)

    elif action.action_type == "engagement_bonus":
        return _check_watch_interval(action, context.last_engagement_bonus_minutes)

    return ValidationResult.ok()


def _check_watch_interval(action: UserAction, last_minutes: Optional[float]) -> ValidationResult:
    """Watch-time bonuses need 2+ minutes watched, and 2+ more than the last paid checkpoint"""
    minutes = (action.metadata or {}).get("watchTimeMinutes")
    if not action.video_id or not minutes:
        return ValidationResult.reject("Invalid watch bonus data")
    if minutes < WATCH_BONUS_INTERVAL_MINUTES:
        return ValidationResult.reject(
            f"Watch for at least {WATCH_BONUS_INTERVAL_MINUTES} minutes to earn bonus points"
        )
    if last_minutes is not None and minutes - last_minutes < WATCH_BONUS_INTERVAL_MINUTES:
        return ValidationResult.reject("You already received a bonus for this time period")
    return ValidationResult.ok()
