"""
ProgressService - Action Validation and XP Accrual

Orchestrates the reward pipeline:
    rate limiter -> anti-cheat validator -> XP calculator -> user state update
    -> achievement evaluation -> action log / daily marker

Every operation that reads history and then writes progress runs inside
store.user_lock(user_id), so two concurrent requests for the same user can
never both pass a cooldown check or lose an XP increment.

Write classes:
- Primary (user XP, level, counters): failures propagate (HTTP 500)
- Secondary (action log, daily marker, audit rows): best_effort(), logged
  and skipped
- Bonus endpoints (watch bonus, completion, engagement): fail-open, a store
  failure yields success with 0 XP instead of an error
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Dict, List, Mapping, Optional

from src.exceptions import ActionRejected, DatabaseError, RecordNotFoundError
from src.gamification.achievement_system import (
    check_achievements,
    get_achievement_progress,
    total_reward,
)
from src.gamification.anti_cheat import (
    DEFAULT_ACTION_POLICIES,
    DEFAULT_MAX_ACTION_AGE_MS,
    DEFAULT_MAX_FUTURE_SKEW_MS,
    ActionPolicy,
    ValidationContext,
    policy_for,
    to_epoch_ms,
    validate_action,
)
from src.gamification.rate_limiter import (
    DEFAULT_IP_POLICY,
    IPRateLimitPolicy,
    check_like_cooldown,
    check_rate_limit,
    is_loopback,
    normalize_ip,
)
from src.gamification.store import ActionStore
from src.gamification.streak_system import (
    classify_session,
    compute_current_streak,
    streak_after_activity,
)
from src.gamification.xp_system import (
    AwardContext,
    WatchBonusAward,
    XPAward,
    calculate_award,
    calculate_completion_xp,
    calculate_direct_xp,
    calculate_engagement_watch_xp,
    calculate_level,
    calculate_watch_milestone_bonus,
    is_weekend,
    level_progress,
)
from src.models.achievement import Achievement, UserAchievement
from src.models.action import (
    SOURCE_ACTIVITY,
    SOURCE_BONUS,
    SOURCE_TRACK,
    SOURCE_VALIDATION,
    ActionRecord,
    UserAction,
    ValidationResult,
)
from src.models.user import UserState, UserStateUpdate
from src.observability.metrics import (
    achievements_unlocked_total,
    level_ups_total,
    record_validation,
    record_xp,
)
from src.resilience.fallback import best_effort
from src.validators import VideoMetrics, WatchTimeClaim, sanitize_metadata, validate_model

logger = logging.getLogger(__name__)

# Activity type -> counter incremented on UserState
ACTIVITY_COUNTERS: Dict[str, str] = {
    "video_watch": "videos_watched",
    "video_like": "likes_given",
    "quiz_complete": "quizzes_completed",
    "challenge_complete": "challenges_completed",
}

STREAK_NOTIFICATION_DAYS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==========================================
# Results
# ==========================================

@dataclass(frozen=True)
class LevelUp:
    old_level: int
    new_level: int


@dataclass
class ActivityResult:
    xp: XPAward
    level_up: Optional[LevelUp]
    new_achievements: List[Achievement]
    current_streak: int
    user: UserState
    notifications: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TrackResult:
    xp_awarded: int
    total_xp: int
    level: int
    level_up: Optional[LevelUp]
    action_recorded: bool


@dataclass
class WatchBonusResult:
    xp: Optional[WatchBonusAward] = None
    level_up: Optional[LevelUp] = None

    @property
    def xp_awarded(self) -> int:
        return self.xp.total_xp if self.xp else 0


@dataclass
class CompletionResult:
    xp_awarded: int
    engagement_score: int
    completion_percentage: int
    already_completed: bool = False


@dataclass
class EngagementBonusResult:
    xp_awarded: int
    engagement_score: int
    watch_time_minutes: float
    already_awarded: bool = False


def _level_up(old_xp: int, new_xp: int) -> Optional[LevelUp]:
    old_level = calculate_level(old_xp)
    new_level = calculate_level(new_xp)
    if new_level > old_level:
        level_ups_total.inc()
        return LevelUp(old_level=old_level, new_level=new_level)
    return None


class ProgressService:
    """
    Service for the action validation and XP accrual pipeline.

    Responsibilities:
    - Gate actions through the rate limiter and anti-cheat validator
    - Award XP for tracked activities, simple tracking and bonus endpoints
    - Keep level, streak, counters and achievements consistent
    - Read models for XP summary and achievement progress
    """

    def __init__(
        self,
        store: ActionStore,
        clock: Callable[[], datetime] = _utcnow,
        tz: tzinfo = timezone.utc,
        policies: Mapping[str, ActionPolicy] = DEFAULT_ACTION_POLICIES,
        ip_policy: IPRateLimitPolicy = DEFAULT_IP_POLICY,
        lookback: timedelta = timedelta(minutes=120),
        max_future_skew_ms: int = DEFAULT_MAX_FUTURE_SKEW_MS,
        max_action_age_ms: int = DEFAULT_MAX_ACTION_AGE_MS
    ):
        """
        Initialize ProgressService.

        Args:
            store: ActionStore implementation
            clock: Returns the current time (timezone-aware)
            tz: Timezone for calendar days and time-of-day bonuses
            policies: Anti-cheat policy table
            ip_policy: Per-IP rate limits
            lookback: History window handed to the validator
        """
        self.store = store
        self.clock = clock
        self.tz = tz
        self.policies = policies
        self.ip_policy = ip_policy
        self.lookback = lookback
        self.max_future_skew_ms = max_future_skew_ms
        self.max_action_age_ms = max_action_age_ms
        logger.debug("ProgressService initialized")

    def _now(self) -> datetime:
        return self.clock().astimezone(self.tz)

    @staticmethod
    def _day_start(now: datetime) -> datetime:
        return now.replace(hour=0, minute=0, second=0, microsecond=0)

    async def _require_user(self, user_id: str) -> UserState:
        user = await self.store.get_user(user_id)
        if user is None:
            raise RecordNotFoundError(
                message=f"User {user_id} not found",
                record_type="User",
                record_id=user_id,
                user_id=user_id,
                operation="load_user"
            )
        return user

    # ==========================================
    # Gate: rate limiter + anti-cheat
    # ==========================================

    async def _validation_context(self, action: UserAction, source: str, now: datetime) -> ValidationContext:
        policy = policy_for(action.action_type, self.policies)

        daily_count = 0
        if policy.max_per_day:
            daily_count = await self.store.count_actions_since(
                action.user_id, action.action_type, self._day_start(now), source
            )

        already_liked = False
        if action.action_type == "video_like" and action.video_id:
            if source == SOURCE_VALIDATION:
                already_liked = await self.store.has_liked(action.user_id, action.video_id)
            else:
                already_liked = await self.store.has_prior_activity(
                    action.user_id, "video_like", action.video_id
                )

        last_bonus = None
        if action.action_type == "watch_bonus" and action.video_id:
            last_bonus = await self.store.last_watch_bonus_minutes(action.user_id, action.video_id)

        last_engagement = None
        if action.action_type == "engagement_bonus" and action.video_id:
            last_engagement = await self.store.last_engagement_bonus_minutes(action.user_id, action.video_id)

        return ValidationContext(
            daily_count=daily_count,
            already_liked=already_liked,
            last_watch_bonus_minutes=last_bonus,
            last_engagement_bonus_minutes=last_engagement,
        )

    async def _evaluate(self, action: UserAction, ip: Optional[str], source: str, now: datetime) -> ValidationResult:
        ip = normalize_ip(ip)
        if ip and not is_loopback(ip):
            ip_history = await self.store.actions_by_ip(ip, now - self.ip_policy.window)
            result = check_rate_limit(ip, ip_history, now, self.ip_policy)
            if not result.valid:
                return result

        if not action.user_id or not action.action_type:
            return ValidationResult.reject("Invalid action data")

        recent = await self.store.recent_actions(action.user_id, now - self.lookback, source)

        result = check_like_cooldown(action, recent, now)
        if not result.valid:
            return result

        context = await self._validation_context(action, source, now)
        return validate_action(
            action,
            recent,
            now,
            context=context,
            policies=self.policies,
            max_future_skew_ms=self.max_future_skew_ms,
            max_action_age_ms=self.max_action_age_ms,
        )

    async def _gate(
        self,
        action: UserAction,
        ip: Optional[str],
        user_agent: str,
        source: str,
        now: datetime
    ) -> None:
        """
        Raise ActionRejected (after a best-effort audit row) if the action is refused
        """
        result = await self._evaluate(action, ip, source, now)
        record_validation(action.action_type, result.valid)
        if result.valid:
            return

        logger.info(
            f"Rejected {action.action_type} for user {action.user_id} "
            f"from {ip or 'unknown ip'}: {result.reason}"
        )
        await best_effort(
            "record_validation_failure",
            self.store.record_validation_failure(
                action.user_id,
                action.action_type,
                result.reason,
                normalize_ip(ip),
                user_agent,
                action.metadata,
            ),
            user_id=action.user_id,
        )
        raise ActionRejected(result)

    def _record(
        self,
        action: UserAction,
        ip: Optional[str],
        user_agent: str,
        xp_awarded: int,
        source: str,
        now: datetime,
        metadata: Optional[dict] = None
    ) -> ActionRecord:
        data = action.model_dump()
        if metadata is not None:
            data["metadata"] = metadata
        return ActionRecord(
            **data,
            ip_address=normalize_ip(ip),
            user_agent=user_agent or "unknown",
            xp_awarded=xp_awarded,
            source=source,
            created_at=now,
        )

    # ==========================================
    # /actions/validate
    # ==========================================

    async def validate_and_log(
        self,
        action: UserAction,
        ip: Optional[str] = None,
        user_agent: str = "unknown"
    ) -> ValidationResult:
        """
        Validate a proposed action and log it if accepted

        Raises:
            ActionRejected: rate limited or refused by the anti-cheat validator
            ValidationError: malformed metadata
        """
        action = action.model_copy(update={"metadata": sanitize_metadata(action.metadata, action.user_id)})
        now = self._now()

        async with self.store.user_lock(action.user_id):
            await self._gate(action, ip, user_agent, SOURCE_VALIDATION, now)

            await best_effort(
                "append_action",
                self.store.append_action(self._record(action, ip, user_agent, 0, SOURCE_VALIDATION, now)),
                user_id=action.user_id,
            )
            if action.action_type == "video_like" and action.video_id:
                await best_effort(
                    "record_like",
                    self.store.record_like(action.user_id, action.video_id),
                    user_id=action.user_id,
                )

        return ValidationResult.ok()

    # ==========================================
    # /actions/track
    # ==========================================

    async def track_action(
        self,
        user_id: str,
        action_type: str,
        video_id: Optional[str] = None,
        module_id: Optional[str] = None,
        course_id: Optional[str] = None,
        points: Optional[int] = None,
        metadata: Optional[dict] = None,
        ip: Optional[str] = None,
        user_agent: str = "unknown"
    ) -> TrackResult:
        """
        Award flat XP for an action that already passed /actions/validate

        The client may suggest `points`; the award is min(points, table value).

        Raises:
            RecordNotFoundError: unknown user
            DatabaseError: the XP update failed
        """
        metadata = sanitize_metadata(metadata, user_id)
        now = self._now()
        xp_awarded = calculate_direct_xp(action_type, points)
        action = UserAction(
            user_id=user_id,
            action_type=action_type,
            video_id=video_id,
            module_id=module_id,
            course_id=course_id,
            timestamp=to_epoch_ms(now),
            metadata=metadata,
        )

        async with self.store.user_lock(user_id):
            user = await self._require_user(user_id)
            new_total = user.total_xp + xp_awarded
            updated = await self.store.add_xp(user_id, xp_awarded, calculate_level(new_total), now)

            action_recorded = await best_effort(
                "append_action",
                self._append(self._record(action, ip, user_agent, xp_awarded, SOURCE_TRACK, now)),
                default=False,
                user_id=user_id,
            )

        record_xp("track", xp_awarded)
        return TrackResult(
            xp_awarded=xp_awarded,
            total_xp=updated.total_xp,
            level=updated.level,
            level_up=_level_up(user.total_xp, updated.total_xp),
            action_recorded=action_recorded,
        )

    async def _append(self, record: ActionRecord) -> bool:
        await self.store.append_action(record)
        return True

    # ==========================================
    # /progress/track-advanced
    # ==========================================

    async def record_activity(
        self,
        user_id: str,
        activity_type: str,
        video_id: Optional[str] = None,
        module_id: Optional[str] = None,
        course_id: Optional[str] = None,
        quiz_id: Optional[str] = None,
        challenge_id: Optional[str] = None,
        metadata: Optional[dict] = None,
        ip: Optional[str] = None,
        user_agent: str = "unknown"
    ) -> ActivityResult:
        """
        Validate and record a learning activity, awarding XP with a breakdown

        Returns:
            ActivityResult; current_streak is the streak before today's record

        Raises:
            ActionRejected: rate limited or refused by the anti-cheat validator
            ValidationError: malformed metadata
            RecordNotFoundError: unknown user (nothing is written)
            DatabaseError: the primary user update failed
        """
        metadata = sanitize_metadata(metadata, user_id)
        now = self._now()
        today = now.date()
        action = UserAction(
            user_id=user_id,
            action_type=activity_type,
            video_id=video_id,
            module_id=module_id,
            course_id=course_id,
            quiz_id=quiz_id,
            challenge_id=challenge_id,
            timestamp=to_epoch_ms(now),
            metadata=metadata,
        )

        async with self.store.user_lock(user_id):
            await self._gate(action, ip, user_agent, SOURCE_ACTIVITY, now)

            user = await self._require_user(user_id)
            is_first_time = not await self.store.has_prior_activity(user_id, activity_type, video_id)

            activity_dates = await self.store.activity_dates(user_id)
            current_streak = compute_current_streak(activity_dates, today)
            study_duration = await self.store.study_duration_since(user_id, self._day_start(now))

            award = calculate_award(
                activity_type,
                metadata,
                AwardContext(
                    current_streak=current_streak,
                    is_first_time=is_first_time,
                    study_duration=study_duration,
                    is_weekend=is_weekend(now),
                    hour=now.hour,
                ),
            )

            increments = dict(classify_session(now))
            counter = ACTIVITY_COUNTERS.get(activity_type)
            if counter:
                increments[counter] = 1
            duration = int(metadata.get("duration") or 0)
            if duration:
                increments["time_spent"] = duration

            new_streak = streak_after_activity(current_streak, today in set(activity_dates))
            updated = await self.store.apply_user_update(
                user_id,
                award.total_xp,
                UserStateUpdate(
                    level=calculate_level(user.total_xp + award.total_xp),
                    current_streak=new_streak,
                    best_streak=max(user.best_streak, new_streak),
                    last_active=now,
                    increments=increments,
                ),
            )
            record_xp("activity", award.total_xp)

            new_achievements = check_achievements(updated)
            if new_achievements:
                updated = await self._unlock(updated, new_achievements, now)

            level_up = _level_up(user.total_xp, updated.total_xp)

            record_metadata = {
                **metadata,
                "bonuses": [b.type for b in award.bonuses],
                "levelUp": level_up is not None,
                "newAchievements": [a.id for a in new_achievements],
            }
            await best_effort(
                "append_action",
                self.store.append_action(
                    self._record(action, ip, user_agent, award.total_xp, SOURCE_ACTIVITY, now, record_metadata)
                ),
                user_id=user_id,
            )
            await best_effort(
                "upsert_daily_activity",
                self.store.upsert_daily_activity(user_id, today),
                user_id=user_id,
            )

        logger.info(
            f"User {user_id} earned {award.total_xp} XP for {activity_type} "
            f"(level {updated.level}, {len(new_achievements)} new achievements)"
        )

        return ActivityResult(
            xp=award,
            level_up=level_up,
            new_achievements=new_achievements,
            current_streak=current_streak,
            user=updated,
            notifications={
                "xpGained": award,
                "levelUp": level_up,
                "achievements": new_achievements,
                "streak": current_streak if current_streak >= STREAK_NOTIFICATION_DAYS else None,
            },
        )

    async def _unlock(self, user: UserState, achievements: List[Achievement], now: datetime) -> UserState:
        """Add achievement ids and their XP in one update; audit rows are best-effort"""
        reward = total_reward(achievements)
        updated = await self.store.unlock_achievements(
            user.id,
            [a.id for a in achievements],
            reward,
            calculate_level(user.total_xp + reward),
        )
        record_xp("achievement", reward)

        for achievement in achievements:
            achievements_unlocked_total.labels(achievement_id=achievement.id).inc()
            await best_effort(
                "record_achievement_unlock",
                self.store.record_achievement_unlock(UserAchievement(
                    user_id=user.id,
                    achievement_id=achievement.id,
                    unlocked_at=now,
                    xp_awarded=achievement.xp_reward,
                )),
                user_id=user.id,
            )
            logger.info(f"User {user.id} unlocked achievement {achievement.id}")

        return updated

    # ==========================================
    # Bonus endpoints (fail-open)
    # ==========================================

    async def award_watch_bonus(
        self,
        user_id: str,
        video_id: str,
        watch_time_minutes: float,
        metadata: Optional[dict] = None,
        ip: Optional[str] = None,
        user_agent: str = "unknown"
    ) -> WatchBonusResult:
        """
        Periodic watch-time bonus, limited by the watch_bonus policy

        Raises:
            ActionRejected: too soon after the previous bonus for this video
            ValidationError: watch time outside (0, 1440]
        """
        claim = validate_model(WatchTimeClaim, {"watchTimeMinutes": watch_time_minutes}, user_id=user_id)
        metadata = sanitize_metadata(metadata, user_id)
        now = self._now()
        action = UserAction(
            user_id=user_id,
            action_type="watch_bonus",
            video_id=video_id,
            timestamp=to_epoch_ms(now),
            metadata={**metadata, "watchTimeMinutes": claim.watch_time_minutes},
        )

        async with self.store.user_lock(user_id):
            await self._gate(action, ip, user_agent, SOURCE_BONUS, now)

            try:
                user = await self.store.get_user(user_id)
                if user is None:
                    logger.warning(f"Watch bonus for unknown user {user_id}; nothing awarded")
                    return WatchBonusResult()

                award = calculate_watch_milestone_bonus(claim.watch_time_minutes, user.current_streak, now)
                new_total = user.total_xp + award.total_xp
                await self.store.add_xp(user_id, award.total_xp, calculate_level(new_total), now)
            except DatabaseError as e:
                logger.warning(f"Watch bonus for user {user_id} skipped: {e}")
                return WatchBonusResult()

            await best_effort(
                "record_watch_bonus",
                self.store.record_watch_bonus(user_id, video_id, claim.watch_time_minutes, award.total_xp),
                user_id=user_id,
            )
            await best_effort(
                "append_action",
                self.store.append_action(self._record(action, ip, user_agent, award.total_xp, SOURCE_BONUS, now)),
                user_id=user_id,
            )

        record_xp("watch_bonus", award.total_xp)
        return WatchBonusResult(xp=award, level_up=_level_up(user.total_xp, new_total))

    async def award_video_completion(
        self,
        user_id: str,
        video_id: str,
        metrics: Optional[dict] = None
    ) -> CompletionResult:
        """
        One-time XP for finishing a video, scaled by completion and engagement

        A repeated completion of the same video awards nothing.
        """
        video_metrics = validate_model(VideoMetrics, metrics, user_id=user_id)
        engagement = video_metrics.engagement_score
        completion = video_metrics.video_progress
        xp_awarded = calculate_completion_xp(completion, engagement)
        result = CompletionResult(
            xp_awarded=0,
            engagement_score=round(engagement),
            completion_percentage=round(completion),
        )

        async with self.store.user_lock(user_id):
            try:
                user = await self.store.get_user(user_id)
                if user is None:
                    logger.warning(f"Video completion for unknown user {user_id}; nothing awarded")
                    return result

                # The unique (user, video) row is the dedup gate; if the audit
                # insert itself fails the reward still goes through.
                inserted = await best_effort(
                    "record_video_completion",
                    self.store.record_video_completion(
                        user_id,
                        video_id,
                        completion,
                        engagement,
                        xp_awarded,
                        video_metrics.model_dump(by_alias=True),
                    ),
                    default=True,
                    user_id=user_id,
                )
                if not inserted:
                    result.already_completed = True
                    return result

                if xp_awarded > 0:
                    new_total = user.total_xp + xp_awarded
                    await self.store.add_xp(user_id, xp_awarded, calculate_level(new_total))
                    result.xp_awarded = xp_awarded
            except DatabaseError as e:
                logger.warning(f"Video completion XP for user {user_id} skipped: {e}")
                return result

        record_xp("video_complete", result.xp_awarded)
        return result

    async def award_engagement_bonus(
        self,
        user_id: str,
        video_id: str,
        watch_time_minutes: float,
        engagement_score: float,
        metrics: Optional[dict] = None,
        ip: Optional[str] = None,
        user_agent: str = "unknown"
    ) -> EngagementBonusResult:
        """
        XP for attentive watching, limited by the engagement_bonus policy

        Each award needs watch time at least 2 minutes beyond the last paid
        checkpoint for the video; (user, video, minutes) stays the audit key.

        Raises:
            ActionRejected: too soon, too often, or no new watch time
            ValidationError: watch time or engagement score out of range
        """
        claim = validate_model(
            WatchTimeClaim,
            {"watchTimeMinutes": watch_time_minutes, "engagementScore": engagement_score},
            user_id=user_id,
        )
        engagement = claim.engagement_score or 0
        xp_awarded = calculate_engagement_watch_xp(claim.watch_time_minutes, engagement)
        result = EngagementBonusResult(
            xp_awarded=0,
            engagement_score=round(engagement),
            watch_time_minutes=claim.watch_time_minutes,
        )
        if xp_awarded <= 0:
            return result

        now = self._now()
        action = UserAction(
            user_id=user_id,
            action_type="engagement_bonus",
            video_id=video_id,
            timestamp=to_epoch_ms(now),
            metadata={"watchTimeMinutes": claim.watch_time_minutes, "engagementScore": engagement},
        )

        async with self.store.user_lock(user_id):
            await self._gate(action, ip, user_agent, SOURCE_BONUS, now)

            try:
                user = await self.store.get_user(user_id)
                if user is None:
                    logger.warning(f"Engagement bonus for unknown user {user_id}; nothing awarded")
                    return result

                inserted = await best_effort(
                    "record_engagement_bonus",
                    self.store.record_engagement_bonus(
                        user_id,
                        video_id,
                        claim.watch_time_minutes,
                        engagement,
                        xp_awarded,
                        metrics or {},
                    ),
                    default=True,
                    user_id=user_id,
                )
                if not inserted:
                    result.already_awarded = True
                    return result

                new_total = user.total_xp + xp_awarded
                await self.store.add_xp(user_id, xp_awarded, calculate_level(new_total), now)
                result.xp_awarded = xp_awarded
            except DatabaseError as e:
                logger.warning(f"Engagement bonus for user {user_id} skipped: {e}")
                return result

            await best_effort(
                "append_action",
                self.store.append_action(self._record(action, ip, user_agent, xp_awarded, SOURCE_BONUS, now)),
                user_id=user_id,
            )

        record_xp("engagement_bonus", result.xp_awarded)
        return result

    # ==========================================
    # Read models
    # ==========================================

    async def get_xp_summary(self, user_id: str) -> Dict[str, Any]:
        """
        Returns:
            {
                'user_id': str,
                'total_xp': int,
                'level': int,
                'progress': level_progress(...),
                'current_streak': int,
                'best_streak': int,
                'unlocked_achievements': int
            }
        """
        user = await self._require_user(user_id)
        return {
            "user_id": user.id,
            "total_xp": user.total_xp,
            "level": calculate_level(user.total_xp),
            "progress": level_progress(user.total_xp),
            "current_streak": user.current_streak,
            "best_streak": user.best_streak,
            "unlocked_achievements": len(user.unlocked_achievements),
        }

    async def get_achievements(self, user_id: str) -> Dict[str, Any]:
        user = await self._require_user(user_id)
        progress = get_achievement_progress(user)
        return {
            "user_id": user.id,
            "achievements": progress,
            "unlocked": [a["id"] for a in progress if a["unlocked"]],
            "total": len(progress),
        }
