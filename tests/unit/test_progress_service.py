"""Unit tests for the reward pipeline (src/services/progress_service.py)"""
import asyncio
import pytest
from datetime import timedelta

from src.exceptions import ActionRejected, QueryError, RecordNotFoundError, ValidationError
from src.gamification.memory_store import InMemoryActionStore
from src.gamification.streak_system import compute_current_streak
from src.models.action import SOURCE_ACTIVITY, SOURCE_BONUS, SOURCE_TRACK, SOURCE_VALIDATION, UserAction
from src.services.progress_service import ProgressService
from tests.conftest import FIXED_NOW, make_record

CLIENT_IP = "203.0.113.5"


def like(clock, user_id="learner-1", video_id="video-1"):
    return UserAction(
        user_id=user_id,
        action_type="video_like",
        video_id=video_id,
        timestamp=clock.ms(),
    )


class FailingStore(InMemoryActionStore):
    """In-memory store whose selected operations raise QueryError"""

    def __init__(self, failing, **kwargs):
        super().__init__(**kwargs)
        self.failing = set(failing)

    def _maybe_fail(self, operation):
        if operation in self.failing:
            raise QueryError(f"{operation} failed", operation=operation)

    async def add_xp(self, *args, **kwargs):
        self._maybe_fail("add_xp")
        return await super().add_xp(*args, **kwargs)

    async def append_action(self, record):
        self._maybe_fail("append_action")
        return await super().append_action(record)

    async def upsert_daily_activity(self, user_id, activity_date):
        self._maybe_fail("upsert_daily_activity")
        return await super().upsert_daily_activity(user_id, activity_date)

    async def record_video_completion(self, *args, **kwargs):
        self._maybe_fail("record_video_completion")
        return await super().record_video_completion(*args, **kwargs)


@pytest.fixture
def failing_service(clock, test_user_id):
    def build(*failing):
        store = FailingStore(failing, clock=clock)
        store.create_user(test_user_id)
        return ProgressService(store, clock=clock), store
    return build


# ============================================================================
# validate_and_log
# ============================================================================

async def test_validate_accepts_and_logs_like(service, seeded_store, clock):
    result = await service.validate_and_log(like(clock), ip=CLIENT_IP, user_agent="pytest")

    assert result.valid
    records = await seeded_store.recent_actions("learner-1", FIXED_NOW - timedelta(minutes=1))
    assert len(records) == 1
    assert records[0].source == SOURCE_VALIDATION
    assert records[0].ip_address == CLIENT_IP
    assert records[0].user_agent == "pytest"
    assert await seeded_store.has_liked("learner-1", "video-1")


async def test_like_cooldown_rejects_second_like(service, seeded_store, clock):
    await service.validate_and_log(like(clock))
    clock.advance(seconds=1)

    with pytest.raises(ActionRejected) as exc_info:
        await service.validate_and_log(like(clock))

    assert exc_info.value.reason == "Too many likes too quickly"
    assert exc_info.value.cooldown_remaining_ms == 2000
    assert seeded_store.validation_failures[0]["reason"] == "Too many likes too quickly"


async def test_liking_same_video_again_is_rejected(service, clock):
    await service.validate_and_log(like(clock))
    clock.advance(seconds=30)

    with pytest.raises(ActionRejected) as exc_info:
        await service.validate_and_log(like(clock))

    assert exc_info.value.reason == "You've already liked this video!"


async def test_client_timestamps_cannot_skip_quiz_cooldown(service, clock):
    def quiz(timestamp):
        return UserAction(
            user_id="learner-1",
            action_type="quiz_complete",
            quiz_id="quiz-1",
            timestamp=timestamp,
            metadata={"score": 90, "timeSpent": 120},
        )

    await service.validate_and_log(quiz(clock.ms(-590000)))
    clock.advance(seconds=1)

    with pytest.raises(ActionRejected) as exc_info:
        await service.validate_and_log(quiz(clock.ms(4000)))

    assert exc_info.value.cooldown_remaining_ms == 119000


async def test_concurrent_likes_accept_exactly_one(service, clock):
    results = await asyncio.gather(
        *[service.validate_and_log(like(clock)) for _ in range(5)],
        return_exceptions=True,
    )

    accepted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, ActionRejected)]
    assert len(accepted) == 1
    assert len(rejected) == 4


async def test_ip_limit_counts_all_users(service, seeded_store, clock):
    for i in range(100):
        await seeded_store.append_action(make_record(
            user_id=f"other-{i}",
            action_type="video_watch",
            ip_address=CLIENT_IP,
            created_at=FIXED_NOW - timedelta(minutes=2),
        ))

    with pytest.raises(ActionRejected) as exc_info:
        await service.validate_and_log(like(clock), ip=CLIENT_IP)

    assert exc_info.value.cooldown_remaining_ms == 300000


async def test_loopback_is_not_rate_limited(service, seeded_store, clock):
    for i in range(100):
        await seeded_store.append_action(make_record(
            user_id=f"other-{i}",
            action_type="video_watch",
            ip_address="127.0.0.1",
            created_at=FIXED_NOW - timedelta(seconds=2),
        ))

    assert (await service.validate_and_log(like(clock), ip="127.0.0.1")).valid


async def test_invalid_metadata_raises_validation_error(service, clock):
    action = like(clock).model_copy(update={"metadata": {"engagementScore": 140}})

    with pytest.raises(ValidationError):
        await service.validate_and_log(action)


async def test_validate_survives_log_failure(failing_service, clock):
    service, store = failing_service("append_action")
    assert (await service.validate_and_log(like(clock))).valid


# ============================================================================
# track_action
# ============================================================================

async def test_track_awards_table_xp(service, seeded_store):
    result = await service.track_action("learner-1", "quiz_complete")

    assert result.xp_awarded == 150
    assert result.total_xp == 150
    assert result.level == 2
    assert result.level_up.old_level == 1
    assert result.level_up.new_level == 2
    assert result.action_recorded
    records = await seeded_store.recent_actions("learner-1", FIXED_NOW, SOURCE_TRACK)
    assert records[0].xp_awarded == 150


async def test_track_client_points_cannot_raise_award(service):
    assert (await service.track_action("learner-1", "video_like", points=999)).xp_awarded == 15
    assert (await service.track_action("learner-1", "video_like", points=4)).xp_awarded == 4


async def test_track_after_validate_is_not_revalidated(service, clock):
    await service.validate_and_log(like(clock))
    result = await service.track_action("learner-1", "video_like", video_id="video-1")
    assert result.xp_awarded == 15


async def test_track_unknown_user(service):
    with pytest.raises(RecordNotFoundError):
        await service.track_action("ghost", "video_watch")


async def test_track_reports_unrecorded_action(failing_service):
    service, store = failing_service("append_action")

    result = await service.track_action("learner-1", "video_watch")

    assert result.xp_awarded == 50
    assert result.action_recorded is False


# ============================================================================
# record_activity
# ============================================================================

async def test_new_user_video_watch(service, seeded_store):
    result = await service.record_activity(
        "learner-1", "video_watch", video_id="video-1", metadata={"engagementScore": 80}
    )

    assert result.xp.base_xp == 25
    assert result.xp.total_xp == 60
    assert {b.type for b in result.xp.bonuses} == {"engagement", "first_time"}

    # First Steps (+50) unlocks in the same request
    assert [a.id for a in result.new_achievements] == ["first_steps"]
    assert result.user.total_xp == 110
    assert result.user.videos_watched == 1
    assert result.user.unlocked_achievements == ["first_steps"]
    assert result.level_up.old_level == 1
    assert result.level_up.new_level == 2
    assert len(seeded_store.achievement_unlocks) == 1


async def test_award_without_achievements_keeps_level(service, seeded_store):
    """900 XP user completing a quiz they have done before: 950 XP, still level 4"""
    seeded_store.create_user("learner-1", total_xp=900, level=4)
    await seeded_store.append_action(make_record(
        action_type="quiz_complete",
        quiz_id="quiz-0",
        created_at=FIXED_NOW - timedelta(days=1),
    ))

    result = await service.record_activity(
        "learner-1", "quiz_complete", quiz_id="quiz-1", metadata={"score": 90, "timeSpent": 120}
    )

    assert result.xp.total_xp == 50
    assert result.xp.bonuses == []
    assert result.user.total_xp == 950
    assert result.user.level == 4
    assert result.level_up is None
    assert result.new_achievements == []


async def test_streak_before_and_after_today(service, seeded_store, clock):
    today = FIXED_NOW.date()
    await seeded_store.upsert_daily_activity("learner-1", today - timedelta(days=1))
    await seeded_store.upsert_daily_activity("learner-1", today - timedelta(days=2))

    result = await service.record_activity("learner-1", "video_watch", video_id="video-1")

    assert result.current_streak == 2
    assert result.user.current_streak == 3
    assert result.user.best_streak == 3
    assert compute_current_streak(await seeded_store.activity_dates("learner-1"), today) == 3

    clock.advance(minutes=5)
    again = await service.record_activity("learner-1", "video_watch", video_id="video-2")
    assert again.current_streak == 3
    assert again.user.current_streak == 3
    assert again.notifications["streak"] == 3


async def test_activity_counters_and_duration(service):
    result = await service.record_activity(
        "learner-1", "challenge_complete", challenge_id="c-1", metadata={"duration": 600}
    )

    assert result.user.challenges_completed == 1
    assert result.user.time_spent == 600


async def test_validate_then_record_does_not_self_reject(service, clock):
    await service.validate_and_log(like(clock))

    result = await service.record_activity("learner-1", "video_like", video_id="video-1")

    assert result.xp.base_xp == 15
    assert result.user.likes_given == 1


async def test_second_activity_like_on_same_video_is_rejected(service, clock):
    await service.record_activity("learner-1", "video_like", video_id="video-1")
    clock.advance(minutes=1)

    with pytest.raises(ActionRejected) as exc_info:
        await service.record_activity("learner-1", "video_like", video_id="video-1")

    assert exc_info.value.reason == "You've already liked this video!"


async def test_redelivered_like_changes_nothing(service, seeded_store, clock):
    seeded_store.create_user("learner-1", likes_given=49)
    first = await service.record_activity("learner-1", "video_like", video_id="video-1")
    assert [a.id for a in first.new_achievements] == ["heart_giver"]
    clock.advance(minutes=5)

    with pytest.raises(ActionRejected):
        await service.record_activity("learner-1", "video_like", video_id="video-1")

    user = await seeded_store.get_user("learner-1")
    assert user.total_xp == first.user.total_xp
    assert user.unlocked_achievements == ["heart_giver"]
    assert len(seeded_store.achievement_unlocks) == 1


async def test_repeated_activity_does_not_reunlock_achievements(service, seeded_store, clock):
    first = await service.record_activity("learner-1", "video_watch", video_id="video-1")
    clock.advance(minutes=5)

    again = await service.record_activity("learner-1", "video_watch", video_id="video-1")

    # Base XP only: no first-time bonus and no second First Steps reward
    assert again.new_achievements == []
    assert again.xp.total_xp == 25
    assert again.user.total_xp == first.user.total_xp + 25
    assert again.user.unlocked_achievements == ["first_steps"]
    assert len(seeded_store.achievement_unlocks) == 1


async def test_unknown_user_writes_nothing(service, seeded_store):
    with pytest.raises(RecordNotFoundError):
        await service.record_activity("ghost", "video_watch", video_id="video-1")

    assert await seeded_store.recent_actions("ghost", FIXED_NOW - timedelta(hours=1)) == []
    assert await seeded_store.activity_dates("ghost") == []


async def test_secondary_write_failures_do_not_fail_activity(failing_service):
    service, store = failing_service("append_action", "upsert_daily_activity")

    result = await service.record_activity("learner-1", "video_watch", video_id="video-1")

    assert result.xp.total_xp == 50
    assert result.user.videos_watched == 1


async def test_records_carry_breakdown_metadata(service, seeded_store):
    await service.record_activity("learner-1", "video_watch", video_id="video-1")

    record = (await seeded_store.recent_actions("learner-1", FIXED_NOW, SOURCE_ACTIVITY))[0]
    assert record.xp_awarded == 50
    assert record.metadata["bonuses"] == ["first_time"]
    assert record.metadata["newAchievements"] == ["first_steps"]


# ============================================================================
# Bonus endpoints
# ============================================================================

async def test_watch_bonus_awarded_then_throttled(service, clock):
    result = await service.award_watch_bonus("learner-1", "video-1", 10)
    assert result.xp_awarded == 50
    assert result.xp.encouragement.description == "Incredible dedication!"

    clock.advance(seconds=30)
    with pytest.raises(ActionRejected):
        await service.award_watch_bonus("learner-1", "video-1", 12)


async def test_watch_bonus_rejects_bad_minutes(service):
    with pytest.raises(ValidationError):
        await service.award_watch_bonus("learner-1", "video-1", -1)


async def test_watch_bonus_fails_open(failing_service):
    service, store = failing_service("add_xp")

    result = await service.award_watch_bonus("learner-1", "video-1", 10)

    assert result.xp_awarded == 0
    assert (await store.get_user("learner-1")).total_xp == 0


async def test_watch_bonus_unknown_user_gets_nothing(service):
    assert (await service.award_watch_bonus("ghost", "video-1", 10)).xp_awarded == 0


async def test_video_completion_once_per_video(service, seeded_store):
    metrics = {"engagementScore": 85, "videoProgress": 95}

    first = await service.award_video_completion("learner-1", "video-1", metrics)
    second = await service.award_video_completion("learner-1", "video-1", metrics)

    assert first.xp_awarded == 100
    assert first.completion_percentage == 95
    assert second.xp_awarded == 0
    assert second.already_completed
    assert (await seeded_store.get_user("learner-1")).total_xp == 100


async def test_video_completion_audit_failure_still_rewards(failing_service):
    service, store = failing_service("record_video_completion")

    result = await service.award_video_completion("learner-1", "video-1", {"engagementScore": 50, "videoProgress": 92})

    assert result.xp_awarded == 50


async def test_video_completion_rejects_out_of_range_metrics(service):
    with pytest.raises(ValidationError):
        await service.award_video_completion("learner-1", "video-1", {"engagementScore": 120})


async def test_engagement_bonus_once_per_checkpoint(service, seeded_store, clock):
    first = await service.award_engagement_bonus("learner-1", "video-1", 10, 95)

    with pytest.raises(ActionRejected):
        await service.award_engagement_bonus("learner-1", "video-1", 10, 95)

    clock.advance(minutes=2)
    later = await service.award_engagement_bonus("learner-1", "video-1", 12, 75)

    assert first.xp_awarded == 150
    assert later.xp_awarded == 120
    assert (await seeded_store.get_user("learner-1")).total_xp == 270


async def test_engagement_bonus_shifted_minutes_are_throttled(service, seeded_store):
    first = await service.award_engagement_bonus("learner-1", "video-1", 1440, 95)

    for minutes in (1439.5, 1439, 1438.5):
        with pytest.raises(ActionRejected):
            await service.award_engagement_bonus("learner-1", "video-1", minutes, 95)

    assert first.xp_awarded == 1440 * 15
    assert (await seeded_store.get_user("learner-1")).total_xp == 1440 * 15


async def test_engagement_bonus_requires_new_watch_time(service, clock):
    await service.award_engagement_bonus("learner-1", "video-1", 10, 95)
    clock.advance(minutes=5)

    with pytest.raises(ActionRejected) as exc_info:
        await service.award_engagement_bonus("learner-1", "video-1", 11, 95)

    assert exc_info.value.reason == "You already received a bonus for this time period"


async def test_engagement_bonus_logs_bonus_record(service, seeded_store):
    await service.award_engagement_bonus("learner-1", "video-1", 10, 95)

    record = (await seeded_store.recent_actions("learner-1", FIXED_NOW, SOURCE_BONUS))[0]
    assert record.action_type == "engagement_bonus"
    assert record.xp_awarded == 150


async def test_low_engagement_earns_nothing(service, seeded_store):
    result = await service.award_engagement_bonus("learner-1", "video-1", 10, 30)

    assert result.xp_awarded == 0
    assert (await seeded_store.get_user("learner-1")).total_xp == 0


# ============================================================================
# Read models
# ============================================================================

async def test_xp_summary(service, seeded_store):
    seeded_store.create_user("learner-1", total_xp=950, level=4, current_streak=2, best_streak=5)

    summary = await service.get_xp_summary("learner-1")

    assert summary["level"] == 4
    assert summary["progress"]["xp_to_next_level"] == 650
    assert summary["best_streak"] == 5
    assert summary["unlocked_achievements"] == 0


async def test_achievement_summary(service, seeded_store):
    seeded_store.create_user("learner-1", videos_watched=1, unlocked_achievements=["first_steps"])

    result = await service.get_achievements("learner-1")

    assert result["total"] == 21
    assert result["unlocked"] == ["first_steps"]


async def test_read_models_unknown_user(service):
    with pytest.raises(RecordNotFoundError):
        await service.get_xp_summary("ghost")
