"""Tests for the rewards HTTP API (validation, tracking, progress, read models)"""
import pytest
from datetime import timedelta

from tests.conftest import FIXED_NOW, make_record


def like_payload(clock, video_id="video-1", user_id="learner-1"):
    return {
        "userId": user_id,
        "action": "video_like",
        "videoId": video_id,
        "timestamp": clock.ms(),
    }


# ============================================================================
# /api/actions/validate
# ============================================================================

@pytest.mark.asyncio
async def test_validate_accepts_action(api_client, clock):
    response = await api_client.post("/api/actions/validate", json=like_payload(clock))

    assert response.status_code == 200
    assert response.json() == {"valid": True}


@pytest.mark.asyncio
async def test_validate_rejects_rapid_like(api_client, clock):
    await api_client.post("/api/actions/validate", json=like_payload(clock))
    clock.advance(seconds=1)

    response = await api_client.post("/api/actions/validate", json=like_payload(clock))

    assert response.status_code == 429
    assert response.json() == {
        "valid": False,
        "reason": "Too many likes too quickly",
        "cooldownRemaining": 2000,
    }


@pytest.mark.asyncio
async def test_validate_missing_fields(api_client):
    response = await api_client.post("/api/actions/validate", json={"userId": "learner-1"})

    assert response.status_code == 400
    fields = {d["field"] for d in response.json()["details"]}
    assert {"action", "timestamp"} <= fields


@pytest.mark.asyncio
async def test_validate_ip_limit(api_client, seeded_store, clock):
    for i in range(100):
        await seeded_store.append_action(make_record(
            user_id=f"other-{i}",
            action_type="video_watch",
            ip_address="203.0.113.5",
            created_at=FIXED_NOW - timedelta(minutes=1),
        ))

    response = await api_client.post(
        "/api/actions/validate",
        json=like_payload(clock),
        headers={"X-Forwarded-For": "203.0.113.5, 10.0.0.1"},
    )

    assert response.status_code == 429
    assert response.json()["cooldownRemaining"] == 300000


@pytest.mark.asyncio
async def test_validate_bad_metadata(api_client, clock):
    payload = {**like_payload(clock), "metadata": {"engagementScore": 500}}

    response = await api_client.post("/api/actions/validate", json=payload)

    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


# ============================================================================
# /api/actions/track
# ============================================================================

@pytest.mark.asyncio
async def test_track_action(api_client):
    response = await api_client.post(
        "/api/actions/track",
        json={"userId": "learner-1", "action": "quiz_complete", "points": 9999},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["xpAwarded"] == 150
    assert data["totalXP"] == 150
    assert data["level"] == 2
    assert data["levelUp"] == {"oldLevel": 1, "newLevel": 2}
    assert data["actionRecorded"] is True


@pytest.mark.asyncio
async def test_track_unknown_user(api_client):
    response = await api_client.post("/api/actions/track", json={"userId": "ghost", "action": "video_watch"})

    assert response.status_code == 404
    assert response.json()["error"] == "RecordNotFoundError"


# ============================================================================
# /api/progress/track-advanced
# ============================================================================

@pytest.mark.asyncio
async def test_track_advanced_new_user(api_client):
    response = await api_client.post(
        "/api/progress/track-advanced",
        json={
            "userId": "learner-1",
            "activityType": "video_watch",
            "videoId": "video-1",
            "metadata": {"engagementScore": 80},
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["xp"]["baseXP"] == 25
    assert data["xp"]["totalXP"] == 60
    assert {b["type"] for b in data["xp"]["bonuses"]} == {"engagement", "first_time"}
    assert data["currentStreak"] == 0
    assert [a["id"] for a in data["newAchievements"]] == ["first_steps"]
    assert data["newAchievements"][0]["xpReward"] == 50
    assert data["user"]["totalXP"] == 110
    assert data["user"]["videosWatched"] == 1
    assert data["user"]["currentStreak"] == 1
    assert data["notifications"]["xpGained"]["totalXP"] == 60
    assert data["notifications"]["streak"] is None


@pytest.mark.asyncio
async def test_track_advanced_rejection_has_error(api_client, clock):
    payload = {"userId": "learner-1", "activityType": "video_like", "videoId": "video-1"}
    await api_client.post("/api/progress/track-advanced", json=payload)
    clock.advance(seconds=1)

    response = await api_client.post("/api/progress/track-advanced", json=payload)

    assert response.status_code == 429
    data = response.json()
    assert data["valid"] is False
    assert data["error"] == data["reason"]


@pytest.mark.asyncio
async def test_track_advanced_unknown_user(api_client):
    response = await api_client.post(
        "/api/progress/track-advanced",
        json={"userId": "ghost", "activityType": "video_watch", "videoId": "video-1"},
    )
    assert response.status_code == 404


# ============================================================================
# Bonus endpoints
# ============================================================================

@pytest.mark.asyncio
async def test_watch_bonus(api_client):
    response = await api_client.post(
        "/api/progress/watch-bonus",
        json={"userId": "learner-1", "videoId": "video-1", "watchTimeMinutes": 10},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["xpAwarded"] == 50
    assert data["xp"]["baseXP"] == 25
    assert data["xp"]["bonusXP"] == 25
    assert data["encouragement"]["description"] == "Incredible dedication!"


@pytest.mark.asyncio
async def test_watch_bonus_unknown_user_fails_open(api_client):
    response = await api_client.post(
        "/api/progress/watch-bonus",
        json={"userId": "ghost", "videoId": "video-1", "watchTimeMinutes": 10},
    )

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["xpAwarded"] == 0


@pytest.mark.asyncio
async def test_video_complete_once(api_client):
    payload = {"userId": "learner-1", "videoId": "video-1", "metrics": {"engagementScore": 85, "videoProgress": 95}}

    first = await api_client.post("/api/progress/video-complete", json=payload)
    second = await api_client.post("/api/progress/video-complete", json=payload)

    assert first.json()["xpAwarded"] == 100
    assert first.json()["completionPercentage"] == 95
    assert second.json()["xpAwarded"] == 0
    assert second.json()["alreadyCompleted"] is True


@pytest.mark.asyncio
async def test_engagement_bonus(api_client):
    response = await api_client.post(
        "/api/progress/engagement-bonus",
        json={"userId": "learner-1", "videoId": "video-1", "watchTimeMinutes": 10, "engagementScore": 75},
    )

    assert response.status_code == 200
    assert response.json()["xpAwarded"] == 100


@pytest.mark.asyncio
async def test_engagement_bonus_repeat_is_rejected(api_client):
    payload = {"userId": "learner-1", "videoId": "video-1", "watchTimeMinutes": 10, "engagementScore": 75}
    await api_client.post("/api/progress/engagement-bonus", json=payload)

    response = await api_client.post("/api/progress/engagement-bonus", json=payload)

    assert response.status_code == 429
    data = response.json()
    assert data["valid"] is False
    assert data["error"] == data["reason"]


@pytest.mark.asyncio
async def test_engagement_bonus_out_of_range(api_client):
    response = await api_client.post(
        "/api/progress/engagement-bonus",
        json={"userId": "learner-1", "videoId": "video-1", "watchTimeMinutes": 10, "engagementScore": 120},
    )
    assert response.status_code == 400


# ============================================================================
# Read models
# ============================================================================

@pytest.mark.asyncio
async def test_get_xp(api_client, seeded_store):
    seeded_store.create_user("learner-1", total_xp=950, level=4)

    response = await api_client.get("/api/users/learner-1/xp")

    assert response.status_code == 200
    data = response.json()
    assert data["totalXP"] == 950
    assert data["level"] == 4
    assert data["progress"]["currentLevelXP"] == 900
    assert data["progress"]["nextLevelXP"] == 1600


@pytest.mark.asyncio
async def test_get_achievements(api_client):
    response = await api_client.get("/api/users/learner-1/achievements")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 21
    assert data["unlocked"] == []
    assert data["achievements"][0]["progressPercent"] == 0.0


@pytest.mark.asyncio
async def test_get_xp_unknown_user(api_client):
    response = await api_client.get("/api/users/ghost/xp")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_health(api_client):
    response = await api_client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["store"] == "connected"


@pytest.mark.asyncio
async def test_metrics_endpoint(api_client, clock):
    await api_client.post("/api/actions/validate", json=like_payload(clock))

    response = await api_client.get("/metrics")

    assert response.status_code == 200
    assert "action_validations_total" in response.text
