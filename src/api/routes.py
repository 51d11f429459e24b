"""API routes for action validation, XP tracking and progress"""
import logging
from datetime import datetime, timezone
from typing import List, Optional
from fastapi import APIRouter, Request

from src.api.models import (
    ValidateActionRequest, ValidationResponse,
    TrackActionRequest, TrackResponse,
    TrackAdvancedRequest, TrackAdvancedResponse,
    WatchBonusRequest, WatchBonusResponse,
    VideoCompleteRequest, VideoCompleteResponse,
    EngagementBonusRequest, EngagementBonusResponse,
    XPResponse, AchievementResponse, HealthCheckResponse,
    LevelUpModel, XPBonusModel, XPBreakdown, WatchBonusBreakdown,
    AchievementModel, UserStateModel, NotificationsModel,
)
from src.api.middleware import limiter, request_ip, request_user_agent
from src.config import API_RATE_LIMIT
from src.gamification.xp_system import XPAward, XPBonus
from src.models.achievement import Achievement
from src.models.action import UserAction
from src.models.user import UserState
from src.services import get_container
from src.services.progress_service import LevelUp

logger = logging.getLogger(__name__)

router = APIRouter()


def _service():
    return get_container().progress_service


# ==========================================
# Response builders
# ==========================================

def _level_up(level_up: Optional[LevelUp]) -> Optional[LevelUpModel]:
    if level_up is None:
        return None
    return LevelUpModel(old_level=level_up.old_level, new_level=level_up.new_level)


def _bonus(bonus: XPBonus) -> XPBonusModel:
    return XPBonusModel(type=bonus.type, description=bonus.description, amount=bonus.amount)


def _breakdown(award: XPAward) -> XPBreakdown:
    return XPBreakdown(
        base_xp=award.base_xp,
        total_xp=award.total_xp,
        bonuses=[_bonus(b) for b in award.bonuses],
    )


def _achievements(achievements: List[Achievement]) -> List[AchievementModel]:
    return [
        AchievementModel(**a.model_dump(mode="json", exclude={"stat"}))
        for a in achievements
    ]


def _user(user: UserState) -> UserStateModel:
    return UserStateModel(**user.model_dump())


# ==========================================
# Actions
# ==========================================

@router.post("/api/actions/validate", response_model=ValidationResponse, response_model_exclude_none=True)
@limiter.limit(API_RATE_LIMIT)
async def validate_action(request: Request, body: ValidateActionRequest):
    """
    Validate a proposed action before it is shown as accepted

    Returns 200 {valid: true}; rejections surface as 429 through the
    ActionRejected handler.
    """
    action = UserAction(
        user_id=body.user_id,
        action_type=body.action,
        video_id=body.video_id,
        module_id=body.module_id,
        course_id=body.course_id,
        quiz_id=body.quiz_id,
        challenge_id=body.challenge_id,
        timestamp=body.timestamp,
        metadata=body.metadata or {},
    )
    result = await _service().validate_and_log(
        action,
        ip=request_ip(request),
        user_agent=request_user_agent(request),
    )
    return ValidationResponse(valid=result.valid)


@router.post("/api/actions/track", response_model=TrackResponse)
@limiter.limit(API_RATE_LIMIT)
async def track_action(request: Request, body: TrackActionRequest):
    """Award flat XP for a validated action"""
    result = await _service().track_action(
        body.user_id,
        body.action,
        video_id=body.video_id,
        module_id=body.module_id,
        course_id=body.course_id,
        points=body.points,
        metadata=body.metadata,
        ip=request_ip(request),
        user_agent=request_user_agent(request),
    )
    return TrackResponse(
        xp_awarded=result.xp_awarded,
        total_xp=result.total_xp,
        level=result.level,
        level_up=_level_up(result.level_up),
        action_recorded=result.action_recorded,
    )


# ==========================================
# Progress
# ==========================================

@router.post("/api/progress/track-advanced", response_model=TrackAdvancedResponse)
@limiter.limit(API_RATE_LIMIT)
async def track_advanced(request: Request, body: TrackAdvancedRequest):
    """Validate and record a learning activity with the full reward breakdown"""
    result = await _service().record_activity(
        body.user_id,
        body.activity_type,
        video_id=body.video_id,
        module_id=body.module_id,
        course_id=body.course_id,
        quiz_id=body.quiz_id,
        challenge_id=body.challenge_id,
        metadata=body.metadata,
        ip=request_ip(request),
        user_agent=request_user_agent(request),
    )
    xp = _breakdown(result.xp)
    level_up = _level_up(result.level_up)
    achievements = _achievements(result.new_achievements)
    return TrackAdvancedResponse(
        xp=xp,
        level_up=level_up,
        new_achievements=achievements,
        current_streak=result.current_streak,
        user=_user(result.user),
        notifications=NotificationsModel(
            xp_gained=xp,
            level_up=level_up,
            achievements=achievements,
            streak=result.notifications.get("streak"),
        ),
    )


@router.post("/api/progress/watch-bonus", response_model=WatchBonusResponse)
@limiter.limit(API_RATE_LIMIT)
async def watch_bonus(request: Request, body: WatchBonusRequest):
    """Periodic watch-time bonus (fail-open)"""
    result = await _service().award_watch_bonus(
        body.user_id,
        body.video_id,
        body.watch_time_minutes,
        metadata=body.metadata,
        ip=request_ip(request),
        user_agent=request_user_agent(request),
    )
    if result.xp is None:
        return WatchBonusResponse()

    encouragement = _bonus(result.xp.encouragement) if result.xp.encouragement else None
    return WatchBonusResponse(
        xp_awarded=result.xp_awarded,
        xp=WatchBonusBreakdown(
            base_xp=result.xp.base_xp,
            bonus_xp=result.xp.bonus_xp,
            total_xp=result.xp.total_xp,
            bonuses=[_bonus(b) for b in result.xp.bonuses],
            encouragement=encouragement,
        ),
        level_up=_level_up(result.level_up),
        encouragement=encouragement,
    )


@router.post("/api/progress/video-complete", response_model=VideoCompleteResponse)
@limiter.limit(API_RATE_LIMIT)
async def video_complete(request: Request, body: VideoCompleteRequest):
    """One-time XP for finishing a video (fail-open)"""
    result = await _service().award_video_completion(body.user_id, body.video_id, body.metrics)
    return VideoCompleteResponse(
        xp_awarded=result.xp_awarded,
        engagement_score=result.engagement_score,
        completion_percentage=result.completion_percentage,
        already_completed=result.already_completed,
    )


@router.post("/api/progress/engagement-bonus", response_model=EngagementBonusResponse)
@limiter.limit(API_RATE_LIMIT)
async def engagement_bonus(request: Request, body: EngagementBonusRequest):
    """XP for attentive watching (fail-open on store errors)"""
    result = await _service().award_engagement_bonus(
        body.user_id,
        body.video_id,
        body.watch_time_minutes,
        body.engagement_score,
        metrics=body.metrics,
        ip=request_ip(request),
        user_agent=request_user_agent(request),
    )
    return EngagementBonusResponse(
        xp_awarded=result.xp_awarded,
        engagement_score=result.engagement_score,
        watch_time_minutes=result.watch_time_minutes,
        already_awarded=result.already_awarded,
    )


# ==========================================
# Read models
# ==========================================

@router.get("/api/users/{user_id}/xp", response_model=XPResponse)
@limiter.limit(API_RATE_LIMIT)
async def get_xp(request: Request, user_id: str):
    """Get user XP, level and streak"""
    summary = await _service().get_xp_summary(user_id)
    return XPResponse(**summary)


@router.get("/api/users/{user_id}/achievements", response_model=AchievementResponse)
@limiter.limit(API_RATE_LIMIT)
async def get_achievements(request: Request, user_id: str):
    """Get achievement progress for a user"""
    result = await _service().get_achievements(user_id)
    return AchievementResponse(**result)


@router.get("/api/health", response_model=HealthCheckResponse)
async def health_check():
    """Health check endpoint"""
    try:
        store_ok = await get_container().store.ping()
    except Exception as e:
        logger.warning(f"Health check: store unavailable: {e}")
        store_ok = False

    return HealthCheckResponse(
        status="healthy" if store_ok else "degraded",
        store="connected" if store_ok else "unavailable",
        timestamp=datetime.now(timezone.utc),
    )
