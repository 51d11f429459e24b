"""
XP and Leveling System

Computes XP awards and levels. Nothing here touches storage; callers pass the
user's context (streak, first-time flag, study duration, clock) in.

Leveling Curve:
- level = floor(sqrt(total_xp / 100)) + 1
- Level 2 at 100 XP, level 3 at 400, level 4 at 900, level 5 at 1600

XP Award Rules (tracked activities):
- video_like: 15 XP
- video_watch: 25 XP
- quiz_complete: 50 XP
- challenge_complete: 75 XP
- anything else: 10 XP
- engagement score above 70: +10 XP
- first time on this (activity, video): +25 XP
- streak, weekend, early bird, night owl and marathon study are listed as
  informational bonuses worth 0 XP

Separate reward policies:
- engagement watch-time XP (minutes x 15/10/5)
- video completion XP (100/75/50, 70% of that for partial completion)
- watch milestone bonus (base 25 + milestone + time bonus, streak multiplied)
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

XP_PER_LEVEL_UNIT = 100

BASE_XP: Dict[str, int] = {
    "video_like": 15,
    "video_watch": 25,
    "quiz_complete": 50,
    "challenge_complete": 75,
}
DEFAULT_BASE_XP = 10

# Flat awards used by the simple /actions/track flow
DIRECT_ACTION_XP: Dict[str, int] = {
    "video_like": 15,
    "video_watch": 50,
    "video_complete": 100,
    "quiz_complete": 150,
    "challenge_complete": 200,
    "peer_tutor_question": 15,
    "course_complete": 500,
}
DEFAULT_DIRECT_XP = 10

HIGH_ENGAGEMENT_THRESHOLD = 70
HIGH_ENGAGEMENT_BONUS = 10
FIRST_TIME_BONUS = 25
STREAK_NOTICE_DAYS = 3
MARATHON_STUDY_SECONDS = 2 * 60 * 60

EARLY_BIRD_HOURS = (5, 8)
NIGHT_OWL_HOURS = (22, 2)

WATCH_BONUS_BASE_XP = 25

# Minutes watched -> (bonus XP, message); only the highest reached applies
WATCH_MILESTONES: Dict[int, tuple] = {
    2: (5, "Great start! Keep watching!"),
    4: (10, "You're doing amazing!"),
    6: (15, "Fantastic focus!"),
    8: (20, "You're on fire!"),
    10: (25, "Incredible dedication!"),
    15: (35, "Learning champion!"),
    20: (50, "Unstoppable learner!"),
    30: (75, "Study marathon master!"),
    45: (100, "Knowledge seeker extraordinaire!"),
    60: (150, "Learning legend! You're incredible!"),
}

TIME_BONUS_XP = {
    "early_bird": 20,
    "night_owl": 15,
    "weekend": 25,
}

# Streak days -> multiplier, highest reached applies
STREAK_MULTIPLIERS: Dict[int, float] = {
    3: 1.5,
    7: 1.75,
    14: 2.0,
    30: 2.5,
    100: 3.0,
}


@dataclass(frozen=True)
class AwardContext:
    """Per-user facts that influence an award"""
    current_streak: int = 0
    is_first_time: bool = False
    study_duration: int = 0  # seconds logged today
    is_weekend: bool = False
    hour: int = 12


@dataclass(frozen=True)
class XPBonus:
    type: str
    description: str
    amount: int = 0


@dataclass(frozen=True)
class XPAward:
    base_xp: int
    total_xp: int
    bonuses: List[XPBonus] = field(default_factory=list)

    @property
    def bonus_xp(self) -> int:
        return self.total_xp - self.base_xp


@dataclass(frozen=True)
class WatchBonusAward:
    base_xp: int
    total_xp: int
    bonuses: List[XPBonus] = field(default_factory=list)
    encouragement: Optional[XPBonus] = None

    @property
    def bonus_xp(self) -> int:
        return self.total_xp - self.base_xp


# ============================================================================
# LEVELS
# ============================================================================

def calculate_level(total_xp: int) -> int:
    """
    Level for a given XP total: floor(sqrt(total_xp / 100)) + 1

    Integer arithmetic, so exact squares land on the boundary
    (900 XP is level 4). Negative totals count as 0.
    """
    if total_xp <= 0:
        return 1
    return math.isqrt(total_xp // XP_PER_LEVEL_UNIT) + 1


def xp_for_level(level: int) -> int:
    """Minimum total XP to reach `level`"""
    if level <= 1:
        return 0
    return (level - 1) ** 2 * XP_PER_LEVEL_UNIT


def level_progress(total_xp: int) -> Dict[str, Any]:
    """
    Describe progress within the current level

    Returns:
        {
            'level': int,
            'current_level_xp': int,    # threshold of the current level
            'next_level_xp': int,       # threshold of the next level
            'xp_to_next_level': int,
            'progress_percent': float   # 0-100
        }
    """
    total_xp = max(total_xp, 0)
    level = calculate_level(total_xp)
    floor_xp = xp_for_level(level)
    next_xp = xp_for_level(level + 1)
    span = next_xp - floor_xp

    return {
        "level": level,
        "current_level_xp": floor_xp,
        "next_level_xp": next_xp,
        "xp_to_next_level": next_xp - total_xp,
        "progress_percent": round((total_xp - floor_xp) / span * 100, 1),
    }


# ============================================================================
# TIME HELPERS
# ============================================================================

def _in_hour_range(hour: int, hours: tuple) -> bool:
    start, end = hours
    if start <= end:
        return start <= hour < end
    return hour >= start or hour < end


def is_early_bird(hour: int) -> bool:
    return _in_hour_range(hour, EARLY_BIRD_HOURS)


def is_night_owl(hour: int) -> bool:
    return _in_hour_range(hour, NIGHT_OWL_HOURS)


def is_weekend(moment: datetime) -> bool:
    return moment.weekday() >= 5


def streak_multiplier(current_streak: int) -> Optional[float]:
    """Highest multiplier the streak qualifies for, or None below 3 days"""
    reached = [days for days in STREAK_MULTIPLIERS if current_streak >= days]
    if not reached:
        return None
    return STREAK_MULTIPLIERS[max(reached)]


# ============================================================================
# TRACKED ACTIVITY AWARD
# ============================================================================

def calculate_award(
    action_type: str,
    metadata: Optional[Mapping[str, Any]],
    context: AwardContext
) -> XPAward:
    """
    Calculate the XP for a tracked activity with a transparent breakdown

    Args:
        action_type: Activity type (video_like, video_watch, ...)
        metadata: Sanitized metadata (engagementScore is read)
        context: Streak, first-time flag, today's study duration and clock

    Returns:
        XPAward; informational bonuses have amount 0 and do not count
    """
    metadata = metadata or {}
    base_xp = BASE_XP.get(action_type, DEFAULT_BASE_XP)
    total = base_xp
    bonuses: List[XPBonus] = []

    engagement = metadata.get("engagementScore")
    if engagement is not None and engagement > HIGH_ENGAGEMENT_THRESHOLD:
        total += HIGH_ENGAGEMENT_BONUS
        bonuses.append(XPBonus("engagement", "High engagement", HIGH_ENGAGEMENT_BONUS))

    if context.is_first_time:
        total += FIRST_TIME_BONUS
        bonuses.append(XPBonus("first_time", "First time bonus!", FIRST_TIME_BONUS))

    # Informational only
    if context.current_streak >= STREAK_NOTICE_DAYS:
        bonuses.append(XPBonus("streak", f"{context.current_streak}-day streak!"))
    if context.is_weekend:
        bonuses.append(XPBonus("weekend", "Weekend Warrior"))
    if is_early_bird(context.hour):
        bonuses.append(XPBonus("early_bird", "Early Bird"))
    if is_night_owl(context.hour):
        bonuses.append(XPBonus("night_owl", "Night Owl"))
    if context.study_duration >= MARATHON_STUDY_SECONDS:
        bonuses.append(XPBonus("duration", "Marathon study session"))

    return XPAward(base_xp=base_xp, total_xp=total, bonuses=bonuses)


def calculate_direct_xp(action_type: str, points: Optional[int] = None) -> int:
    """
    Flat award for the simple tracking flow

    A client-supplied `points` value can lower the award but never raise it.
    Missing or zero points mean the table value.
    """
    table_xp = DIRECT_ACTION_XP.get(action_type, DEFAULT_DIRECT_XP)
    if not points:
        return table_xp
    return max(min(int(points), table_xp), 0)


# ============================================================================
# NAMED REWARD POLICIES
# ============================================================================

def calculate_engagement_watch_xp(watch_time_minutes: float, engagement_score: float) -> int:
    """XP for attentive watching: minutes x 15 (>= 90), x 10 (>= 70), x 5 (>= 50)"""
    if engagement_score >= 90:
        rate = 15
    elif engagement_score >= 70:
        rate = 10
    elif engagement_score >= 50:
        rate = 5
    else:
        return 0
    return int(round(watch_time_minutes * rate))


def calculate_completion_xp(completion_pct: float, engagement_score: float) -> int:
    """
    XP for finishing a video

    >= 90% watched: 100 / 75 / 50 for engagement >= 80 / >= 60 / lower.
    70-90% watched: 70% of that tier amount. Below 70%: nothing.
    """
    if completion_pct < 70:
        return 0

    if engagement_score >= 80:
        tier_amount = 100
    elif engagement_score >= 60:
        tier_amount = 75
    else:
        tier_amount = 50

    if completion_pct >= 90:
        return tier_amount
    return round(tier_amount * 0.7)


def calculate_watch_milestone_bonus(
    watch_time_minutes: float,
    current_streak: int,
    now: datetime
) -> WatchBonusAward:
    """
    Periodic watch-time bonus

    base 25 + highest milestone reached + time-of-day/weekend bonuses,
    then the streak multiplier adds floor(subtotal * (multiplier - 1)).
    """
    bonuses: List[XPBonus] = []
    bonus_xp = 0
    encouragement = None

    reached = [m for m in WATCH_MILESTONES if watch_time_minutes >= m]
    if reached:
        amount, message = WATCH_MILESTONES[max(reached)]
        encouragement = XPBonus("encouragement", message, amount)
        bonuses.append(encouragement)
        bonus_xp += amount

    if is_early_bird(now.hour):
        bonus_xp += TIME_BONUS_XP["early_bird"]
        bonuses.append(XPBonus("time_bonus", "Early Bird bonus!", TIME_BONUS_XP["early_bird"]))
    if is_night_owl(now.hour):
        bonus_xp += TIME_BONUS_XP["night_owl"]
        bonuses.append(XPBonus("time_bonus", "Night Owl bonus!", TIME_BONUS_XP["night_owl"]))
    if is_weekend(now):
        bonus_xp += TIME_BONUS_XP["weekend"]
        bonuses.append(XPBonus("time_bonus", "Weekend Warrior bonus!", TIME_BONUS_XP["weekend"]))

    multiplier = streak_multiplier(current_streak)
    if multiplier:
        streak_bonus = math.floor((WATCH_BONUS_BASE_XP + bonus_xp) * (multiplier - 1))
        bonus_xp += streak_bonus
        bonuses.append(XPBonus("streak", f"{current_streak}-day streak multiplier!", streak_bonus))

    return WatchBonusAward(
        base_xp=WATCH_BONUS_BASE_XP,
        total_xp=WATCH_BONUS_BASE_XP + bonus_xp,
        bonuses=bonuses,
        encouragement=encouragement,
    )
