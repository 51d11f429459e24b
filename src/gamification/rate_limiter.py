"""
IP Rate Limiting

Sliding-window limits over the action log, evaluated per request:
- 100 actions per IP per 5 minutes -> 5 minute cooldown
- 20 actions per IP per 10 seconds -> 30 second cooldown
- one video_like per user per video per 3 seconds

Loopback, missing and unparsable addresses are not limited. Every function
here is read-only; callers load the history and pass the clock in.
"""

import ipaddress
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Mapping, Optional

from src.models.action import ActionRecord, UserAction, ValidationResult

logger = logging.getLogger(__name__)

LIKE_COOLDOWN_MS = 3000


@dataclass(frozen=True)
class IPRateLimitPolicy:
    """Thresholds for per-IP limiting"""
    window: timedelta = timedelta(minutes=5)
    max_actions: int = 100
    window_cooldown_ms: int = 300000
    burst_window: timedelta = timedelta(seconds=10)
    max_burst: int = 20
    burst_cooldown_ms: int = 30000


DEFAULT_IP_POLICY = IPRateLimitPolicy()


def normalize_ip(raw: Optional[str]) -> Optional[str]:
    """
    Parse an address literal, returning its canonical text or None

    Accepts IPv4 and IPv6 (zone ids and ports are not accepted).
    """
    if not raw:
        return None
    candidate = raw.strip()
    if candidate.lower() == "localhost":
        return "127.0.0.1"
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def is_loopback(ip: str) -> bool:
    try:
        return ipaddress.ip_address(ip).is_loopback
    except ValueError:
        return False


def client_ip_from_headers(headers: Mapping[str, str], peer: Optional[str] = None) -> Optional[str]:
    """
    Pick the client address: first X-Forwarded-For hop, then X-Real-IP, then the peer

    Returns the first candidate that parses, or None.
    """
    forwarded = headers.get("x-forwarded-for")
    candidates = [
        forwarded.split(",")[0] if forwarded else None,
        headers.get("x-real-ip"),
        peer,
    ]
    for candidate in candidates:
        ip = normalize_ip(candidate)
        if ip:
            return ip
    return None


def check_rate_limit(
    ip: Optional[str],
    history: Iterable[ActionRecord],
    now: datetime,
    policy: IPRateLimitPolicy = DEFAULT_IP_POLICY
) -> ValidationResult:
    """
    Evaluate per-IP request frequency

    Args:
        ip: Client address (may be None or garbage)
        history: Action records; only those from `ip` are counted
        now: Current server time (timezone-aware)
        policy: Window sizes and limits

    Returns:
        ValidationResult; the 5-minute window is checked before the burst window
    """
    ip = normalize_ip(ip)
    if ip is None or is_loopback(ip):
        return ValidationResult.ok()

    window_start = now - policy.window
    burst_start = now - policy.burst_window

    window_count = 0
    burst_count = 0
    for record in history:
        if normalize_ip(record.ip_address) != ip:
            continue
        if record.created_at >= window_start:
            window_count += 1
            if record.created_at >= burst_start:
                burst_count += 1

    if window_count >= policy.max_actions:
        logger.info(f"IP {ip} exceeded {policy.max_actions} actions in {policy.window}")
        return ValidationResult.reject(
            "Too many actions from your network. Please try again later.",
            policy.window_cooldown_ms,
        )

    if burst_count >= policy.max_burst:
        logger.info(f"IP {ip} exceeded burst limit of {policy.max_burst} in {policy.burst_window}")
        return ValidationResult.reject(
            "Actions too frequent. Please slow down.",
            policy.burst_cooldown_ms,
        )

    return ValidationResult.ok()


def check_like_cooldown(
    action: UserAction,
    history: Iterable[ActionRecord],
    now: datetime,
    window_ms: int = LIKE_COOLDOWN_MS
) -> ValidationResult:
    """Reject a video_like when the same user liked the same video within window_ms"""
    if action.action_type != "video_like":
        return ValidationResult.ok()

    window_start = now - timedelta(milliseconds=window_ms)
    latest = None
    for record in history:
        if (
            record.user_id == action.user_id
            and record.action_type == "video_like"
            and record.video_id == action.video_id
            and record.created_at >= window_start
        ):
            if latest is None or record.created_at > latest:
                latest = record.created_at

    if latest is None:
        return ValidationResult.ok()

    elapsed_ms = int((now - latest).total_seconds() * 1000)
    return ValidationResult.reject(
        "Too many likes too quickly",
        max(window_ms - max(elapsed_ms, 0), 0),
    )
