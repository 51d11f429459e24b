"""Unit tests for IP rate limiting (src/gamification/rate_limiter.py)"""
import pytest
from datetime import timedelta

from src.gamification.rate_limiter import (
    IPRateLimitPolicy,
    check_like_cooldown,
    check_rate_limit,
    client_ip_from_headers,
    is_loopback,
    normalize_ip,
)
from src.models.action import UserAction
from tests.conftest import FIXED_NOW, make_record

CLIENT_IP = "203.0.113.5"


def from_ip(ip, seconds_ago, count):
    return [
        make_record(
            user_id=f"user-{i}",
            ip_address=ip,
            created_at=FIXED_NOW - timedelta(seconds=seconds_ago),
        )
        for i in range(count)
    ]


# ============================================================================
# Window Tests
# ============================================================================

def test_under_limits_is_accepted():
    assert check_rate_limit(CLIENT_IP, from_ip(CLIENT_IP, 60, 99), FIXED_NOW).valid


def test_five_minute_window_limit():
    result = check_rate_limit(CLIENT_IP, from_ip(CLIENT_IP, 60, 100), FIXED_NOW)

    assert not result.valid
    assert result.reason == "Too many actions from your network. Please try again later."
    assert result.cooldown_remaining_ms == 300000


def test_burst_limit():
    result = check_rate_limit(CLIENT_IP, from_ip(CLIENT_IP, 5, 20), FIXED_NOW)

    assert not result.valid
    assert result.reason == "Actions too frequent. Please slow down."
    assert result.cooldown_remaining_ms == 30000


def test_window_is_checked_before_burst():
    history = from_ip(CLIENT_IP, 5, 20) + from_ip(CLIENT_IP, 120, 80)
    result = check_rate_limit(CLIENT_IP, history, FIXED_NOW)
    assert result.cooldown_remaining_ms == 300000


def test_records_outside_window_do_not_count():
    assert check_rate_limit(CLIENT_IP, from_ip(CLIENT_IP, 301, 150), FIXED_NOW).valid


def test_other_ips_do_not_count():
    assert check_rate_limit(CLIENT_IP, from_ip("198.51.100.7", 5, 150), FIXED_NOW).valid


@pytest.mark.parametrize("ip", [None, "", "not-an-ip", "127.0.0.1", "::1", "localhost"])
def test_unlimited_addresses(ip):
    assert check_rate_limit(ip, from_ip(ip, 5, 150), FIXED_NOW).valid


def test_custom_policy():
    policy = IPRateLimitPolicy(max_burst=3, burst_cooldown_ms=1000)
    result = check_rate_limit(CLIENT_IP, from_ip(CLIENT_IP, 1, 3), FIXED_NOW, policy)
    assert result.cooldown_remaining_ms == 1000


# ============================================================================
# Address Parsing Tests
# ============================================================================

def test_normalize_ip():
    assert normalize_ip(" 203.0.113.5 ") == "203.0.113.5"
    assert normalize_ip("2001:DB8::1") == "2001:db8::1"
    assert normalize_ip("localhost") == "127.0.0.1"
    assert normalize_ip("garbage") is None
    assert normalize_ip(None) is None


def test_is_loopback():
    assert is_loopback("127.0.0.1")
    assert is_loopback("::1")
    assert not is_loopback(CLIENT_IP)


def test_forwarded_for_first_hop_wins():
    headers = {"x-forwarded-for": "203.0.113.5, 10.0.0.1", "x-real-ip": "198.51.100.7"}
    assert client_ip_from_headers(headers, "10.0.0.2") == CLIENT_IP


def test_real_ip_then_peer():
    assert client_ip_from_headers({"x-real-ip": "198.51.100.7"}, "10.0.0.2") == "198.51.100.7"
    assert client_ip_from_headers({}, "10.0.0.2") == "10.0.0.2"
    assert client_ip_from_headers({"x-forwarded-for": "junk"}, None) is None


# ============================================================================
# Like Cooldown Tests
# ============================================================================

def like_action(video_id="video-1"):
    return UserAction(user_id="learner-1", action_type="video_like", video_id=video_id)


def test_like_within_three_seconds_is_rejected():
    history = [make_record(video_id="video-1", created_at=FIXED_NOW - timedelta(seconds=1))]

    result = check_like_cooldown(like_action(), history, FIXED_NOW)

    assert result.reason == "Too many likes too quickly"
    assert result.cooldown_remaining_ms == 2000


def test_like_after_three_seconds_is_accepted():
    history = [make_record(video_id="video-1", created_at=FIXED_NOW - timedelta(seconds=4))]
    assert check_like_cooldown(like_action(), history, FIXED_NOW).valid


def test_like_cooldown_only_for_same_video():
    history = [make_record(video_id="video-2", created_at=FIXED_NOW - timedelta(seconds=1))]
    assert check_like_cooldown(like_action(), history, FIXED_NOW).valid


def test_like_cooldown_ignores_other_action_types():
    action = UserAction(user_id="learner-1", action_type="video_watch", video_id="video-1")
    history = [make_record(video_id="video-1", created_at=FIXED_NOW)]
    assert check_like_cooldown(action, history, FIXED_NOW).valid
