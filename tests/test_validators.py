"""
Tests for the Pydantic validation layer

Covers every validator in src/validators.py that guards client-supplied
numbers before they reach the anti-cheat validator or the XP calculator.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from src.exceptions import ValidationError
from src.validators import (
    ActionMetadata,
    VideoMetrics,
    WatchTimeClaim,
    format_validation_error,
    sanitize_metadata,
    validate_model,
)


# ============================================================================
# ACTION METADATA TESTS
# ============================================================================

class TestActionMetadata:
    """Test metadata bag validation"""

    def test_empty_metadata(self):
        assert sanitize_metadata(None) == {}
        assert sanitize_metadata({}) == {}

    def test_keeps_camel_case_keys(self):
        result = sanitize_metadata({"engagementScore": 80, "timeSpent": 120, "questionsCount": 5})
        assert result == {"engagementScore": 80.0, "timeSpent": 120.0, "questionsCount": 5}

    def test_unknown_keys_pass_through(self):
        result = sanitize_metadata({"source": "mobile", "duration": 60})
        assert result == {"source": "mobile", "duration": 60}

    def test_nulls_are_dropped(self):
        assert sanitize_metadata({"engagementScore": None}) == {}

    @pytest.mark.parametrize("metadata", [
        {"engagementScore": 101},
        {"engagementScore": -1},
        {"watchTimeMinutes": 5000},
        {"duration": -5},
        {"questionsCount": 0},
        {"score": float("nan")},
    ])
    def test_out_of_range_values_fail(self, metadata):
        with pytest.raises(ValidationError):
            sanitize_metadata(metadata, user_id="learner-1")

    def test_non_dict_metadata_fails(self):
        with pytest.raises(ValidationError) as exc_info:
            sanitize_metadata(["not", "a", "dict"])
        assert exc_info.value.field == "metadata"

    def test_error_names_field(self):
        with pytest.raises(ValidationError) as exc_info:
            sanitize_metadata({"engagementScore": 140})

        assert exc_info.value.field == "engagementScore"
        assert exc_info.value.value == 140


# ============================================================================
# VIDEO METRICS TESTS
# ============================================================================

class TestVideoMetrics:
    def test_defaults(self):
        metrics = VideoMetrics()
        assert metrics.engagement_score == 0
        assert metrics.video_progress == 0

    def test_aliases(self):
        metrics = VideoMetrics(engagementScore=85, videoProgress=95, tabSwitches=2)
        assert metrics.engagement_score == 85
        assert metrics.tab_switches == 2

    def test_negative_tab_switches_fail(self):
        with pytest.raises(PydanticValidationError):
            VideoMetrics(tabSwitches=-1)


# ============================================================================
# WATCH-TIME CLAIM TESTS
# ============================================================================

class TestWatchTimeClaim:
    def test_valid_claim(self):
        claim = validate_model(WatchTimeClaim, {"watchTimeMinutes": 12.5})
        assert claim.watch_time_minutes == 12.5
        assert claim.engagement_score is None

    @pytest.mark.parametrize("minutes", [0, -3, 1441])
    def test_invalid_minutes(self, minutes):
        with pytest.raises(ValidationError):
            validate_model(WatchTimeClaim, {"watchTimeMinutes": minutes})

    def test_missing_minutes(self):
        with pytest.raises(ValidationError):
            validate_model(WatchTimeClaim, {})


# ============================================================================
# UTILITY FUNCTION TESTS
# ============================================================================

class TestUtilities:
    def test_format_validation_error(self):
        with pytest.raises(PydanticValidationError) as exc_info:
            ActionMetadata(engagementScore=150)

        message = format_validation_error(exc_info.value)
        assert message.startswith("Invalid engagementScore:")

    def test_format_non_pydantic_error(self):
        assert format_validation_error(ValueError("boom")) == "Error: boom"
