"""
Tests for soulence.crisis_detector -- Crisis Pattern Detector.

Covers: trigger on a low mean, no trigger on a healthy window, threshold
boundary, insufficient data, unsorted input, other users' entries, the
consistent-low-mood and rapid-decline facets, and severity rounding.
"""

from datetime import datetime, timedelta, timezone

import pytest

from soulence.config import DetectionThresholds
from soulence.crisis_detector import detect_crisis_pattern, mood_slope, severity_from_mean
from soulence.models import MoodEntry

_BASE = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _make_history(scores: list[int], user_id: str = "student_1") -> list[MoodEntry]:
    """Mood entries one hour apart, oldest first."""
    return [
        MoodEntry(user_id=user_id, score=s, occurred_at=_BASE + timedelta(hours=i))
        for i, s in enumerate(scores)
    ]


# ---------------------------------------------------------------------------
# 1. Binary trigger
# ---------------------------------------------------------------------------

class TestTrigger:
    def test_low_window_triggers(self):
        result = detect_crisis_pattern("student_1", _make_history([2, 3, 2]))
        assert result.triggered is True
        assert result.severity == 2
        assert result.mean_score == pytest.approx(7 / 3)
        assert len(result.trigger_window) == 3

    def test_healthy_window_does_not_trigger(self):
        result = detect_crisis_pattern("student_1", _make_history([8, 7, 9]))
        assert result.triggered is False
        assert result.insufficient_data is False
        assert result.trigger_pattern == "No crisis pattern."

    def test_mean_equal_to_threshold_triggers(self):
        result = detect_crisis_pattern("student_1", _make_history([2, 3, 4]))
        assert result.triggered is True
        assert result.severity == 3

    def test_only_last_window_counts(self):
        result = detect_crisis_pattern("student_1", _make_history([1, 1, 1, 8, 8, 8]))
        assert result.triggered is False

    def test_unsorted_input_is_sorted_by_time(self):
        history = _make_history([9, 9, 2, 2, 2])
        result = detect_crisis_pattern("student_1", list(reversed(history)))
        assert result.triggered is True
        assert [e.score for e in result.trigger_window] == [2, 2, 2]

    def test_other_users_entries_ignored(self):
        history = _make_history([1, 1], "student_1") + _make_history([1, 1, 1], "student_2")
        result = detect_crisis_pattern("student_1", history)
        assert result.triggered is False
        assert result.insufficient_data is True

    def test_custom_thresholds(self):
        thresholds = DetectionThresholds(window_size=2, crisis_mean_threshold=5)
        result = detect_crisis_pattern("student_1", _make_history([9, 5, 5]), thresholds)
        assert result.triggered is True
        assert result.severity == 5


# ---------------------------------------------------------------------------
# 2. Insufficient data
# ---------------------------------------------------------------------------

class TestInsufficientData:
    @pytest.mark.parametrize("scores", [[], [1], [1, 1]])
    def test_sparse_history_never_triggers(self, scores):
        result = detect_crisis_pattern("student_1", _make_history(scores))
        assert result.triggered is False
        assert result.insufficient_data is True
        assert result.severity is None
        assert "Insufficient data" in result.trigger_pattern


# ---------------------------------------------------------------------------
# 3. Facets
# ---------------------------------------------------------------------------

class TestFacets:
    def test_consistent_low_mood(self):
        result = detect_crisis_pattern("student_1", _make_history([3, 3, 3]))
        assert result.consistent_low_mood is True
        assert result.rapid_decline is False

    def test_consistent_low_requires_strictly_below(self):
        result = detect_crisis_pattern("student_1", _make_history([3, 4, 3]))
        assert result.consistent_low_mood is False

    def test_rapid_decline(self):
        result = detect_crisis_pattern("student_1", _make_history([9, 7, 5, 3, 1]))
        assert result.rapid_decline is True
        assert result.triggered is True
        assert any("Rapid decline" in r for r in result.reasons)

    def test_decline_without_low_mean_does_not_trigger(self):
        result = detect_crisis_pattern("student_1", _make_history([10, 10, 9, 7, 5]))
        assert result.rapid_decline is True
        assert result.triggered is False

    def test_stable_history_has_no_decline(self):
        result = detect_crisis_pattern("student_1", _make_history([5, 5, 5, 5, 5]))
        assert result.rapid_decline is False


# ---------------------------------------------------------------------------
# 4. Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    @pytest.mark.parametrize(
        "mean, expected",
        [(1.0, 1), (2.333, 2), (2.5, 3), (2.667, 3), (10.0, 10)],
    )
    def test_severity_rounds_half_up(self, mean, expected):
        assert severity_from_mean(mean) == expected

    def test_slope_of_rising_series(self):
        assert mood_slope([1, 2, 3]) == 1.0

    def test_slope_of_single_point_is_zero(self):
        assert mood_slope([4]) == 0.0
