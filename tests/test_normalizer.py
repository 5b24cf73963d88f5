"""
Tests for soulence.normalizer -- ingress validation.

Covers: valid signals, mood entries and quality metrics, mood score bounds,
boolean scores, emotion limits and de-duplication, notes length, timestamp
normalization, and the field-level error report.
"""

from datetime import datetime, timedelta, timezone

import pytest

from soulence.errors import ValidationError
from soulence.models import MetricType, MoodEntry, SignalKind
from soulence.normalizer import (
    normalize_mood_entry,
    normalize_quality_metric,
    normalize_signal,
)


def _raw_mood(**overrides) -> dict:
    raw = {"user_id": "student_1", "score": 6}
    raw.update(overrides)
    return raw


# ---------------------------------------------------------------------------
# 1. Signals
# ---------------------------------------------------------------------------

class TestSignals:
    def test_valid_signal(self):
        signal = normalize_signal({
            "user_id": "student_1",
            "session_id": "s1",
            "kind": "completion",
            "value": {"question_id": "q7"},
        })
        assert signal.kind == SignalKind.COMPLETION
        assert signal.value == {"question_id": "q7"}
        assert signal.signal_id

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_signal({"user_id": "student_1", "session_id": "s1", "kind": "hover"})
        assert exc_info.value.errors[0]["field"] == "kind"

    def test_missing_session_rejected(self):
        with pytest.raises(ValidationError):
            normalize_signal({"user_id": "student_1", "kind": "skip"})

    def test_naive_timestamp_assumed_utc(self):
        signal = normalize_signal({
            "user_id": "student_1",
            "session_id": "s1",
            "kind": "skip",
            "occurred_at": datetime(2026, 3, 1, 12, 0),
        })
        assert signal.occurred_at.tzinfo == timezone.utc

    def test_non_mapping_rejected(self):
        with pytest.raises(ValidationError, match="expected a mapping"):
            normalize_signal(["completion"])


# ---------------------------------------------------------------------------
# 2. Mood entries
# ---------------------------------------------------------------------------

class TestMoodEntries:
    @pytest.mark.parametrize("score", [1, 10])
    def test_score_bounds_inclusive(self, score):
        assert normalize_mood_entry(_raw_mood(score=score)).score == score

    @pytest.mark.parametrize("score", [0, 11, -3])
    def test_score_outside_scale_rejected(self, score):
        with pytest.raises(ValidationError) as exc_info:
            normalize_mood_entry(_raw_mood(score=score))
        assert exc_info.value.errors[0]["field"] == "score"

    def test_boolean_score_rejected(self):
        with pytest.raises(ValidationError):
            normalize_mood_entry(_raw_mood(score=True))

    def test_emotions_deduplicated_and_lowercased(self):
        entry = normalize_mood_entry(_raw_mood(emotions=["Anxious", "anxious ", "tired"]))
        assert entry.emotions == ("anxious", "tired")

    def test_more_than_five_emotions_rejected(self):
        with pytest.raises(ValidationError):
            normalize_mood_entry(_raw_mood(emotions=["a", "b", "c", "d", "e", "f"]))

    def test_blank_emotion_rejected(self):
        with pytest.raises(ValidationError):
            normalize_mood_entry(_raw_mood(emotions=["calm", "  "]))

    def test_notes_length_limit(self):
        assert normalize_mood_entry(_raw_mood(notes="x" * 500)).notes == "x" * 500
        with pytest.raises(ValidationError):
            normalize_mood_entry(_raw_mood(notes="x" * 501))

    def test_offset_timestamp_converted_to_utc(self):
        tz = timezone(timedelta(hours=2))
        entry = normalize_mood_entry(_raw_mood(occurred_at=datetime(2026, 3, 1, 12, 0, tzinfo=tz)))
        assert entry.occurred_at == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_model_instance_passes_through(self):
        entry = MoodEntry(user_id="student_1", score=4)
        assert normalize_mood_entry(entry) is entry

    def test_entry_is_frozen(self):
        entry = normalize_mood_entry(_raw_mood())
        with pytest.raises(Exception):
            entry.score = 1


# ---------------------------------------------------------------------------
# 3. Quality metrics
# ---------------------------------------------------------------------------

class TestQualityMetrics:
    def test_valid_metric(self):
        metric = normalize_quality_metric({
            "metric_type": "quiz_accuracy",
            "entity_id": "quiz_3",
            "entity_type": "quiz",
            "score": 0.75,
            "confidence": 0.9,
        })
        assert metric.metric_type == MetricType.QUIZ_ACCURACY

    @pytest.mark.parametrize("field", ["score", "confidence"])
    def test_values_outside_unit_interval_rejected(self, field):
        raw = {
            "metric_type": "response_quality",
            "entity_id": "r1",
            "entity_type": "response",
            "score": 0.5,
            "confidence": 0.5,
        }
        raw[field] = 1.2
        with pytest.raises(ValidationError) as exc_info:
            normalize_quality_metric(raw)
        assert exc_info.value.errors[0]["field"] == field

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            normalize_quality_metric({})
