"""
Signal Normalizer -- validation of raw ingress records.

Turns raw signal, mood and quality-metric payloads into the frozen internal
models.  Field-level rules (mood score 1-10 inclusive, the five recognised
signal kinds, score and confidence within [0, 1]) are enforced by the
models; this module only converts pydantic's error report into the core's
``ValidationError`` so callers deal with a single exception type.

Normalization is pure: a record that fails here must not be persisted, and
retrying with the same input fails the same way.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from soulence.errors import ValidationError
from soulence.models import MoodEntry, QualityMetric, Signal

_ModelT = TypeVar("_ModelT", bound=BaseModel)


def _normalize(model: type[_ModelT], raw: Any, label: str) -> _ModelT:
    if isinstance(raw, model):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError(
            f"Invalid {label}: expected a mapping, got {type(raw).__name__}.",
            errors=[{"field": "", "message": "not a mapping"}],
        )
    try:
        return model.model_validate(dict(raw))
    except PydanticValidationError as exc:
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]),
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        summary = ", ".join(f"{e['field']}: {e['message']}" for e in errors)
        raise ValidationError(f"Invalid {label}: {summary}", errors=errors) from exc


def normalize_signal(raw: Mapping[str, Any] | Signal) -> Signal:
    """Validate a raw behavioral signal.

    Raises:
        ValidationError: On a missing field or an unrecognised ``kind``.
    """
    return _normalize(Signal, raw, "signal")


def normalize_mood_entry(raw: Mapping[str, Any] | MoodEntry) -> MoodEntry:
    """Validate a raw mood entry.

    Raises:
        ValidationError: On a missing field, a score outside 1-10, more than
            five emotions, or notes longer than 500 characters.
    """
    return _normalize(MoodEntry, raw, "mood entry")


def normalize_quality_metric(raw: Mapping[str, Any] | QualityMetric) -> QualityMetric:
    """Validate a raw quality metric candidate.

    Raises:
        ValidationError: On a missing field or a score/confidence outside [0, 1].
    """
    return _normalize(QualityMetric, raw, "quality metric")
