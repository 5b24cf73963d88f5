"""
Core data models for the Soulence core.

Ingress records (``Signal``, ``MoodEntry``) are frozen once built.  Derived
records (``EngagementScore``, ``CrisisDetermination``, ``QualityMetric``) are
snapshots produced fresh by each computation.  ``CrisisAlert`` is the only
mutable record and is owned by the alert lifecycle manager.

Severity is expressed on the mood scale: **a lower number is more severe**.
A severity of 1 is the most urgent level an alert can carry.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


MOOD_SCORE_MIN = 1
MOOD_SCORE_MAX = 10
MAX_EMOTIONS = 5
MAX_NOTES_LENGTH = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class SignalKind(str, enum.Enum):
    """Behavioral events recognised as engagement evidence."""

    COMPLETION = "completion"
    RETRY = "retry"
    DURATION = "duration"
    SKIP = "skip"
    DROPOFF = "dropoff"


class AlertState(str, enum.Enum):
    """Lifecycle states of a crisis alert.

    * ``PENDING``     -- created, not yet handed to dispatch.
    * ``DISPATCHING`` -- a delivery attempt is due or in progress.
    * ``DELIVERED``   -- every selected contact was notified (terminal).
    * ``FAILED``      -- the last attempt failed; retried until the alert is
      ``exhausted``, after which it is terminal and needs manual follow-up.
    * ``SUPPRESSED``  -- a duplicate trigger merged into an already-active
      alert (terminal, evidence only).
    * ``RESOLVED``    -- closed by a human; pending retries are cancelled
      (terminal).
    """

    PENDING = "PENDING"
    DISPATCHING = "DISPATCHING"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    SUPPRESSED = "SUPPRESSED"
    RESOLVED = "RESOLVED"


class ContactRole(str, enum.Enum):
    """Relationship of a trusted contact to the user."""

    THERAPIST = "therapist"
    PARENT = "parent"
    CRISIS_TEAM = "crisis_team"


class MetricType(str, enum.Enum):
    """Kinds of quality assessment that can be aggregated."""

    RESPONSE_QUALITY = "response_quality"
    QUIZ_ACCURACY = "quiz_accuracy"
    USER_SATISFACTION = "user_satisfaction"


class Role(str, enum.Enum):
    """Roles used for permission checks.

    ``SYSTEM`` is the core itself acting on automated paths.
    """

    STUDENT = "student"
    PARENT = "parent"
    THERAPIST = "therapist"
    SYSTEM = "system"


# ---------------------------------------------------------------------------
# Ingress records
# ---------------------------------------------------------------------------

class Signal(BaseModel):
    """A discrete behavioral event recorded during a session."""

    model_config = ConfigDict(frozen=True)

    signal_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique identifier for this signal.",
    )
    user_id: str = Field(..., min_length=1, description="User who produced the signal.")
    session_id: str = Field(..., min_length=1, description="Session the signal belongs to.")
    kind: SignalKind = Field(..., description="Which behavioral event occurred.")
    value: dict[str, Any] = Field(
        default_factory=dict,
        description="Structured payload (e.g. duration seconds, question id).",
    )
    context: dict[str, Any] = Field(
        default_factory=dict,
        description="Optional context: question difficulty, topic, time of day.",
    )
    occurred_at: datetime = Field(default_factory=_utcnow)

    @field_validator("occurred_at")
    @classmethod
    def normalise_timestamp(cls, v: datetime) -> datetime:
        return _as_utc(v)


class MoodEntry(BaseModel):
    """A self-reported mood check-in on a 1-10 scale (1 = lowest)."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique identifier for this mood entry.",
    )
    user_id: str = Field(..., min_length=1)
    score: int = Field(
        ...,
        ge=MOOD_SCORE_MIN,
        le=MOOD_SCORE_MAX,
        description="Self-reported mood, 1 (lowest) to 10 (highest) inclusive.",
    )
    emotions: tuple[str, ...] = Field(
        default=(),
        max_length=MAX_EMOTIONS,
        description="Emotion labels chosen by the user.",
    )
    notes: Optional[str] = Field(
        default=None,
        max_length=MAX_NOTES_LENGTH,
        description="Free-text notes. Stored only; never interpreted.",
    )
    occurred_at: datetime = Field(default_factory=_utcnow)

    @field_validator("score", mode="before")
    @classmethod
    def reject_boolean_score(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("mood score must be an integer, not a boolean")
        return v

    @field_validator("emotions", mode="before")
    @classmethod
    def dedupe_emotions(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple, set, frozenset)):
            seen: dict[str, None] = {}
            for label in v:
                if isinstance(label, str) and label.strip():
                    seen.setdefault(label.strip().lower(), None)
                else:
                    raise ValueError("emotion labels must be non-empty strings")
            return tuple(seen)
        return v

    @field_validator("occurred_at")
    @classmethod
    def normalise_timestamp(cls, v: datetime) -> datetime:
        return _as_utc(v)


class Contact(BaseModel):
    """A trusted contact notified when a crisis alert is dispatched."""

    contact_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = Field(..., min_length=1)
    role: ContactRole
    channel: str = Field(
        default="email",
        description="Delivery channel name: 'email', 'sms', 'push' or 'in_app'.",
    )
    address: str = Field(
        default="",
        description="Email address, phone number or device token.",
    )


# ---------------------------------------------------------------------------
# Derived records
# ---------------------------------------------------------------------------

class EngagementScore(BaseModel):
    """Engagement of one user in one session, in ``[0, 1]``."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    session_id: str
    value: float = Field(..., ge=0.0, le=1.0)
    signal_count: int = Field(default=0, ge=0)
    computed_at: datetime = Field(default_factory=_utcnow)


class CrisisDetermination(BaseModel):
    """Outcome of evaluating a user's recent mood window.

    ``triggered`` is the binary escalation decision.  ``consistent_low_mood``
    and ``rapid_decline`` are independent facets reported alongside it so a
    reviewer can tell distinct risk signatures apart.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    triggered: bool = False
    severity: Optional[int] = Field(default=None, ge=MOOD_SCORE_MIN, le=MOOD_SCORE_MAX)
    mean_score: Optional[float] = None
    insufficient_data: bool = False
    consistent_low_mood: bool = False
    rapid_decline: bool = False
    manual: bool = Field(
        default=False,
        description="True when the determination comes from a manual crisis report.",
    )
    trigger_window: tuple[MoodEntry, ...] = ()
    reasons: tuple[str, ...] = ()
    evaluated_at: datetime = Field(default_factory=_utcnow)

    @property
    def trigger_pattern(self) -> str:
        """One-line description of what produced this determination."""
        if self.reasons:
            return "; ".join(self.reasons)
        return "No crisis pattern."


class DeliveryReceipt(BaseModel):
    """Acknowledgment returned by a notification channel."""

    contact_id: str
    channel: str
    delivered_at: datetime = Field(default_factory=_utcnow)
    reference: str = Field(default="", description="Channel-specific message id.")


class CrisisAlert(BaseModel):
    """A crisis alert and its delivery progress.

    Owned exclusively by ``AlertLifecycleManager``; other components receive
    it for reading only.
    """

    alert_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str = Field(..., min_length=1)
    severity_level: int = Field(..., ge=MOOD_SCORE_MIN, le=MOOD_SCORE_MAX)
    trigger_pattern: str = Field(default="", description="What triggered the alert.")
    trigger_history: list[str] = Field(
        default_factory=list,
        description="Trigger patterns of later detections merged into this alert.",
    )
    state: AlertState = AlertState.PENDING
    notified_contacts: list[str] = Field(
        default_factory=list,
        description="Contact ids in the exact order they were notified.",
    )
    created_at: datetime = Field(default_factory=_utcnow)
    last_attempt_at: Optional[datetime] = None
    attempt_count: int = Field(default=0, ge=0)
    exhausted: bool = Field(
        default=False,
        description="FAILED with no attempts left; requires manual follow-up.",
    )
    last_error: str = ""
    merged_into: Optional[str] = Field(
        default=None,
        description="For SUPPRESSED records: id of the active alert that absorbed this trigger.",
    )
    delivered_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: str = ""

    @property
    def is_terminal(self) -> bool:
        if self.state == AlertState.FAILED:
            return self.exhausted
        return self.state in (
            AlertState.DELIVERED,
            AlertState.SUPPRESSED,
            AlertState.RESOLVED,
        )


class QualityMetric(BaseModel):
    """A quality assessment of one entity (a response, a quiz, a session)."""

    model_config = ConfigDict(frozen=True)

    metric_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    metric_type: MetricType
    entity_id: str = Field(..., min_length=1)
    entity_type: str = Field(..., min_length=1)
    score: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    calculated_by: str = Field(default="", description="Component or reviewer that produced it.")
    calculated_at: datetime = Field(default_factory=_utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)
