"""
SoulenceCore -- ingress and query facade.

The single entry point the API layer talks to.  Ingress operations
normalize raw payloads, append them to the persistence port and, for mood
entries, run the crisis detector and hand triggered determinations to the
alert lifecycle manager.  Query operations recompute derived values
(engagement score, crisis status, composite metrics) from the stored
records on demand.

Validation failures raise ``ValidationError`` synchronously to the caller
and nothing is persisted.  Alert delivery happens in the background; a
mood submission returns as soon as the alert has been created or merged.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel

from soulence.alerts import AlertLifecycleManager
from soulence.audit import AuditEventType, AuditLog
from soulence.config import DEFAULT_POLICY, ContactDirectory, CorePolicy
from soulence.crisis_detector import detect_crisis_pattern
from soulence.engagement import score_engagement
from soulence.errors import ValidationError
from soulence.follow_up import FollowUpReport, generate_follow_up_report
from soulence.metrics import aggregate_quality_metrics
from soulence.models import (
    MOOD_SCORE_MAX,
    MOOD_SCORE_MIN,
    AlertState,
    CrisisAlert,
    CrisisDetermination,
    EngagementScore,
    MetricType,
    MoodEntry,
    QualityMetric,
    Role,
    Signal,
)
from soulence.mood_stats import MoodSummary, summarize_mood
from soulence.normalizer import (
    normalize_mood_entry,
    normalize_quality_metric,
    normalize_signal,
)
from soulence.ports import InMemoryStore, NotificationChannel, PersistencePort
from soulence.rbac import require_permission

logger = logging.getLogger(__name__)

DEFAULT_MANUAL_SEVERITY = 5


class CrisisStats(BaseModel):
    """Alert statistics for one user over a look-back period."""

    user_id: str
    days: int
    total_alerts: int = 0
    average_severity: Optional[float] = None
    most_severe: Optional[int] = None
    last_alert_at: Optional[datetime] = None


class SoulenceCore:
    """Wires normalizer, scorer, detector, aggregator and alert manager.

    Args:
        channel: Notification channel used for alert delivery.
        contacts: Trusted contacts per user; empty directory if omitted.
        store: Persistence port; a fresh ``InMemoryStore`` if omitted.
        policy: Core policy; ``DEFAULT_POLICY`` if omitted.
        audit_log: Audit trail shared with the alert manager.
        rng: Random source for retry jitter.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        contacts: Optional[ContactDirectory] = None,
        store: Optional[PersistencePort] = None,
        policy: Optional[CorePolicy] = None,
        audit_log: Optional[AuditLog] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.policy = policy or DEFAULT_POLICY
        self.contacts = contacts if contacts is not None else ContactDirectory()
        self.store = store if store is not None else InMemoryStore()
        self.audit_log = audit_log if audit_log is not None else AuditLog()
        self.alerts = AlertLifecycleManager(
            channel=channel,
            contacts=self.contacts,
            policy=self.policy,
            store=self.store,
            audit_log=self.audit_log,
            rng=rng,
        )

    @property
    def _history_depth(self) -> int:
        detection = self.policy.detection
        return max(
            detection.window_size,
            detection.consistent_low_window,
            detection.decline_window,
        )

    # -- ingress --

    def submit_signal(
        self, raw: Mapping[str, Any] | Signal, role: Role = Role.SYSTEM
    ) -> Signal:
        """Validate and store a behavioral signal.

        Raises:
            ValidationError: If the signal is malformed (nothing is stored).
            UnauthorizedActionError: If *role* may not submit signals.
        """
        require_permission(role, "submit_signal")
        signal = normalize_signal(raw)
        self.store.append_signal(signal)
        self.audit_log.record(
            AuditEventType.SIGNAL_ACCEPTED,
            user_id=signal.user_id,
            target_entity=signal.signal_id,
            metadata={"kind": signal.kind.value, "session_id": signal.session_id},
        )
        return signal

    async def submit_mood_entry(
        self, raw: Mapping[str, Any] | MoodEntry, role: Role = Role.SYSTEM
    ) -> CrisisDetermination:
        """Validate and store a mood entry, then evaluate the user's window.

        A triggered determination is handed to the alert manager before
        this coroutine returns; delivery itself continues in the background.

        Raises:
            ValidationError: If the entry is malformed (nothing is stored).
            UnauthorizedActionError: If *role* may not submit mood entries.
        """
        require_permission(role, "submit_mood_entry")
        entry = normalize_mood_entry(raw)
        history = self.store.mood_history(entry.user_id, limit=self._history_depth)
        self.store.append_mood_entry(entry)
        self.audit_log.record(
            AuditEventType.MOOD_ENTRY_ACCEPTED,
            user_id=entry.user_id,
            target_entity=entry.entry_id,
            metadata={"score": entry.score},
        )

        determination = detect_crisis_pattern(
            entry.user_id, [*history, entry], self.policy.detection
        )
        self.audit_log.record(
            AuditEventType.CRISIS_EVALUATED,
            user_id=entry.user_id,
            target_entity=entry.entry_id,
            metadata={
                "triggered": determination.triggered,
                "severity": determination.severity,
                "insufficient_data": determination.insufficient_data,
                "consistent_low_mood": determination.consistent_low_mood,
                "rapid_decline": determination.rapid_decline,
            },
        )
        if determination.triggered:
            logger.warning(
                "Crisis pattern for user %s: %s",
                entry.user_id, determination.trigger_pattern,
            )
            await self.alerts.on_crisis_detected(entry.user_id, determination)
        return determination

    def submit_quality_metric(
        self, raw: Mapping[str, Any] | QualityMetric, role: Role = Role.SYSTEM
    ) -> QualityMetric:
        """Validate and store a quality metric candidate."""
        require_permission(role, "submit_quality_metric")
        metric = normalize_quality_metric(raw)
        self.store.append_quality_metric(metric)
        self.audit_log.record(
            AuditEventType.QUALITY_METRIC_ACCEPTED,
            user_id="",
            target_entity=metric.metric_id,
            actor_id=metric.calculated_by or "SYSTEM",
            metadata={
                "metric_type": metric.metric_type.value,
                "entity_id": metric.entity_id,
                "entity_type": metric.entity_type,
            },
        )
        return metric

    async def report_crisis(
        self,
        user_id: str,
        severity_level: int = DEFAULT_MANUAL_SEVERITY,
        description: str = "",
        role: Role = Role.STUDENT,
    ) -> CrisisAlert:
        """File a manual crisis report for *user_id*.

        The report goes through the same de-duplication as detected crises.

        Raises:
            ValidationError: If ``severity_level`` is outside 1-10.
            UnauthorizedActionError: If *role* may not report crises.
        """
        require_permission(role, "report_crisis")
        if isinstance(severity_level, bool) or not (
            MOOD_SCORE_MIN <= severity_level <= MOOD_SCORE_MAX
        ):
            raise ValidationError(
                f"Invalid crisis report: severity_level must be between "
                f"{MOOD_SCORE_MIN} and {MOOD_SCORE_MAX}, got {severity_level!r}.",
                errors=[{"field": "severity_level", "message": "out of range"}],
            )
        pattern = "Manual crisis report"
        if description.strip():
            pattern = f"{pattern}: {description.strip()}"
        determination = CrisisDetermination(
            user_id=user_id,
            triggered=True,
            severity=severity_level,
            manual=True,
            reasons=(pattern,),
        )
        self.audit_log.record(
            AuditEventType.CRISIS_REPORTED,
            user_id=user_id,
            actor_id=user_id,
            metadata={"severity": severity_level},
        )
        return await self.alerts.on_crisis_detected(user_id, determination)

    # -- queries --

    def get_engagement_score(self, user_id: str, session_id: str) -> EngagementScore:
        return score_engagement(
            user_id, session_id, self.store.signals_for(user_id, session_id)
        )

    def get_crisis_status(self, user_id: str) -> CrisisDetermination:
        """Evaluate the user's current mood window without side effects."""
        history = self.store.mood_history(user_id, limit=self._history_depth)
        return detect_crisis_pattern(user_id, history, self.policy.detection)

    def get_composite_metric(
        self, entity_id: str, entity_type: str, metric_type: MetricType | str
    ) -> QualityMetric:
        metric_type = MetricType(metric_type)
        candidates = self.store.quality_metrics_for(entity_id, entity_type, metric_type)
        return aggregate_quality_metrics(
            candidates,
            entity_id=entity_id,
            entity_type=entity_type,
            metric_type=metric_type,
        )

    def get_mood_summary(self, user_id: str) -> MoodSummary:
        return summarize_mood(self.store.mood_history(user_id))

    def get_crisis_history(
        self, user_id: str, limit: int = 10, role: Role = Role.SYSTEM
    ) -> list[CrisisAlert]:
        """The user's alerts, newest first; suppressed evidence records excluded."""
        require_permission(role, "view_crisis_history")
        alerts = [
            a for a in self.store.alert_history(user_id)
            if a.state != AlertState.SUPPRESSED
        ]
        return alerts[:max(limit, 0)]

    def get_crisis_stats(
        self, user_id: str, days: int = 30, role: Role = Role.THERAPIST
    ) -> CrisisStats:
        """Count and severity of the user's alerts over the last *days* days."""
        require_permission(role, "view_crisis_stats")
        since = datetime.now(timezone.utc) - timedelta(days=days)
        alerts = [
            a for a in self.store.alert_history(user_id)
            if a.created_at >= since and a.state != AlertState.SUPPRESSED
        ]
        if not alerts:
            return CrisisStats(user_id=user_id, days=days)
        severities = [a.severity_level for a in alerts]
        return CrisisStats(
            user_id=user_id,
            days=days,
            total_alerts=len(alerts),
            average_severity=round(sum(severities) / len(severities), 2),
            most_severe=min(severities),
            last_alert_at=max(a.created_at for a in alerts),
        )

    async def resolve_alert(
        self,
        alert_id: str,
        actor_id: str,
        resolution_notes: str,
        role: Role = Role.THERAPIST,
    ) -> CrisisAlert:
        require_permission(role, "resolve_alert")
        return await self.alerts.resolve(alert_id, actor_id, resolution_notes)

    def follow_up_reports(self) -> list[FollowUpReport]:
        """Reports for every exhausted alert awaiting manual follow-up."""
        return [
            generate_follow_up_report(alert, self.audit_log)
            for alert in self.alerts.needs_follow_up()
        ]

    async def close(self) -> None:
        await self.alerts.close()
