"""
Collaborator ports: persistence and notification delivery.

The core never talks to a database or a messaging provider directly.  It
calls through these two protocols, which deployments implement against
their relational/key-value stores and email/SMS/push providers.

``InMemoryStore`` is a complete ``PersistencePort`` for tests and demos.  It
is an ordinary instance -- each core gets its own store object.
"""

from __future__ import annotations

import threading
from typing import Any, Optional, Protocol, runtime_checkable

from soulence.models import (
    Contact,
    CrisisAlert,
    DeliveryReceipt,
    MetricType,
    MoodEntry,
    QualityMetric,
    Signal,
)


@runtime_checkable
class PersistencePort(Protocol):
    """Append-only durable store.

    Writes are treated as durable once the call returns.  The core does not
    re-read state it has just written in the middle of a computation.
    """

    def append_signal(self, signal: Signal) -> None: ...

    def append_mood_entry(self, entry: MoodEntry) -> None: ...

    def append_quality_metric(self, metric: QualityMetric) -> None: ...

    def record_alert(self, alert: CrisisAlert, event: str) -> None: ...

    def signals_for(self, user_id: str, session_id: Optional[str] = None) -> list[Signal]: ...

    def mood_history(self, user_id: str, limit: Optional[int] = None) -> list[MoodEntry]: ...

    def quality_metrics_for(
        self, entity_id: str, entity_type: str, metric_type: MetricType
    ) -> list[QualityMetric]: ...

    def alert_history(self, user_id: str) -> list[CrisisAlert]: ...


@runtime_checkable
class NotificationChannel(Protocol):
    """Outbound delivery to one trusted contact.

    Implementations raise ``TransientChannelError`` when delivery fails;
    any other exception is treated the same way by the dispatcher.
    """

    async def notify(self, contact: Contact, payload: dict[str, Any]) -> DeliveryReceipt: ...


class InMemoryStore:
    """Thread-safe in-memory implementation of ``PersistencePort``.

    Alert transitions are kept as a log of snapshots; ``alert_history``
    returns the latest snapshot of each alert.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._signals: list[Signal] = []
        self._moods: list[MoodEntry] = []
        self._metrics: list[QualityMetric] = []
        self._alert_log: list[tuple[str, CrisisAlert]] = []

    # -- writes --

    def append_signal(self, signal: Signal) -> None:
        with self._lock:
            self._signals.append(signal)

    def append_mood_entry(self, entry: MoodEntry) -> None:
        with self._lock:
            self._moods.append(entry)

    def append_quality_metric(self, metric: QualityMetric) -> None:
        with self._lock:
            self._metrics.append(metric)

    def record_alert(self, alert: CrisisAlert, event: str) -> None:
        with self._lock:
            self._alert_log.append((event, alert.model_copy(deep=True)))

    # -- reads --

    def signals_for(self, user_id: str, session_id: Optional[str] = None) -> list[Signal]:
        with self._lock:
            return [
                s for s in self._signals
                if s.user_id == user_id and (session_id is None or s.session_id == session_id)
            ]

    def mood_history(self, user_id: str, limit: Optional[int] = None) -> list[MoodEntry]:
        """Mood entries of a user, oldest first; *limit* keeps the newest ones."""
        with self._lock:
            entries = sorted(
                (e for e in self._moods if e.user_id == user_id),
                key=lambda e: e.occurred_at,
            )
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def quality_metrics_for(
        self, entity_id: str, entity_type: str, metric_type: MetricType
    ) -> list[QualityMetric]:
        with self._lock:
            return [
                m for m in self._metrics
                if m.entity_id == entity_id
                and m.entity_type == entity_type
                and m.metric_type == metric_type
            ]

    def alert_history(self, user_id: str) -> list[CrisisAlert]:
        """Latest snapshot of each of the user's alerts, newest first."""
        with self._lock:
            latest: dict[str, CrisisAlert] = {}
            for _, alert in self._alert_log:
                if alert.user_id == user_id:
                    latest[alert.alert_id] = alert
        return sorted(latest.values(), key=lambda a: a.created_at, reverse=True)

    def alert_events(self, alert_id: str) -> list[str]:
        """Transition events recorded for one alert, in order."""
        with self._lock:
            return [event for event, alert in self._alert_log if alert.alert_id == alert_id]
