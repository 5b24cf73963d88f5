"""
Follow-Up Report Generator.

Builds a structured summary of a crisis alert for the human who follows it
up: severity, what triggered it (including merged duplicate triggers), which
contacts were notified and in what order, and a timeline of the recorded
transitions.  Exhausted alerts -- those whose notifications could not be
delivered -- are the main consumers of this report.

DISCLAIMER: Follow-up reports summarize a heuristic alert for human review.
They are not clinical assessments.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from soulence.audit import AuditLog
from soulence.models import AlertState, CrisisAlert
from soulence.notifications import severity_band


class FollowUpReport:
    """Structured follow-up summary of one alert."""

    def __init__(
        self,
        alert_id: str,
        user_id: str,
        severity_level: int,
        current_state: str,
        requires_manual_follow_up: bool,
        triggers: list[str],
        notified_contacts: list[str],
        timeline: list[dict[str, Any]],
        last_error: str,
        generated_at: str,
    ) -> None:
        self.alert_id = alert_id
        self.user_id = user_id
        self.severity_level = severity_level
        self.current_state = current_state
        self.requires_manual_follow_up = requires_manual_follow_up
        self.triggers = triggers
        self.notified_contacts = notified_contacts
        self.timeline = timeline
        self.last_error = last_error
        self.generated_at = generated_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "report_type": "Crisis Alert Follow-Up Report",
            "disclaimer": (
                "This report summarizes a heuristic crisis alert for human "
                "follow-up. It does not constitute a clinical assessment."
            ),
            "alert_id": self.alert_id,
            "user_id": self.user_id,
            "severity_level": self.severity_level,
            "severity_band": severity_band(self.severity_level),
            "current_state": self.current_state,
            "requires_manual_follow_up": self.requires_manual_follow_up,
            "triggers": self.triggers,
            "notified_contacts": self.notified_contacts,
            "timeline": self.timeline,
            "last_error": self.last_error,
            "generated_at": self.generated_at,
        }

    def __repr__(self) -> str:
        return (
            f"FollowUpReport(alert_id={self.alert_id}, "
            f"severity={self.severity_level}, state={self.current_state})"
        )


def generate_follow_up_report(
    alert: CrisisAlert,
    audit_log: Optional[AuditLog] = None,
) -> FollowUpReport:
    """Build a ``FollowUpReport`` for *alert*.

    With an ``audit_log`` the timeline lists every recorded event for the
    alert; without one it is reconstructed from the alert's timestamps.
    """
    if audit_log is not None:
        timeline = [
            {
                "event": entry.event_type.value,
                "timestamp": entry.timestamp.isoformat(),
                "actor_id": entry.actor_id,
                "state": entry.metadata.get("state", ""),
            }
            for entry in audit_log.query(target_entity=alert.alert_id)
        ]
    else:
        timeline = _timeline_from_alert(alert)

    return FollowUpReport(
        alert_id=alert.alert_id,
        user_id=alert.user_id,
        severity_level=alert.severity_level,
        current_state=alert.state.value,
        requires_manual_follow_up=alert.state == AlertState.FAILED and alert.exhausted,
        triggers=[alert.trigger_pattern, *alert.trigger_history],
        notified_contacts=list(alert.notified_contacts),
        timeline=timeline,
        last_error=alert.last_error,
        generated_at=datetime.now(timezone.utc).isoformat(),
    )


def _timeline_from_alert(alert: CrisisAlert) -> list[dict[str, Any]]:
    events = [{
        "event": "ALERT_CREATED",
        "timestamp": alert.created_at.isoformat(),
        "description": f"Alert opened: {alert.trigger_pattern}",
    }]
    if alert.last_attempt_at:
        events.append({
            "event": "LAST_ATTEMPT",
            "timestamp": alert.last_attempt_at.isoformat(),
            "description": f"Delivery attempt {alert.attempt_count}.",
        })
    if alert.delivered_at:
        events.append({
            "event": "ALERT_DELIVERED",
            "timestamp": alert.delivered_at.isoformat(),
            "description": f"Delivered to {len(alert.notified_contacts)} contact(s).",
        })
    if alert.resolved_at:
        events.append({
            "event": "ALERT_RESOLVED",
            "timestamp": alert.resolved_at.isoformat(),
            "description": f"Resolved by {alert.resolved_by}. Notes: {alert.resolution_notes}",
        })
    return events
