"""
Tests for soulence.follow_up -- Follow-Up Report Generator.

Covers: report structure, disclaimer, manual follow-up flag for exhausted
alerts, merged triggers, audit-backed timeline, and the timeline fallback.
"""

import random

import pytest

from conftest import make_policy
from soulence.alerts import AlertLifecycleManager
from soulence.follow_up import generate_follow_up_report
from soulence.models import AlertState, CrisisAlert, CrisisDetermination


def _determination(user_id: str, severity: int, reason: str) -> CrisisDetermination:
    return CrisisDetermination(
        user_id=user_id, triggered=True, severity=severity, reasons=(reason,),
    )


class TestReportStructure:
    def test_report_without_audit_log(self):
        alert = CrisisAlert(user_id="student_1", severity_level=4, trigger_pattern="low window")
        report = generate_follow_up_report(alert).to_dict()

        assert report["report_type"] == "Crisis Alert Follow-Up Report"
        assert "does not constitute a clinical assessment" in report["disclaimer"]
        assert report["severity_band"] == "moderate"
        assert report["requires_manual_follow_up"] is False
        assert report["triggers"] == ["low window"]
        assert report["timeline"][0]["event"] == "ALERT_CREATED"

    def test_resolved_alert_timeline_fallback(self):
        alert = CrisisAlert(user_id="student_1", severity_level=2, state=AlertState.RESOLVED)
        alert.resolved_at = alert.created_at
        alert.resolved_by = "dr_rivera"
        alert.resolution_notes = "Spoke with student."
        events = [e["event"] for e in generate_follow_up_report(alert).to_dict()["timeline"]]
        assert events == ["ALERT_CREATED", "ALERT_RESOLVED"]

    def test_repr(self):
        alert = CrisisAlert(user_id="student_1", severity_level=2)
        assert "severity=2" in repr(generate_follow_up_report(alert))


class TestReportFromManager:
    @pytest.mark.asyncio
    async def test_exhausted_alert_report(self, make_channel, contacts):
        manager = AlertLifecycleManager(
            channel=make_channel(always_fail=True),
            contacts=contacts,
            policy=make_policy(max_attempts=2),
            rng=random.Random(1),
        )
        alert = await manager.on_crisis_detected(
            "student_2", _determination("student_2", 3, "first trigger")
        )
        await manager.on_crisis_detected(
            "student_2", _determination("student_2", 2, "second trigger")
        )
        await manager.wait_idle()

        report = generate_follow_up_report(alert, manager.audit_log).to_dict()
        assert report["requires_manual_follow_up"] is True
        assert report["current_state"] == "FAILED"
        assert report["severity_level"] == 2
        assert report["triggers"] == ["first trigger", "second trigger"]
        assert report["notified_contacts"] == []
        assert "therapist_2" in report["last_error"]

        events = [e["event"] for e in report["timeline"]]
        assert events[0] == "ALERT_CREATED"
        assert "ALERT_ESCALATED" in events
        assert events[-1] == "ALERT_EXHAUSTED"
        assert report["timeline"][-1]["state"] == "FAILED"
