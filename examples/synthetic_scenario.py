"""
Synthetic Scenario: A Difficult Week
====================================

This script walks through the Soulence core end to end using entirely
synthetic data.  No real student data is used.

A synthetic student logs a few study sessions and daily mood check-ins.
Their mood drops over several days until the crisis pattern detector
triggers, the alert is dispatched to their trusted contacts through the
logging stub channel, and a therapist closes it after following up.

Steps demonstrated:
  1. Load the core policy and trusted contacts from YAML
  2. Record behavioral signals and score engagement
  3. Submit mood check-ins until a crisis pattern is detected
  4. Watch the alert dispatch and a duplicate trigger merge into it
  5. Resolve the alert and print crisis statistics
  6. Export the audit trail for review

DISCLAIMER: This is a synthetic demonstration.  Crisis detection here is a
heuristic for human follow-up, not a clinical assessment.

Usage:
    python examples/synthetic_scenario.py
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from soulence.config import (
    DEFAULT_POLICY,
    ContactDirectory,
    load_contacts_from_yaml,
    load_core_policy_from_yaml,
)
from soulence.models import AlertState, Contact, ContactRole, Role
from soulence.notifications import LoggingChannel
from soulence.service import SoulenceCore

STUDENT_ID = "synthetic_student_a"


def _banner(text: str) -> None:
    print(f"\n{'=' * 60}")
    print(f"  {text}")
    print(f"{'=' * 60}\n")


def _load_configuration():
    here = Path(__file__).parent
    policy_yaml = here / "core_policy.yaml"
    contacts_yaml = here / "contacts.yaml"

    if policy_yaml.exists():
        policy = load_core_policy_from_yaml(policy_yaml)
        print(f"Loaded policy from {policy_yaml.name}")
    else:
        policy = DEFAULT_POLICY
        print("Using built-in default policy")

    if contacts_yaml.exists():
        contacts = load_contacts_from_yaml(contacts_yaml)
        print(f"Loaded contacts for users: {contacts.list_users()}")
    else:
        # Fallback: inline contacts
        contacts = ContactDirectory()
        contacts.set_contacts(STUDENT_ID, [
            Contact(name="Dr. Synthetic (therapist)", role=ContactRole.THERAPIST,
                    address="therapist@example.org"),
            Contact(name="Synthetic Parent", role=ContactRole.PARENT,
                    channel="sms", address="+1-555-0100"),
        ])
        print("Created inline contacts")
    return policy, contacts


async def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    _banner("Soulence Synthetic Scenario: A Difficult Week")
    print("DISCLAIMER: All data in this demo is entirely synthetic.\n")

    # ------------------------------------------------------------------
    # Step 1: Configuration
    # ------------------------------------------------------------------
    _banner("Step 1: Load Policy and Contacts")
    policy, contacts = _load_configuration()
    print(f"  Detection window: {policy.detection.window_size} entries, "
          f"threshold <= {policy.detection.crisis_mean_threshold:g}")
    print(f"  Delivery attempts: {policy.retry.max_attempts}")

    channel = LoggingChannel()
    core = SoulenceCore(
        channel=channel,
        contacts=contacts,
        policy=policy,
        rng=random.Random(42),
    )

    # ------------------------------------------------------------------
    # Step 2: Engagement
    # ------------------------------------------------------------------
    _banner("Step 2: Study Session Signals")
    for kind in ("completion", "duration", "retry", "completion", "skip"):
        core.submit_signal(
            {"user_id": STUDENT_ID, "session_id": "session_1", "kind": kind},
            role=Role.STUDENT,
        )
    engagement = core.get_engagement_score(STUDENT_ID, "session_1")
    print(f"Engagement for session_1: {engagement.value:.3f} "
          f"({engagement.signal_count} signals)")

    # ------------------------------------------------------------------
    # Step 3: Mood check-ins
    # ------------------------------------------------------------------
    _banner("Step 3: Daily Mood Check-Ins")
    start = datetime.now(timezone.utc) - timedelta(days=6)
    week = [
        (7, ["calm"]),
        (6, ["tired"]),
        (5, ["anxious", "tired"]),
        (3, ["anxious"]),
        (2, ["sad", "anxious"]),
        (2, ["sad"]),
    ]
    alert_id = None
    for day, (score, emotions) in enumerate(week):
        determination = await core.submit_mood_entry(
            {
                "user_id": STUDENT_ID,
                "score": score,
                "emotions": emotions,
                "occurred_at": start + timedelta(days=day),
            },
            role=Role.STUDENT,
        )
        print(f"Day {day + 1}: mood {score} -> triggered={determination.triggered}")
        print(f"  {determination.trigger_pattern}")
        active = core.alerts.active_alert(STUDENT_ID)
        if active is not None and alert_id is None:
            alert_id = active.alert_id

    # ------------------------------------------------------------------
    # Step 4: Dispatch
    # ------------------------------------------------------------------
    _banner("Step 4: Alert Dispatch")
    await core.alerts.wait_idle()
    for alert in core.alerts.alerts_for(STUDENT_ID):
        print(f"Alert {alert.alert_id}: state={alert.state.value} "
              f"severity={alert.severity_level} merged_into={alert.merged_into}")
        print(f"  notified: {alert.notified_contacts}")
    print(f"Stub channel sent {len(channel.sent)} notification(s)")

    # ------------------------------------------------------------------
    # Step 5: Resolution and statistics
    # ------------------------------------------------------------------
    _banner("Step 5: Therapist Follow-Up")
    alert = core.alerts.get_alert(alert_id) if alert_id else None
    if alert is None:
        print("No alert was raised")
    elif alert.state in (AlertState.PENDING, AlertState.DISPATCHING, AlertState.FAILED):
        await core.resolve_alert(alert_id, "synthetic_therapist", "Met with student.")
        print(f"Alert {alert_id} resolved")
    else:
        print(f"Alert {alert_id} already {alert.state.value}; no resolution needed")

    stats = core.get_crisis_stats(STUDENT_ID)
    print(f"Crisis stats (last {stats.days} days): {stats.model_dump_json()}")
    summary = core.get_mood_summary(STUDENT_ID)
    print(f"Mood summary: {summary.model_dump_json()}")

    # ------------------------------------------------------------------
    # Step 6: Audit export
    # ------------------------------------------------------------------
    _banner("Step 6: Audit Trail Export")
    export = core.audit_log.export_for_review(STUDENT_ID)
    print(json.dumps(export["export_metadata"], indent=2))

    await core.close()

    _banner("Scenario Complete")
    print("All data in this scenario was synthetic.")


if __name__ == "__main__":
    asyncio.run(main())
