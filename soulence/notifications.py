"""
Notification helpers -- contact selection, payloads and a stub channel.

Contacts are notified in the order they are configured for the user.  The
therapist (or whichever contact comes first) is always included; parents are
only notified for severe alerts, i.e. when the alert's severity is at or
below the policy's ``parent_severity_cutoff``.

``LoggingChannel`` is an **integration stub**: it logs the delivery and
returns a receipt without contacting anyone.  Deployments provide a real
``NotificationChannel`` for email, SMS or push.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from typing import Any

from soulence.config import AlertPolicy
from soulence.models import Contact, ContactRole, CrisisAlert, DeliveryReceipt

logger = logging.getLogger(__name__)

SEVERE_CUTOFF = 2
MODERATE_CUTOFF = 5

_SUPPORT_MESSAGES = {
    "severe": (
        "I notice you're going through a really tough time. You're not alone, "
        "and help is available. Would you like to talk to someone?"
    ),
    "moderate": (
        "It seems like today has been challenging. Remember, it's okay to not "
        "be okay. What would help you feel better right now?"
    ),
    "mild": (
        "I see you're feeling down today. Sometimes taking a break or doing "
        "something you enjoy can help. What usually makes you feel better?"
    ),
}


def severity_band(severity_level: int) -> str:
    """Map a severity level (lower is more severe) to a named band."""
    if severity_level <= SEVERE_CUTOFF:
        return "severe"
    if severity_level <= MODERATE_CUTOFF:
        return "moderate"
    return "mild"


def support_message(severity_level: int) -> str:
    """Supportive message shown to the user alongside an alert."""
    return _SUPPORT_MESSAGES[severity_band(severity_level)]


def select_contacts(
    contacts: Sequence[Contact],
    severity_level: int,
    policy: AlertPolicy,
) -> list[Contact]:
    """Contacts to notify for an alert, preserving configured order."""
    selected = []
    for contact in contacts:
        if (
            contact.role == ContactRole.PARENT
            and severity_level > policy.parent_severity_cutoff
        ):
            continue
        selected.append(contact)
    return selected


def build_payload(alert: CrisisAlert) -> dict[str, Any]:
    """Payload handed to every ``NotificationChannel.notify`` call."""
    return {
        "alert_id": alert.alert_id,
        "user_id": alert.user_id,
        "severity_level": alert.severity_level,
        "severity_band": severity_band(alert.severity_level),
        "trigger_pattern": alert.trigger_pattern,
        "created_at": alert.created_at.isoformat(),
        "attempt": alert.attempt_count,
        "support_message": support_message(alert.severity_level),
    }


class LoggingChannel:
    """Stub channel: logs each notification and reports success."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def notify(self, contact: Contact, payload: dict[str, Any]) -> DeliveryReceipt:
        logger.info(
            "[STUB] Notifying %s %s via %s about alert %s (severity %s)",
            contact.role.value,
            contact.contact_id,
            contact.channel,
            payload.get("alert_id"),
            payload.get("severity_level"),
        )
        self.sent.append((contact.contact_id, payload.get("alert_id", "")))
        return DeliveryReceipt(
            contact_id=contact.contact_id,
            channel=contact.channel,
            reference=f"stub-{uuid.uuid4()}",
        )
