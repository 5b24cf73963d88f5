"""
Append-Only Alert Audit Trail (Hash-Chained).

Every alert state transition, every delivery attempt and every accepted
ingress record is written to an append-only trail.  Entries are linked by a
SHA-256 hash chain: if an entry is modified after the fact,
``verify_chain()`` reports the first broken link.

The trail is the core's record of *what was attempted, in which order* --
including the exact order in which contacts were notified -- so that a
reviewer can reconstruct an alert's history.

Exports redact contact details (email addresses, phone numbers, and keys
such as ``address``) before they leave the process.
"""

from __future__ import annotations

import enum
import hashlib
import json
import re
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Audit event types
# ---------------------------------------------------------------------------

class AuditEventType(str, enum.Enum):
    """Auditable actions of the core."""

    # Ingress
    SIGNAL_ACCEPTED = "SIGNAL_ACCEPTED"
    MOOD_ENTRY_ACCEPTED = "MOOD_ENTRY_ACCEPTED"
    QUALITY_METRIC_ACCEPTED = "QUALITY_METRIC_ACCEPTED"

    # Detection
    CRISIS_EVALUATED = "CRISIS_EVALUATED"
    CRISIS_REPORTED = "CRISIS_REPORTED"

    # Alert lifecycle
    ALERT_CREATED = "ALERT_CREATED"
    ALERT_ESCALATED = "ALERT_ESCALATED"
    ALERT_SUPPRESSED = "ALERT_SUPPRESSED"
    DISPATCH_STARTED = "DISPATCH_STARTED"
    CONTACT_NOTIFIED = "CONTACT_NOTIFIED"
    ALERT_DELIVERED = "ALERT_DELIVERED"
    DISPATCH_FAILED = "DISPATCH_FAILED"
    ALERT_EXHAUSTED = "ALERT_EXHAUSTED"
    ALERT_RESOLVED = "ALERT_RESOLVED"

    # Audit operations
    AUDIT_EXPORTED = "AUDIT_EXPORTED"


# ---------------------------------------------------------------------------
# Audit entry model
# ---------------------------------------------------------------------------

class AuditEntry(BaseModel):
    """A single audit entry: who did what to which record, for which user."""

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str = Field(
        ...,
        description=(
            "The user the event concerns; queries are scoped by it. "
            "Empty for events about content rather than a user."
        ),
    )
    actor_id: str = Field(
        default="SYSTEM",
        description="Who performed the action (system, therapist id, student id).",
    )
    event_type: AuditEventType
    target_entity: str = Field(
        default="",
        description="Identifier of the record acted on (alert id, entry id).",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    previous_hash: str = Field(
        default="",
        description="SHA-256 of the previous entry; empty for the first entry.",
    )

    def canonical_bytes(self) -> bytes:
        """Deterministic byte representation used for hashing."""
        data = {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "user_id": self.user_id,
            "actor_id": self.actor_id,
            "event_type": self.event_type.value,
            "target_entity": self.target_entity,
            "metadata": self.metadata,
            "previous_hash": self.previous_hash,
        }
        return json.dumps(data, sort_keys=True, default=str).encode("utf-8")

    def compute_hash(self) -> str:
        return hashlib.sha256(self.canonical_bytes()).hexdigest()


# ---------------------------------------------------------------------------
# Contact redaction
# ---------------------------------------------------------------------------

_CONTACT_PATTERNS: dict[str, re.Pattern] = {
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    # A leading "+" or separated digit groups; bare digit runs are ids.
    "phone": re.compile(
        r"(?<![\w-])"
        r"(?:\+\d{1,3}[-. ]?\d{3}[-. ]?\d{3,4}|\(?\d{3}\)?[-. ]\d{3}[-. ]\d{4})"
        r"(?![\w-])"
    ),
}

_SENSITIVE_KEYS = {"address", "email", "phone", "notes", "name", "contact_name"}
_IDENTIFIER_KEYS = {"reference", "target_entity"}


def redact_contact_details(metadata: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *metadata* with contact details replaced by markers.

    Sensitive keys are fully redacted; identifiers (keys ending in ``_id``,
    receipt references) are kept as they are; other string values are
    scrubbed of email addresses and phone numbers.  Nested dicts and lists
    are walked.
    """
    return {key: _redact_value(key, value) for key, value in metadata.items()}


def _redact_value(key: str, value: Any) -> Any:
    if key.lower() in _SENSITIVE_KEYS:
        return "[REDACTED]"
    if key.lower().endswith("_id") or key.lower() in _IDENTIFIER_KEYS:
        return value
    if isinstance(value, str):
        for pattern_name, pattern in _CONTACT_PATTERNS.items():
            value = pattern.sub(f"[REDACTED-{pattern_name.upper()}]", value)
        return value
    if isinstance(value, dict):
        return redact_contact_details(value)
    if isinstance(value, list):
        return [_redact_value("", item) for item in value]
    return value


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------

class AuditLog:
    """Append-only, hash-chained audit log.

    There is no update or delete.  ``append`` is safe to call from several
    threads; the chain order is the order in which appends were accepted.
    """

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []
        self._hashes: list[str] = []
        self._lock = threading.Lock()

    def append(self, entry: AuditEntry) -> AuditEntry:
        """Link *entry* to the chain and store it.

        Returns:
            The entry with ``previous_hash`` populated.
        """
        with self._lock:
            entry.previous_hash = self._hashes[-1] if self._hashes else ""
            self._entries.append(entry)
            self._hashes.append(entry.compute_hash())
        return entry

    def record(
        self,
        event_type: AuditEventType,
        user_id: str,
        target_entity: str = "",
        actor_id: str = "SYSTEM",
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        """Convenience wrapper building and appending an ``AuditEntry``."""
        return self.append(AuditEntry(
            user_id=user_id,
            actor_id=actor_id,
            event_type=event_type,
            target_entity=target_entity,
            metadata=metadata or {},
        ))

    def verify_chain(self) -> tuple[bool, Optional[int]]:
        """Walk the log and validate every hash link.

        Returns:
            ``(valid, broken_at)``; ``broken_at`` is the index of the first
            broken link, or None.
        """
        for i, entry in enumerate(self._entries):
            expected_prev = "" if i == 0 else self._entries[i - 1].compute_hash()
            if entry.previous_hash != expected_prev:
                return (False, i)
            if self._hashes[i] != entry.compute_hash():
                return (False, i)
        return (True, None)

    def query(
        self,
        user_id: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
        target_entity: Optional[str] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
    ) -> list[AuditEntry]:
        """Return copies of the entries matching every given filter."""
        results = []
        for entry in self._entries:
            if user_id is not None and entry.user_id != user_id:
                continue
            if event_type is not None and entry.event_type != event_type:
                continue
            if target_entity is not None and entry.target_entity != target_entity:
                continue
            if time_start is not None and entry.timestamp < time_start:
                continue
            if time_end is not None and entry.timestamp > time_end:
                continue
            results.append(entry.model_copy(deep=True))
        return results

    def export_for_review(self, user_id: str) -> dict[str, Any]:
        """JSON-serializable export of one user's trail with contacts redacted."""
        entries = []
        for entry in self.query(user_id=user_id):
            entry_dict = entry.model_dump(mode="json")
            entry_dict["metadata"] = redact_contact_details(entry.metadata)
            entries.append(entry_dict)

        chain_valid, broken_at = self.verify_chain()
        return {
            "export_metadata": {
                "user_id": user_id,
                "exported_at": datetime.now(timezone.utc).isoformat(),
                "entry_count": len(entries),
                "chain_integrity": "VALID" if chain_valid else f"BROKEN_AT_INDEX_{broken_at}",
            },
            "entries": entries,
        }

    def __len__(self) -> int:
        return len(self._entries)
