"""
Core Policy -- Detection, Retry and Contact Configuration.

Groups the tunable parameters of the Soulence core into validated policy
objects: the crisis detection windows and thresholds, the dispatch retry
policy, and the contact-selection rules.  Policies are plain pydantic models
so they can be built in code or loaded from YAML.

The per-user trusted contact lists live in a ``ContactDirectory``, keyed by
``user_id``.  Contact order is significant: it is the order in which
contacts are notified and recorded on the alert.

DISCLAIMER: Thresholds configured here are escalation heuristics, not
clinical cut-offs.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from soulence.models import Contact


# ---------------------------------------------------------------------------
# Detection thresholds
# ---------------------------------------------------------------------------

class DetectionThresholds(BaseModel):
    """Windows and thresholds used by the crisis pattern detector.

    The binary trigger is driven by ``window_size`` and
    ``crisis_mean_threshold`` only.  The consistent-low-mood and
    rapid-decline facets are reported alongside it for human reviewers.
    """

    window_size: int = Field(
        default=3,
        ge=1,
        description="Number of most recent mood entries averaged for the trigger.",
    )
    crisis_mean_threshold: float = Field(
        default=3.0,
        ge=1,
        le=10,
        description="Mean mood at or below which a crisis is triggered.",
    )
    consistent_low_window: int = Field(
        default=3,
        ge=1,
        description="Entries inspected for the consistent-low-mood facet.",
    )
    consistent_low_threshold: float = Field(
        default=4.0,
        ge=1,
        le=10,
        description="Every entry in the window must be strictly below this value.",
    )
    decline_window: int = Field(
        default=5,
        ge=2,
        description="Entries used to fit the rapid-decline slope.",
    )
    decline_slope_threshold: float = Field(
        default=-1.0,
        lt=0,
        description="Slope (mood points per entry) at or below which decline is rapid.",
    )


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

class RetryPolicy(BaseModel):
    """Dispatch retry policy.

    The delay before retry *n* (1-based) is
    ``min(base_delay_seconds * 2 ** (n - 1), max_delay_seconds)`` plus a
    uniform jitter of up to ``jitter_ratio`` times that delay.
    """

    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Total delivery attempts per alert, the first one included.",
    )
    base_delay_seconds: float = Field(default=1.0, ge=0)
    max_delay_seconds: float = Field(default=30.0, ge=0)
    jitter_ratio: float = Field(default=0.1, ge=0, le=1)
    attempt_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound on a single notify call.",
    )

    @field_validator("max_delay_seconds")
    @classmethod
    def max_above_base(cls, v: float, info) -> float:
        base = info.data.get("base_delay_seconds")
        if base is not None and v < base:
            raise ValueError(
                f"max_delay_seconds ({v}) must be >= base_delay_seconds ({base})"
            )
        return v


# ---------------------------------------------------------------------------
# Alert policy
# ---------------------------------------------------------------------------

class AlertPolicy(BaseModel):
    """Rules for who is notified and how dispatch is scheduled."""

    parent_severity_cutoff: int = Field(
        default=2,
        ge=1,
        le=10,
        description=(
            "Parents are notified only when the alert severity is at or "
            "below this level (lower is more severe)."
        ),
    )
    auto_dispatch: bool = Field(
        default=True,
        description="Start a dispatch worker as soon as an alert is created.",
    )


class CorePolicy(BaseModel):
    """Complete configuration of the Soulence core."""

    detection: DetectionThresholds = Field(default_factory=DetectionThresholds)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    alerts: AlertPolicy = Field(default_factory=AlertPolicy)


DEFAULT_POLICY = CorePolicy()
"""Built-in policy: 3-entry window, mean <= 3 triggers, 3 delivery attempts."""


# ---------------------------------------------------------------------------
# Contact directory
# ---------------------------------------------------------------------------

class ContactDirectory:
    """In-memory directory of trusted contacts, keyed by ``user_id``.

    Contacts are stored and returned in configured order.  Lookups return
    deep copies so callers cannot mutate the directory.
    """

    def __init__(self) -> None:
        self._contacts: dict[str, list[Contact]] = {}

    def set_contacts(self, user_id: str, contacts: list[Contact]) -> None:
        """Replace the ordered contact list for a user.

        Raises:
            ValueError: If ``user_id`` is empty or a contact id repeats.
        """
        if not user_id:
            raise ValueError("user_id must not be empty")
        ids = [c.contact_id for c in contacts]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate contact ids for user '{user_id}'")
        self._contacts[user_id] = copy.deepcopy(contacts)

    def contacts_for(self, user_id: str) -> list[Contact]:
        """Return the user's contacts in notification order (may be empty)."""
        return copy.deepcopy(self._contacts.get(user_id, []))

    def list_users(self) -> list[str]:
        return sorted(self._contacts.keys())

    def __len__(self) -> int:
        return len(self._contacts)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._contacts


# ---------------------------------------------------------------------------
# YAML loaders
# ---------------------------------------------------------------------------

def _read_yaml_mapping(path: str | Path) -> dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping.")
    return raw


def load_core_policy_from_yaml(path: str | Path) -> CorePolicy:
    """Load a ``CorePolicy`` from a YAML file.

    The file may contain any of the ``detection``, ``retry`` and ``alerts``
    sections; omitted sections keep their defaults.  Example::

        detection:
          window_size: 3
          crisis_mean_threshold: 3
        retry:
          max_attempts: 5
          base_delay_seconds: 2

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the YAML is not a mapping.
        pydantic.ValidationError: If a value fails validation.
    """
    raw = _read_yaml_mapping(path)
    unknown = set(raw) - {"detection", "retry", "alerts"}
    if unknown:
        raise ValueError(f"Unknown policy sections: {sorted(unknown)}")
    return CorePolicy(**raw)


def load_contacts_from_yaml(path: str | Path) -> ContactDirectory:
    """Load a ``ContactDirectory`` from a YAML file.

    Example YAML structure::

        contacts:
          student_42:
            - name: "Dr. Rivera"
              role: therapist
              channel: email
              address: "rivera@example.org"
            - name: "Sam (parent)"
              role: parent
              channel: sms
              address: "+1-555-0100"

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the YAML structure is invalid.
        pydantic.ValidationError: If a contact fails validation.
    """
    raw = _read_yaml_mapping(path)
    if "contacts" not in raw or not isinstance(raw["contacts"], dict):
        raise ValueError(
            "YAML file must contain a top-level 'contacts' mapping of user ids to contact lists."
        )

    directory = ContactDirectory()
    for user_id, entries in raw["contacts"].items():
        if not isinstance(entries, list):
            raise ValueError(f"Contacts for user '{user_id}' must be a list.")
        contacts = []
        for idx, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise ValueError(f"Contact {idx} for user '{user_id}' must be a mapping.")
            contacts.append(Contact(**entry))
        directory.set_contacts(str(user_id), contacts)
    return directory
