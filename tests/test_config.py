"""
Tests for soulence.config -- Core Policy and Contact Directory.

Covers: default policy values, threshold and retry validation, YAML policy
loading, unknown sections, contact directory ordering and isolation, and
contact YAML loading.
"""

import tempfile
from pathlib import Path

import pytest
import yaml

from soulence.config import (
    DEFAULT_POLICY,
    AlertPolicy,
    ContactDirectory,
    CorePolicy,
    DetectionThresholds,
    RetryPolicy,
    load_contacts_from_yaml,
    load_core_policy_from_yaml,
)
from soulence.models import Contact, ContactRole


def _write_yaml(data) -> Path:
    handle = tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False)
    with handle:
        yaml.safe_dump(data, handle)
    return Path(handle.name)


def _make_contact(contact_id: str, role: ContactRole = ContactRole.THERAPIST) -> Contact:
    return Contact(contact_id=contact_id, name=f"Contact {contact_id}", role=role)


# ---------------------------------------------------------------------------
# 1. Default policy
# ---------------------------------------------------------------------------

class TestDefaultPolicy:
    def test_default_detection_window(self):
        assert DEFAULT_POLICY.detection.window_size == 3
        assert DEFAULT_POLICY.detection.crisis_mean_threshold == 3.0

    def test_default_retry_policy(self):
        assert DEFAULT_POLICY.retry.max_attempts == 3
        assert DEFAULT_POLICY.retry.max_delay_seconds >= DEFAULT_POLICY.retry.base_delay_seconds

    def test_default_parents_only_for_severe_alerts(self):
        assert DEFAULT_POLICY.alerts.parent_severity_cutoff == 2
        assert DEFAULT_POLICY.alerts.auto_dispatch is True


# ---------------------------------------------------------------------------
# 2. Validation
# ---------------------------------------------------------------------------

class TestPolicyValidation:
    def test_zero_window_rejected(self):
        with pytest.raises(Exception):
            DetectionThresholds(window_size=0)

    def test_threshold_outside_mood_scale_rejected(self):
        with pytest.raises(Exception):
            DetectionThresholds(crisis_mean_threshold=11)

    def test_non_negative_decline_slope_rejected(self):
        with pytest.raises(Exception):
            DetectionThresholds(decline_slope_threshold=0.0)

    def test_max_delay_below_base_rejected(self):
        with pytest.raises(Exception, match="max_delay_seconds"):
            RetryPolicy(base_delay_seconds=5.0, max_delay_seconds=1.0)

    def test_zero_attempts_rejected(self):
        with pytest.raises(Exception):
            RetryPolicy(max_attempts=0)

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(Exception):
            RetryPolicy(attempt_timeout_seconds=0)

    def test_parent_cutoff_outside_scale_rejected(self):
        with pytest.raises(Exception):
            AlertPolicy(parent_severity_cutoff=0)


# ---------------------------------------------------------------------------
# 3. YAML policy loading
# ---------------------------------------------------------------------------

class TestPolicyYaml:
    def test_partial_yaml_keeps_defaults(self):
        path = _write_yaml({"retry": {"max_attempts": 5, "base_delay_seconds": 2}})
        policy = load_core_policy_from_yaml(path)
        assert policy.retry.max_attempts == 5
        assert policy.retry.base_delay_seconds == 2.0
        assert policy.detection == DetectionThresholds()
        assert policy.alerts == AlertPolicy()

    def test_empty_yaml_yields_default_policy(self):
        path = _write_yaml(None)
        assert load_core_policy_from_yaml(path) == CorePolicy()

    def test_unknown_section_rejected(self):
        path = _write_yaml({"detection": {}, "escalation": {}})
        with pytest.raises(ValueError, match="escalation"):
            load_core_policy_from_yaml(path)

    def test_invalid_value_rejected(self):
        path = _write_yaml({"detection": {"window_size": -1}})
        with pytest.raises(Exception):
            load_core_policy_from_yaml(path)

    def test_missing_file_raises(self):
        with pytest.raises(FileNotFoundError):
            load_core_policy_from_yaml("/nonexistent/policy.yaml")

    def test_non_mapping_yaml_rejected(self):
        path = _write_yaml(["detection", "retry"])
        with pytest.raises(ValueError):
            load_core_policy_from_yaml(path)


# ---------------------------------------------------------------------------
# 4. Contact directory
# ---------------------------------------------------------------------------

class TestContactDirectory:
    def test_contacts_returned_in_configured_order(self):
        directory = ContactDirectory()
        directory.set_contacts("student_1", [
            _make_contact("c_2"), _make_contact("c_1"), _make_contact("c_3"),
        ])
        assert [c.contact_id for c in directory.contacts_for("student_1")] == ["c_2", "c_1", "c_3"]

    def test_unknown_user_has_no_contacts(self):
        assert ContactDirectory().contacts_for("nobody") == []

    def test_returned_contacts_are_copies(self):
        directory = ContactDirectory()
        directory.set_contacts("student_1", [_make_contact("c_1")])
        directory.contacts_for("student_1")[0].name = "Mutated"
        assert directory.contacts_for("student_1")[0].name == "Contact c_1"

    def test_users_are_isolated(self):
        directory = ContactDirectory()
        directory.set_contacts("student_1", [_make_contact("c_1")])
        directory.set_contacts("student_2", [_make_contact("c_2")])
        assert [c.contact_id for c in directory.contacts_for("student_2")] == ["c_2"]
        assert directory.list_users() == ["student_1", "student_2"]
        assert len(directory) == 2
        assert "student_1" in directory

    def test_duplicate_contact_ids_rejected(self):
        directory = ContactDirectory()
        with pytest.raises(ValueError, match="Duplicate"):
            directory.set_contacts("student_1", [_make_contact("c_1"), _make_contact("c_1")])

    def test_empty_user_id_rejected(self):
        with pytest.raises(ValueError):
            ContactDirectory().set_contacts("", [_make_contact("c_1")])


# ---------------------------------------------------------------------------
# 5. Contact YAML loading
# ---------------------------------------------------------------------------

class TestContactsYaml:
    def test_load_contacts(self):
        path = _write_yaml({
            "contacts": {
                "student_42": [
                    {"contact_id": "t1", "name": "Dr. Rivera", "role": "therapist",
                     "channel": "email", "address": "rivera@example.org"},
                    {"contact_id": "p1", "name": "Sam", "role": "parent",
                     "channel": "sms", "address": "+1-555-0100"},
                ],
            },
        })
        directory = load_contacts_from_yaml(path)
        contacts = directory.contacts_for("student_42")
        assert [c.contact_id for c in contacts] == ["t1", "p1"]
        assert contacts[1].role == ContactRole.PARENT
        assert contacts[1].channel == "sms"

    def test_missing_contacts_key_rejected(self):
        path = _write_yaml({"users": {}})
        with pytest.raises(ValueError, match="contacts"):
            load_contacts_from_yaml(path)

    def test_contact_list_must_be_a_list(self):
        path = _write_yaml({"contacts": {"student_1": {"name": "x"}}})
        with pytest.raises(ValueError):
            load_contacts_from_yaml(path)

    def test_invalid_role_rejected(self):
        path = _write_yaml({"contacts": {"student_1": [{"name": "x", "role": "coach"}]}})
        with pytest.raises(Exception):
            load_contacts_from_yaml(path)
