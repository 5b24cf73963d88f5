"""
Tests for soulence.rbac -- Role-Based Access Control.
"""

import pytest

from soulence.errors import UnauthorizedActionError
from soulence.models import Role
from soulence.rbac import check_permission, get_permissions_for_role, require_permission


class TestRBAC:
    def test_student_can_report_crisis(self):
        assert check_permission(Role.STUDENT, "report_crisis") is True

    def test_parent_cannot_resolve_alert(self):
        assert check_permission(Role.PARENT, "resolve_alert") is False

    def test_therapist_can_resolve_alert(self):
        assert check_permission(Role.THERAPIST, "resolve_alert") is True

    def test_student_cannot_view_stats(self):
        assert check_permission(Role.STUDENT, "view_crisis_stats") is False

    def test_system_cannot_resolve_alert(self):
        assert check_permission(Role.SYSTEM, "resolve_alert") is False

    def test_unknown_action_denied(self):
        assert check_permission(Role.THERAPIST, "delete_user") is False

    def test_require_permission_raises_on_denied(self):
        with pytest.raises(UnauthorizedActionError):
            require_permission(Role.PARENT, "submit_mood_entry")

    def test_unauthorized_is_a_permission_error(self):
        with pytest.raises(PermissionError):
            require_permission(Role.STUDENT, "resolve_alert")

    def test_require_permission_passes_on_allowed(self):
        require_permission(Role.SYSTEM, "submit_mood_entry")  # should not raise

    def test_get_permissions_for_role(self):
        perms = get_permissions_for_role(Role.PARENT)
        assert perms == {"view_crisis_history"}
