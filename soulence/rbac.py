"""
Role-Based Access Control for the Soulence core.

A small in-process permission table used by ``SoulenceCore`` to gate the
operations exposed to the API layer.

**Roles:**

* STUDENT   -- the app user; submits moods and signals, reports crises and
  sees their own history.
* PARENT    -- may view the crisis history of a linked student.
* THERAPIST -- views history and statistics and resolves alerts.
* SYSTEM    -- the core's own automated paths.

Identity and the student/parent/therapist links are established by the API
layer; this module only answers "may this role do that".
"""

from __future__ import annotations

from soulence.errors import UnauthorizedActionError
from soulence.models import Role


_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.STUDENT: frozenset({
        "submit_mood_entry",
        "submit_signal",
        "report_crisis",
        "view_crisis_history",
    }),
    Role.PARENT: frozenset({
        "view_crisis_history",
    }),
    Role.THERAPIST: frozenset({
        "view_crisis_history",
        "view_crisis_stats",
        "resolve_alert",
        "submit_quality_metric",
    }),
    Role.SYSTEM: frozenset({
        "submit_mood_entry",
        "submit_signal",
        "submit_quality_metric",
        "view_crisis_history",
        "view_crisis_stats",
    }),
}


def check_permission(role: Role, action: str) -> bool:
    """Whether *role* may perform *action*."""
    return action in _PERMISSIONS.get(role, frozenset())


def require_permission(role: Role, action: str) -> None:
    """Raise ``UnauthorizedActionError`` if *role* may not perform *action*."""
    if not check_permission(role, action):
        raise UnauthorizedActionError(
            f"Role '{role.value}' is not permitted to perform action '{action}'."
        )


def get_permissions_for_role(role: Role) -> set[str]:
    return set(_PERMISSIONS.get(role, frozenset()))
